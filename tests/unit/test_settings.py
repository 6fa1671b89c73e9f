from __future__ import annotations

import pytest
from pydantic import ValidationError

from db.provision import select_backend
from db.settings import DbSettings, Environment, normalize_url


def test_development_selects_default_connection() -> None:
    s = DbSettings(
        app_env="development",
        default_connection="sqlite:///./dev.db",
        production_connection="postgresql://app:secret@db:5432/library",
    )
    assert s.connection_string == "sqlite:///./dev.db"


def test_production_selects_production_connection() -> None:
    s = DbSettings(
        app_env="production",
        default_connection="sqlite:///./dev.db",
        production_connection="postgresql://app:secret@db:5432/library",
    )
    assert s.connection_string == "postgresql+psycopg://app:secret@db:5432/library"


def test_environment_is_case_insensitive() -> None:
    assert DbSettings(app_env="Production").app_env is Environment.PRODUCTION
    assert DbSettings(app_env=" DEVELOPMENT ").app_env is Environment.DEVELOPMENT


def test_unknown_environment_is_rejected() -> None:
    with pytest.raises(ValidationError):
        DbSettings(app_env="staging")


def test_environment_variables_drive_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "Production")
    monkeypatch.setenv("PRODUCTION_CONNECTION", "postgresql+asyncpg://u:p@pg/lib")
    monkeypatch.setenv("SEED_FAILURE_FATAL", "true")

    s = DbSettings()
    assert s.app_env is Environment.PRODUCTION
    assert s.connection_string == "postgresql+psycopg://u:p@pg/lib"
    assert s.seed_failure_fatal is True


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+psycopg2://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+psycopg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("sqlite:///./data/library.db", "sqlite:///./data/library.db"),
    ],
)
def test_normalize_url(url: str, expected: str) -> None:
    assert normalize_url(url) == expected


def test_backend_choice_hides_password() -> None:
    choice = select_backend(
        DbSettings(app_env="production", production_connection="postgresql://app:secret@db:5432/library")
    )
    assert choice.mode is Environment.PRODUCTION
    assert choice.backend == "postgresql"
    assert "secret" not in choice.target
    assert choice.target == "postgresql+psycopg://app:***@db:5432/library"


def test_backend_choice_for_development_is_sqlite() -> None:
    choice = select_backend(DbSettings(app_env="development", default_connection="sqlite:///./dev.db"))
    assert choice.backend == "sqlite"
