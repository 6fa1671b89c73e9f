from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
# Ensure the repo root is importable (so `import db.*` / `import services.*` work in tests).
sys.path.insert(0, str(REPO_ROOT))

# Settings are instantiated at import time. Keep tests offline and in development mode.
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("APP_ENV", "development")

from db.provision import create_db_engine  # noqa: E402
from db.settings import DbSettings, Environment, normalize_url  # noqa: E402


@pytest.fixture()
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'library.db'}"


@pytest.fixture()
def sqlite_engine(sqlite_url: str):
    engine = create_db_engine(sqlite_url)
    yield engine
    engine.dispose()


@pytest.fixture()
def dev_settings(sqlite_url: str) -> DbSettings:
    return DbSettings(app_env=Environment.DEVELOPMENT, default_connection=sqlite_url)


@pytest.fixture()
def prod_settings(sqlite_url: str) -> DbSettings:
    # Production policy exercised against SQLite keeps fallback tests hermetic.
    return DbSettings(app_env=Environment.PRODUCTION, production_connection=sqlite_url)


@pytest.fixture(scope="session")
def postgres_url() -> str:
    from testcontainers.postgres import PostgresContainer

    pg = PostgresContainer("postgres:16")
    try:
        pg.start()
    except Exception as e:  # noqa: BLE001
        pytest.skip(f"PostgreSQL testcontainer unavailable: {e}")
    try:
        # Testcontainers may emit psycopg2 URLs; provisioning runs on psycopg 3.
        yield normalize_url(pg.get_connection_url())
    finally:
        pg.stop()
