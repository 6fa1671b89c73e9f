from __future__ import annotations

from datetime import date

import pytest
import sqlalchemy as sa

import db.seed as seed_mod
from db.provision import provision
from db.results import Result, SeedCheckError, SeedInsertError
from db.schema import authors
from db.seed import SEED_AUTHORS, SeedOutcome, authors_present, insert_seed_authors, seed_if_empty
from db.settings import Environment


EXPECTED = [
    ("Author 1", date(1981, 1, 1)),
    ("Author 2", date(1982, 2, 2)),
    ("Author 3", date(1983, 3, 3)),
]


@pytest.fixture()
def provisioned_engine(sqlite_engine):
    assert provision(Environment.DEVELOPMENT, sqlite_engine).ok
    return sqlite_engine


def _authors(engine: sa.Engine) -> list[tuple[str, date]]:
    with engine.connect() as conn:
        rows = conn.execute(sa.select(authors.c.name, authors.c.birth_date).order_by(authors.c.name)).all()
    return [tuple(r) for r in rows]


def test_seed_dataset_is_fixed() -> None:
    assert [(a.name, a.birth_date) for a in SEED_AUTHORS] == EXPECTED


def test_empty_store_gets_exactly_the_reference_authors(provisioned_engine) -> None:
    result = seed_if_empty(provisioned_engine)

    assert result.ok
    assert result.value.outcome is SeedOutcome.SEEDED
    assert result.value.inserted == 3
    assert _authors(provisioned_engine) == EXPECTED


def test_reseeding_keeps_the_author_count(provisioned_engine) -> None:
    assert seed_if_empty(provisioned_engine).ok
    before = len(_authors(provisioned_engine))

    for _ in range(3):
        again = seed_if_empty(provisioned_engine)
        assert again.ok
        assert again.value.outcome is SeedOutcome.ALREADY_POPULATED
        assert again.value.inserted == 0

    assert len(_authors(provisioned_engine)) == before == 3


def test_populated_store_is_left_alone(provisioned_engine) -> None:
    with provisioned_engine.begin() as conn:
        conn.execute(sa.insert(authors).values(name="Ada", biography=None, birth_date=date(1815, 12, 10)))

    result = seed_if_empty(provisioned_engine)

    assert result.value.outcome is SeedOutcome.ALREADY_POPULATED
    assert _authors(provisioned_engine) == [("Ada", date(1815, 12, 10))]


def test_check_failure_still_attempts_seeding(provisioned_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(seed_mod, "authors_present", lambda engine: Result.failure(SeedCheckError("not visible")))

    result = seed_if_empty(provisioned_engine)

    assert result.ok
    assert result.value.outcome is SeedOutcome.SEEDED
    assert isinstance(result.value.check_error, SeedCheckError)
    assert _authors(provisioned_engine) == EXPECTED


def test_check_failure_on_seeded_store_inserts_nothing(provisioned_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    assert seed_if_empty(provisioned_engine).ok
    monkeypatch.setattr(seed_mod, "authors_present", lambda engine: Result.failure(SeedCheckError("not visible")))

    result = seed_if_empty(provisioned_engine)

    assert result.ok
    assert result.value.outcome is SeedOutcome.SKIPPED_DUE_TO_CHECK_FAILURE
    assert result.value.inserted == 0
    assert len(_authors(provisioned_engine)) == 3


def test_unprovisioned_store_reports_insert_failure(sqlite_engine) -> None:
    check = authors_present(sqlite_engine)
    assert not check.ok

    result = seed_if_empty(sqlite_engine)

    assert not result.ok
    assert isinstance(result.error, SeedInsertError)
    assert isinstance(result.error.__cause__, sa.exc.SQLAlchemyError)


def test_insert_skips_names_already_present(provisioned_engine) -> None:
    first = insert_seed_authors(provisioned_engine, SEED_AUTHORS[:1])
    rest = insert_seed_authors(provisioned_engine)

    assert first.value == 1
    assert rest.value == 2
    assert _authors(provisioned_engine) == EXPECTED
