from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass
from datetime import date
from enum import StrEnum
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from db.provision import create_db_engine
from db.results import Result, SeedCheckError, SeedInsertError
from db.schema import authors
from db.settings import SETTINGS, normalize_url
from services.web.app.logging import configure_cli_logging


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthorSpec:
    name: str
    biography: str
    birth_date: date


SEED_AUTHORS: list[AuthorSpec] = [
    AuthorSpec(name="Author 1", biography="Author 1", birth_date=date(1981, 1, 1)),
    AuthorSpec(name="Author 2", biography="Author 2", birth_date=date(1982, 2, 2)),
    AuthorSpec(name="Author 3", biography="Author 3", birth_date=date(1983, 3, 3)),
]


class SeedOutcome(StrEnum):
    SEEDED = "seeded"
    ALREADY_POPULATED = "already_populated"
    SKIPPED_DUE_TO_CHECK_FAILURE = "skipped_due_to_check_failure"


@dataclass(frozen=True)
class SeedReport:
    outcome: SeedOutcome
    inserted: int = 0
    check_error: SeedCheckError | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "inserted": self.inserted,
            "check_error": str(self.check_error) if self.check_error else None,
        }


def authors_present(engine: Engine) -> Result[bool]:
    try:
        with engine.connect() as conn:
            row = conn.execute(sa.select(authors.c.id).limit(1)).first()
    except SQLAlchemyError as e:
        return Result.failure(SeedCheckError.wrap("authors existence check failed", e))
    return Result.success(row is not None)


def _insert_if_absent(dialect_name: str, rows: list[dict[str, Any]]) -> Any:
    if dialect_name == "postgresql":
        stmt = postgresql.insert(authors).values(rows)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(authors).values(rows)
    else:
        # No portable conflict clause; uq_authors_name still rejects duplicates.
        return sa.insert(authors).values(rows).returning(authors.c.id)
    return stmt.on_conflict_do_nothing(index_elements=[authors.c.name]).returning(authors.c.id)


def insert_seed_authors(engine: Engine, specs: list[AuthorSpec] | None = None) -> Result[int]:
    """
    Insert the reference authors in one statement and one transaction.

    Rows whose name already exists are skipped by the database, so concurrent
    callers converge on a single copy. Returns the number of rows inserted.
    """
    rows = [asdict(s) for s in (specs if specs is not None else SEED_AUTHORS)]
    try:
        with engine.begin() as conn:
            inserted = conn.execute(_insert_if_absent(conn.dialect.name, rows)).all()
    except SQLAlchemyError as e:
        return Result.failure(SeedInsertError.wrap("seed authors insert failed", e))
    return Result.success(len(inserted))


def seed_if_empty(engine: Engine) -> Result[SeedReport]:
    check = authors_present(engine)
    if check.ok and check.value:
        logger.info("seed_finished", outcome=SeedOutcome.ALREADY_POPULATED.value, inserted=0)
        return Result.success(SeedReport(outcome=SeedOutcome.ALREADY_POPULATED))

    if not check.ok:
        # An unreadable table is treated as empty.
        logger.warning("seed_check", status="ERROR", error=str(check.error))
    else:
        logger.info("seed_check", status="OK", populated=False)

    inserted = insert_seed_authors(engine)
    if not inserted.ok:
        logger.error("seed_finished", status="ERROR", error=str(inserted.error))
        return Result.failure(inserted.error)

    if inserted.value:
        outcome = SeedOutcome.SEEDED
    elif check.ok:
        # Another process won the race between our check and insert.
        outcome = SeedOutcome.ALREADY_POPULATED
    else:
        outcome = SeedOutcome.SKIPPED_DUE_TO_CHECK_FAILURE
    logger.info("seed_finished", outcome=outcome.value, inserted=inserted.value)
    return Result.success(SeedReport(outcome=outcome, inserted=inserted.value or 0, check_error=check.error))


def main() -> None:
    parser = argparse.ArgumentParser(description="Insert the reference authors if the store has none.")
    parser.add_argument("--database-url", default=SETTINGS.connection_string)
    args = parser.parse_args()

    configure_cli_logging(SETTINGS.app_env)
    engine = create_db_engine(normalize_url(args.database_url))
    try:
        result = seed_if_empty(engine)
    finally:
        engine.dispose()

    if not result.ok:
        print(json.dumps({"ok": False, "error": str(result.error), "kind": result.error.kind}, indent=2))
        raise SystemExit(1)
    print(json.dumps({"ok": True, **result.value.as_dict()}, indent=2))


if __name__ == "__main__":
    main()
