from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import sqlalchemy as sa
import structlog
from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script.revision import RevisionError
from alembic.util.exc import CommandError
from opentelemetry import trace
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from db.results import ConnectivityError, MigrationError, Result, SchemaCreationError
from db.schema import METADATA
from db.settings import DbSettings, Environment


logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Session-level advisory lock key shared by every replica of this service.
PROVISION_LOCK_KEY = 7_310_264_001

_MIGRATION_ERRORS = (SQLAlchemyError, CommandError, RevisionError)


@dataclass(frozen=True)
class BackendChoice:
    mode: Environment
    url: str

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    @property
    def target(self) -> str:
        # Never log credentials.
        return make_url(self.url).render_as_string(hide_password=True)


@dataclass(frozen=True)
class SchemaReady:
    method: Literal["migrate", "create_all"]
    revision: str | None
    connectivity_error: ConnectivityError | None = None

    @property
    def connectivity_ok(self) -> bool:
        return self.connectivity_error is None


def select_backend(settings: DbSettings) -> BackendChoice:
    return BackendChoice(mode=settings.app_env, url=settings.connection_string)


def create_db_engine(url: str) -> Engine:
    sa_url = make_url(url)
    kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if sa_url.get_backend_name() == "sqlite":
        # Startup runs on the event loop thread, sync endpoints on the threadpool.
        kwargs["connect_args"] = {"check_same_thread": False}
    return sa.create_engine(sa_url, **kwargs)


def alembic_config(connection: Connection | None = None) -> Config:
    cfg = Config(str(MIGRATIONS_DIR / "alembic.ini"))
    cfg.attributes["configure_logger"] = False
    if connection is not None:
        cfg.attributes["connection"] = connection
    return cfg


def current_revision(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def _prepare_sqlite_path(engine: Engine) -> None:
    """
    SQLite creates the database file on first connect, but not its directory.
    """
    if engine.dialect.name != "sqlite":
        return
    database = engine.url.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    try:
        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("sqlite_directory_unavailable", database=database, error=str(e))


def check_connectivity(engine: Engine) -> Result[None]:
    try:
        with engine.connect() as conn:
            conn.execute(sa.text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("connectivity_probe", status="ERROR", error=str(e))
        return Result.failure(ConnectivityError.wrap("backend unreachable", e))
    logger.info("connectivity_probe", status="OK")
    return Result.success()


def apply_migrations(engine: Engine) -> Result[str]:
    tracer = trace.get_tracer("db.provision")
    with tracer.start_as_current_span("db.migrate") as span:
        try:
            with engine.begin() as conn:
                command.upgrade(alembic_config(conn), "head")
                revision = MigrationContext.configure(conn).get_current_revision()
        except _MIGRATION_ERRORS as e:
            span.record_exception(e)
            logger.warning("migration_finished", status="ERROR", error=str(e))
            return Result.failure(MigrationError.wrap("migration to head failed", e))
        span.set_attribute("db.revision", revision or "")
    logger.info("migration_finished", status="OK", revision=revision)
    return Result.success(revision)


def create_schema(engine: Engine) -> Result[None]:
    tracer = trace.get_tracer("db.provision")
    with tracer.start_as_current_span("db.create_schema") as span:
        try:
            with engine.begin() as conn:
                METADATA.create_all(conn, checkfirst=True)
        except SQLAlchemyError as e:
            span.record_exception(e)
            logger.error("schema_created", status="ERROR", error=str(e))
            return Result.failure(SchemaCreationError.wrap("direct schema creation failed", e))
    logger.info("schema_created", status="OK", tables=sorted(METADATA.tables))
    return Result.success()


def stamp_head(engine: Engine) -> str | None:
    # Record the created layout as head so the next deploy migrates incrementally.
    try:
        with engine.begin() as conn:
            command.stamp(alembic_config(conn), "head", purge=True)
            revision = MigrationContext.configure(conn).get_current_revision()
    except _MIGRATION_ERRORS as e:
        logger.warning("schema_stamp_failed", error=str(e))
        return None
    return revision


@contextmanager
def provisioning_lock(engine: Engine) -> Iterator[None]:
    """
    Serialize provisioning across replicas sharing one PostgreSQL database.

    Other backends are only used single-process in development and run unlocked.
    """
    if engine.dialect.name != "postgresql":
        yield
        return

    conn: Connection | None = None
    try:
        conn = engine.connect()
        conn.execute(sa.text("SELECT pg_advisory_lock(:key)"), {"key": PROVISION_LOCK_KEY})
    except SQLAlchemyError as e:
        if conn is not None:
            conn.close()
        logger.warning("provision_lock_unavailable", error=str(e))
        yield
        return

    try:
        yield
    finally:
        try:
            conn.execute(sa.text("SELECT pg_advisory_unlock(:key)"), {"key": PROVISION_LOCK_KEY})
        finally:
            conn.close()


def provision(mode: Environment, engine: Engine) -> Result[SchemaReady]:
    """
    Bring the schema to head.

    - development: migrations only, a failure is returned as-is.
    - production: migrations, then direct creation when migrating fails.
    """
    tracer = trace.get_tracer("db.provision")
    backend = engine.dialect.name
    target = engine.url.render_as_string(hide_password=True)

    with tracer.start_as_current_span("db.provision") as span:
        span.set_attribute("app.env", mode.value)
        span.set_attribute("db.system", backend)
        logger.info("startup_environment", env=mode.value, backend=backend, target=target)

        _prepare_sqlite_path(engine)
        probe = check_connectivity(engine)

        with provisioning_lock(engine):
            migrated = apply_migrations(engine)
            if migrated.ok:
                return Result.success(
                    SchemaReady(method="migrate", revision=migrated.value, connectivity_error=probe.error)
                )

            if mode is Environment.DEVELOPMENT:
                span.record_exception(migrated.error)
                return Result.failure(migrated.error)

            logger.warning("schema_fallback", env=mode.value, reason=str(migrated.error))
            created = create_schema(engine)
            if not created.ok:
                created.error.migration_error = migrated.error
                created.error.add_note(f"preceding migration failure: {migrated.error}")
                span.record_exception(created.error)
                return Result.failure(created.error)

            return Result.success(
                SchemaReady(method="create_all", revision=stamp_head(engine), connectivity_error=probe.error)
            )
