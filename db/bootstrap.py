from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.engine import Engine

from db.provision import BackendChoice, SchemaReady, create_db_engine, provision, select_backend
from db.results import MigrationError, SchemaCreationError, SeedInsertError, StartupError
from db.seed import SeedReport, seed_if_empty
from db.settings import SETTINGS, DbSettings, Environment
from services.web.app.logging import configure_cli_logging


logger = structlog.get_logger(__name__)


class StartupAborted(RuntimeError):
    def __init__(self, error: StartupError) -> None:
        super().__init__(f"startup aborted ({error.kind}): {error}")
        self.error = error


@dataclass
class StartupReport:
    backend: BackendChoice
    schema: SchemaReady | None = None
    seed: SeedReport | None = None
    errors: list[StartupError] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def degraded(self) -> bool:
        return self.schema is None or bool(self.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "env": self.backend.mode.value,
            "backend": self.backend.backend,
            "target": self.backend.target,
            "provisioning": (
                {
                    "method": self.schema.method,
                    "revision": self.schema.revision,
                    "connectivity_ok": self.schema.connectivity_ok,
                }
                if self.schema
                else None
            ),
            "seed": self.seed.as_dict() if self.seed else None,
            "errors": [{"kind": e.kind, "message": str(e)} for e in self.errors],
            "degraded": self.degraded,
            "elapsed_ms": self.elapsed_ms,
        }


def is_fatal(error: StartupError, mode: Environment, *, seed_failure_fatal: bool = False) -> bool:
    if mode is not Environment.PRODUCTION:
        return False
    if isinstance(error, (MigrationError, SchemaCreationError)):
        return True
    if isinstance(error, SeedInsertError):
        return seed_failure_fatal
    return False


def bootstrap(settings: DbSettings, engine: Engine) -> StartupReport:
    """
    Provision, then seed. Runs once, synchronously, before serving.

    Raises StartupAborted when a step fails with an error that is fatal for the
    configured environment. Every other failure is recorded on the report.
    """
    start = time.perf_counter()
    report = StartupReport(backend=select_backend(settings))
    mode = report.backend.mode

    def _fail(error: StartupError) -> None:
        report.errors.append(error)
        report.elapsed_ms = int((time.perf_counter() - start) * 1000)
        if is_fatal(error, mode, seed_failure_fatal=settings.seed_failure_fatal):
            logger.error("startup_aborted", env=mode.value, kind=error.kind, error=str(error))
            raise StartupAborted(error) from error

    provisioned = provision(mode, engine)
    if not provisioned.ok:
        _fail(provisioned.error)
        # Never seed an unprovisioned schema.
        logger.error("startup_finished", env=mode.value, schema="unprovisioned", seed="skipped")
        return report
    report.schema = provisioned.value
    if provisioned.value.connectivity_error is not None:
        report.errors.append(provisioned.value.connectivity_error)

    seeded = seed_if_empty(engine)
    if seeded.ok:
        report.seed = seeded.value
        if seeded.value.check_error is not None:
            report.errors.append(seeded.value.check_error)
    else:
        _fail(seeded.error)

    report.elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        "startup_finished",
        env=mode.value,
        schema=report.schema.method,
        revision=report.schema.revision,
        seed=report.seed.outcome.value if report.seed else "failed",
        degraded=report.degraded,
        elapsed_ms=report.elapsed_ms,
    )
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Provision the schema and seed reference data.")
    parser.add_argument("--env", choices=[e.value for e in Environment], default=SETTINGS.app_env.value)
    parser.add_argument("--database-url", default=None, help="Override the environment-selected connection.")
    args = parser.parse_args()

    overrides: dict[str, Any] = {"app_env": args.env}
    if args.database_url:
        key = "default_connection" if args.env == Environment.DEVELOPMENT.value else "production_connection"
        overrides[key] = args.database_url
    settings = DbSettings(**{**SETTINGS.model_dump(), **overrides})
    configure_cli_logging(settings.app_env)

    engine = create_db_engine(settings.connection_string)
    try:
        report = bootstrap(settings, engine)
    except StartupAborted as e:
        print(json.dumps({"ok": False, "kind": e.error.kind, "error": str(e.error)}, indent=2))
        raise SystemExit(1) from e
    finally:
        engine.dispose()
    print(json.dumps({"ok": True, **report.as_dict()}, indent=2, default=str))


if __name__ == "__main__":
    main()
