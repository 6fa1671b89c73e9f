from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

from db.settings import Environment
from services.web.app.settings import SETTINGS


def configure_logging(log_level: str, json_logs: bool = True, stream: TextIO | None = None) -> None:
    level = logging.getLevelName(log_level.upper())
    # Alembic and SQLAlchemy log through stdlib logging.
    logging.basicConfig(format="%(message)s", stream=stream or sys.stdout, level=level)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )


def configure_cli_logging(app_env: Environment) -> None:
    """Logging for the db CLIs: events go to stderr, stdout carries only the JSON summary."""
    json_logs = SETTINGS.json_logs
    if json_logs is None:
        json_logs = app_env is Environment.PRODUCTION
    configure_logging(SETTINGS.log_level, json_logs=json_logs, stream=sys.stderr)


logger = structlog.get_logger()
