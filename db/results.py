from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")


class StartupError(Exception):
    """Base for every failure the startup sequence knows how to classify."""

    kind = "startup"

    @classmethod
    def wrap(cls, message: str, cause: BaseException | None = None) -> "StartupError":
        err = cls(f"{message}: {cause}" if cause is not None else message)
        err.__cause__ = cause
        return err


class ConnectivityError(StartupError):
    kind = "connectivity"


class MigrationError(StartupError):
    kind = "migration"


class SchemaCreationError(StartupError):
    kind = "schema_creation"
    # Set when direct creation was the fallback for a failed migration.
    migration_error: MigrationError | None = None


class SeedCheckError(StartupError):
    kind = "seed_check"


class SeedInsertError(StartupError):
    kind = "seed_insert"


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: StartupError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: StartupError) -> "Result[T]":
        return cls(error=error)
