from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class HealthResponse(StrictModel):
    ok: bool


class SchemaStatus(StrictModel):
    method: Literal["migrate", "create_all"]
    revision: str | None = None
    connectivity_ok: bool


class SeedStatus(StrictModel):
    outcome: Literal["seeded", "already_populated", "skipped_due_to_check_failure"]
    inserted: int
    check_error: str | None = None


class StartupErrorItem(StrictModel):
    kind: str
    message: str


class StartupStatusResponse(StrictModel):
    env: Literal["development", "production"]
    backend: str
    target: str
    provisioning: SchemaStatus | None = None
    seed: SeedStatus | None = None
    errors: list[StartupErrorItem]
    degraded: bool
    elapsed_ms: int
