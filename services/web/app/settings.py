from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class WebSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="forbid")

    log_level: str = "info"
    # None: JSON in production, console renderer in development.
    json_logs: bool | None = None
    admin_token: str = "dev-admin"
    tracing_enabled: bool = True


SETTINGS = WebSettings()
