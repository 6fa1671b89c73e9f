from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager

import sqlalchemy as sa
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.engine import Connection, Engine

from db.bootstrap import StartupAborted, StartupReport, bootstrap
from db.provision import create_db_engine, select_backend
from db.seed import seed_if_empty
from db.settings import SETTINGS as DB_SETTINGS
from db.settings import DbSettings, Environment
from services.web.app.logging import configure_logging, logger
from services.web.app.observability import (
    add_metrics_middleware,
    instrument_sqlalchemy,
    record_startup,
    record_startup_aborted,
    setup_tracing,
)
from services.web.app.schemas import HealthResponse, SeedStatus, StartupStatusResponse
from services.web.app.settings import SETTINGS, WebSettings


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_connection(engine: Engine = Depends(get_engine)) -> Iterator[Connection]:
    with engine.connect() as conn:
        yield conn


def _require_admin(request: Request, token: str | None) -> None:
    if token != request.app.state.web_settings.admin_token:
        raise HTTPException(status_code=401, detail="unauthorized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    db_settings: DbSettings = app.state.db_settings
    web_settings: WebSettings = app.state.web_settings

    engine = app.state.engine
    if engine is None:
        engine = create_db_engine(select_backend(db_settings).url)
        app.state.engine = engine
    if web_settings.tracing_enabled:
        instrument_sqlalchemy(engine)

    # Blocking on purpose: no request is served before provisioning and seeding finish.
    try:
        report = bootstrap(db_settings, engine)
    except StartupAborted as e:
        record_startup_aborted(e.error)
        engine.dispose()
        raise
    record_startup(report)
    app.state.startup_report = report

    try:
        yield
    finally:
        engine.dispose()
        logger.info("shutdown_finished")


def create_app(
    db_settings: DbSettings | None = None,
    web_settings: WebSettings | None = None,
    engine: Engine | None = None,
) -> FastAPI:
    db_settings = db_settings or DB_SETTINGS
    web_settings = web_settings or SETTINGS

    json_logs = web_settings.json_logs
    if json_logs is None:
        json_logs = db_settings.app_env is Environment.PRODUCTION
    configure_logging(web_settings.log_level, json_logs=json_logs)

    app = FastAPI(title="Library Catalog API", version="0.1.0", lifespan=lifespan)
    app.state.db_settings = db_settings
    app.state.web_settings = web_settings
    app.state.engine = engine
    app.state.startup_report = None

    if web_settings.tracing_enabled:
        setup_tracing(app, service_name="library")
    add_metrics_middleware(app, service_name="library")

    @app.get("/healthz", response_model=HealthResponse)
    def healthz(conn: Connection = Depends(get_connection)) -> HealthResponse:
        conn.execute(sa.text("SELECT 1"))
        return HealthResponse(ok=True)

    @app.get("/admin/startup", response_model=StartupStatusResponse)
    def admin_startup(request: Request, x_admin_token: str | None = Header(default=None)) -> dict:
        _require_admin(request, x_admin_token)
        report: StartupReport = request.app.state.startup_report
        return report.as_dict()

    @app.post("/admin/seed", response_model=SeedStatus)
    def admin_seed(
        request: Request,
        x_admin_token: str | None = Header(default=None),
        engine: Engine = Depends(get_engine),
    ) -> dict:
        _require_admin(request, x_admin_token)
        report: StartupReport = request.app.state.startup_report
        if report.schema is None:
            raise HTTPException(status_code=409, detail="schema not provisioned")
        result = seed_if_empty(engine)
        if not result.ok:
            raise HTTPException(status_code=500, detail=str(result.error))
        return result.value.as_dict()

    return app


app = create_app()
