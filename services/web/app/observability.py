from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from sqlalchemy.engine import Engine

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from db.bootstrap import StartupReport
from db.results import StartupError


REGISTRY = CollectorRegistry()
ProcessCollector(registry=REGISTRY)
PlatformCollector(registry=REGISTRY)
GCCollector(registry=REGISTRY)

REQUEST_SUCCESS_TOTAL = Counter(
    "request_success_total",
    "Count of successful requests",
    ["service", "route", "method"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "request_latency_ms",
    "Request latency in milliseconds",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
    registry=REGISTRY,
)

PROVISION_TOTAL = Counter(
    "provision_total",
    "Schema provisioning results at startup",
    ["method", "outcome"],
    registry=REGISTRY,
)
FALLBACK_TOTAL = Counter("fallback_total", "Fallbacks triggered", ["kind"], registry=REGISTRY)
SEED_OUTCOME_TOTAL = Counter("seed_outcome_total", "Reference data seeding outcomes", ["outcome"], registry=REGISTRY)
STARTUP_ERROR_TOTAL = Counter("startup_error_total", "Startup errors by kind", ["kind"], registry=REGISTRY)
STARTUP_ABORTED_TOTAL = Counter("startup_aborted_total", "Startups refused by a fatal error", registry=REGISTRY)
STARTUP_DURATION = Histogram(
    "startup_duration_ms",
    "Provision + seed duration in milliseconds",
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
    registry=REGISTRY,
)


def setup_tracing(app: FastAPI, service_name: str) -> None:
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Engine) -> None:
    SQLAlchemyInstrumentor().instrument(engine=engine)


def record_startup(report: StartupReport) -> None:
    if report.schema is not None:
        PROVISION_TOTAL.labels(report.schema.method, "ok").inc()
        if report.schema.method == "create_all":
            FALLBACK_TOTAL.labels("create_all").inc()
    else:
        PROVISION_TOTAL.labels("migrate", "error").inc()
    if report.seed is not None:
        SEED_OUTCOME_TOTAL.labels(report.seed.outcome.value).inc()
    for err in report.errors:
        STARTUP_ERROR_TOTAL.labels(err.kind).inc()
    STARTUP_DURATION.observe(report.elapsed_ms)


def record_startup_aborted(error: StartupError) -> None:
    STARTUP_ABORTED_TOTAL.inc()
    STARTUP_ERROR_TOTAL.labels(error.kind).inc()


def add_metrics_middleware(app: FastAPI, service_name: str) -> None:
    @app.middleware("http")
    async def _metrics(request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        resp = await call_next(request)
        route = request.scope.get("path", "unknown")
        method = request.method
        REQUEST_LATENCY.labels(service_name, route, method).observe((time.perf_counter() - start) * 1000)
        if resp.status_code < 500:
            REQUEST_SUCCESS_TOTAL.labels(service_name, route, method).inc()
        return resp

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
