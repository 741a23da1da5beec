# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn greenlight.main:create_app --factory --host 0.0.0.0 --port 4000

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from greenlight import __version__
from greenlight.auth import BearerTokenMiddleware
from greenlight.config import Settings, get_settings
from greenlight.exceptions import register_exception_handlers
from greenlight.logging_config import configure_logging
from greenlight.middleware import RecoverPanicMiddleware, RequestMetricsMiddleware
from greenlight.rate_limit import BucketStore, RateLimitMiddleware
from greenlight.routes import debug, health, movies, tokens, users
from greenlight.services.accounts import AccountService
from greenlight.services.background import BackgroundTasks
from greenlight.services.mailer import Mailer
from greenlight.services.metrics import RequestMetrics
from greenlight.services.tokens import TokenService
from greenlight.store import MemoryStore, Store

logger = structlog.get_logger(__name__)


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing (console only)."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider()

    if exporter_type == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


async def _open_store(settings: Settings) -> Store:
    """PostgreSQL when DB_DSN is set, otherwise the in-process store."""
    if settings.db_dsn.get_secret_value():
        from greenlight.store.sql import SQLStore

        return await SQLStore.connect(settings)
    logger.warning("db_dsn_not_set", hint="Using the in-memory store. Data is lost on restart.")
    return MemoryStore(timeout=settings.db_timeout_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, wire services onto app.state, run the sweeper."""
    settings: Settings = app.state.settings
    buckets: BucketStore = app.state.buckets

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter)

    store = await _open_store(settings)
    token_service = TokenService(store)
    background = BackgroundTasks()
    accounts = AccountService(
        store, token_service, settings, Mailer.from_settings(settings), background
    )

    app.state.store = store
    app.state.token_service = token_service
    app.state.background = background
    app.state.account_service = accounts

    buckets.add_sweep_hook(token_service.purge_expired)
    buckets.start()
    logger.info("server_started", env=settings.env, port=settings.port, version=__version__)

    try:
        yield
    finally:
        logger.info("server_stopping")
        await buckets.stop()
        await background.drain()
        await store.close()
        # Flush spans before the process exits
        if otel_provider is not None:
            otel_provider.shutdown()
        logger.info("server_stopped")


def _parse_origins(trusted_origins: str) -> list[str]:
    """Parse space- or comma-separated CORS origins. Empty string → deny all."""
    origins = trusted_origins.replace(",", " ").split()
    if not origins:
        logger.info(
            "cors_no_origins_configured",
            hint="Set CORS_TRUSTED_ORIGINS. Cross-origin requests will be rejected.",
        )
    return origins


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory. Invoked by: uvicorn greenlight.main:create_app --factory"""
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="Greenlight",
        description="Movie catalog API",
        version=__version__,
        lifespan=lifespan,
    )

    buckets = BucketStore(
        settings.limiter_rps,
        settings.limiter_burst,
        enabled=settings.limiter_enabled,
        cleanup_interval=settings.limiter_cleanup_interval_seconds,
        stale_after=settings.limiter_stale_after_seconds,
    )
    metrics = RequestMetrics()
    app.state.settings = settings
    app.state.buckets = buckets
    app.state.metrics = metrics

    # Starlette applies middleware in reverse, so the request passes:
    # metrics → recover panic → CORS → rate limit → authenticate → router
    app.add_middleware(BearerTokenMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        buckets=buckets,
        trust_proxy_headers=settings.trust_proxy_headers,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_origins(settings.cors_trusted_origins),
        allow_methods=["OPTIONS", "PUT", "PATCH", "DELETE", "GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_middleware(RecoverPanicMiddleware)
    app.add_middleware(RequestMetricsMiddleware, metrics=metrics)

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(users.router, tags=["users"])
    app.include_router(tokens.router, tags=["tokens"])
    app.include_router(movies.router, tags=["movies"])
    app.include_router(debug.router, prefix="/debug", tags=["debug"])

    return app
