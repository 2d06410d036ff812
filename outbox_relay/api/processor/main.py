#!/usr/bin/env python3
"""
Outbox Relay Processor API
==========================

FastAPI app exposing the notification processor and the outbox
maintenance jobs to an external scheduler.

Run:
    uvicorn outbox_relay.api.processor.main:app --port 9300
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ...core.config import OutboxSettings, get_settings
from ...core.database.adapter import DatabaseAdapter, close_database, get_database
from ...core.observability import configure_logging, init_metrics, init_tracing
from ...core.outbox.broadcaster import Broadcaster
from ...core.outbox.factory import create_batch_processor, create_dlq_migrator, create_pruner
from ...core.outbox.locks import LockCoordinator
from ...core.outbox.monitoring import OutboxMonitor
from ...core.outbox.rate_limit import RateLimiter
from ...core.outbox.scope import TenantLogFilter
from ..shared.middleware import TracingMiddleware, register_error_handlers
from ..shared.routers import health_router
from .routers import maintenance_router, notification_router

logger = logging.getLogger(__name__)

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "9300"))


def create_app(
    db: Optional[DatabaseAdapter] = None,
    settings: Optional[OutboxSettings] = None,
    broadcaster: Optional[Broadcaster] = None,
    lock_coordinator: Optional[LockCoordinator] = None,
    rate_limiter: Optional[RateLimiter] = None,
    observability: bool = True,
) -> FastAPI:
    """
    Build the app.

    Components passed in are used as-is and left open on shutdown; anything
    omitted is built from settings and the global database adapter.
    observability=False skips logging and OpenTelemetry setup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if observability:
            _init_observability()

        app_settings = settings or get_settings()
        app_db = db or await get_database()

        processor = create_batch_processor(
            app_db,
            app_settings,
            broadcaster=broadcaster,
            lock_coordinator=lock_coordinator,
            rate_limiter=rate_limiter,
        )
        app.state.settings = app_settings
        app.state.db = app_db
        app.state.processor = processor
        app.state.pruner = create_pruner(app_db, app_settings)
        app.state.migrator = create_dlq_migrator(app_db, app_settings)
        app.state.monitor = OutboxMonitor(app_db)
        logger.info("Outbox relay API started")

        try:
            yield
        finally:
            if broadcaster is None:
                await processor.broadcaster.close()
            if db is None:
                await close_database()
            logger.info("Outbox relay API stopped")

    app = FastAPI(
        title="Outbox Relay",
        description="Tenant-scoped delivery of outbox events to real-time subscribers",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)
    app.add_middleware(TracingMiddleware)

    app.include_router(health_router)
    app.include_router(notification_router)
    app.include_router(maintenance_router)

    return app


def _init_observability():
    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        structured=os.getenv("LOG_STRUCTURED", "true").lower() == "true",
        filters=[TenantLogFilter()],
    )
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    init_tracing(otlp_endpoint=otlp_endpoint)
    init_metrics(otlp_endpoint=otlp_endpoint)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
