"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.sql import SqlQuotaStore
from app.api.routes import health_router, limits_router
from app.core.config import settings
from app.core.errors import StoreError
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import cleanup_rate_limits, get_quota_store

logger = logging.getLogger(__name__)


async def _cleanup_loop(interval_seconds: int) -> None:
    """Purge stale quota records every ``interval_seconds``."""

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await cleanup_rate_limits()
        except StoreError as exc:
            logger.error(
                "rate_limit.cleanup_failed",
                extra={"error_code": exc.code, "interval_s": interval_seconds},
            )
        except Exception:
            # Keep the loop alive; the next tick retries.
            logger.exception(
                "rate_limit.cleanup_failed",
                extra={"error_code": "unexpected", "interval_s": interval_seconds},
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    """Prepare the quota store on startup and release it on shutdown."""

    store = get_quota_store()
    if isinstance(store, SqlQuotaStore):
        await store.create_schema()

    cleanup_task: asyncio.Task | None = None
    interval = settings.rate_limit.cleanup_interval_seconds
    if interval > 0:
        cleanup_task = asyncio.create_task(_cleanup_loop(interval))

    logger.info(
        "app.startup",
        extra={
            "backend": store.name,
            "rate_limit_enabled": settings.rate_limit.enabled,
            "cleanup_interval_s": interval,
        },
    )
    try:
        yield
    finally:
        try:
            if cleanup_task is not None:
                cleanup_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await cleanup_task
        finally:
            await store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Dispatch Portal Rate Limiting API",
        description=(
            "Quota tracking for the dispatch-center scheduling portal. Guarded "
            "routes consume one point per request from a per-client window; "
            "exhausting the window blocks the client for a cooldown and "
            "returns 429 with X-RateLimit-* headers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
