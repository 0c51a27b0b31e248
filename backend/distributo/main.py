"""Distributo Backend - FastAPI Entry Point."""
import logging
import sys

# asyncpg is incompatible with Windows ProactorEventLoop (default on Windows).
# Must be set before any asyncio usage.
if sys.platform == "win32":
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import FastAPI

from distributo.config import settings
from distributo.database import engine
from distributo.middleware.cors import setup_cors
from distributo.middleware.error_handler import setup_error_handlers
from distributo.middleware.logging_middleware import LoggingMiddleware
from distributo.middleware.metrics import MetricsMiddleware, setup_metrics
from distributo.api.v1 import auth as auth_router
from distributo.api.v1 import cron as cron_router
from distributo.api.v1 import posts as posts_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(level=settings.LOG_LEVEL)
    logger.info("startup", env=settings.APP_ENV)
    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1 if settings.is_production else 1.0,
            environment=settings.APP_ENV,
        )

    yield

    from distributo.utils.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("shutdown")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Distributo API",
        description="Social media scheduling: X account connection and scheduled publishing",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Middleware (order matters: last added = first executed)
    setup_cors(application)
    setup_error_handlers(application)
    application.add_middleware(LoggingMiddleware)
    application.add_middleware(MetricsMiddleware)

    setup_metrics(application)

    # API Routers
    application.include_router(auth_router.router, prefix="/api/v1/auth", tags=["Auth"])
    application.include_router(posts_router.router, prefix="/api/v1/posts", tags=["Posts"])
    application.include_router(cron_router.router, prefix="/api/v1/cron", tags=["Cron"])

    # Health check
    @application.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
