"""Dashvault API - FastAPI application factory."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashvault.api.v1 import backups as backups_router
from dashvault.api.v1 import credentials as credentials_router
from dashvault.api.v1 import dashboards as dashboards_router
from dashvault.api.v1 import reports as reports_router
from dashvault.api.v1 import restore as restore_router
from dashvault.config import settings
from dashvault.database import engine
from dashvault.middleware.error_handler import setup_error_handlers
from dashvault.middleware.logging_middleware import (
    REQUEST_ID_HEADER,
    LoggingMiddleware,
    configure_logging,
)

logger = structlog.get_logger()

ORG_PREFIX = "/api/v1/organizations/{org_id}"


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1 if settings.APP_ENV == "production" else 1.0,
        environment=settings.APP_ENV,
        # request bodies can carry API keys
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    if settings.SENTRY_DSN:
        _init_sentry()
    logger.info(
        "startup",
        env=settings.APP_ENV,
        blob_backend=settings.BLOB_STORE_BACKEND,
        nerdgraph_url=settings.NERDGRAPH_URL,
    )

    yield

    await engine.dispose()
    logger.info("shutdown")


def _setup_cors(application: FastAPI) -> None:
    origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title="Dashvault API",
        description="Versioned backup and restore of New Relic dashboards",
        version="0.1.0",
        lifespan=lifespan,
    )

    # last added runs first: request ids are bound before CORS answers preflights
    _setup_cors(application)
    application.add_middleware(LoggingMiddleware)
    setup_error_handlers(application)

    # every tenant-scoped route lives under the organization
    application.include_router(
        credentials_router.router, prefix=f"{ORG_PREFIX}/credentials", tags=["Credentials"],
    )
    application.include_router(
        dashboards_router.router, prefix=f"{ORG_PREFIX}/dashboards", tags=["Dashboards"],
    )
    application.include_router(backups_router.router, prefix=ORG_PREFIX, tags=["Backups"])
    application.include_router(restore_router.router, prefix=ORG_PREFIX, tags=["Restore"])
    application.include_router(
        reports_router.router, prefix=f"{ORG_PREFIX}/reports", tags=["Reports"],
    )

    @application.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok", "env": settings.APP_ENV}

    return application


app = create_app()
