"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from taskdesk.api import router as api_router
from taskdesk.config import get_settings
from taskdesk.db.session import async_session_factory, close_db, init_db
from taskdesk.exceptions import TaskDeskError
from taskdesk.middleware.logging import LoggingMiddleware, configure_logging
from taskdesk.middleware.request_id import RequestIDMiddleware
from taskdesk.services.users import UserService

logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    configure_logging(settings.log_level, json_logs=settings.environment == "production")
    logger.info("Starting TaskDesk API", version=settings.app_version)
    await init_db()
    logger.info("Database connection initialized")

    async with async_session_factory() as session:
        await UserService(session).ensure_admin()

    yield

    logger.info("Shutting down TaskDesk API")
    await close_db()
    logger.info("Database connection closed")


async def taskdesk_error_handler(request: Request, exc: TaskDeskError) -> ORJSONResponse:
    """Map domain errors to ``{"detail", "code"}`` responses."""
    if exc.status_code >= 500:
        logger.error("request_domain_error", code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", code=exc.code, status_code=exc.status_code)
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Task management backend with checklists, assignees and file attachments",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added is first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    # Trust proxy headers (X-Forwarded-Proto, X-Forwarded-For) from the reverse proxy
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.add_exception_handler(TaskDeskError, taskdesk_error_handler)

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


app = create_app()
