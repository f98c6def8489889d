"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
error handlers, lifespan events for database and component initialization,
and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.team_admin.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.team_admin.api.v1.router import router as v1_router
from src.team_admin.config import get_settings
from src.team_admin.core.database import close_db, get_session, init_db
from src.team_admin.core.errors import (
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from src.team_admin.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.team_admin.meetings.minutes.bootstrap import build_minutes_components
from src.team_admin.meetings.minutes.reminders import setup_reminder_tasks, start_reminder_scheduler

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and minutes components; drain on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    app.state.settings = settings
    components = build_minutes_components(settings, session_factory=get_session)
    for name, component in components.as_state().items():
        setattr(app.state, name, component)
    log.info(
        "app_started",
        environment=settings.ENVIRONMENT.value,
        disabled=sorted(components.init_errors),
    )

    reminder_scheduler = None
    if settings.REMINDERS_ENABLED and components.reminder_job is not None:
        reminder_scheduler = start_reminder_scheduler(
            setup_reminder_tasks(components.reminder_job), settings
        )

    yield

    if reminder_scheduler is not None:
        reminder_scheduler.shutdown(wait=False)
    await components.task_dispatcher.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    await close_db()
    log.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Team Admin Meeting Minutes API",
        version="0.1.0",
        description="Meeting minutes sessions, AI transcription/summarization, and PDF delivery",
        lifespan=lifespan,
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
