"""Prometheus metrics, Sentry integration, and pipeline step tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_step(): Context manager recording minutes pipeline step durations
- track_provider_call(): Context manager counting provider calls by outcome
- init_sentry(): Initialize Sentry for the FastAPI app
- get_metrics_response(): Response body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Minutes Pipeline Metrics ─────────────────────────────────────────────────

minutes_pipeline_runs_total = Counter(
    "minutes_pipeline_runs_total",
    "Minutes pipeline runs by terminal outcome",
    ["outcome"],
)

minutes_step_duration_seconds = Histogram(
    "minutes_step_duration_seconds",
    "Duration of individual minutes pipeline steps",
    ["step"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

provider_calls_total = Counter(
    "provider_calls_total",
    "External provider calls (after retries) by outcome",
    ["provider", "status"],
)

background_tasks_total = Counter(
    "background_tasks_total",
    "Background tasks spawned by the dispatcher, by outcome",
    ["name", "outcome"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and duration per method/route.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Route template keeps label cardinality bounded (no raw ids)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Pipeline Helpers ─────────────────────────────────────────────────────────


@asynccontextmanager
async def track_step(step: str) -> AsyncGenerator[None, None]:
    """Observe the wall-clock duration of a pipeline step, success or failure."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        minutes_step_duration_seconds.labels(step=step).observe(time.perf_counter() - start_time)


@asynccontextmanager
async def track_provider_call(provider: str) -> AsyncGenerator[None, None]:
    """Count one logical provider call (including its retries) as success or error."""
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        provider_calls_total.labels(provider=provider, status=status).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
