from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

from src.app.settings import settings

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
STREAM_EVENTS = Counter(
    "stream_events_total",
    "Event frames written to stage streams",
    ["stage", "event"],
)
PROVIDER_FALLBACKS = Counter(
    "provider_fallbacks_total",
    "Generation requests that fell back to the secondary provider",
    ["primary", "secondary"],
)
GENERATION_MODE = Counter(
    "generation_mode_total",
    "Completed generation streams by model",
    ["model"],
)


async def metrics_middleware(request: Request, call_next):
    if not settings.metrics_enabled:
        return await call_next(request)
    path = request.url.path
    if path == "/metrics":
        return await call_next(request)
    start = time.monotonic()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        duration = time.monotonic() - start
        REQUEST_COUNT.labels(request.method, path, str(status)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)


def record_stream_event(stage: str, event: str, model: str | None = None) -> None:
    if not settings.metrics_enabled:
        return
    STREAM_EVENTS.labels(stage, event).inc()
    if model:
        GENERATION_MODE.labels(model).inc()


def record_fallback(primary: str, secondary: str) -> None:
    if not settings.metrics_enabled:
        return
    PROVIDER_FALLBACKS.labels(primary, secondary).inc()


def metrics_response() -> Response:
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
