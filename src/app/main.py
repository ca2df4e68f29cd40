from __future__ import annotations

"""FastAPI application entrypoint for the meeting search and answer streams."""

import logging
import uuid
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from src.app.dependencies import (
    get_generation_stage,
    get_meeting_store,
    get_provider_set,
    get_search_stage,
)
from src.app.metrics import metrics_middleware, metrics_response, record_stream_event
from src.app.schemas import ChatRequest, FiltersResponse, SearchRequest, StatsResponse
from src.app.security import AuthContext, require_api_key
from src.app.settings import settings
from src.rag.errors import QueryValidationError, StoreError
from src.rag.events import EventFrame, encode_frame
from src.rag.search import error_frame
from src.rag.types import Query, SearchFilters

logger = logging.getLogger(__name__)

app = FastAPI(title="Docsy Meeting Search", version="0.1.0")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
TERMINAL_EVENTS = {"complete", "error"}


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


async def _single_frame(frame: EventFrame) -> AsyncIterator[EventFrame]:
    yield frame


async def _encode_stream(
    frames: AsyncIterator[EventFrame],
    stage: str,
    request_id: str,
) -> AsyncIterator[bytes]:
    """Encode frames in emission order and guarantee one terminal frame at most."""
    terminated = False
    try:
        async for frame in frames:
            model = None
            if frame.event == "complete" and isinstance(frame.data, dict):
                model = frame.data.get("model")
            record_stream_event(stage, frame.event, model)
            yield encode_frame(frame.event, frame.data)
            if frame.event in TERMINAL_EVENTS:
                terminated = True
                break
    except Exception as exc:
        logger.exception(
            "stream_failed",
            extra={"request_id": request_id, "stage": stage, "detail": type(exc).__name__},
        )
        if not terminated:
            record_stream_event(stage, "error")
            yield encode_frame("error", {"error": "Internal server error", "details": type(exc).__name__})
    finally:
        aclose = getattr(frames, "aclose", None)
        if aclose is not None:
            await aclose()


def _event_stream_response(
    frames: AsyncIterator[EventFrame],
    stage: str,
    request_id: str,
) -> StreamingResponse:
    return StreamingResponse(
        _encode_stream(frames, stage, request_id),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Request-ID": request_id},
    )


@app.exception_handler(QueryValidationError)
async def query_validation_handler(request: Request, exc: QueryValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple health probe for uptime checks."""
    return {"status": "ok"}


@app.post("/search")
async def search(
    request: SearchRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
) -> StreamingResponse:
    """Stream search progress and ranked meeting results."""
    limit = request.limit or settings.search_default_limit
    if limit > settings.search_max_limit:
        raise QueryValidationError(f"limit must be at most {settings.search_max_limit}")
    request_id = _request_id(http_request)
    filters = request.filters.to_filters() if request.filters else SearchFilters()
    query = Query(text=request.query, filters=filters, limit=limit)
    try:
        stage = get_search_stage()
    except StoreError as exc:
        logger.error("meeting_store_unavailable", extra={"request_id": request_id, "detail": str(exc)})
        frames = _single_frame(error_frame("Failed to search meetings", str(exc)))
        return _event_stream_response(frames, "search", request_id)
    search_method = request.filters.search_method if request.filters else None
    frames = stage.run(query, request_id=request_id, search_method=search_method)
    return _event_stream_response(frames, "search", request_id)


@app.post("/chat")
async def chat(
    request: ChatRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
) -> StreamingResponse:
    """Stream a generated answer grounded in the forwarded search results."""
    request_id = _request_id(http_request)
    results = [payload.to_result() for payload in request.search_results]
    stage = get_generation_stage()
    frames = stage.run(request.query, results, request_id=request_id)
    return _event_stream_response(frames, "generation", request_id)


@app.get("/filters", response_model=FiltersResponse)
async def filters(auth: AuthContext = Depends(require_api_key)) -> FiltersResponse:
    """Return the programs and agencies available for filtering."""
    try:
        facets = await get_meeting_store().facets()
    except StoreError as exc:
        logger.error("meeting_facets_failed", extra={"detail": str(exc)})
        raise HTTPException(status_code=503, detail="Meeting store unavailable") from exc
    return FiltersResponse(programs=facets["programs"], agencies=facets["agencies"])


@app.get("/stats", response_model=StatsResponse)
async def stats(auth: AuthContext = Depends(require_api_key)) -> StatsResponse:
    """Report the configured store and providers."""
    try:
        store_stats = get_meeting_store().stats()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Meeting store unavailable") from exc
    providers = get_provider_set()
    return StatsResponse(
        store=store_stats,
        primary_provider=providers.primary.name if providers.primary else None,
        secondary_provider=providers.secondary.name if providers.secondary else None,
        degraded=not (providers.primary or providers.secondary),
    )
