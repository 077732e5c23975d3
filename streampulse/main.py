"""
StreamPulse Service - FastAPI Application

This service:
- Proxies /api/streams to the upstream stream statistics API, validating
  paging bounds and reshaping the envelope
- Serves memoized global KPI aggregates on /api/kpi
- Reports health on /health

Responses from /api/streams are never cacheable; the dashboard polls them.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from schemas.streams import (
    MAX_LIMIT,
    MIN_LIMIT,
    SortBy,
    SortOrder,
    StreamQueryParams,
)
from streampulse import __version__
from streampulse.config import settings
from streampulse.ingest.aggregates import KpiAccumulator
from streampulse.ingest.client import StreamStatsClient, create_upstream_client
from streampulse.utils.logging import configure_logging, get_logger

configure_logging(settings)

# Use category-aware logger for system logs
logger = get_logger(__name__, category="system")
proxy_logger = get_logger(f"{__name__}.proxy", category="proxy")
kpi_logger = get_logger(f"{__name__}.kpi", category="kpi")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

app = FastAPI(
    title="StreamPulse Service",
    description="Livestream statistics proxy and KPI aggregation",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# UPSTREAM CLIENTS
# ============================================================================

stream_client: StreamStatsClient = create_upstream_client(settings)
kpi_accumulator: KpiAccumulator = KpiAccumulator(stream_client, config=settings)


class QueryValidationError(ValueError):
    """Raised when /api/streams receives out-of-bounds query parameters."""


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    return int(raw.strip())


def parse_stream_query(
    limit: Optional[str],
    offset: Optional[str],
    sort_by: Optional[str],
    sort_order: Optional[str],
) -> StreamQueryParams:
    """
    Validate raw query-string values.

    Raises:
        QueryValidationError: with the message returned to the client
    """
    try:
        limit_value = _parse_int(limit)
    except ValueError:
        raise QueryValidationError(f"Limit must be between {MIN_LIMIT} and {MAX_LIMIT}")
    if limit_value is not None and not MIN_LIMIT <= limit_value <= MAX_LIMIT:
        raise QueryValidationError(f"Limit must be between {MIN_LIMIT} and {MAX_LIMIT}")

    try:
        offset_value = _parse_int(offset)
    except ValueError:
        raise QueryValidationError("Offset must be non-negative")
    if offset_value is not None and offset_value < 0:
        raise QueryValidationError("Offset must be non-negative")

    try:
        sort_by_value = SortBy(sort_by) if sort_by else None
    except ValueError:
        allowed = ", ".join(s.value for s in SortBy)
        raise QueryValidationError(f"sort_by must be one of: {allowed}")

    try:
        sort_order_value = SortOrder(sort_order.upper()) if sort_order else None
    except ValueError:
        raise QueryValidationError("sort_order must be ASC or DESC")

    return StreamQueryParams(
        limit=limit_value,
        offset=offset_value,
        sort_by=sort_by_value,
        sort_order=sort_order_value,
    )


# ============================================================================
# ENDPOINTS
# ============================================================================


@app.get("/api/streams")
async def get_streams(
    limit: Optional[str] = Query(None, description="Page size (1-1000)"),
    offset: Optional[str] = Query(None, description="Items to skip (>= 0)"),
    sort_by: Optional[str] = Query(None, description="num_participants, created_at, started_at or viewer_count"),
    sort_order: Optional[str] = Query(None, description="ASC or DESC"),
):
    """
    Forward a page request to the upstream API.

    Returns:
        200 ``{data: {data: Stream[], metadata: {total, limit, offset}}}``,
        400 ``{error}`` for out-of-bounds parameters (no upstream call), or
        500 ``{error, message}`` when the upstream call fails
    """
    try:
        params = parse_stream_query(limit, offset, sort_by, sort_order)
    except QueryValidationError as e:
        proxy_logger.info(f"Rejected /api/streams query: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})

    try:
        result = await stream_client.fetch_page(params)
    except Exception as exc:
        proxy_logger.exception(f"API route error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch streams data", "message": str(exc)},
        )

    if not result.ok:
        proxy_logger.error(f"Upstream fetch failed: {result.error}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to fetch streams data",
                "message": result.error or "Unknown error",
            },
        )

    return JSONResponse(content=result.page.to_envelope(), headers=NO_CACHE_HEADERS)


@app.get("/api/kpi")
async def get_kpi(refresh: bool = False):
    """
    Participant totals across every stream, memoized for kpi_stale_seconds.

    A failed sweep answers with zeros and ``ok: false`` rather than an error.
    """
    aggregates = await kpi_accumulator.get_global_aggregates(force=refresh)
    if not aggregates.ok:
        kpi_logger.warning("Serving zero KPIs after a failed sweep")
    return JSONResponse(
        content=aggregates.model_dump(mode="json"),
        headers=NO_CACHE_HEADERS,
    )


@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker health checks, load balancers and
    monitoring. Does not call the upstream API.
    """
    return {
        "status": "healthy",
        "service": "streampulse",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "upstream": stream_client.url,
    }


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================


@app.on_event("startup")
async def startup_event():
    logger.info(f"StreamPulse service starting on {settings.host}:{settings.port}")
    logger.info(f"Upstream API: {stream_client.url}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("StreamPulse service shutting down")
    try:
        await stream_client.close()
    except Exception as exc:
        logger.error(f"Error closing upstream client: {exc}")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
