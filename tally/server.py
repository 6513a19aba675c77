"""Tally MCP server. Entry point for the analytics pipeline."""

import logging
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from tally.config import load_config
from tally.core.catalog import CatalogUnavailable
from tally.core.constants import MAX_DAYS_BACK, MAX_QUERY_LIMIT, EventKind
from tally.core.events import new_search_event
from tally.core.services import create_services
from tally.core.utils import InvalidRequestError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("tally")

_base_config = load_config()

# Populated by lifespan (stdio) or main() (http) before tools execute.
_svc = None


def _init_services(svc):
    global _svc
    _svc = svc


def _start_workers(svc):
    svc.start()


def _stop_workers(svc):
    svc.stop()
    logger.info("Tally stopped (search events: %s)", svc.search_ingest.stats())


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Create services and run the ingestion flush loop for the server lifetime."""
    if _svc is not None:
        # HTTP mode: main() built the services and its lifespan owns the workers
        yield {}
        return
    svc = create_services(config=_base_config)
    _init_services(svc)
    _start_workers(svc)
    try:
        yield {}
    finally:
        _stop_workers(svc)


mcp_kwargs = dict(
    name="tally",
    instructions=(
        "Search analytics for the document platform.\n"
        "Use summary() for headline numbers, searches_by_day() for trends, and the "
        "popular_*/recent/no_result tools for drill-downs. dashboard() returns every "
        "view in one call. list_data_sources() shows the full tool catalog."
    ),
    lifespan=lifespan,
)
if _base_config.transport == "http":
    mcp_kwargs["host"] = _base_config.http_host
    mcp_kwargs["port"] = _base_config.http_port

mcp = FastMCP(**mcp_kwargs)


def _clamp(value: int, upper: int) -> int:
    return max(1, min(value, upper))


# ============================================================
# Aggregation reads
# ============================================================

@mcp.tool()
def summary(days_back: int = 30) -> dict:
    """Headline search metrics over the last ``days_back`` days, plus per-day counts.

    Args:
        days_back: Window size in days (1-365).
    """
    return _svc.queries.get_summary(_clamp(days_back, MAX_DAYS_BACK))


@mcp.tool()
def searches_by_day(days_back: int = 30) -> dict:
    """Search count per day.

    Args:
        days_back: Window size in days (1-365).
    """
    try:
        return {"data": _svc.queries.searches_by_day(_clamp(days_back, MAX_DAYS_BACK))}
    except Exception as e:
        logger.exception("searches_by_day failed")
        return {"error": f"Internal error: {e}"}


@mcp.tool()
def recent_searches(limit: int = 50) -> dict:
    """Most recent search and chat queries, newest first."""
    return {"data": _svc.queries.get_recent(_clamp(limit, MAX_QUERY_LIMIT))}


@mcp.tool()
def popular_searches(limit: int = 20, days_back: int = 30) -> dict:
    """Most frequent search terms.

    Args:
        limit: Max rows (1-500).
        days_back: Window size in days (1-365).
    """
    return {"data": _svc.queries.get_top_terms(_clamp(limit, MAX_QUERY_LIMIT), _clamp(days_back, MAX_DAYS_BACK))}


@mcp.tool()
def popular_sources(limit: int = 20, days_back: int = 30) -> dict:
    """Documents most often cited in answers.

    Args:
        limit: Max rows (1-500).
        days_back: Window size in days (1-365).
    """
    return {"data": _svc.queries.get_top_sources(_clamp(limit, MAX_QUERY_LIMIT), _clamp(days_back, MAX_DAYS_BACK))}


@mcp.tool()
def no_result_searches(limit: int = 20) -> dict:
    """Queries that returned nothing. Content gaps."""
    return {"data": _svc.queries.get_no_results(_clamp(limit, MAX_QUERY_LIMIT))}


@mcp.tool()
def dashboard(days_back: int = 30, limit: int = 20) -> dict:
    """Every dashboard view in one call. Slices that fail come back empty."""
    return _svc.queries.get_dashboard(_clamp(days_back, MAX_DAYS_BACK), _clamp(limit, MAX_QUERY_LIMIT))


# ============================================================
# Catalog
# ============================================================

@mcp.tool()
async def list_data_sources(refresh: bool = False) -> dict:
    """Categorized catalog of every analytics endpoint the registry exposes.

    Args:
        refresh: Drop the cached catalog and rediscover.
    """
    try:
        if refresh:
            await _svc.catalog.refresh()
        entries = await _svc.catalog.entries()
        return {"dataSources": [e.to_dict() for e in entries]}
    except CatalogUnavailable as e:
        return {"error": str(e), "kind": e.kind}


# ============================================================
# Write path
# ============================================================

@mcp.tool()
def log_search(
    query: str,
    event_name: str = EventKind.SEARCH_QUERY,
    result_count: int = 0,
    response_time_ms: float | None = None,
    session_id: str | None = None,
    answer: str | None = None,
) -> dict:
    """Record a search or chat query. Sent straight to the backend in the background.

    Args:
        query: What the user asked.
        event_name: 'search_query' or 'chat_query'.
        result_count: Number of results returned (0 marks a content gap).
        response_time_ms: End-to-end latency.
        session_id: Visitor session token, if known.
        answer: Chat answer text (truncated).
    """
    try:
        event = new_search_event(
            event_name, query,
            session_id=session_id,
            result_count=result_count,
            response_time_ms=response_time_ms,
            answer=answer,
        )
    except InvalidRequestError as e:
        return {"error": str(e)}
    _svc.server_logger.log(event)
    return {"status": "sent", "event_id": event.id}


# ============================================================
# Entry point
# ============================================================

def main():
    """Run the Tally MCP server."""
    if _base_config.transport == "http":
        import uvicorn
        from tally.api import create_api
        from tally.api.middleware import SessionTrackingMiddleware

        # MCP's Starlette app is the parent: owns lifespan, serves /mcp
        mcp_app = mcp.streamable_http_app()
        _mcp_lifespan = mcp_app.router.lifespan_context

        svc = create_services(config=_base_config)
        _init_services(svc)

        mcp_app.mount("/api", create_api(svc))
        mcp_app.add_middleware(
            SessionTrackingMiddleware,
            config=_base_config.session,
            edge_logger=svc.edge_logger,
        )

        @asynccontextmanager
        async def combined_lifespan(app):
            _start_workers(svc)
            try:
                async with _mcp_lifespan(app) as state:
                    yield state
            finally:
                _stop_workers(svc)
                if svc.catalog.registry is not None:
                    await svc.catalog.registry.close()

        mcp_app.router.lifespan_context = combined_lifespan

        logger.info(
            "Starting Tally (HTTP on %s:%d, MCP at /mcp, API at /api)",
            _base_config.http_host, _base_config.http_port,
        )
        uvicorn.run(mcp_app, host=_base_config.http_host, port=_base_config.http_port)
    else:
        logger.info("Starting Tally MCP server (stdio)")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
