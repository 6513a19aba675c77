"""Shared utilities for API route modules."""

from __future__ import annotations

import json

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tally.core.utils import UpstreamError

# Health, docs and the ingestion endpoints browsers call; never key-gated.
PUBLIC_PATHS = (
    "/status", "/swagger", "/openapi.json",
    "/analytics/track", "/search/events",
)


def sse_event(event_type: str, data: dict) -> str:
    """Format a server-sent event."""
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"


def upstream_http_error(e: UpstreamError) -> HTTPException:
    """Map a backend failure: auth statuses pass through, the rest become 502."""
    if e.status in (401, 403):
        return HTTPException(status_code=e.status, detail="Analytics backend rejected the read token")
    return HTTPException(status_code=502, detail=f"Analytics backend error (HTTP {e.status})")


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Optional API key authentication middleware.

    When enabled, checks for a valid API key in the configured header.
    CORS preflight and the public ingestion/health paths pass through.
    """

    def __init__(self, app, api_key: str, header_name: str = "X-API-Key"):
        super().__init__(app)
        self.api_key = api_key
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path.rstrip("/")
        if path.startswith("/api/"):
            path = path[len("/api"):]
        if path in PUBLIC_PATHS:
            return await call_next(request)

        token = request.headers.get(self.header_name)
        if not token or token != self.api_key:
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)
