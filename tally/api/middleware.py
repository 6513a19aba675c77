"""Session tracking middleware.

Assigns every visitor a session token (cookie), exposes it as
``request.state.session_id`` and logs a page view for page requests.
"""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from tally.config import SessionConfig
from tally.core.constants import EventKind
from tally.core.events import PageContext, new_web_event
from tally.core.loggers import EdgeEventLogger
from tally.core.session import get_or_create_session_id, session_cookie_params

logger = logging.getLogger(__name__)

UNTRACKED_PREFIXES = ("/api", "/_next", "/static", "/mcp")
UNTRACKED_PATHS = ("/favicon.ico",)


def is_page_request(path: str) -> bool:
    return not path.startswith(UNTRACKED_PREFIXES) and path not in UNTRACKED_PATHS


class SessionTrackingMiddleware(BaseHTTPMiddleware):

    def __init__(
        self,
        app,
        config: SessionConfig,
        edge_logger: EdgeEventLogger | None = None,
        track_page_views: bool = True,
    ):
        super().__init__(app)
        self.config = config
        self.edge_logger = edge_logger
        self.track_page_views = track_page_views and edge_logger is not None

    async def dispatch(self, request: Request, call_next):
        # Mounted apps share request.state; an outer layer already owns the cookie
        if getattr(request.state, "session_id", None):
            return await call_next(request)

        token = get_or_create_session_id(request.headers.get("cookie"), self.config.cookie_name)
        request.state.session_id = token.value

        if self.track_page_views and is_page_request(request.url.path):
            self._log_page_view(request, token.value)

        response = await call_next(request)
        if token.is_new:
            response.set_cookie(**session_cookie_params(self.config, token.value))
        return response

    def _log_page_view(self, request: Request, session_id: str) -> None:
        # The raw client address is not forwarded from the edge path
        try:
            query = request.url.query
            params = request.query_params
            page = PageContext(
                page_url=request.url.path + (f"?{query}" if query else ""),
                referrer=request.headers.get("referer"),
                utm_source=params.get("utm_source"),
                utm_medium=params.get("utm_medium"),
                utm_campaign=params.get("utm_campaign"),
            )
            event = new_web_event(
                EventKind.PAGE_VIEW,
                page,
                session_id=session_id,
                user_agent=request.headers.get("user-agent"),
            )
            self.edge_logger.log(event)
        except Exception:
            logger.warning("Page view tracking failed", exc_info=True)
