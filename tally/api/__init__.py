"""Tally REST API: ingestion, dashboard reads, tool catalog and analytics agent.

Split into domain modules under tally/api/. Each module exports a
register_routes(router, svc) function that adds its endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tally import __version__
from tally.api.middleware import SessionTrackingMiddleware
from tally.api.utils import APIKeyAuthMiddleware
from tally.core.services import Services

logger = logging.getLogger(__name__)


def create_api(svc: Services) -> FastAPI:
    """Build the REST API as a FastAPI app.

    Designed to be mounted as a sub-app on the MCP Starlette parent, which
    owns the lifespan. Page views are tracked by the parent; here the
    session middleware only issues the cookie.
    """
    config = svc.config

    app = FastAPI(
        title="Tally API",
        version=__version__,
        description="Search analytics ingestion, dashboards and the analytics agent.",
        docs_url="/swagger",
        redoc_url=None,
    )

    app.add_middleware(
        SessionTrackingMiddleware,
        config=config.session,
        edge_logger=svc.edge_logger,
        track_page_views=False,
    )

    if config.auth.enabled and config.auth.api_key:
        app.add_middleware(
            APIKeyAuthMiddleware,
            api_key=config.auth.api_key,
            header_name=config.auth.header_name,
        )
        logger.info("API key auth enabled (header: %s)", config.auth.header_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    router = APIRouter()

    from tally.api.core import register_routes as reg_core
    from tally.api.ingest import register_routes as reg_ingest
    from tally.api.analytics import register_routes as reg_analytics
    from tally.api.admin import register_routes as reg_admin
    from tally.api.catalog import register_routes as reg_catalog
    from tally.api.ai import register_routes as reg_ai

    reg_core(router, svc)
    reg_ingest(router, svc)
    reg_analytics(router, svc)
    reg_admin(router, svc)
    reg_catalog(router, svc)
    reg_ai(router, svc)

    app.include_router(router)
    return app
