"""Status endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from tally import __version__
from tally.core.services import Services


def register_routes(router: APIRouter, svc: Services, **kw):
    config = svc.config

    @router.get("/status")
    def api_status():
        return {
            "status": "ok",
            "version": __version__,
            "environment": config.environment,
            "features": {
                "ingestion": config.backend.ingest_enabled,
                "dashboard": config.backend.read_enabled,
                "admin": bool(config.backend.admin_read_token),
                "catalog": svc.catalog.configured,
                "agent": svc.agent is not None,
            },
            "ingest": svc.search_ingest.stats(),
        }
