"""Tool catalog endpoints: discovery listing, cache refresh and single-tool refresh."""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from tally.core.catalog import CatalogUnavailable
from tally.core.services import Services
from tally.core.utils import InvalidRequestError

logger = logging.getLogger(__name__)


class RefreshViewBody(BaseModel):
    toolName: str | None = None
    toolArgs: dict[str, Any] | None = None


def catalog_http_error(e: CatalogUnavailable) -> HTTPException:
    status = 503 if e.kind == CatalogUnavailable.NOT_CONFIGURED else 502
    return HTTPException(status_code=status, detail={"error": str(e), "kind": e.kind})


def register_routes(router: APIRouter, svc: Services, **kw):
    catalog = svc.catalog

    @router.get("/analytics/catalog")
    async def api_catalog():
        try:
            entries = await catalog.entries()
        except CatalogUnavailable as e:
            raise catalog_http_error(e)
        fetched_at = catalog.cache.fetched_at or time.time()
        return {
            "dataSources": [entry.to_dict() for entry in entries],
            "fetchedAt": int(fetched_at * 1000),
        }

    @router.post("/analytics/catalog/refresh")
    async def api_catalog_refresh():
        await catalog.refresh()
        return {
            "success": True,
            "message": "Catalog cache cleared successfully",
            "clearedAt": int(time.time() * 1000),
        }

    @router.post("/analytics/refresh-view")
    async def api_refresh_view(body: RefreshViewBody):
        """Re-run one catalog tool for a saved view.

        Tool failures come back as 200 with ``error`` and empty ``data`` so the
        UI can tell them apart from server errors.
        """
        if not body.toolName:
            raise HTTPException(status_code=400, detail="toolName is required and must be a string")
        if body.toolArgs is None:
            raise HTTPException(status_code=400, detail="toolArgs is required and must be an object")

        try:
            result = await catalog.invoke(body.toolName, body.toolArgs)
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CatalogUnavailable as e:
            raise catalog_http_error(e)

        if result.error:
            logger.warning("Refresh view %s failed: %s", body.toolName, result.error)
            return {"error": result.error, "data": []}
        return {"data": result.rows, "refreshedAt": int(time.time() * 1000)}
