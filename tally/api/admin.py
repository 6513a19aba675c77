"""Admin proxy. Runs one allow-listed pipe with the admin read token."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query

from tally.api.utils import upstream_http_error
from tally.core.constants import PIPE_PARAMETERS
from tally.core.services import Services
from tally.core.utils import InvalidRequestError, UpstreamError

logger = logging.getLogger(__name__)


def register_routes(router: APIRouter, svc: Services, **kw):
    admin_pipes = svc.admin_pipes

    @router.get("/admin/analytics")
    def api_admin_analytics(
        pipe: str | None = Query(None),
        days_back: str = Query("30"),
        limit: str = Query("50"),
    ):
        if not pipe:
            raise HTTPException(status_code=400, detail="Missing pipe parameter")
        if pipe not in PIPE_PARAMETERS:
            raise HTTPException(status_code=400, detail="Invalid pipe name")

        # Forward only what this pipe accepts
        supplied = {"days_back": days_back, "limit": limit}
        params = {k: v for k, v in supplied.items() if k in PIPE_PARAMETERS[pipe]}
        try:
            return {"data": admin_pipes.query(pipe, params)}
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except UpstreamError as e:
            logger.error("Admin analytics query %s failed: HTTP %d", pipe, e.status)
            raise upstream_http_error(e)
        except Exception as e:
            logger.error("Admin analytics query %s failed: %s", pipe, e)
            raise HTTPException(status_code=502, detail="Failed to fetch analytics data")
