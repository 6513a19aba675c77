"""Ingestion endpoints: client-side web events, server-side search events."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from tally.core.events import (
    PageContext,
    SearchSource,
    classify_user_agent,
    client_ip,
    device_type_for,
    hash_ip,
    new_search_event,
    new_web_event,
)
from tally.core.services import Services
from tally.core.utils import InvalidRequestError

logger = logging.getLogger(__name__)


class TrackBody(BaseModel):
    sessionId: str | None = None
    eventType: str | None = None
    pageUrl: str | None = None
    pageTitle: str | None = None
    referrer: str | None = None
    deviceType: str | None = None
    screenWidth: int | None = None
    screenHeight: int | None = None
    loadTime: float | None = None
    utmSource: str | None = None
    utmMedium: str | None = None
    utmCampaign: str | None = None
    customData: dict[str, Any] | None = None


class SearchEventBody(BaseModel):
    eventName: str
    query: str
    sessionId: str | None = None
    resultCount: int = 0
    responseTimeMs: float | None = None
    answer: str | None = None
    sources: list[dict[str, Any]] | None = None


def register_routes(router: APIRouter, svc: Services, **kw):
    edge_logger = svc.edge_logger
    search_ingest = svc.search_ingest

    @router.post("/analytics/track")
    def api_track(body: TrackBody, request: Request):
        if not body.sessionId or not body.eventType or not body.pageUrl:
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: sessionId, eventType, pageUrl",
            )

        user_agent = request.headers.get("user-agent")
        browser, os_name = classify_user_agent(user_agent)
        page = PageContext(
            page_url=body.pageUrl,
            page_title=body.pageTitle,
            referrer=body.referrer,
            device_type=body.deviceType or device_type_for(body.screenWidth),
            browser=browser,
            os=os_name,
            screen_width=body.screenWidth,
            screen_height=body.screenHeight,
            load_time=body.loadTime,
            utm_source=body.utmSource,
            utm_medium=body.utmMedium,
            utm_campaign=body.utmCampaign,
        )
        try:
            event = new_web_event(
                body.eventType,
                page,
                session_id=body.sessionId,
                user_agent=user_agent,
                custom_data=body.customData,
                ip_hash=hash_ip(client_ip(request.headers)),
            )
            edge_logger.log(event)
        except Exception:
            logger.warning("Failed to log web event", exc_info=True)
        return {"success": True}

    @router.post("/search/events", status_code=202)
    def api_search_event(body: SearchEventBody, request: Request):
        try:
            event = new_search_event(
                body.eventName,
                body.query,
                session_id=body.sessionId or getattr(request.state, "session_id", None),
                result_count=body.resultCount,
                response_time_ms=body.responseTimeMs,
                answer=body.answer,
                sources=[SearchSource.from_dict(s) for s in body.sources or []],
                user_agent=request.headers.get("user-agent"),
                ip=client_ip(request.headers),
            )
        except InvalidRequestError as e:
            raise HTTPException(status_code=400, detail=str(e))
        search_ingest.enqueue(event)
        return {"status": "queued", "eventId": event.id, "kind": event.kind}
