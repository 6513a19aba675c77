"""Analytics agent endpoint: tool-calling LLM over the catalog, streamed as SSE."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from starlette.responses import StreamingResponse

from tally.api.catalog import catalog_http_error
from tally.api.utils import sse_event
from tally.core.catalog import CatalogUnavailable
from tally.core.services import Services

logger = logging.getLogger(__name__)


class AskBody(BaseModel):
    question: str = ""
    conversationHistory: list[dict] = Field(default_factory=list)


def register_routes(router: APIRouter, svc: Services, **kw):
    agent = svc.agent
    catalog = svc.catalog

    @router.post("/analytics/ai")
    async def api_analytics_ai(body: AskBody):
        if agent is None:
            raise HTTPException(status_code=503, detail="LLM backend not configured")
        if not body.question.strip():
            raise HTTPException(status_code=400, detail="Question is required")

        # Surface catalog problems as a status code before the stream opens
        try:
            await catalog.list_tools()
        except CatalogUnavailable as e:
            raise catalog_http_error(e)

        async def event_generator() -> AsyncIterator[str]:
            try:
                async for event_type, data in agent.run(body.question, body.conversationHistory):
                    yield sse_event(event_type, data)
            except Exception as e:
                logger.error("Analytics agent error: %s", e, exc_info=True)
                yield sse_event("error", {"message": str(e), "done": True})

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering
            },
        )
