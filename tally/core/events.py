"""Event model and record encoding for the analytics backend.

Events are created once at the call site and never mutated. Two record
shapes exist on the backend: search events (``events`` datasource) and web
events (``web_events`` datasource); ``encode_record`` picks the shape from
the event kind.
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from tally.core.constants import (
    IP_HASH_LENGTH,
    MAX_ANSWER_LENGTH,
    MAX_QUERY_LENGTH,
    MAX_URL_LENGTH,
    SEARCH_DATASOURCE,
    WEB_DATASOURCE,
    EventKind,
)
from tally.core.utils import InvalidRequestError, truncate


# ============================================================
# Clock
# ============================================================

class MonotonicClock:
    """Millisecond UTC timestamps that never go backwards within one producer."""

    def __init__(self, now: Callable[[], datetime] | None = None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._last: datetime | None = None

    def now(self) -> datetime:
        ts = self._now()
        ts = ts.replace(microsecond=(ts.microsecond // 1000) * 1000)
        with self._lock:
            if self._last is not None and ts < self._last:
                ts = self._last
            self._last = ts
        return ts


default_clock = MonotonicClock()


# ============================================================
# Data model
# ============================================================

@dataclass(frozen=True)
class SearchSource:
    """A cited document in a search or chat answer."""
    document_id: str | None = None
    title: str | None = None
    filename: str | None = None
    page_number: int | None = None

    def to_dict(self) -> dict:
        out = {
            "convexId": self.document_id,
            "title": self.title,
            "filename": self.filename,
            "pageNumber": self.page_number,
        }
        return {k: v for k, v in out.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> SearchSource:
        """Build from a client payload. An unparseable page number is dropped."""
        page = data.get("pageNumber", data.get("page_number"))
        try:
            page_number = int(page) if page is not None else None
        except (TypeError, ValueError):
            page_number = None
        return cls(
            document_id=data.get("convexId") or data.get("document_id"),
            title=data.get("title"),
            filename=data.get("filename"),
            page_number=page_number,
        )


@dataclass(frozen=True)
class PageContext:
    """Browser-side context attached to web events."""
    page_url: str
    page_title: str | None = None
    referrer: str | None = None
    country: str | None = None
    city: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None
    load_time: float | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None


@dataclass(frozen=True)
class Event:
    """Immutable record of one user/system action."""
    kind: str
    session_id: str | None
    id: str
    occurred_at: datetime
    query: str | None = None
    answer: str | None = None
    sources: tuple[SearchSource, ...] = ()
    result_count: int = 0
    response_time_ms: float | None = None
    user_agent: str | None = None
    ip_hash: str | None = None
    page: PageContext | None = None
    custom_data: dict | None = field(default=None, hash=False, compare=False)

    @property
    def datasource(self) -> str:
        return SEARCH_DATASOURCE if self.kind in EventKind.SEARCH else WEB_DATASOURCE


# ============================================================
# Privacy
# ============================================================

def hash_ip(ip: str | None) -> str | None:
    """Truncated sha256 of a client address. Raw addresses are never stored."""
    if not ip:
        return None
    return hashlib.sha256(ip.encode()).hexdigest()[:IP_HASH_LENGTH]


def client_ip(headers: Any) -> str | None:
    """First hop of x-forwarded-for, else x-real-ip."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or None


# ============================================================
# Factories
# ============================================================

def new_search_event(
    kind: str,
    query: str,
    *,
    session_id: str | None = None,
    result_count: int = 0,
    response_time_ms: float | None = None,
    answer: str | None = None,
    sources: list[SearchSource | dict] | None = None,
    user_agent: str | None = None,
    ip: str | None = None,
    clock: MonotonicClock = default_clock,
) -> Event:
    """Server-path factory: stdlib uuid ids and a hashed client address."""
    if kind not in EventKind.SEARCH:
        raise InvalidRequestError(
            f"invalid search event kind: {kind}. Must be one of: {', '.join(sorted(EventKind.SEARCH))}"
        )
    return Event(
        kind=kind,
        session_id=session_id or None,
        id=str(uuid.uuid4()),
        occurred_at=clock.now(),
        query=truncate(query, MAX_QUERY_LENGTH),
        answer=truncate(answer, MAX_ANSWER_LENGTH),
        sources=tuple(
            s if isinstance(s, SearchSource) else SearchSource.from_dict(s)
            for s in (sources or [])
        ),
        result_count=result_count,
        response_time_ms=response_time_ms,
        user_agent=user_agent,
        ip_hash=hash_ip(ip),
    )


def new_web_event(
    kind: str,
    page: PageContext,
    *,
    session_id: str | None,
    user_agent: str | None = None,
    custom_data: dict | None = None,
    id_factory: Callable[[], str] | None = None,
    ip_hash: str | None = None,
    clock: MonotonicClock = default_clock,
) -> Event:
    """Edge-path factory.

    Takes an already-derived ``ip_hash`` (or None) rather than a raw address,
    and an ``id_factory`` so the edge logger can supply random-bytes ids.
    """
    if not kind:
        raise InvalidRequestError("event kind is required")
    if id_factory is None:
        from tally.core.session import random_uuid4
        id_factory = random_uuid4
    bounded = replace(
        page,
        page_url=truncate(page.page_url, MAX_URL_LENGTH),
        page_title=truncate(page.page_title, MAX_URL_LENGTH),
        referrer=truncate(page.referrer, MAX_URL_LENGTH),
    )
    return Event(
        kind=kind,
        session_id=session_id or None,
        id=id_factory(),
        occurred_at=clock.now(),
        user_agent=user_agent,
        ip_hash=ip_hash,
        page=bounded,
        custom_data=dict(custom_data) if custom_data else None,
    )


# ============================================================
# Encoding
# ============================================================

def _compact(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), default=str)


def iso_millis(ts: datetime) -> str:
    """ISO-8601 with milliseconds and a Z suffix (search events)."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def backend_datetime(ts: datetime) -> str:
    """``YYYY-MM-DD HH:MM:SS`` (web events)."""
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def encode_search_record(event: Event) -> dict:
    return {
        "event_id": event.id,
        "event_name": event.kind,
        "query": event.query or "",
        "session_id": event.session_id,
        "timestamp": iso_millis(event.occurred_at),
        "response_time_ms": event.response_time_ms,
        "answer": event.answer,
        "sources": _compact([s.to_dict() for s in event.sources]),
        "result_count": event.result_count,
        "user_agent": event.user_agent,
        "ip_hash": event.ip_hash,
    }


def encode_web_record(event: Event) -> dict:
    page = event.page or PageContext(page_url="")
    return {
        "timestamp": backend_datetime(event.occurred_at),
        "session_id": event.session_id,
        "event_type": event.kind,
        "page_url": page.page_url,
        "page_title": page.page_title,
        "referrer": page.referrer,
        "user_agent": event.user_agent,
        "ip_hash": event.ip_hash,
        "country": page.country,
        "city": page.city,
        "device_type": page.device_type,
        "browser": page.browser,
        "os": page.os,
        "screen_width": page.screen_width,
        "screen_height": page.screen_height,
        "load_time": page.load_time,
        "utm_source": page.utm_source,
        "utm_medium": page.utm_medium,
        "utm_campaign": page.utm_campaign,
        "custom_data": _compact(event.custom_data) if event.custom_data else None,
    }


def encode_record(event: Event) -> dict:
    if event.datasource == SEARCH_DATASOURCE:
        return encode_search_record(event)
    return encode_web_record(event)


# ============================================================
# User agent helpers
# ============================================================

_BROWSER_RULES = [("Edg", "Edge"), ("Chrome", "Chrome"), ("Firefox", "Firefox"), ("Safari", "Safari")]
_OS_RULES = [
    ("Windows", "Windows"), ("iPhone", "iOS"), ("iPad", "iOS"), ("Android", "Android"),
    ("Mac", "macOS"), ("Linux", "Linux"),
]


def classify_user_agent(user_agent: str | None) -> tuple[str | None, str | None]:
    """Best-effort (browser, os) from a user agent string."""
    if not user_agent:
        return None, None
    browser = next((name for token, name in _BROWSER_RULES if token in user_agent), None)
    os_name = next((name for token, name in _OS_RULES if token in user_agent), None)
    return browser, os_name


def device_type_for(screen_width: int | None) -> str | None:
    if not screen_width:
        return None
    if screen_width < 768:
        return "mobile"
    if screen_width < 1024:
        return "tablet"
    return "desktop"
