"""Direct single-event loggers: fire-and-forget senders.

Used where batching is unnecessary (a request that already did its work)
or unavailable (the edge middleware). ``log()`` returns None immediately;
the send runs on a background thread and any failure ends in a log line.

ServerEventLogger: search/chat events, bearer auth.
EdgeEventLogger: web events, query-string token. It never hashes (ids come
from ``secrets`` via random_uuid4); callers pass an already-derived
``ip_hash`` or none at all.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tally.core.constants import SEARCH_DATASOURCE, WEB_DATASOURCE
from tally.core.events import Event, encode_record
from tally.core.http import build_url, post_ndjson
from tally.core.utils import Spawner, fire_and_forget, spawn_daemon

if TYPE_CHECKING:
    from tally.config import BackendConfig

logger = logging.getLogger(__name__)


class _DirectLogger:
    datasource = ""
    token_in_query = False

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        spawn: Spawner = spawn_daemon,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._spawn = spawn
        self._warned = False

    @classmethod
    def from_config(cls, backend: BackendConfig, *, timeout: float = 10.0):
        return cls(backend.base_url, backend.ingest_token, timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def log(self, event: Event) -> None:
        """Send one event in the background. Never raises into the caller."""
        if not self.token:
            if not self._warned:
                logger.warning("%s: ingest token not configured, skipping analytics", type(self).__name__)
                self._warned = True
            return
        fire_and_forget(self._send, event, name=f"{type(self).__name__}.send", spawn=self._spawn)

    def _url(self) -> str:
        params = {"name": self.datasource}
        if self.token_in_query:
            params["token"] = self.token
        return build_url(self.base_url, "/v0/events", params)

    def _send(self, event: Event) -> None:
        try:
            post_ndjson(
                self._url(),
                [encode_record(event)],
                timeout=self.timeout,
                bearer=None if self.token_in_query else self.token,
            )
        except Exception as e:
            logger.warning("%s: ingestion failed for %s event %s: %s", type(self).__name__, event.kind, event.id, e)


class ServerEventLogger(_DirectLogger):
    """Search and chat query events from API handlers."""
    datasource = SEARCH_DATASOURCE


class EdgeEventLogger(_DirectLogger):
    """Page views and client events from the session middleware and track route."""
    datasource = WEB_DATASOURCE
    token_in_query = True
