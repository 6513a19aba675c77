"""Batched ingestion client: non-blocking, in-process event queue.

Events are enqueued by request handlers and flushed to the backend's bulk
endpoint either when a batch fills up or on a timer. Delivery is best-effort:
the queue is not durable, and under sustained failure the backlog is capped
by dropping batches (acceptable for telemetry).

Follows the same thread lifecycle pattern as the other background workers:
``start()`` spawns a daemon flush loop, ``stop()`` drains once more and joins.
"""

from __future__ import annotations

import atexit
import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Protocol

from tally.core.events import Event, encode_record
from tally.core.http import build_url, post_ndjson
from tally.core.utils import Spawner, spawn_daemon

if TYPE_CHECKING:
    from tally.config import BackendConfig, IngestConfig

logger = logging.getLogger(__name__)


class EventTransport(Protocol):
    def send(self, events: list[Event]) -> None:
        """Deliver one batch. Raises on any failure."""


class HttpEventTransport:
    """POSTs a batch as NDJSON to ``/v0/events?name=<datasource>``."""

    def __init__(self, base_url: str, token: str, datasource: str, *, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.datasource = datasource
        self.timeout = timeout

    def send(self, events: list[Event]) -> None:
        url = build_url(self.base_url, "/v0/events", {"name": self.datasource})
        post_ndjson(url, [encode_record(e) for e in events], timeout=self.timeout, bearer=self.token)


class IngestionClient:
    """Thread-safe, non-blocking batching event writer.

    ``enqueue`` only appends under a lock; the network send happens on the
    flush thread (timer) or on a spawned thread (full batch). At most one
    size-triggered flush is pending at a time.
    """

    def __init__(
        self,
        transport: EventTransport,
        *,
        batch_size: int = 20,
        flush_interval: float = 5.0,
        max_backlog: int = 1000,
        name: str = "IngestionClient",
        spawn: Spawner = spawn_daemon,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.transport = transport
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_backlog = max(max_backlog, batch_size)
        self.name = name
        self._spawn = spawn
        self._queue: deque[Event] = deque()
        self._lock = threading.Lock()
        self._flush_pending = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._atexit_registered = False
        self.sent = 0
        self.dropped = 0

    @classmethod
    def from_config(cls, backend: BackendConfig, ingest: IngestConfig, datasource: str) -> IngestionClient:
        transport = HttpEventTransport(
            backend.base_url, backend.ingest_token, datasource, timeout=ingest.timeout,
        )
        return cls(
            transport,
            batch_size=ingest.batch_size,
            flush_interval=ingest.flush_interval,
            max_backlog=ingest.max_backlog,
            name=f"IngestionClient[{datasource}]",
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def enqueue(self, event: Event) -> None:
        """Append an event. Never raises, never waits on the network."""
        try:
            with self._lock:
                if len(self._queue) >= self.max_backlog:
                    self.dropped += 1
                    logger.debug("%s: backlog full, dropping event %s", self.name, event.id)
                    return
                self._queue.append(event)
                trigger = len(self._queue) >= self.batch_size and not self._flush_pending
                if trigger:
                    self._flush_pending = True
            if trigger:
                self._spawn(self._size_triggered_flush, f"{self.name}-flush")
        except Exception:
            logger.warning("%s: enqueue failed", self.name, exc_info=True)

    def _size_triggered_flush(self) -> None:
        try:
            self.flush()
        finally:
            with self._lock:
                self._flush_pending = False

    def flush(self) -> int:
        """Send up to one batch. Returns the number of events delivered.

        On transport failure the batch goes back to the front of the queue
        if that keeps the backlog within ``max_backlog``; otherwise it is
        dropped. Errors are logged, never raised.
        """
        with self._lock:
            if not self._queue:
                return 0
            count = min(self.batch_size, len(self._queue))
            batch = [self._queue.popleft() for _ in range(count)]

        try:
            self.transport.send(batch)
        except Exception:
            with self._lock:
                if len(self._queue) + len(batch) <= self.max_backlog:
                    self._queue.extendleft(reversed(batch))
                    logger.warning(
                        "%s: flush failed for %d events, requeued", self.name, len(batch), exc_info=True,
                    )
                else:
                    self.dropped += len(batch)
                    logger.warning(
                        "%s: flush failed for %d events, backlog at cap, dropped",
                        self.name, len(batch), exc_info=True,
                    )
            return 0

        self.sent += len(batch)
        return len(batch)

    def drain(self) -> None:
        """Flush until the queue is empty or a flush fails."""
        while self.flush():
            pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background timer flush thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._flush_loop, daemon=True, name=self.name,
        )
        self._thread.start()
        if not self._atexit_registered:
            atexit.register(self.stop)
            self._atexit_registered = True
        logger.info("%s: started (batch=%d, interval=%.1fs)", self.name, self.batch_size, self.flush_interval)

    def stop(self) -> None:
        """Signal stop and wait for the final flush."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=10)
        if self._thread.is_alive():
            logger.warning("%s: thread did not stop within timeout", self.name)
        else:
            logger.info("%s: stopped (sent=%d, dropped=%d)", self.name, self.sent, self.dropped)
        self._thread = None

    def _flush_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.flush_interval):
            # Each tick empties the queue, not just one batch
            self.drain()
        # Best-effort drain on shutdown
        self.drain()

    def stats(self) -> dict:
        with self._lock:
            queued = len(self._queue)
        return {"queued": queued, "sent": self.sent, "dropped": self.dropped}


class DisabledIngestionClient:
    """Stand-in when no write token is configured. Logs once, drops events."""

    def __init__(self, name: str = "IngestionClient"):
        self.name = name
        self._warned = False

    def enqueue(self, event: Event) -> None:
        if not self._warned:
            logger.warning("%s: ingest token not configured, skipping analytics", self.name)
            self._warned = True

    def flush(self) -> int:
        return 0

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def stats(self) -> dict:
        return {"queued": 0, "sent": 0, "dropped": 0, "disabled": True}
