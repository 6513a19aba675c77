"""Shared utilities for Tally core modules. Error types and fire-and-forget helpers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)


class InvalidRequestError(Exception):
    """Raised for an unknown endpoint/tool name or a disallowed parameter."""


class UpstreamError(Exception):
    """Raised when the analytics backend answers with a non-2xx status."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"upstream returned HTTP {status}")
        self.status = status
        self.body = body


def truncate(value: str | None, limit: int) -> str | None:
    """Bound free text to ``limit`` characters. None passes through."""
    if value is None:
        return None
    return value[:limit]


Spawner = Callable[[Callable[[], None], str], None]


def spawn_daemon(target: Callable[[], None], name: str) -> None:
    """Default spawner: run ``target`` on a fresh daemon thread."""
    threading.Thread(target=target, daemon=True, name=name).start()


def fire_and_forget(
    fn: Callable[..., Any],
    *args: Any,
    name: str = "fire-and-forget",
    spawn: Spawner = spawn_daemon,
) -> None:
    """Run ``fn(*args)`` in the background; failures are logged, never raised.

    Returns nothing on purpose: callers have no result to inspect.
    """
    def _run() -> None:
        try:
            fn(*args)
        except Exception:
            logger.warning("%s failed", name, exc_info=True)

    spawn(_run, name)
