"""Aggregation query layer: named read endpoints ("pipes") and composite views.

Only allow-listed pipe names may be called; anything else is an
InvalidRequestError raised before any network I/O. Composite views fan out
concurrently and substitute a documented default for any slice whose
endpoint fails or times out.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Callable

from tally.core.constants import (
    ALLOWED_PIPES,
    MAX_DAYS_BACK,
    MAX_QUERY_LIMIT,
    PIPE_PARAMETERS,
    SUMMARY_DEFAULTS,
)
from tally.core.http import build_url, get_json
from tally.core.utils import InvalidRequestError

if TYPE_CHECKING:
    from tally.config import BackendConfig, QueryConfig

logger = logging.getLogger(__name__)


def resolve_params(pipe: str, params: dict[str, Any] | None = None) -> dict[str, int]:
    """Validate a pipe call and fill server-side defaults.

    Unknown pipes and parameters the pipe does not accept are rejected.
    Values are coerced to int and clamped to sane ranges.
    """
    if pipe not in ALLOWED_PIPES:
        raise InvalidRequestError(f"Invalid pipe name: {pipe}")
    accepted = PIPE_PARAMETERS[pipe]
    params = {k: v for k, v in (params or {}).items() if v is not None}

    unknown = set(params) - set(accepted)
    if unknown:
        raise InvalidRequestError(
            f"Parameter(s) not accepted by {pipe}: {', '.join(sorted(unknown))}"
        )

    resolved: dict[str, int] = {}
    for name, default in accepted.items():
        raw = params.get(name, default)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise InvalidRequestError(f"{name} must be an integer, got {raw!r}")
        upper = MAX_QUERY_LIMIT if name == "limit" else MAX_DAYS_BACK
        resolved[name] = max(1, min(value, upper))
    return resolved


class PipeClient:
    """Issues GET ``/v0/pipes/{name}.json`` against the analytics backend.

    Returns only the ``data`` array of the response envelope. With no read
    token configured every call returns an empty list (logged once).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        token_in_query: bool = False,
        fetch: Callable[..., dict] = get_json,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.token_in_query = token_in_query
        self._fetch = fetch
        self._warned = False

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def query(self, pipe: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run one allow-listed pipe. Raises on transport failure."""
        resolved = resolve_params(pipe, params)
        if not self.token:
            if not self._warned:
                logger.warning("Read token not configured, analytics reads disabled")
                self._warned = True
            return []

        query_params: dict[str, Any] = dict(resolved)
        bearer = self.token
        if self.token_in_query:
            query_params["token"] = self.token
            bearer = None
        url = build_url(self.base_url, f"/v0/pipes/{pipe}.json", query_params)
        envelope = self._fetch(url, timeout=self.timeout, bearer=bearer)
        data = envelope.get("data") if isinstance(envelope, dict) else None
        return data if isinstance(data, list) else []


class AnalyticsQueries:
    """Named accessors, one per endpoint, plus composite views."""

    def __init__(self, client: PipeClient, *, max_workers: int = 6, timeout: float = 10.0):
        self.client = client
        self.max_workers = max_workers
        self.timeout = timeout

    @classmethod
    def from_config(cls, backend: BackendConfig, query: QueryConfig) -> AnalyticsQueries:
        client = PipeClient(backend.base_url, backend.read_token, timeout=query.timeout)
        return cls(client, max_workers=query.max_workers, timeout=query.timeout)

    # -- individual accessors (raise on failure) --

    def summary_totals(self, days_back: int | None = None) -> dict:
        rows = self.client.query("analytics_summary", {"days_back": days_back})
        merged = dict(SUMMARY_DEFAULTS)
        if rows:
            merged.update({k: sanitize_number(v) for k, v in rows[0].items() if v is not None})
        return merged

    def searches_by_day(self, days_back: int | None = None) -> dict[str, int]:
        rows = self.client.query("searches_by_day", {"days_back": days_back})
        return {str(r.get("date")): r.get("count", 0) for r in rows if r.get("date") is not None}

    def recent_searches(self, limit: int | None = None) -> list[dict]:
        return self.client.query("recent_searches", {"limit": limit})

    def popular_search_terms(self, limit: int | None = None, days_back: int | None = None) -> list[dict]:
        return self.client.query("popular_searches", {"limit": limit, "days_back": days_back})

    def popular_sources(self, limit: int | None = None, days_back: int | None = None) -> list[dict]:
        return self.client.query("popular_sources", {"limit": limit, "days_back": days_back})

    def no_result_searches(self, limit: int | None = None) -> list[dict]:
        return self.client.query("no_result_searches", {"limit": limit})

    # -- safe accessors (default on failure) --

    def get_recent(self, limit: int | None = None) -> list[dict]:
        return self._safe("recent_searches", lambda: self.recent_searches(limit), [])

    def get_top_terms(self, limit: int | None = None, days_back: int | None = None) -> list[dict]:
        return self._safe("popular_searches", lambda: self.popular_search_terms(limit, days_back), [])

    def get_top_sources(self, limit: int | None = None, days_back: int | None = None) -> list[dict]:
        return self._safe("popular_sources", lambda: self.popular_sources(limit, days_back), [])

    def get_no_results(self, limit: int | None = None) -> list[dict]:
        return self._safe("no_result_searches", lambda: self.no_result_searches(limit), [])

    # -- composite views --

    def get_summary(self, days_back: int | None = None) -> dict:
        """Summary totals plus per-day search counts.

        Each slice falls back to its default independently: zeroed totals,
        empty ``searchesByDay``.
        """
        slices = self._gather({
            "totals": (lambda: self.summary_totals(days_back), dict(SUMMARY_DEFAULTS)),
            "searchesByDay": (lambda: self.searches_by_day(days_back), {}),
        })
        return {**slices["totals"], "searchesByDay": slices["searchesByDay"]}

    def get_dashboard(self, days_back: int | None = None, limit: int | None = None) -> dict:
        """Everything the admin dashboard renders, fetched in one fan-out."""
        slices = self._gather({
            "totals": (lambda: self.summary_totals(days_back), dict(SUMMARY_DEFAULTS)),
            "searchesByDay": (lambda: self.searches_by_day(days_back), {}),
            "recentSearches": (lambda: self.recent_searches(limit), []),
            "popularSearches": (lambda: self.popular_search_terms(limit, days_back), []),
            "popularSources": (lambda: self.popular_sources(limit, days_back), []),
            "noResultSearches": (lambda: self.no_result_searches(limit), []),
        })
        totals = slices.pop("totals")
        return {"summary": {**totals, "searchesByDay": slices.pop("searchesByDay")}, **slices}

    # -- internals --

    def _safe(self, name: str, fn: Callable[[], Any], default: Any) -> Any:
        try:
            return fn()
        except InvalidRequestError:
            raise
        except Exception as e:
            logger.warning("Analytics query %s failed, using default: %s", name, e)
            return default

    def _gather(self, calls: dict[str, tuple[Callable[[], Any], Any]]) -> dict[str, Any]:
        """Run every call concurrently; each slice degrades on its own.

        All slices share one ``timeout`` deadline. A call still running then is
        treated as failed and abandoned; its request ends on its own timeout.
        """
        results: dict[str, Any] = {}
        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(calls)) or 1)
        try:
            futures = {name: pool.submit(fn) for name, (fn, _default) in calls.items()}
            wait(futures.values(), timeout=self.timeout)
            for name, future in futures.items():
                default = calls[name][1]
                if not future.done():
                    logger.warning("Analytics slice %s timed out after %.1fs, using default", name, self.timeout)
                    results[name] = default
                    continue
                try:
                    results[name] = future.result()
                except Exception as e:
                    logger.warning("Analytics slice %s failed, using default: %s", name, e)
                    results[name] = default
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return results


def sanitize_number(value: Any) -> Any:
    """NaN/inf are not JSON; report them as 0 (backend averages over no rows)."""
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return value
