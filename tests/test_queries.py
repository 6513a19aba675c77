"""Tests for tally.core.queries: allow-list, defaults, partial-failure composites."""

import threading
import time

import pytest

from tally.core.constants import SUMMARY_DEFAULTS
from tally.core.queries import AnalyticsQueries, PipeClient, resolve_params
from tally.core.utils import InvalidRequestError, UpstreamError
from tests.helpers import FakeFetch


def _queries(responses, token="tok", timeout=2.0):
    fetch = FakeFetch(responses)
    client = PipeClient("https://backend.test", token, fetch=fetch)
    return AnalyticsQueries(client, timeout=timeout), fetch


class TestResolveParams:
    def test_defaults_filled(self):
        assert resolve_params("popular_searches") == {"limit": 20, "days_back": 30}
        assert resolve_params("recent_searches") == {"limit": 50}

    def test_unknown_pipe(self):
        with pytest.raises(InvalidRequestError):
            resolve_params("drop_everything")

    def test_unaccepted_param(self):
        with pytest.raises(InvalidRequestError):
            resolve_params("recent_searches", {"days_back": 7})

    def test_coerce_and_clamp(self):
        assert resolve_params("no_result_searches", {"limit": "5"}) == {"limit": 5}
        assert resolve_params("no_result_searches", {"limit": 100000}) == {"limit": 500}
        assert resolve_params("searches_by_day", {"days_back": 0}) == {"days_back": 1}

    def test_non_integer(self):
        with pytest.raises(InvalidRequestError):
            resolve_params("recent_searches", {"limit": "ten"})


class TestPipeClient:
    def test_disallowed_pipe_makes_no_request(self):
        fetch = FakeFetch({})
        client = PipeClient("https://backend.test", "tok", fetch=fetch)
        with pytest.raises(InvalidRequestError):
            client.query("secret_pipe")
        assert fetch.calls == []

    def test_bearer_request(self):
        fetch = FakeFetch({"recent_searches": [{"query": "a"}]})
        client = PipeClient("https://backend.test/", "tok", fetch=fetch, timeout=4)
        assert client.query("recent_searches", {"limit": 5}) == [{"query": "a"}]
        call = fetch.calls[0]
        assert call["url"] == "https://backend.test/v0/pipes/recent_searches.json?limit=5"
        assert call["bearer"] == "tok"
        assert call["timeout"] == 4

    def test_query_string_token(self):
        fetch = FakeFetch({})
        client = PipeClient("https://backend.test", "adm", fetch=fetch, token_in_query=True)
        client.query("analytics_summary")
        assert fetch.calls[0]["url"].endswith("analytics_summary.json?days_back=30&token=adm")
        assert fetch.calls[0]["bearer"] is None

    def test_no_token_returns_empty(self):
        fetch = FakeFetch({"recent_searches": [{"query": "a"}]})
        client = PipeClient("https://backend.test", "", fetch=fetch)
        assert client.query("recent_searches") == []
        assert fetch.calls == []


class TestAccessors:
    def test_summary_totals_merges_defaults(self):
        queries, _ = _queries({"analytics_summary": [{"totalSearches": 9, "avgResponseTime": float("nan")}]})
        totals = queries.summary_totals()
        assert totals["totalSearches"] == 9
        assert totals["avgResponseTime"] == 0
        assert totals["chatSearches"] == 0

    def test_searches_by_day_mapping(self):
        queries, _ = _queries({"searches_by_day": [{"date": "2025-01-01", "count": 3}, {"date": "2025-01-02", "count": 5}]})
        assert queries.searches_by_day() == {"2025-01-01": 3, "2025-01-02": 5}

    def test_safe_accessor_defaults_on_failure(self):
        queries, _ = _queries({"popular_sources": UpstreamError(500, "boom")})
        assert queries.get_top_sources() == []

    def test_raising_accessor_propagates(self):
        queries, _ = _queries({"popular_sources": UpstreamError(500, "boom")})
        with pytest.raises(UpstreamError):
            queries.popular_sources()


class TestComposites:
    def test_summary_with_failed_slice(self):
        queries, _ = _queries({
            "analytics_summary": [{"totalSearches": 12, "agentSearches": 2}],
            "searches_by_day": ConnectionError("timeout"),
        })
        summary = queries.get_summary(7)
        assert summary["totalSearches"] == 12
        assert summary["agentSearches"] == 2
        assert summary["searchesByDay"] == {}

    def test_summary_all_failed_is_all_defaults(self):
        queries, _ = _queries({
            "analytics_summary": ConnectionError("down"),
            "searches_by_day": ConnectionError("down"),
        })
        assert queries.get_summary() == {**SUMMARY_DEFAULTS, "searchesByDay": {}}

    def test_dashboard_shape_and_isolation(self):
        queries, fetch = _queries({
            "analytics_summary": [{"totalSearches": 3}],
            "searches_by_day": [{"date": "2025-01-01", "count": 3}],
            "recent_searches": [{"query": "a"}],
            "popular_searches": UpstreamError(502, ""),
            "popular_sources": [{"title": "Doc"}],
            "no_result_searches": [],
        })
        dashboard = queries.get_dashboard(days_back=14, limit=10)
        assert set(dashboard) == {
            "summary", "recentSearches", "popularSearches", "popularSources", "noResultSearches",
        }
        assert dashboard["summary"]["totalSearches"] == 3
        assert dashboard["summary"]["searchesByDay"] == {"2025-01-01": 3}
        assert dashboard["recentSearches"] == [{"query": "a"}]
        assert dashboard["popularSearches"] == []
        assert dashboard["popularSources"] == [{"title": "Doc"}]
        assert sorted(fetch.pipes) == sorted([
            "analytics_summary", "searches_by_day", "recent_searches",
            "popular_searches", "popular_sources", "no_result_searches",
        ])

    def test_slow_slice_treated_as_failure(self):
        def fetch(url, *, timeout, bearer=None):
            if "searches_by_day" in url:
                time.sleep(1.0)
            return {"data": [{"totalSearches": 1}] if "analytics_summary" in url else []}

        client = PipeClient("https://backend.test", "tok", fetch=fetch)
        queries = AnalyticsQueries(client, timeout=0.1)
        started = time.monotonic()
        summary = queries.get_summary()
        assert time.monotonic() - started < 0.9
        assert summary["totalSearches"] == 1
        assert summary["searchesByDay"] == {}

    def test_hung_slices_share_one_deadline(self):
        release = threading.Event()

        def fetch(url, *, timeout, bearer=None):
            release.wait(5)
            return {"data": []}

        queries = AnalyticsQueries(PipeClient("https://backend.test", "tok", fetch=fetch), timeout=0.2)
        started = time.monotonic()
        try:
            dashboard = queries.get_dashboard()
            elapsed = time.monotonic() - started
        finally:
            release.set()
        assert elapsed < 0.6
        assert dashboard["summary"] == {**SUMMARY_DEFAULTS, "searchesByDay": {}}
        assert dashboard["recentSearches"] == []
        assert dashboard["noResultSearches"] == []
