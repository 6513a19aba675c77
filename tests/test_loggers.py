"""Tests for tally.core.loggers: fire-and-forget direct senders."""

from unittest.mock import patch

from tally.core.constants import EventKind
from tally.core.events import PageContext, new_search_event, new_web_event
from tally.core.loggers import EdgeEventLogger, ServerEventLogger
from tally.core.utils import fire_and_forget
from tests.helpers import DeferredSpawner, inline_spawn


def _search_event():
    return new_search_event(EventKind.SEARCH_QUERY, "grants")


def _web_event():
    return new_web_event(EventKind.PAGE_VIEW, PageContext(page_url="/"), session_id="s1")


class TestServerEventLogger:
    def test_bearer_auth_and_datasource(self):
        logger = ServerEventLogger("https://backend.test", "tok", spawn=inline_spawn)
        with patch("tally.core.loggers.post_ndjson") as post:
            logger.log(_search_event())
        url, records = post.call_args.args
        assert url == "https://backend.test/v0/events?name=events"
        assert post.call_args.kwargs["bearer"] == "tok"
        assert records[0]["query"] == "grants"

    def test_returns_before_send(self):
        spawner = DeferredSpawner()
        logger = ServerEventLogger("https://backend.test", "tok", spawn=spawner)
        with patch("tally.core.loggers.post_ndjson") as post:
            assert logger.log(_search_event()) is None
            post.assert_not_called()
            spawner.run_all()
            post.assert_called_once()

    def test_send_failure_is_swallowed(self):
        logger = ServerEventLogger("https://backend.test", "tok", spawn=inline_spawn)
        with patch("tally.core.loggers.post_ndjson", side_effect=ConnectionError("down")):
            logger.log(_search_event())

    def test_missing_token_skips_silently(self):
        logger = ServerEventLogger("https://backend.test", "", spawn=inline_spawn)
        with patch("tally.core.loggers.post_ndjson") as post:
            logger.log(_search_event())
            logger.log(_search_event())
        post.assert_not_called()
        assert logger.enabled is False


class TestEdgeEventLogger:
    def test_query_string_token_no_bearer(self):
        logger = EdgeEventLogger("https://backend.test", "tok", spawn=inline_spawn)
        with patch("tally.core.loggers.post_ndjson") as post:
            logger.log(_web_event())
        url, records = post.call_args.args
        assert url == "https://backend.test/v0/events?name=web_events&token=tok"
        assert post.call_args.kwargs["bearer"] is None
        assert records[0]["event_type"] == "page_view"
        assert records[0]["ip_hash"] is None


class TestFireAndForget:
    def test_exceptions_logged_not_raised(self):
        def boom():
            raise RuntimeError("boom")

        with patch("tally.core.utils.logger") as log:
            assert fire_and_forget(boom, name="boom", spawn=inline_spawn) is None
        log.warning.assert_called_once()

    def test_passes_args(self):
        seen = []
        fire_and_forget(seen.append, 5, spawn=inline_spawn)
        assert seen == [5]
