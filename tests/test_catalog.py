"""Tests for tally.core.catalog: discovery, caching, classification, invocation."""

import asyncio

import pytest

from tally.config import RegistryConfig
from tally.core.catalog import (
    CatalogCache,
    CatalogUnavailable,
    McpToolRegistry,
    ToolCatalog,
    ToolDescriptor,
    build_entry,
    classify_tool,
    example_queries,
)
from tally.core.utils import InvalidRequestError
from tests.helpers import FakeRegistry, descriptor

TOOLS = [
    descriptor("popular_searches", "Top search terms", {
        "limit": {"type": "integer", "default": 20, "description": "Max rows"},
        "days_back": {"type": "integer", "default": 30},
    }),
    descriptor("popular_sources", "Most cited documents"),
    descriptor("analytics_summary", "Platform KPI summary"),
    descriptor("device_breakdown", "Counts per device"),
]


def _run(coro):
    return asyncio.run(coro)


class TestDescriptor:
    def test_from_schema(self):
        d = TOOLS[0]
        assert [p.name for p in d.parameters] == ["limit", "days_back"]
        assert d.parameters[0].type == "integer"
        assert d.parameters[0].default == 20
        assert d.parameters[0].description == "Max rows"

    def test_nullable_type_and_required(self):
        d = ToolDescriptor.from_schema("t", None, {
            "type": "object",
            "properties": {"q": {"type": ["null", "string"]}},
            "required": ["q"],
        })
        assert d.description == ""
        assert d.parameters[0].type == "string"
        assert d.parameters[0].required is True

    def test_to_llm_tool(self):
        tool = TOOLS[0].to_llm_tool()
        assert tool["name"] == "popular_searches"
        assert tool["description"] == "Top search terms"
        assert set(tool["parameters"]["properties"]) == {"limit", "days_back"}

    def test_missing_schema(self):
        d = ToolDescriptor.from_schema("bare", "x", None)
        assert d.parameters == ()
        assert d.to_llm_tool()["parameters"] == {"type": "object", "properties": {}}


class TestClassification:
    @pytest.mark.parametrize("name,description,expected", [
        ("popular_searches", "", "Search Analytics"),
        ("top_terms", "Search terms by volume", "Search Analytics"),
        ("popular_sources", "Most cited documents", "Traffic Analytics"),
        ("visits", "Traffic by referrer", "Traffic Analytics"),
        ("analytics_summary", "", "Platform Metrics"),
        ("numbers", "Daily KPI rollup", "Platform Metrics"),
        ("device_breakdown", "Counts per device", "Other"),
    ])
    def test_rules(self, name, description, expected):
        assert classify_tool(name, description) == expected

    def test_search_wins_over_later_rules(self):
        assert classify_tool("search_summary", "summary of searches") == "Search Analytics"


class TestExampleQueries:
    def test_templates_by_name(self):
        assert example_queries("popular_searches", "")[0] == "What are the top 10 search queries?"
        assert example_queries("searches_by_day", "")[0] == "Show me search trends over the last 30 days"
        assert example_queries("no_result_searches", "")[0] == "Which searches returned no results?"
        assert example_queries("analytics_summary", "")[0] == "Give me a platform overview"

    def test_from_description(self):
        queries = example_queries("device_counts", "Show trend of top devices over time")
        assert queries == [
            "Show me device counts",
            "What is the trend for device counts?",
            "What are the top results for device counts?",
        ]

    def test_fallback_never_empty(self):
        assert example_queries("misc_pipe", "nothing useful") == [
            "Analyze misc pipe", "Tell me about misc pipe",
        ]

    def test_at_most_three(self):
        for d in TOOLS:
            assert 1 <= len(build_entry(d).example_queries) <= 3


class TestToolCatalog:
    def test_not_configured(self):
        catalog = ToolCatalog(None)
        with pytest.raises(CatalogUnavailable) as exc:
            _run(catalog.list_tools())
        assert exc.value.kind == "not_configured"

    def test_unreachable(self):
        catalog = ToolCatalog(FakeRegistry(list_error=ConnectionError("refused")))
        with pytest.raises(CatalogUnavailable) as exc:
            _run(catalog.list_tools())
        assert exc.value.kind == "unreachable"

    def test_cached_until_refresh(self):
        registry = FakeRegistry(TOOLS)
        catalog = ToolCatalog(registry)

        async def scenario():
            await catalog.list_tools()
            await catalog.list_tools()
            assert registry.list_calls == 1
            await catalog.refresh()
            assert registry.closed == 1
            await catalog.list_tools()

        _run(scenario())
        assert registry.list_calls == 2

    def test_concurrent_cold_calls_share_one_fetch(self):
        registry = FakeRegistry(TOOLS)
        catalog = ToolCatalog(registry)

        async def scenario():
            return await asyncio.gather(*(catalog.list_tools() for _ in range(5)))

        results = _run(scenario())
        assert registry.list_calls == 1
        assert all([t.name for t in r] == [t.name for t in TOOLS] for r in results)

    def test_injected_cache_is_used(self):
        cache = CatalogCache()
        cache.set(TOOLS[:1])
        registry = FakeRegistry(TOOLS)
        tools = _run(ToolCatalog(registry, cache=cache).list_tools())
        assert [t.name for t in tools] == ["popular_searches"]
        assert registry.list_calls == 0

    def test_entries_cover_every_tool(self):
        entries = _run(ToolCatalog(FakeRegistry(TOOLS)).entries())
        assert [e.descriptor.name for e in entries] == [t.name for t in TOOLS]
        as_dict = entries[0].to_dict()
        assert as_dict["category"] == "Search Analytics"
        assert as_dict["parameters"][0] == {
            "name": "limit", "type": "integer", "default": 20, "description": "Max rows",
        }
        assert "parameters" not in entries[1].to_dict()

    def test_invoke_decodes_rows(self):
        registry = FakeRegistry(TOOLS, {"popular_searches": ("query,count\nbudget,12\ngrants,7", False)})
        result = _run(ToolCatalog(registry).invoke("popular_searches", {"limit": 2}))
        assert result.ok
        assert result.columns == ["query", "count"]
        assert result.rows == [{"query": "budget", "count": 12}, {"query": "grants", "count": 7}]
        assert registry.calls == [("popular_searches", {"limit": 2})]

    def test_invoke_unknown_tool_makes_no_call(self):
        registry = FakeRegistry(TOOLS)
        with pytest.raises(InvalidRequestError):
            _run(ToolCatalog(registry).invoke("drop_table", {}))
        assert registry.calls == []
        # cold cache: discovery only
        assert registry.list_calls == 1

    def test_invoke_unknown_tool_warm_cache_makes_no_request(self):
        cache = CatalogCache()
        cache.set(TOOLS)
        registry = FakeRegistry(TOOLS)
        with pytest.raises(InvalidRequestError):
            _run(ToolCatalog(registry, cache=cache).invoke("drop_table", {}))
        assert registry.list_calls == 0
        assert registry.calls == []

    def test_invoke_tool_error(self):
        registry = FakeRegistry(TOOLS, {"popular_searches": ("[Error] unknown param foo", True)})
        result = _run(ToolCatalog(registry).invoke("popular_searches", {"foo": 1}))
        assert result.error == "[Error] unknown param foo"
        assert result.rows == []

    def test_invoke_transport_error(self):
        registry = FakeRegistry(TOOLS, {"popular_searches": TimeoutError("read timed out")})
        result = _run(ToolCatalog(registry).invoke("popular_searches", {}))
        assert result.error == "read timed out"


class TestMcpToolRegistry:
    def test_endpoint_carries_token(self):
        registry = McpToolRegistry.from_config(RegistryConfig(url="https://mcp.test/", token="abc"))
        assert registry._endpoint() == "https://mcp.test?token=abc"

    def test_from_config_disabled_without_token(self):
        assert ToolCatalog.from_config(RegistryConfig(token="")).configured is False
        assert ToolCatalog.from_config(RegistryConfig(token="t")).configured is True
