"""Centralized constants and enums for Tally core modules."""

from __future__ import annotations


# ============================================================
# Events
# ============================================================

class EventKind:
    SEARCH_QUERY = "search_query"
    CHAT_QUERY = "chat_query"
    PAGE_VIEW = "page_view"
    CLICK = "click"
    SCROLL = "scroll"
    CUSTOM = "custom"

    SEARCH = {SEARCH_QUERY, CHAT_QUERY}
    WEB = {PAGE_VIEW, CLICK, SCROLL, CUSTOM}
    ALL = SEARCH | WEB


# Backend datasources (append-only tables)
SEARCH_DATASOURCE = "events"
WEB_DATASOURCE = "web_events"

# Free-text bounds (truncated, never rejected)
MAX_QUERY_LENGTH = 1000
MAX_ANSWER_LENGTH = 2000
MAX_URL_LENGTH = 2048
MAX_ERROR_LENGTH = 512

IP_HASH_LENGTH = 16  # hex chars kept from the sha256 digest


# ============================================================
# Aggregation endpoints ("pipes")
# ============================================================

# Only these endpoint names may be invoked. Each maps to the parameters it
# accepts and the server-side default applied when the caller omits one.
PIPE_PARAMETERS: dict[str, dict[str, int]] = {
    "analytics_summary": {"days_back": 30},
    "searches_by_day": {"days_back": 30},
    "recent_searches": {"limit": 50},
    "popular_searches": {"limit": 20, "days_back": 30},
    "popular_sources": {"limit": 20, "days_back": 30},
    "no_result_searches": {"limit": 20},
}

ALLOWED_PIPES = frozenset(PIPE_PARAMETERS)

MAX_QUERY_LIMIT = 500
MAX_DAYS_BACK = 365

SUMMARY_DEFAULTS: dict[str, float] = {
    "totalSearches": 0,
    "agentSearches": 0,
    "chatSearches": 0,
    "avgResponseTime": 0,
    "avgResultCount": 0,
    "noResultSearches": 0,
}


# ============================================================
# Tool catalog
# ============================================================

CATEGORY_OTHER = "Other"

# Ordered keyword rules: first match wins. Each rule is
# (category, name keywords, description keywords).
CATEGORY_RULES: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    ("Search Analytics", ("search",), ("search",)),
    ("Traffic Analytics", ("source",), ("traffic", "source")),
    ("Platform Metrics", ("summary", "analytics"), ("metric", "summary", "kpi")),
]

MAX_EXAMPLE_QUERIES = 3


# ============================================================
# Charts
# ============================================================

class ChartType:
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    AREA = "area"
    TABLE = "table"
    METRIC = "metric"

    ALL = {BAR, LINE, PIE, AREA, TABLE, METRIC}


# Config keys each chart type needs before it can be rendered.
CHART_REQUIRED_CONFIG: dict[str, tuple[str, ...]] = {
    ChartType.BAR: ("xAxis", "yAxis"),
    ChartType.LINE: ("xAxis", "yAxis"),
    ChartType.AREA: ("xAxis", "yAxis"),
    ChartType.PIE: ("nameKey", "valueKey"),
    ChartType.TABLE: ("columns",),
    ChartType.METRIC: ("value",),
}


# ============================================================
# Analytics agent
# ============================================================

MAX_AGENT_TURNS = 3
TOOL_RESULT_PREVIEW_ROWS = 10
