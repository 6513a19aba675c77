"""Tool catalog: discover aggregation endpoints from the remote MCP registry.

The registry exposes every backend endpoint as an MCP tool. The catalog
lists them (cached until ``refresh()``), classifies each into a category,
synthesizes example questions, and invokes tools by name, decoding the
CSV text they return.

Remote descriptors are loosely typed; they are converted to ToolDescriptor
at the boundary (``ToolDescriptor.from_schema``) and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

from tally.core.constants import (
    CATEGORY_OTHER,
    CATEGORY_RULES,
    MAX_EXAMPLE_QUERIES,
)
from tally.core.tabular import decode_table
from tally.core.utils import InvalidRequestError

if TYPE_CHECKING:
    from tally.config import RegistryConfig

logger = logging.getLogger(__name__)


class CatalogUnavailable(Exception):
    """The registry cannot be used. ``kind`` is not_configured or unreachable."""

    NOT_CONFIGURED = "not_configured"
    UNREACHABLE = "unreachable"

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind


# ============================================================
# Data model
# ============================================================

@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str = "string"
    default: Any = None
    description: str | None = None
    required: bool = False

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.default is not None:
            out["default"] = self.default
        if self.description:
            out["description"] = self.description
        if self.required:
            out["required"] = True
        return out


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()
    input_schema: dict = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_schema(cls, name: str, description: str | None, input_schema: dict | None) -> ToolDescriptor:
        schema = input_schema if isinstance(input_schema, dict) else {}
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])
        params = []
        for pname, pschema in properties.items():
            pschema = pschema if isinstance(pschema, dict) else {}
            ptype = pschema.get("type") or "string"
            if isinstance(ptype, list):
                ptype = next((t for t in ptype if t != "null"), "string")
            params.append(ToolParameter(
                name=pname,
                type=str(ptype),
                default=pschema.get("default"),
                description=pschema.get("description"),
                required=pname in required,
            ))
        return cls(
            name=name,
            description=description or "",
            parameters=tuple(params),
            input_schema={
                "type": "object",
                "properties": properties,
                **({"required": sorted(required)} if required else {}),
            },
        )

    def to_llm_tool(self) -> dict:
        """Tool definition in the shape the LLM backends accept."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema or {"type": "object", "properties": {}},
        }


@dataclass(frozen=True)
class CatalogEntry:
    descriptor: ToolDescriptor
    category: str
    example_queries: tuple[str, ...]

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "name": self.descriptor.name,
            "description": self.descriptor.description,
            "category": self.category,
            "exampleQueries": list(self.example_queries),
        }
        if self.descriptor.parameters:
            out["parameters"] = [p.to_dict() for p in self.descriptor.parameters]
        return out


@dataclass
class ToolResult:
    rows: list[dict] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    raw: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ============================================================
# Classification & example questions
# ============================================================

def classify_tool(name: str, description: str) -> str:
    """First matching keyword rule wins; unmatched tools are 'Other'."""
    lname = name.lower()
    ldesc = (description or "").lower()
    for category, name_keywords, desc_keywords in CATEGORY_RULES:
        if any(k in lname for k in name_keywords) or any(k in ldesc for k in desc_keywords):
            return category
    return CATEGORY_OTHER


_EXAMPLE_TEMPLATES: list[tuple[str, tuple[str, ...]]] = [
    ("popular_searches", (
        "What are the top 10 search queries?",
        "Show me the most popular searches in the last week",
        "What are users searching for most often?",
    )),
    ("searches_by_day", (
        "Show me search trends over the last 30 days",
        "How has search volume changed this month?",
        "Display daily search activity",
    )),
    ("no_result", (
        "Which searches returned no results?",
        "Show me failed searches",
        "What are users looking for that we don't have?",
    )),
    ("recent", (
        "Show me the latest searches",
        "What are people searching for right now?",
        "Display recent search activity",
    )),
    ("source", (
        "Which documents are most popular?",
        "Show me the most frequently cited content",
        "What are the top documents in search results?",
    )),
    ("summary", (
        "Give me a platform overview",
        "What are our key metrics?",
        "Show me overall platform stats",
    )),
    ("analytics", (
        "Give me a platform overview",
        "What are our key metrics?",
        "Show me overall platform stats",
    )),
]

_DESCRIPTION_TEMPLATES: list[tuple[tuple[str, ...], str]] = [
    (("get", "show"), "Show me {label}"),
    (("trend", "time"), "What is the trend for {label}?"),
    (("popular", "top"), "What are the top results for {label}?"),
]


def example_queries(name: str, description: str) -> list[str]:
    """Up to three example questions for a tool; never empty."""
    lname = name.lower()
    for pattern, questions in _EXAMPLE_TEMPLATES:
        if pattern in lname:
            return list(questions[:MAX_EXAMPLE_QUERIES])

    label = name.replace("_", " ").strip() or "this data"
    ldesc = (description or "").lower()
    queries = [
        template.format(label=label)
        for keywords, template in _DESCRIPTION_TEMPLATES
        if any(k in ldesc for k in keywords)
    ]
    if not queries:
        queries = [f"Analyze {label}", f"Tell me about {label}"]
    return queries[:MAX_EXAMPLE_QUERIES]


def build_entry(descriptor: ToolDescriptor) -> CatalogEntry:
    return CatalogEntry(
        descriptor=descriptor,
        category=classify_tool(descriptor.name, descriptor.description),
        example_queries=tuple(example_queries(descriptor.name, descriptor.description)),
    )


# ============================================================
# Registry connection
# ============================================================

class ToolRegistry(Protocol):
    async def list_tools(self) -> list[ToolDescriptor]: ...

    async def call_tool(self, name: str, arguments: dict) -> tuple[str, bool]:
        """Return (text payload, is_error)."""

    async def close(self) -> None: ...


class McpToolRegistry:
    """One long-lived MCP session over streamable HTTP.

    The transport and session context managers are entered and exited by a
    dedicated owner task, so requests running on other tasks can share the
    session. A dropped connection is re-opened on the next call.
    """

    def __init__(self, url: str, token: str, *, timeout: float = 30.0, client_name: str = "tally-analytics-agent"):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.client_name = client_name
        self._session = None
        self._owner: asyncio.Task | None = None
        self._shutdown: asyncio.Event | None = None
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RegistryConfig) -> McpToolRegistry:
        return cls(config.url, config.token, timeout=config.timeout)

    def _endpoint(self) -> str:
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}token={self.token}"

    async def _run(self, ready: asyncio.Future) -> None:
        from mcp import ClientSession
        from mcp.client.streamable_http import streamablehttp_client
        from mcp.types import Implementation

        try:
            async with streamablehttp_client(
                self._endpoint(), timeout=timedelta(seconds=self.timeout),
            ) as (read_stream, write_stream, _get_session_id):
                async with ClientSession(
                    read_stream,
                    write_stream,
                    read_timeout_seconds=timedelta(seconds=self.timeout),
                    client_info=Implementation(name=self.client_name, version="1.0.0"),
                ) as session:
                    await session.initialize()
                    self._session = session
                    ready.set_result(session)
                    await self._shutdown.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning("Tool registry connection dropped: %s", e)
        finally:
            self._session = None

    async def _get_session(self):
        if self._session is not None and self._owner is not None and not self._owner.done():
            return self._session
        async with self._connect_lock:
            if self._session is not None and self._owner is not None and not self._owner.done():
                return self._session
            loop = asyncio.get_running_loop()
            ready: asyncio.Future = loop.create_future()
            self._shutdown = asyncio.Event()
            self._owner = loop.create_task(self._run(ready), name="tool-registry")
            try:
                session = await asyncio.wait_for(ready, timeout=self.timeout)
            except Exception:
                await self.close()
                raise
            logger.info("Connected to tool registry at %s", self.url)
            return session

    async def list_tools(self) -> list[ToolDescriptor]:
        session = await self._get_session()
        result = await session.list_tools()
        return [
            ToolDescriptor.from_schema(tool.name, tool.description, tool.inputSchema)
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict) -> tuple[str, bool]:
        session = await self._get_session()
        result = await session.call_tool(name, arguments=arguments)
        texts = [getattr(block, "text", "") for block in result.content if getattr(block, "type", "") == "text"]
        return (texts[0] if texts else ""), bool(result.isError)

    async def close(self) -> None:
        owner, self._owner = self._owner, None
        if self._shutdown is not None:
            self._shutdown.set()
        if owner is not None and not owner.done():
            try:
                await asyncio.wait_for(owner, timeout=5)
            except Exception:
                owner.cancel()
        self._session = None


# ============================================================
# Cache & catalog
# ============================================================

class CatalogCache:
    """Process-lifetime cache of discovered tools, with explicit invalidation."""

    def __init__(self):
        self._tools: list[ToolDescriptor] | None = None
        self.fetched_at: float | None = None

    def get(self) -> list[ToolDescriptor] | None:
        return self._tools

    def set(self, tools: list[ToolDescriptor]) -> None:
        self._tools = list(tools)
        self.fetched_at = time.time()

    def invalidate(self) -> None:
        self._tools = None
        self.fetched_at = None


class ToolCatalog:
    """Discovery, classification and invocation over a ToolRegistry.

    Concurrent ``list_tools()`` calls on a cold cache share one fetch.
    """

    def __init__(self, registry: ToolRegistry | None, cache: CatalogCache | None = None):
        self.registry = registry
        self.cache = cache or CatalogCache()
        self._fill_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: RegistryConfig) -> ToolCatalog:
        registry = McpToolRegistry.from_config(config) if config.enabled else None
        return cls(registry)

    @property
    def configured(self) -> bool:
        return self.registry is not None

    def _require_registry(self) -> ToolRegistry:
        if self.registry is None:
            raise CatalogUnavailable(
                CatalogUnavailable.NOT_CONFIGURED, "Tool registry token is not configured",
            )
        return self.registry

    async def list_tools(self) -> list[ToolDescriptor]:
        cached = self.cache.get()
        if cached is not None:
            return cached
        registry = self._require_registry()
        async with self._fill_lock:
            cached = self.cache.get()
            if cached is not None:
                return cached
            try:
                tools = await registry.list_tools()
            except Exception as e:
                logger.error("Tool discovery failed: %s", e)
                raise CatalogUnavailable(
                    CatalogUnavailable.UNREACHABLE, f"Failed to connect to tool registry: {e}",
                ) from e
            self.cache.set(tools)
            logger.info("Discovered %d tools", len(tools))
            return self.cache.get()

    async def entries(self) -> list[CatalogEntry]:
        return [build_entry(t) for t in await self.list_tools()]

    async def refresh(self) -> None:
        """Drop the cached list and the registry connection."""
        self.cache.invalidate()
        if self.registry is not None:
            await self.registry.close()
        logger.info("Tool catalog cache cleared")

    async def invoke(self, name: str, args: dict | None = None) -> ToolResult:
        """Call a discovered tool and decode its CSV payload.

        The allow-list is the discovered catalog. A name outside it raises
        InvalidRequestError and no tool call is made; with a warm cache no
        registry request of any kind is made, while a cold cache is first
        filled by discovery. Registry/tool failures come back as ``error``.
        """
        tools = await self.list_tools()
        if name not in {t.name for t in tools}:
            raise InvalidRequestError(f"Unknown tool: {name}")
        try:
            text, is_error = await self.registry.call_tool(name, dict(args or {}))
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return ToolResult(error=str(e) or "Tool call failed")
        if is_error:
            return ToolResult(raw=text, error=text or "Unknown error")
        table = decode_table(text)
        if table.dropped:
            logger.info("Tool %s: dropped %d ragged rows", name, table.dropped)
        return ToolResult(rows=table.rows, columns=table.columns, raw=text)
