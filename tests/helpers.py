"""Shared test helpers for Tally tests."""

import asyncio
import re
import threading

from tally.core.catalog import ToolDescriptor
from tally.core.tabular import QUOTE
from tally.llm.interface import LLMInterface, LLMResponse


class MockLLM(LLMInterface):
    """Replays scripted responses in order; the last one repeats."""

    def __init__(self, *responses: LLMResponse | str):
        self._responses = [
            LLMResponse(text=r) if isinstance(r, str) else r for r in responses
        ] or [LLMResponse(text="")]
        self.calls: list[dict] = []

    def generate(self, messages: list[dict], max_tokens: int = 1024) -> str:
        return self.generate_with_tools(messages, [], max_tokens).text or ""

    def supports_tool_use(self) -> bool:
        return True

    def generate_with_tools(self, messages, tools, max_tokens=2048) -> LLMResponse:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        index = min(len(self.calls) - 1, len(self._responses) - 1)
        return self._responses[index]

    def get_model_name(self) -> str:
        return "mock"


class ExplodingLLM(LLMInterface):
    """Always raises an exception."""

    def generate(self, messages: list[dict], max_tokens: int = 1024) -> str:
        raise ConnectionError("LLM is down")

    def generate_with_tools(self, messages, tools, max_tokens=2048):
        raise ConnectionError("LLM is down")

    def get_model_name(self) -> str:
        return "exploding"


def inline_spawn(target, name):
    """Spawner that runs the work synchronously on the calling thread."""
    target()


class DeferredSpawner:
    """Spawner that only records work; tests decide when it runs."""

    def __init__(self):
        self.pending = []

    def __call__(self, target, name):
        self.pending.append((name, target))

    def run_all(self):
        pending, self.pending = self.pending, []
        for _name, target in pending:
            target()


class RecordingTransport:
    """EventTransport that records batches; fails the first ``fail_times`` sends."""

    def __init__(self, fail_times: int = 0):
        self.batches: list[list] = []
        self.attempts = 0
        self.fail_times = fail_times
        self._lock = threading.Lock()

    def send(self, events):
        with self._lock:
            self.attempts += 1
            if self.attempts <= self.fail_times:
                raise ConnectionError("backend unreachable")
            self.batches.append(list(events))

    @property
    def sent_ids(self) -> list[str]:
        return [e.id for batch in self.batches for e in batch]


class FakeFetch:
    """Stand-in for http.get_json keyed by pipe name.

    ``responses`` maps pipe name to a list of rows or an Exception to raise.
    """

    _PIPE_RE = re.compile(r"/v0/pipes/([^/.]+)\.json")

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def __call__(self, url, *, timeout, bearer=None):
        pipe = self._PIPE_RE.search(url).group(1)
        with self._lock:
            self.calls.append({"pipe": pipe, "url": url, "bearer": bearer, "timeout": timeout})
        result = self.responses.get(pipe, [])
        if isinstance(result, Exception):
            raise result
        return {"data": result, "rows": len(result), "meta": []}

    @property
    def pipes(self) -> list[str]:
        return [c["pipe"] for c in self.calls]


def descriptor(name, description="", properties=None, required=None):
    schema = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return ToolDescriptor.from_schema(name, description, schema)


class FakeRegistry:
    """In-memory ToolRegistry.

    ``results`` maps tool name to ``(text, is_error)`` or an Exception.
    """

    def __init__(self, tools=None, results=None, list_error=None):
        self.tools = list(tools or [])
        self.results = dict(results or {})
        self.list_error = list_error
        self.list_calls = 0
        self.calls: list[tuple[str, dict]] = []
        self.closed = 0

    async def list_tools(self):
        self.list_calls += 1
        await asyncio.sleep(0)
        if self.list_error is not None:
            raise self.list_error
        return list(self.tools)

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        result = self.results.get(name, ("", False))
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed += 1


def encode_table(columns, rows, delimiter=","):
    """Write rows back out in the form decode_table reads."""

    def fmt(value):
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value)
        if delimiter in text or QUOTE in text or "\n" in text:
            text = QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
        return text

    lines = [delimiter.join(fmt(c) for c in columns)]
    for row in rows:
        lines.append(delimiter.join(fmt(row.get(c)) for c in columns))
    return "\n".join(lines)
