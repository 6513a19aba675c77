"""Analytics agent: an LLM tool-use loop over the discovered tool catalog.

The model may call catalog tools for up to ``max_turns`` rounds. Tool errors
go back to the model with a hint so it can correct its parameters. The run
ends with a ``done`` event carrying the narrative (chart block removed), the
extracted chart, and a log of every tool call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from tally.core.catalog import CatalogUnavailable, ToolCatalog, ToolResult
from tally.core.charts import extract_chart
from tally.core.constants import MAX_AGENT_TURNS, TOOL_RESULT_PREVIEW_ROWS
from tally.core.utils import InvalidRequestError
from tally.llm.interface import LLMInterface
from tally.llm.prompts import ANALYTICS_SYSTEM_PROMPT, MAX_ATTEMPTS_NOTE, TOOL_ERROR_HINT

logger = logging.getLogger(__name__)

AgentEvent = tuple[str, dict]


class AnalyticsAgent:

    def __init__(
        self,
        llm: LLMInterface,
        catalog: ToolCatalog,
        *,
        max_turns: int = MAX_AGENT_TURNS,
        max_tokens: int = 4096,
    ):
        self.llm = llm
        self.catalog = catalog
        self.max_turns = max_turns
        self.max_tokens = max_tokens

    def build_conversation(self, question: str, history: list[dict] | None = None) -> list[dict]:
        conversation = [{"role": "system", "content": ANALYTICS_SYSTEM_PROMPT}]
        for msg in history or []:
            if msg.get("role") in ("user", "assistant") and isinstance(msg.get("content"), str):
                conversation.append({"role": msg["role"], "content": msg["content"]})
        conversation.append({"role": "user", "content": question})
        return conversation

    async def _invoke(self, name: str, args: dict) -> ToolResult:
        try:
            return await self.catalog.invoke(name, args)
        except (InvalidRequestError, CatalogUnavailable) as e:
            return ToolResult(error=str(e))

    async def run(self, question: str, history: list[dict] | None = None) -> AsyncIterator[AgentEvent]:
        """Yield ``(event_type, data)`` pairs until a final ``done`` event."""
        tools = [t.to_llm_tool() for t in await self.catalog.list_tools()]
        if not self.llm.supports_tool_use():
            logger.warning("%s has no tool support, answering without data", self.llm.get_model_name())
            tools = []
        conversation = self.build_conversation(question, history)
        full_text = ""
        tool_log: list[dict] = []

        for turn in range(1, self.max_turns + 1):
            result = await asyncio.to_thread(
                self.llm.generate_with_tools, conversation, tools, self.max_tokens,
            )
            if result.text:
                full_text += result.text
                yield "text_delta", {"text": result.text}

            if not result.wants_tools:
                break

            has_errors = False
            tool_results = []
            for tc in result.tool_calls:
                yield "tool_call_start", {"id": tc.id, "name": tc.name, "args": tc.input}
                outcome = await self._invoke(tc.name, tc.input)
                preview = outcome.rows[:TOOL_RESULT_PREVIEW_ROWS]

                if outcome.error:
                    has_errors = True
                    content = f"Error: {outcome.error}\n\n{TOOL_ERROR_HINT}"
                else:
                    content = outcome.raw

                tool_log.append({
                    "tool": tc.name,
                    "args": tc.input,
                    "result": None if outcome.error else json.dumps(preview, default=str),
                    "error": outcome.error,
                })
                yield "tool_call_result", {
                    "id": tc.id,
                    "name": tc.name,
                    "rows": preview,
                    "rowCount": len(outcome.rows),
                    "error": outcome.error,
                }
                tool_results.append({
                    "tool_use_id": tc.id,
                    "content": content,
                    "status": "error" if outcome.error else "success",
                })

            assistant_msg: dict = {"role": "assistant"}
            if result.text:
                assistant_msg["content"] = result.text
            assistant_msg["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "input": tc.input} for tc in result.tool_calls
            ]
            conversation.append(assistant_msg)
            conversation.append({"role": "tool_result", "results": tool_results})

            if has_errors and turn >= self.max_turns:
                logger.info("Agent hit %d turns with tool errors", self.max_turns)
                full_text += MAX_ATTEMPTS_NOTE
                yield "text_delta", {"text": MAX_ATTEMPTS_NOTE}

        extraction = extract_chart(full_text)
        yield "done", {
            "text": extraction.narrative,
            "chart": extraction.chart.to_dict() if extraction.chart else None,
            "toolCalls": tool_log,
            "model": self.llm.get_model_name(),
        }
