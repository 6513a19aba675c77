"""Chat-model interface used by the analytics agent."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ToolCallInfo:
    """One tool invocation requested by the model."""
    id: str
    name: str
    input: dict


@dataclass
class LLMResponse:
    text: str | None = None
    tool_calls: list[ToolCallInfo] = field(default_factory=list)
    stop_reason: str = "end_turn"  # "end_turn" or "tool_use"

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use" and bool(self.tool_calls)


class LLMInterface(ABC):
    """Abstract chat backend.

    Conversation messages use three roles beyond system/user:
      - ``{"role": "assistant", "content": ..., "tool_calls": [{id, name, input}]}``
      - ``{"role": "tool_result", "results": [{tool_use_id, content, status}]}``
    Backends translate these into their own wire format.
    """

    @abstractmethod
    def generate(self, messages: list[dict], max_tokens: int = 1024) -> str:
        """Plain text completion."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier."""

    def supports_tool_use(self) -> bool:
        return False

    def generate_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        max_tokens: int = 2048,
    ) -> LLMResponse:
        """Completion with tool definitions ``{name, description, parameters}``.

        Backends without tool support ignore ``tools`` and answer in text.
        """
        text = self.generate(messages, max_tokens)
        return LLMResponse(text=text, stop_reason="end_turn")
