"""OpenAI-compatible chat backend.

Works with any API that speaks the /v1/chat/completions format (OpenAI,
Groq, Together, Mistral, LM Studio, vLLM). No SDK dependency, urllib only.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

from tally.config import LLMConfig
from tally.llm.interface import LLMInterface, LLMResponse, ToolCallInfo

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503)


def to_openai_messages(messages: list[dict]) -> list[dict]:
    """Translate agent-loop messages into chat-completions messages."""
    out: list[dict] = []
    for msg in messages:
        role = msg.get("role")
        if role == "tool_result":
            for tr in msg.get("results", []):
                out.append({
                    "role": "tool",
                    "tool_call_id": tr["tool_use_id"],
                    "content": tr.get("content") or "",
                })
        elif role == "assistant" and msg.get("tool_calls"):
            out.append({
                "role": "assistant",
                "content": msg.get("content"),
                "tool_calls": [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": json.dumps(tc.get("input") or {})},
                    }
                    for tc in msg["tool_calls"]
                ],
            })
        else:
            out.append({"role": role, "content": msg.get("content", "")})
    return out


def to_openai_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("parameters") or {"type": "object", "properties": {}},
            },
        }
        for t in tools
    ]


def parse_choice(choice: dict) -> LLMResponse:
    message = choice.get("message") or {}
    tool_calls = []
    for tc in message.get("tool_calls") or []:
        fn = tc.get("function") or {}
        try:
            args = json.loads(fn.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("Tool call %s had unparseable arguments", fn.get("name"))
            args = {}
        tool_calls.append(ToolCallInfo(
            id=tc.get("id", ""), name=fn.get("name", ""), input=args if isinstance(args, dict) else {},
        ))
    return LLMResponse(
        text=message.get("content"),
        tool_calls=tool_calls,
        stop_reason="tool_use" if tool_calls else "end_turn",
    )


class OpenAICompatibleLLM(LLMInterface):
    """Chat model via any OpenAI-compatible /v1/chat/completions endpoint."""

    def __init__(self, config: LLMConfig, *, timeout: float = 60.0):
        self.model = config.model
        self.api_key = config.api_key
        self.base_url = config.base_url.rstrip("/")
        self.timeout = timeout
        if not self.api_key:
            raise ValueError("TALLY_LLM_API_KEY is required for the analytics agent")
        logger.info("OpenAI-compatible LLM ready: %s at %s", self.model, self.base_url)

    def _complete(self, body: dict) -> dict:
        """POST a chat-completions request, retrying transient failures."""
        req = urllib.request.Request(
            f"{self.base_url}/v1/chat/completions",
            data=json.dumps(body).encode(),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )
        last_error: Exception | None = None
        for attempt in range(3):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                    raw = resp.read()
                try:
                    result = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise ValueError(f"API returned invalid JSON: {raw[:200]!r}") from e
                if not result.get("choices"):
                    raise ValueError(f"API returned no choices: {list(result.keys())}")
                return result
            except urllib.error.HTTPError as e:
                if e.code not in RETRYABLE_STATUS:
                    raise
                last_error = e
                logger.warning("API transient error (attempt %d/3): HTTP %d", attempt + 1, e.code)
            except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
                last_error = e
                logger.warning("API transient error (attempt %d/3): %s", attempt + 1, e)
            time.sleep(2 ** attempt)
        raise last_error

    def generate(self, messages: list[dict], max_tokens: int = 1024) -> str:
        result = self._complete({
            "model": self.model,
            "messages": to_openai_messages(messages),
            "max_tokens": max_tokens,
            "temperature": 0.3,
        })
        content = result["choices"][0].get("message", {}).get("content")
        if content is None:
            raise ValueError("Unexpected response structure: message has no content")
        return content

    def supports_tool_use(self) -> bool:
        return True

    def generate_with_tools(
        self,
        messages: list[dict],
        tools: list[dict],
        max_tokens: int = 2048,
    ) -> LLMResponse:
        body = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "max_tokens": max_tokens,
            "temperature": 0.3,
        }
        if tools:
            body["tools"] = to_openai_tools(tools)
        result = self._complete(body)
        return parse_choice(result["choices"][0])

    def get_model_name(self) -> str:
        return self.model
