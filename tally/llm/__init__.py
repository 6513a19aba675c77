"""Chat backend factory with a pluggable provider registry.

Built-in provider: openai (any OpenAI-compatible endpoint).
Register custom providers via ``register_llm_provider(name, factory_fn)``.
"""

from __future__ import annotations

import logging
from typing import Callable

from tally.config import LLMConfig
from tally.llm.interface import LLMInterface

logger = logging.getLogger(__name__)

_providers: dict[str, Callable[[LLMConfig], LLMInterface]] = {}

BUILT_IN_PROVIDERS = ["openai"]


def register_llm_provider(name: str, factory: Callable[[LLMConfig], LLMInterface]) -> None:
    """Register a custom chat backend, selected by ``get_llm(config, backend=name)``."""
    _providers[name] = factory
    logger.info("Registered LLM provider: %s", name)


def get_llm(config: LLMConfig, backend: str = "openai") -> LLMInterface | None:
    """Return the configured chat backend, or None when no API key is set."""
    if backend in _providers:
        return _providers[backend](config)
    if backend != "openai":
        available = sorted(set(BUILT_IN_PROVIDERS + list(_providers)))
        raise ValueError(f"Unknown LLM backend: {backend!r}. Available: {', '.join(available)}")
    if not config.enabled:
        return None
    from tally.llm.openai_compat import OpenAICompatibleLLM
    return OpenAICompatibleLLM(config)
