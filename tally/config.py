"""Configuration management. All settings from environment variables with sensible defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class BackendConfig:
    url: str = "https://api.tinybird.co"
    ingest_token: str = ""       # write token; empty = ingestion disabled
    read_token: str = ""         # dashboard reads (bearer)
    admin_read_token: str = ""   # admin proxy reads (query-string token)

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    @property
    def ingest_enabled(self) -> bool:
        return bool(self.ingest_token)

    @property
    def read_enabled(self) -> bool:
        return bool(self.read_token)


@dataclass(frozen=True)
class IngestConfig:
    batch_size: int = 20          # flush as soon as this many events are queued
    flush_interval: float = 5.0   # seconds between timer flushes
    max_backlog: int = 1000       # hard cap on queued + requeued events
    timeout: float = 10.0         # per-request timeout (seconds)


@dataclass(frozen=True)
class QueryConfig:
    timeout: float = 10.0
    max_workers: int = 6          # concurrent endpoint reads for composite views


@dataclass(frozen=True)
class RegistryConfig:
    url: str = "https://mcp.tinybird.co"
    token: str = ""               # empty = catalog not configured
    timeout: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True)
class SessionConfig:
    cookie_name: str = "tb_session_id"
    max_age: int = 60 * 60 * 24 * 365  # 1 year
    production: bool = False


@dataclass(frozen=True)
class LLMConfig:
    # OpenAI-compatible settings (works with OpenAI, Groq, Together, Mistral, LM Studio, vLLM)
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4o-mini"
    api_key: str = ""             # empty = analytics agent disabled

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class AuthConfig:
    enabled: bool = False
    api_key: str | None = None  # Static API key (checked via X-API-Key header)
    header_name: str = "X-API-Key"


@dataclass(frozen=True)
class Config:
    backend: BackendConfig = field(default_factory=BackendConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    environment: str = "development"
    transport: str = "stdio"  # "stdio" or "http"
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @property
    def production(self) -> bool:
        return self.environment == "production"


def _parse_cors_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins. '*' means allow all."""
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def load_config() -> Config:
    """Build a Config from the process environment.

    Every token is optional. A missing token leaves the dependent feature
    disabled; nothing here raises for absent configuration.
    """
    environment = os.getenv("TALLY_ENV", "development").lower().strip()
    config = Config(
        backend=BackendConfig(
            url=os.getenv("TALLY_BACKEND_URL", "https://api.tinybird.co"),
            ingest_token=os.getenv("TALLY_INGEST_TOKEN", ""),
            read_token=os.getenv("TALLY_READ_TOKEN", ""),
            admin_read_token=os.getenv("TALLY_ADMIN_READ_TOKEN", ""),
        ),
        ingest=IngestConfig(
            batch_size=int(os.getenv("TALLY_INGEST_BATCH_SIZE", "20")),
            flush_interval=float(os.getenv("TALLY_INGEST_FLUSH_INTERVAL", "5.0")),
            max_backlog=int(os.getenv("TALLY_INGEST_MAX_BACKLOG", "1000")),
            timeout=float(os.getenv("TALLY_HTTP_TIMEOUT", "10")),
        ),
        query=QueryConfig(
            timeout=float(os.getenv("TALLY_QUERY_TIMEOUT", "10")),
            max_workers=int(os.getenv("TALLY_QUERY_WORKERS", "6")),
        ),
        registry=RegistryConfig(
            url=os.getenv("TALLY_REGISTRY_URL", "https://mcp.tinybird.co"),
            token=os.getenv("TALLY_REGISTRY_TOKEN", ""),
            timeout=float(os.getenv("TALLY_REGISTRY_TIMEOUT", "30")),
        ),
        session=SessionConfig(
            cookie_name=os.getenv("TALLY_SESSION_COOKIE", "tb_session_id"),
            production=environment == "production",
        ),
        llm=LLMConfig(
            base_url=os.getenv("TALLY_LLM_BASE_URL", "https://api.openai.com"),
            model=os.getenv("TALLY_LLM_MODEL", "gpt-4o-mini"),
            api_key=os.getenv("TALLY_LLM_API_KEY", ""),
        ),
        auth=AuthConfig(
            enabled=_env_bool("TALLY_AUTH_ENABLED"),
            api_key=os.getenv("TALLY_API_KEY") or None,
            header_name=os.getenv("TALLY_AUTH_HEADER", "X-API-Key"),
        ),
        environment=environment,
        transport=os.getenv("TALLY_TRANSPORT", "stdio"),
        http_host=os.getenv("TALLY_HTTP_HOST", "0.0.0.0"),
        http_port=int(os.getenv("TALLY_HTTP_PORT", "8000")),
        cors_origins=_parse_cors_origins(os.getenv("TALLY_CORS_ORIGINS", "*")),
    )

    disabled = [
        name for name, on in (
            ("ingestion", config.backend.ingest_enabled),
            ("dashboard reads", config.backend.read_enabled),
            ("tool catalog", config.registry.enabled),
            ("analytics agent", config.llm.enabled),
        )
        if not on
    ]
    if disabled:
        logger.info("Not configured (disabled): %s", ", ".join(disabled))
    return config
