"""Service container and factory. Centralizes component initialization."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tally.config import Config, load_config
from tally.core.agent import AnalyticsAgent
from tally.core.catalog import ToolCatalog
from tally.core.constants import SEARCH_DATASOURCE
from tally.core.ingest import DisabledIngestionClient, IngestionClient
from tally.core.loggers import EdgeEventLogger, ServerEventLogger
from tally.core.queries import AnalyticsQueries, PipeClient
from tally.llm import get_llm
from tally.llm.interface import LLMInterface

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Holds all initialized components."""

    config: Config
    search_ingest: IngestionClient | DisabledIngestionClient
    server_logger: ServerEventLogger
    edge_logger: EdgeEventLogger
    queries: AnalyticsQueries
    admin_pipes: PipeClient
    catalog: ToolCatalog
    llm: LLMInterface | None
    agent: AnalyticsAgent | None

    def start(self) -> None:
        self.search_ingest.start()

    def stop(self) -> None:
        """Final flush of queued events."""
        self.search_ingest.stop()


def create_services(config: Config | None = None) -> Services:
    """Build every component from config. Missing tokens disable, never crash."""
    if config is None:
        config = load_config()

    backend = config.backend
    if backend.ingest_enabled:
        search_ingest = IngestionClient.from_config(backend, config.ingest, SEARCH_DATASOURCE)
    else:
        search_ingest = DisabledIngestionClient(f"IngestionClient[{SEARCH_DATASOURCE}]")

    admin_pipes = PipeClient(
        backend.base_url,
        backend.admin_read_token,
        timeout=config.query.timeout,
        token_in_query=True,
    )

    catalog = ToolCatalog.from_config(config.registry)
    llm = get_llm(config.llm)
    agent = AnalyticsAgent(llm, catalog) if llm is not None else None

    return Services(
        config=config,
        search_ingest=search_ingest,
        server_logger=ServerEventLogger.from_config(backend, timeout=config.ingest.timeout),
        edge_logger=EdgeEventLogger.from_config(backend, timeout=config.ingest.timeout),
        queries=AnalyticsQueries.from_config(backend, config.query),
        admin_pipes=admin_pipes,
        catalog=catalog,
        llm=llm,
        agent=agent,
    )
