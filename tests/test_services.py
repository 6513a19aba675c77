"""Tests for tally.core.services: wiring and disabled-feature fallbacks."""

from tally.config import BackendConfig, Config, LLMConfig, RegistryConfig
from tally.core.catalog import McpToolRegistry
from tally.core.ingest import DisabledIngestionClient, IngestionClient
from tally.core.services import create_services


class TestCreateServices:
    def test_nothing_configured(self):
        svc = create_services(Config())
        assert isinstance(svc.search_ingest, DisabledIngestionClient)
        assert svc.server_logger.enabled is False
        assert svc.edge_logger.enabled is False
        assert svc.queries.client.enabled is False
        assert svc.catalog.configured is False
        assert svc.llm is None
        assert svc.agent is None
        svc.start()
        svc.stop()

    def test_fully_configured(self):
        config = Config(
            backend=BackendConfig(ingest_token="w", read_token="r", admin_read_token="a"),
            registry=RegistryConfig(token="m"),
            llm=LLMConfig(api_key="sk"),
        )
        svc = create_services(config)
        assert isinstance(svc.search_ingest, IngestionClient)
        assert svc.search_ingest.batch_size == 20
        assert svc.admin_pipes.token_in_query is True
        assert svc.admin_pipes.token == "a"
        assert svc.queries.client.token == "r"
        assert isinstance(svc.catalog.registry, McpToolRegistry)
        assert svc.agent is not None
        assert svc.agent.catalog is svc.catalog
