import pytest
from unittest.mock import AsyncMock, MagicMock

from elasticsearch import ConnectionError as ESConnectionError

from crawlsearch.exceptions import IndexSetupError, SearchEngineConnectionError
from crawlsearch.storage.search_engine import (
    PAGES_MAPPING,
    build_client,
    connect_search_engine,
    ensure_index,
)
from crawlsearch.utils.config import ElasticsearchConfig

from .conftest import api_error


class TestConnect:
    async def test_construction_failures_exhaust_retry_budget(self, es_settings):
        factory = MagicMock(side_effect=ValueError("bad ca_certs"))

        with pytest.raises(SearchEngineConnectionError) as exc_info:
            await connect_search_engine(es_settings, client_factory=factory)

        assert factory.call_count == 5
        assert exc_info.value.attempts == 5
        assert isinstance(exc_info.value.cause, ValueError)

    async def test_returns_client_once_cluster_is_yellow(self, es_settings, es_client):
        es_client.cluster.health.side_effect = [
            {'status': 'red'},
            ESConnectionError("refused"),
            {'status': 'yellow'},
        ]

        client = await connect_search_engine(es_settings, client_factory=lambda s: es_client)

        assert client is es_client
        assert es_client.cluster.health.await_count == 3
        es_client.close.assert_not_awaited()

    async def test_unhealthy_cluster_closes_client_and_retries(self, es_client):
        settings = ElasticsearchConfig(url="http://localhost:9200", connect_attempts=2,
                                       connect_backoff=0, health_check_attempts=3,
                                       health_check_interval=0)
        es_client.cluster.health.return_value = {'status': 'red'}
        factory = MagicMock(return_value=es_client)

        with pytest.raises(SearchEngineConnectionError):
            await connect_search_engine(settings, client_factory=factory)

        assert factory.call_count == 2
        assert es_client.cluster.health.await_count == 6
        assert es_client.close.await_count == 2

    async def test_info_mode_makes_a_single_call(self, es_client):
        settings = ElasticsearchConfig(url="http://localhost:9200", readiness_check="info",
                                       connect_backoff=0)

        client = await connect_search_engine(settings, client_factory=lambda s: es_client)

        assert client is es_client
        es_client.info.assert_awaited_once()
        es_client.cluster.health.assert_not_awaited()

    async def test_info_without_version_is_not_ready(self, es_client):
        settings = ElasticsearchConfig(url="http://localhost:9200", readiness_check="info",
                                       connect_attempts=1)
        es_client.info.return_value = {'tagline': 'You Know, for Search'}

        with pytest.raises(SearchEngineConnectionError):
            await connect_search_engine(settings, client_factory=lambda s: es_client)

    async def test_build_client_skips_tls_options_for_http(self):
        client = build_client(ElasticsearchConfig(url="http://localhost:9200", password="pw"))
        try:
            assert client is not None
        finally:
            await client.close()


class TestEnsureIndex:
    async def test_creates_missing_index_with_mapping(self, es_client):
        es_client.indices.exists.return_value = False

        created = await ensure_index(es_client, "pages")

        assert created is True
        es_client.indices.create.assert_awaited_once_with(index="pages", mappings=PAGES_MAPPING)

    async def test_second_call_is_a_no_op(self, es_client):
        es_client.indices.exists.side_effect = [False, True]

        assert await ensure_index(es_client, "pages") is True
        assert await ensure_index(es_client, "pages") is False

        es_client.indices.create.assert_awaited_once()

    async def test_concurrent_creation_counts_as_success(self, es_client):
        es_client.indices.exists.return_value = False
        es_client.indices.create.side_effect = api_error(400, {
            'error': {
                'type': 'resource_already_exists_exception',
                'root_cause': [{'reason': 'index [pages] already exists'}],
            }
        })

        assert await ensure_index(es_client, "pages") is False

    async def test_creation_error_raises_index_setup_error(self, es_client):
        body = {'error': {'type': 'mapper_parsing_exception', 'root_cause': [{'reason': 'bad'}]}}
        es_client.indices.exists.return_value = False
        es_client.indices.create.side_effect = api_error(400, body)

        with pytest.raises(IndexSetupError) as exc_info:
            await ensure_index(es_client, "pages")

        assert exc_info.value.index_name == "pages"
        assert exc_info.value.detail == body

    async def test_unreachable_engine_raises_index_setup_error(self):
        client = AsyncMock()
        client.indices.exists.side_effect = ESConnectionError("refused")

        with pytest.raises(IndexSetupError):
            await ensure_index(client, "pages")
        client.indices.create.assert_not_awaited()
