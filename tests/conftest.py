"""Shared fakes for the external systems the pipeline talks to."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from elasticsearch import ApiError

from crawlsearch.crawler.fetcher import FetchResult
from crawlsearch.exceptions import FetchError
from crawlsearch.storage import frontier as frontier_sql
from crawlsearch.storage.frontier import FrontierStore
from crawlsearch.utils.config import ElasticsearchConfig
from crawlsearch.utils.monitoring import CrawlerMonitor


class FakePool:
    """In-memory stand-in for an asyncpg pool running the frontier statements."""

    def __init__(self):
        self.rows: Dict[str, dict] = {}
        self.fail_urls = set()
        self.statements: List[str] = []

    async def execute(self, sql, *args):
        self.statements.append(sql)
        if sql == frontier_sql.CREATE_QUEUE_TABLE_SQL:
            return "CREATE TABLE"
        if sql == frontier_sql.ENQUEUE_SQL:
            url = args[0]
            if url in self.fail_urls:
                raise OSError("connection reset by peer")
            if url in self.rows:
                return "INSERT 0 0"
            self.rows[url] = {
                'url': url,
                'claimed': False,
                'fetched': False,
                'attempts': 0,
                'last_error': None,
            }
            return "INSERT 0 1"
        if sql == frontier_sql.MARK_FETCHED_SQL:
            row = self.rows[args[0]]
            row.update(fetched=True, claimed=False, last_error=None)
            return "UPDATE 1"
        if sql == frontier_sql.MARK_FAILED_SQL:
            row = self.rows[args[0]]
            row.update(claimed=False, last_error=args[1])
            return "UPDATE 1"
        if sql == frontier_sql.RELEASE_SQL:
            row = self.rows[args[0]]
            row.update(claimed=False, attempts=max(row['attempts'] - 1, 0))
            return "UPDATE 1"
        raise AssertionError(f"unexpected statement: {sql}")

    async def fetch(self, sql, *args):
        assert sql == frontier_sql.CLAIM_BATCH_SQL
        limit, _lease, max_attempts = args
        claimed = []
        for row in self.rows.values():
            if len(claimed) >= limit:
                break
            if row['fetched'] or row['claimed'] or row['attempts'] >= max_attempts:
                continue
            row['claimed'] = True
            row['attempts'] += 1
            claimed.append({'url': row['url']})
        return claimed

    async def fetchval(self, sql, *args):
        assert sql == frontier_sql.COUNT_PENDING_SQL
        return sum(1 for row in self.rows.values() if not row['fetched'])

    async def close(self):
        pass


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def frontier(pool):
    return FrontierStore(pool)


@pytest.fixture
def monitor():
    return CrawlerMonitor()


@pytest.fixture
def es_client():
    client = AsyncMock()
    client.indices.exists.return_value = True
    client.index.return_value = {'result': 'created'}
    client.search.return_value = {'hits': {'hits': []}}
    client.cluster.health.return_value = {'status': 'green'}
    client.info.return_value = {'version': {'number': '8.11.0'}}
    return client


@pytest.fixture
def es_settings():
    return ElasticsearchConfig(
        url="http://localhost:9200",
        connect_backoff=0,
        health_check_interval=0,
    )


def api_error(status=400, body=None, message="error"):
    meta = MagicMock()
    meta.status = status
    return ApiError(message=message, meta=meta, body=body or {})


class StubFetcher:
    """Serves canned pages keyed by URL without touching the network."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, content_type: str = 'text/html; charset=utf-8'):
        self.pages = pages or {}
        self.content_type = content_type
        self.requested: List[str] = []

    async def start(self):
        pass

    async def close(self):
        pass

    async def fetch(self, url):
        self.requested.append(url)
        if url not in self.pages:
            raise FetchError(f"Error fetching {url}: connection refused", url)
        return FetchResult(
            url=url,
            final_url=url,
            status_code=200,
            content=self.pages[url],
            fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            content_type=self.content_type,
        )


class PageServer:
    """Real local HTTP server with per-path canned responses."""

    def __init__(self):
        self.routes: Dict[str, tuple] = {}
        self.redirects: Dict[str, str] = {}
        app = web.Application()
        app.router.add_get('/{tail:.*}', self._handle)
        self.server = TestServer(app)

    async def _handle(self, request):
        if request.path in self.redirects:
            raise web.HTTPFound(self.redirects[request.path])
        if request.path not in self.routes:
            return web.Response(status=404, text="not found")
        body, content_type = self.routes[request.path]
        return web.Response(text=body, content_type=content_type)

    def add(self, path, body, content_type='text/html'):
        self.routes[path] = (body, content_type)

    def url(self, path='/'):
        return str(self.server.make_url(path))


@pytest.fixture
async def page_server():
    server = PageServer()
    await server.server.start_server()
    yield server
    await server.server.close()
