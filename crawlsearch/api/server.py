"""
HTTP adapter exposing crawl triggering and search.
"""

import asyncio
import logging
from typing import Optional, Set
from urllib.parse import urlsplit

from aiohttp import web
from elasticsearch import AsyncElasticsearch

from ..crawler.crawl import Crawler, build_crawler, build_fetcher
from ..exceptions import CrawlSearchError, IndexSetupError, MissingQueryError, QueueError, SearchError
from ..search.service import SearchService
from ..storage.frontier import FrontierStore
from ..storage.search_engine import ensure_index
from ..utils.config import Config
from ..utils.monitoring import get_monitor


logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey('config', Config)
FRONTIER_KEY = web.AppKey('frontier', FrontierStore)
CLIENT_KEY = web.AppKey('search_client', AsyncElasticsearch)
CRAWLER_KEY = web.AppKey('crawler', Crawler)
SEARCH_KEY = web.AppKey('search_service', SearchService)
TASKS_KEY = web.AppKey('crawl_tasks', set)


async def index(request: web.Request) -> web.Response:
    return web.json_response({
        'service': 'crawlsearch',
        'endpoints': ['GET /search?q=', 'POST /start-crawler', 'GET /health'],
    })


async def search(request: web.Request) -> web.Response:
    query = request.query.get('q', '')
    try:
        hits = await request.app[SEARCH_KEY].search(query)
    except MissingQueryError:
        return web.json_response({'error': 'missing query'}, status=400)
    except SearchError as e:
        detail = e.detail.get('error', e.detail) if isinstance(e.detail, dict) else str(e)
        return web.json_response({'error': detail}, status=500)

    return web.json_response({'query': query, 'results': [hit.to_dict() for hit in hits]})


async def _requested_url(request: web.Request, default: str) -> str:
    url = request.query.get('url')
    if not url and request.content_type == 'application/json' and request.body_exists:
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            url = payload.get('url')
    return url or default


async def _run_crawl(app: web.Application, url: str):
    try:
        report = await app[CRAWLER_KEY].crawl(url)
    except CrawlSearchError as e:
        logger.error(f"Crawler error: {e}")
        return
    except Exception:
        # Nobody awaits this task, so anything else must be logged here
        logger.exception(f"Background crawl of {url} crashed")
        return
    logger.info(f"Background crawl finished: {report.to_dict()}")


async def start_crawler(request: web.Request) -> web.Response:
    app = request.app
    url = await _requested_url(request, app[CONFIG_KEY].crawler.start_url)

    parts = urlsplit(url)
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        return web.json_response({'error': f'invalid url: {url}'}, status=400)

    try:
        await ensure_index(app[CLIENT_KEY], app[CONFIG_KEY].elasticsearch.index_name)
    except IndexSetupError as e:
        logger.error(f"Failed to create index: {e}")
        return web.json_response({'error': 'Failed to create index'}, status=500)

    task = asyncio.create_task(_run_crawl(app, url))
    tasks: Set[asyncio.Task] = app[TASKS_KEY]
    tasks.add(task)
    task.add_done_callback(tasks.discard)

    return web.json_response({'message': 'Crawler started', 'url': url})


async def health(request: web.Request) -> web.Response:
    try:
        pending = await request.app[FRONTIER_KEY].count_pending()
    except QueueError as e:
        logger.warning(f"Health check could not read the frontier: {e}")
        return web.json_response({'status': 'degraded', 'pending': None}, status=503)

    return web.json_response({
        'status': 'ok',
        'pending': pending,
        'metrics': get_monitor().get_summary(),
    })


async def _start_fetcher(app: web.Application):
    await app[CRAWLER_KEY].fetcher.start()


async def _shutdown(app: web.Application):
    tasks = list(app[TASKS_KEY])
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await app[CRAWLER_KEY].fetcher.close()


def create_app(config: Config, frontier: FrontierStore, client: AsyncElasticsearch,
               crawler: Optional[Crawler] = None) -> web.Application:
    """Build the web application around already-connected stores."""
    app = web.Application()
    app[CONFIG_KEY] = config
    app[FRONTIER_KEY] = frontier
    app[CLIENT_KEY] = client
    app[CRAWLER_KEY] = crawler or build_crawler(config, frontier, client, build_fetcher(config))
    app[SEARCH_KEY] = SearchService(
        client,
        index_name=config.elasticsearch.index_name,
        fields=config.elasticsearch.search_fields,
        size=config.elasticsearch.search_size,
    )
    app[TASKS_KEY] = set()

    app.router.add_get('/', index)
    app.router.add_get('/search', search)
    app.router.add_post('/start-crawler', start_crawler)
    app.router.add_get('/health', health)

    app.on_startup.append(_start_fetcher)
    app.on_cleanup.append(_shutdown)
    return app
