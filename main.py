#!/usr/bin/env python3
"""
Main entry point for the crawl-and-index service.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web

from crawlsearch import __version__
from crawlsearch.api import create_app
from crawlsearch.crawler.crawl import build_crawler, build_fetcher
from crawlsearch.crawler.scheduler import FrontierWorkerPool
from crawlsearch.exceptions import CrawlSearchError, MissingQueryError
from crawlsearch.search import SearchService
from crawlsearch.storage import FrontierStore, connect_search_engine, ensure_index
from crawlsearch.utils.config import load_config, Config
from crawlsearch.utils.logger import setup_logging, log_system_info
from crawlsearch.utils.monitoring import initialize_monitoring


class CrawlSearchApp:
    """Owns the store connections for one command invocation."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.frontier: Optional[FrontierStore] = None
        self.client = None
        self._shutdown_event = asyncio.Event()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._shutdown_event.set)

    def remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)

    async def interruptible(self, coro):
        """
        Await ``coro``, cancelling it if a shutdown signal arrives first.

        Returns:
            (True, result) when ``coro`` finished, (False, None) when interrupted
        """
        task = asyncio.create_task(coro)
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        done, _ = await asyncio.wait([task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

        if task in done:
            shutdown_task.cancel()
            return True, task.result()

        self.logger.info("Shutdown requested, cancelling...")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False, None

    async def connect(self, need_frontier: bool = True):
        """Connect to Elasticsearch (with retries) and, if needed, PostgreSQL."""
        self.client = await connect_search_engine(self.config.elasticsearch)
        if need_frontier:
            self.frontier = await FrontierStore.connect(self.config.database)

    async def close(self):
        if self.frontier:
            await self.frontier.close()
        if self.client is not None:
            await self.client.close()
        self.logger.info("Connections closed")

    async def serve(self):
        app = create_app(self.config, self.frontier, self.client)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self.config.api.host, self.config.api.port)
        await site.start()
        self.logger.info(f"Serving on http://{self.config.api.host}:{self.config.api.port}")
        try:
            await self._shutdown_event.wait()
        finally:
            await runner.cleanup()

    async def crawl(self, url: str) -> int:
        async with build_fetcher(self.config) as fetcher:
            crawler = build_crawler(self.config, self.frontier, self.client, fetcher)
            report = await crawler.crawl(url)
            self.logger.info(f"Fetcher stats: {fetcher.get_stats()}")
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    async def work(self, max_pages: Optional[int], max_duration: Optional[int], until_empty: bool) -> int:
        async with build_fetcher(self.config) as fetcher:
            crawler = build_crawler(self.config, self.frontier, self.client, fetcher)
            pool = FrontierWorkerPool(self.frontier, crawler, self.config.worker)

            run_task = asyncio.create_task(pool.run(max_pages, max_duration, until_empty))
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())
            done, _ = await asyncio.wait([run_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

            if shutdown_task in done:
                self.logger.info("Shutdown requested, stopping workers...")
                await pool.stop()
            else:
                shutdown_task.cancel()
            stats = await run_task
            self.logger.info(f"Fetcher stats: {fetcher.get_stats()}")

        print(f"Crawled {stats.urls_crawled} URLs ({stats.fetch_errors} fetch errors, "
              f"{stats.index_failures} index failures)")
        return 0

    async def search(self, query: str) -> int:
        service = SearchService(
            self.client,
            index_name=self.config.elasticsearch.index_name,
            fields=self.config.elasticsearch.search_fields,
            size=self.config.elasticsearch.search_size,
        )
        try:
            hits = await service.search(query)
        except MissingQueryError:
            print("Error: missing query")
            return 2
        for rank, hit in enumerate(hits, 1):
            print(f"{rank:>3}. [{hit.score}] {hit.url}  {hit.title or ''}")
        if not hits:
            print("No results")
        return 0

    async def check(self) -> int:
        """Dry run: both stores reachable and the index in place."""
        created = await ensure_index(self.client, self.config.elasticsearch.index_name)
        pending = await self.frontier.count_pending()
        self.logger.info(f"✓ Index {self.config.elasticsearch.index_name!r} "
                         f"{'created' if created else 'present'}")
        self.logger.info(f"✓ Frontier reachable, {pending} URLs pending")
        return 0


async def run(args) -> int:
    config = load_config(args.config)
    setup_logging(config.logging)
    log_system_info()
    initialize_monitoring(config.monitoring.metrics_enabled, config.monitoring.prometheus_port)

    logger = logging.getLogger(__name__)
    logger.info("=== CRAWLSEARCH STARTING ===")
    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Elasticsearch: {config.elasticsearch.url} index={config.elasticsearch.index_name}")
    logger.info(f"Link resolution: {config.crawler.link_resolution}")

    app = CrawlSearchApp(config)
    app.setup_signal_handlers()
    try:
        connected, _ = await app.interruptible(app.connect(need_frontier=args.command != 'search'))
        if not connected:
            return 130

        # serve and work watch the shutdown event themselves to stop cleanly
        if args.command == 'serve':
            await app.serve()
            return 0
        if args.command == 'work':
            return await app.work(args.max_pages, args.max_duration, args.until_empty)

        if args.command == 'crawl':
            command = app.crawl(args.url)
        elif args.command == 'search':
            command = app.search(args.query)
        else:
            command = app.check()
        finished, code = await app.interruptible(command)
        return code if finished else 130

    except CrawlSearchError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        app.remove_signal_handlers()
        await app.close()
        logger.info("=== CRAWLSEARCH FINISHED ===")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl pages into Elasticsearch and search them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve                          # HTTP API on the configured port
  python main.py crawl https://example.com      # Fetch one page, queue its links
  python main.py work --until-empty             # Drain the frontier
  python main.py search "web crawler"           # Query the index
  python main.py check                          # Test connections only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'CrawlSearch {__version__}'
    )

    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('serve', help='Run the HTTP trigger/search API')

    crawl_cmd = sub.add_parser('crawl', help='Crawl a single start URL')
    crawl_cmd.add_argument('url')

    work_cmd = sub.add_parser('work', help='Drain the frontier with a worker pool')
    work_cmd.add_argument('--max-pages', type=int, help='Maximum number of pages to crawl')
    work_cmd.add_argument('--max-duration', type=int, help='Maximum run time in seconds')
    work_cmd.add_argument('--until-empty', action='store_true',
                          help='Exit once the frontier has nothing left to claim')

    search_cmd = sub.add_parser('search', help='Search indexed pages')
    search_cmd.add_argument('query')

    sub.add_parser('check', help='Test configuration and connections')
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
