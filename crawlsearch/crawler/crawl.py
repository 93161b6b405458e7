"""
One crawl step: fetch a page, queue its links, index its content.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from elasticsearch import AsyncElasticsearch

from .fetcher import WebFetcher
from .indexer import DocumentIndexer, PageDocument
from .parser import LinkExtractor, LinkResolutionPolicy, ParsedPage
from ..exceptions import FetchError, QueueError
from ..storage.frontier import FrontierStore
from ..storage.search_engine import DEFAULT_INDEX, ensure_index
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor, get_monitor


@dataclass
class CrawlReport:
    """Outcome of a single crawl call."""
    start_url: str
    final_url: Optional[str] = None
    links_discovered: int = 0
    links_enqueued: int = 0
    link_errors: int = 0
    indexed: bool = False
    index_failures: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class Crawler:
    """
    Runs a crawl for one start URL.

    Only index setup and the page fetch can fail the call. A link that
    cannot be resolved or queued is skipped, and an index write failure
    is logged and reported in the CrawlReport.
    """

    def __init__(self, frontier: FrontierStore, client: AsyncElasticsearch, fetcher: WebFetcher,
                 extractor: Optional[LinkExtractor] = None, index_name: str = DEFAULT_INDEX,
                 monitor: Optional[CrawlerMonitor] = None):
        self.frontier = frontier
        self.client = client
        self.fetcher = fetcher
        self.extractor = extractor or LinkExtractor()
        self.index_name = index_name
        self.monitor = monitor or get_monitor()
        self.indexer = DocumentIndexer(client, index_name, self.monitor)
        self.logger = logging.getLogger(__name__)
        self._index_ready = False

    async def crawl(self, start_url: str) -> CrawlReport:
        """
        Fetch ``start_url``, enqueue every outbound link and index the page.

        Raises:
            IndexSetupError: the pages index is missing and could not be created
            FetchError: the page could not be fetched
        """
        if not self._index_ready:
            await ensure_index(self.client, self.index_name)
            self._index_ready = True

        report = CrawlReport(start_url=start_url)

        try:
            result = await self.fetcher.fetch(start_url)
        except FetchError:
            self.monitor.record_fetch_failure()
            raise
        self.monitor.record_page_fetched(result.fetch_time)
        report.final_url = result.final_url
        self.logger.debug(
            f"Fetched {result.final_url}: status={result.status_code}, "
            f"type={result.content_type}, charset={result.encoding}"
        )

        if result.is_html:
            page = self.extractor.parse(result.content, start_url, result.final_url)
        else:
            page = ParsedPage()

        await self._enqueue_links(page, report)

        doc = PageDocument(
            url=result.final_url,
            content=result.content,
            timestamp=result.fetched_at,
            title=page.title,
        )
        report.indexed = await self.indexer.index_document(doc)
        if not report.indexed:
            report.index_failures += 1

        self.logger.info(
            f"Crawled {start_url}: discovered={report.links_discovered}, "
            f"enqueued={report.links_enqueued}, link_errors={report.link_errors}, "
            f"indexed={report.indexed}"
        )
        return report

    async def _enqueue_links(self, page: ParsedPage, report: CrawlReport):
        for _ in page.errors:
            self.monitor.record_link_error('parse')
        report.link_errors += len(page.errors)

        for link in page.links:
            report.links_discovered += 1
            self.monitor.record_link_discovered()
            try:
                inserted = await self.frontier.enqueue(link)
            except QueueError as e:
                report.link_errors += 1
                self.monitor.record_link_error('queue')
                self.logger.warning(str(e))
                continue

            if inserted:
                report.links_enqueued += 1
                self.monitor.record_link_enqueued()


def build_crawler(config: Config, frontier: FrontierStore, client: AsyncElasticsearch,
                  fetcher: WebFetcher) -> Crawler:
    """Wire a Crawler from configuration."""
    extractor = LinkExtractor(
        policy=LinkResolutionPolicy(config.crawler.link_resolution),
        allowed_schemes=config.crawler.allowed_schemes,
    )
    return Crawler(frontier, client, fetcher, extractor, config.elasticsearch.index_name)


def build_fetcher(config: Config) -> WebFetcher:
    return WebFetcher(
        user_agent=config.crawler.user_agent,
        request_timeout=config.crawler.request_timeout,
        max_content_bytes=config.crawler.max_content_bytes,
    )


async def crawl(frontier: FrontierStore, client: AsyncElasticsearch, start_url: str,
                config: Optional[Config] = None) -> CrawlReport:
    """Crawl a single start URL with a short-lived fetcher session."""
    config = config or Config()
    async with build_fetcher(config) as fetcher:
        return await build_crawler(config, frontier, client, fetcher).crawl(start_url)
