"""
Worker pool that drains the frontier.

A crawl call fetches exactly one page. These workers repeatedly claim
queued URLs and run a crawl for each, so discovered links eventually get
visited.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from .crawl import Crawler
from ..exceptions import CrawlSearchError, FetchError, QueueError
from ..storage.frontier import FrontierStore
from ..utils.config import WorkerConfig
from ..utils.logger import get_crawler_logger


@dataclass
class WorkerStats:
    """Statistics across all workers of one run."""
    start_time: float
    urls_crawled: int = 0
    fetch_errors: int = 0
    index_failures: int = 0
    links_enqueued: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.urls_crawled / elapsed_minutes if elapsed_minutes > 0 else 0


class FrontierWorkerPool:
    """Bounded set of asyncio workers consuming the frontier."""

    def __init__(self, frontier: FrontierStore, crawler: Crawler, config: Optional[WorkerConfig] = None):
        self.frontier = frontier
        self.crawler = crawler
        self.config = config or WorkerConfig()
        self.logger = logging.getLogger(__name__)

        self.stats = WorkerStats(start_time=time.time())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self._idle_workers = 0
        # Pages handed to workers so far; counted as soon as a claim returns
        self._reserved = 0

    async def run(self, max_pages: Optional[int] = None, max_duration: Optional[float] = None,
                  until_empty: bool = False) -> WorkerStats:
        """
        Drain the frontier until a limit is hit or ``stop()`` is called.

        Args:
            max_pages: Stop after this many crawl attempts
            max_duration: Stop after this many seconds
            until_empty: Stop once every worker finds nothing to claim
        """
        if self.is_running:
            self.logger.warning("Worker pool is already running")
            return self.stats

        self.is_running = True
        self.stats = WorkerStats(start_time=time.time())
        self._idle_workers = 0
        self._reserved = 0

        try:
            self.workers = [
                asyncio.create_task(self._worker(f"worker-{i}", max_pages, max_duration, until_empty))
                for i in range(self.config.concurrency)
            ]
            self.logger.info(f"Started frontier workers: {self.config.concurrency}")
            results = await asyncio.gather(*self.workers, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self.logger.error(f"Worker failed: {result!r}")
        finally:
            self.is_running = False
            await self._cleanup_workers()

        self.logger.info(
            f"Frontier run finished: crawled={self.stats.urls_crawled}, "
            f"fetch_errors={self.stats.fetch_errors}, index_failures={self.stats.index_failures}, "
            f"rate={self.stats.pages_per_minute:.1f} pages/min"
        )
        return self.stats

    def _limits_reached(self, max_pages: Optional[int], max_duration: Optional[float]) -> bool:
        if max_pages is not None and self._reserved >= max_pages:
            self.logger.info(f"Reached max pages limit: {max_pages}")
            return True
        if max_duration is not None and self.stats.elapsed_time >= max_duration:
            self.logger.info(f"Reached max duration: {max_duration} seconds")
            return True
        return False

    async def _worker(self, worker_id: str, max_pages: Optional[int],
                      max_duration: Optional[float], until_empty: bool):
        log = get_crawler_logger(__name__, worker_id=worker_id)
        log.debug(f"Worker {worker_id} started")
        idle = False

        while self.is_running and not self._limits_reached(max_pages, max_duration):
            limit = self.config.batch_size
            if max_pages is not None:
                limit = min(limit, max_pages - self._reserved)

            try:
                urls = await self.frontier.claim_batch(limit, self.config.claim_lease,
                                                       self.config.max_attempts)
            except QueueError as e:
                log.error(f"Worker {worker_id} could not claim URLs: {e}")
                urls = []

            # Peers may have claimed while this worker waited on the database
            excess: List[str] = []
            if max_pages is not None:
                allowed = max(max_pages - self._reserved, 0)
                urls, excess = urls[:allowed], urls[allowed:]
            self._reserved += len(urls)
            await self._hand_back(excess, log)

            if not urls:
                if not idle:
                    idle = True
                    self._idle_workers += 1
                if until_empty and self._idle_workers >= self.config.concurrency:
                    break
                await asyncio.sleep(self.config.idle_sleep)
                continue

            if idle:
                idle = False
                self._idle_workers -= 1

            for i, url in enumerate(urls):
                if not self.is_running or self._duration_exceeded(max_duration):
                    self._reserved -= len(urls) - i
                    await self._hand_back(urls[i:], log)
                    break
                await self._process_url(url, log)

        log.debug(f"Worker {worker_id} finished")

    def _duration_exceeded(self, max_duration: Optional[float]) -> bool:
        return max_duration is not None and self.stats.elapsed_time >= max_duration

    async def _hand_back(self, urls: List[str], log):
        """Return claimed but unattempted URLs to the frontier."""
        for url in urls:
            try:
                await self.frontier.release(url)
            except QueueError as e:
                log.error(str(e))

    async def _process_url(self, url: str, log):
        self.stats.urls_crawled += 1
        try:
            report = await self.crawler.crawl(url)
        except FetchError as e:
            self.stats.fetch_errors += 1
            log.log_url_event(logging.WARNING, url, f"Failed to fetch {url}: {e}")
            await self._release(url, str(e), log)
            return
        except CrawlSearchError as e:
            log.log_url_event(logging.ERROR, url, f"Crawl of {url} aborted: {e}")
            await self._release(url, str(e), log)
            return

        self.stats.index_failures += report.index_failures
        self.stats.links_enqueued += report.links_enqueued
        try:
            await self.frontier.mark_fetched(url)
        except QueueError as e:
            log.error(str(e))

    async def _release(self, url: str, error: str, log):
        try:
            await self.frontier.mark_failed(url, error)
        except QueueError as e:
            log.error(str(e))

    async def stop(self):
        """Stop and cancel all workers."""
        self.logger.info("Stopping frontier workers...")
        self.is_running = False
        await self._cleanup_workers()

    async def _cleanup_workers(self):
        if self.workers:
            for worker in self.workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()
