"""
PostgreSQL-backed crawl frontier.

Discovered URLs live in the ``crawl_queue`` table whose unique URL
constraint is the only guard against duplicate entries, including across
concurrent crawls. Rows are claimed for fetching with
``FOR UPDATE SKIP LOCKED`` so several workers can drain the table without
handing out the same URL twice.
"""

import asyncio
import logging
from typing import List

import asyncpg

from ..exceptions import QueueError
from ..utils.config import DatabaseConfig


CREATE_QUEUE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS crawl_queue (
    url TEXT UNIQUE NOT NULL,
    discovered_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    claimed_at TIMESTAMPTZ,
    fetched_at TIMESTAMPTZ,
    attempts INT NOT NULL DEFAULT 0,
    last_error TEXT
);
"""

ENQUEUE_SQL = """
INSERT INTO crawl_queue (url) VALUES ($1)
ON CONFLICT (url) DO NOTHING
"""

CLAIM_BATCH_SQL = """
UPDATE crawl_queue
SET claimed_at = now(), attempts = attempts + 1
WHERE url IN (
    SELECT url FROM crawl_queue
    WHERE fetched_at IS NULL
      AND attempts < $3
      AND (claimed_at IS NULL OR claimed_at < now() - make_interval(secs => $2))
    ORDER BY discovered_at
    LIMIT $1
    FOR UPDATE SKIP LOCKED
)
RETURNING url
"""

MARK_FETCHED_SQL = """
UPDATE crawl_queue SET fetched_at = now(), claimed_at = NULL, last_error = NULL
WHERE url = $1
"""

MARK_FAILED_SQL = """
UPDATE crawl_queue SET claimed_at = NULL, last_error = $2
WHERE url = $1
"""

RELEASE_SQL = """
UPDATE crawl_queue SET claimed_at = NULL, attempts = greatest(attempts - 1, 0)
WHERE url = $1
"""

COUNT_PENDING_SQL = """
SELECT count(*) FROM crawl_queue WHERE fetched_at IS NULL
"""

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class FrontierStore:
    """De-duplicating persistent queue of discovered URLs."""

    def __init__(self, pool: asyncpg.Pool, owns_pool: bool = False):
        self.pool = pool
        self.owns_pool = owns_pool
        self.logger = logging.getLogger(__name__)

    @classmethod
    async def connect(cls, config: DatabaseConfig) -> 'FrontierStore':
        """Open a connection pool and make sure the queue table exists."""
        try:
            pool = await asyncpg.create_pool(
                dsn=config.dsn,
                min_size=config.min_pool_size,
                max_size=config.max_pool_size,
                command_timeout=config.command_timeout,
            )
        except DB_ERRORS as e:
            raise QueueError(f"Could not connect to the frontier database: {e}") from e

        store = cls(pool, owns_pool=True)
        await store.initialize()
        return store

    async def initialize(self):
        """Create the queue table if it is missing."""
        try:
            await self.pool.execute(CREATE_QUEUE_TABLE_SQL)
        except DB_ERRORS as e:
            raise QueueError(f"Could not create crawl_queue table: {e}") from e
        self.logger.info("Frontier store initialized")

    async def enqueue(self, url: str) -> bool:
        """
        Add an absolute URL to the frontier.

        Re-discovering a queued or fetched URL is a silent no-op.

        Returns:
            True if a new row was inserted

        Raises:
            QueueError: the insert failed for a reason other than a duplicate
        """
        try:
            status = await self.pool.execute(ENQUEUE_SQL, url)
        except DB_ERRORS as e:
            raise QueueError(f"Error inserting {url!r} into queue: {e}", url) from e

        inserted = status.endswith(" 1")
        if inserted:
            self.logger.debug(f"Enqueued {url}")
        return inserted

    async def claim_batch(self, limit: int, lease_seconds: float = 300.0,
                          max_attempts: int = 3) -> List[str]:
        """
        Claim up to ``limit`` unfetched URLs for this worker.

        A claim expires after ``lease_seconds`` so URLs held by a crashed
        worker become claimable again. URLs that already used up
        ``max_attempts`` are never handed out.
        """
        try:
            rows = await self.pool.fetch(CLAIM_BATCH_SQL, limit, float(lease_seconds), max_attempts)
        except DB_ERRORS as e:
            raise QueueError(f"Could not claim URLs from the frontier: {e}") from e
        return [row['url'] for row in rows]

    async def mark_fetched(self, url: str):
        try:
            await self.pool.execute(MARK_FETCHED_SQL, url)
        except DB_ERRORS as e:
            raise QueueError(f"Could not mark {url!r} as fetched: {e}", url) from e

    async def mark_failed(self, url: str, error: str):
        """Release the claim on ``url`` and record why the fetch failed."""
        try:
            await self.pool.execute(MARK_FAILED_SQL, url, error[:1000])
        except DB_ERRORS as e:
            raise QueueError(f"Could not mark {url!r} as failed: {e}", url) from e

    async def release(self, url: str):
        """Hand back a claimed URL that was never attempted."""
        try:
            await self.pool.execute(RELEASE_SQL, url)
        except DB_ERRORS as e:
            raise QueueError(f"Could not release {url!r}: {e}", url) from e

    async def count_pending(self) -> int:
        try:
            return await self.pool.fetchval(COUNT_PENDING_SQL)
        except DB_ERRORS as e:
            raise QueueError(f"Could not count pending URLs: {e}") from e

    async def close(self):
        if self.owns_pool and self.pool is not None:
            await self.pool.close()
            self.logger.info("Frontier pool closed")
