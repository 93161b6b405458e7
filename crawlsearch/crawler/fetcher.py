"""
Single-page HTTP fetcher.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from ..exceptions import FetchError


HTML_TYPES = ('text/html', 'application/xhtml+xml')


@dataclass
class FetchResult:
    """A page response as handed to link extraction and indexing."""
    url: str
    final_url: str
    status_code: int
    content: str
    fetched_at: datetime
    content_type: Optional[str] = None
    encoding: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def is_html(self) -> bool:
        return any(t in (self.content_type or '') for t in HTML_TYPES)


class WebFetcher:
    """
    Fetches pages over one pooled aiohttp session.

    Every request is bounded by ``request_timeout``; transport failures,
    timeouts and non-2xx responses raise FetchError and are never retried.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30.0,
                 max_content_bytes: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_content_bytes = max_content_bytes

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={'User-Agent': self.user_agent},
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: Absolute URL to GET

        Returns:
            FetchResult with the decoded body and the URL after redirects

        Raises:
            FetchError: the request failed or the response was unusable
        """
        if self.session is None:
            await self.start()

        start_time = time.monotonic()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url) as response:
                fetched_at = datetime.now(timezone.utc)

                if not 200 <= response.status < 300:
                    raise FetchError(f"Unexpected status {response.status} for {url}", url,
                                     status_code=response.status)

                body = await self._read_body(response, url)
                content = self._decode(body, response.charset)

                self.stats['successful_requests'] += 1
                self.stats['total_bytes_downloaded'] += len(body)

                result = FetchResult(
                    url=url,
                    final_url=str(response.url),
                    status_code=response.status,
                    content=content,
                    fetched_at=fetched_at,
                    content_type=response.headers.get('content-type', '').lower(),
                    encoding=response.charset,
                    fetch_time=time.monotonic() - start_time,
                )
                self.logger.debug(f"Fetched {url}: {response.status} ({len(body)} bytes)")
                return result

        except FetchError:
            self.stats['failed_requests'] += 1
            raise
        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Timeout fetching {url}")
            raise FetchError(f"Timeout after {self.request_timeout}s fetching {url}", url) from e
        except (ClientError, ValueError) as e:
            # ValueError covers URLs aiohttp cannot even build a request for
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Client error fetching {url}: {e}")
            raise FetchError(f"Error fetching {url}: {e}", url) from e

    async def _read_body(self, response, url: str) -> bytes:
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_bytes:
            raise FetchError(f"Content too large ({content_length} bytes): {url}", url,
                             status_code=response.status)

        body = b''
        async for chunk in response.content.iter_chunked(8192):
            body += chunk
            if len(body) > self.max_content_bytes:
                raise FetchError(f"Content exceeded size limit during reading: {url}", url,
                                 status_code=response.status)
        return body

    def _decode(self, body: bytes, charset: Optional[str]) -> str:
        for encoding in filter(None, (charset, 'utf-8')):
            try:
                return body.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                continue
        # latin-1 maps every byte
        return body.decode('latin-1')

    def get_stats(self):
        return self.stats.copy()
