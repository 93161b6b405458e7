"""
Writes fetched pages into the search index.

Indexing failures never propagate: a page that cannot be written is
logged and counted, and the crawl carries on. Such failures are not
visible to whoever triggered the crawl, only in logs and metrics.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from .parser import normalize_url
from ..exceptions import IndexWriteError
from ..storage.search_engine import DEFAULT_INDEX, error_detail, error_status
from ..utils.monitoring import CrawlerMonitor, get_monitor


@dataclass
class PageDocument:
    """Indexed representation of one fetched page."""
    url: str
    content: str
    timestamp: datetime
    title: Optional[str] = None

    @property
    def doc_id(self) -> str:
        return document_id(self.url)

    def to_source(self) -> Dict[str, Any]:
        source = {
            'url': self.url,
            'content': self.content,
            'timestamp': self.timestamp.astimezone(timezone.utc).isoformat(),
        }
        if self.title:
            source['title'] = self.title
        return source


def document_id(url: str) -> str:
    """Stable identifier for a page, so re-fetching overwrites instead of duplicating."""
    return hashlib.sha256(normalize_url(url).encode('utf-8')).hexdigest()


class DocumentIndexer:
    """Submits PageDocuments to the pages index with immediate refresh."""

    def __init__(self, client: AsyncElasticsearch, index_name: str = DEFAULT_INDEX,
                 monitor: Optional[CrawlerMonitor] = None):
        self.client = client
        self.index_name = index_name
        self.monitor = monitor or get_monitor()
        self.logger = logging.getLogger(__name__)
        self.indexed = 0
        self.failures = 0

    async def write(self, doc: PageDocument):
        """
        Write one document.

        Raises:
            IndexWriteError: the engine rejected the write or was unreachable
        """
        try:
            await self.client.index(
                index=self.index_name,
                id=doc.doc_id,
                document=doc.to_source(),
                refresh='true',
            )
        except ApiError as e:
            raise IndexWriteError(f"Error indexing document {doc.url!r}", doc.url,
                                  status_code=error_status(e), detail=error_detail(e)) from e
        except TransportError as e:
            raise IndexWriteError(f"Error indexing page {doc.url!r}: {e}", doc.url,
                                  detail=str(e)) from e

    async def index_document(self, doc: PageDocument) -> bool:
        """
        Write one document, swallowing any failure.

        Returns:
            True if the engine accepted the write
        """
        try:
            await self.write(doc)
        except IndexWriteError as e:
            self.failures += 1
            self.monitor.record_index_failure()
            self.logger.error(f"{e} (status={e.status_code}): {e.detail}")
            return False

        self.indexed += 1
        self.monitor.record_document_indexed()
        self.logger.info(f"Successfully indexed page '{doc.url}'")
        return True
