"""
Keyword search over indexed pages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from ..exceptions import MissingQueryError, SearchError
from ..storage.search_engine import DEFAULT_INDEX, error_detail, error_status, response_body
from ..utils.monitoring import CrawlerMonitor, get_monitor


logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    """One matched page, in engine relevance order."""
    id: Optional[str]
    score: Optional[float]
    url: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    timestamp: Optional[str] = None
    source: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_hit(cls, hit: Dict[str, Any]) -> 'SearchHit':
        source = hit.get('_source') or {}
        return cls(
            id=hit.get('_id'),
            score=hit.get('_score'),
            url=source.get('url'),
            title=source.get('title'),
            content=source.get('content'),
            timestamp=source.get('timestamp'),
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'score': self.score,
            'url': self.url,
            'title': self.title,
            'content': self.content,
            'timestamp': self.timestamp,
        }


def build_query(query: str, fields: Sequence[str]) -> Dict[str, Any]:
    """Multi-field match clause with the user's text as a plain value."""
    return {'multi_match': {'query': query, 'fields': list(fields)}}


def extract_hits(body: Any) -> List[Dict[str, Any]]:
    """Pull ``hits.hits`` out of a response; any other shape means no results."""
    hits = body.get('hits') if isinstance(body, dict) else None
    if not isinstance(hits, dict):
        logger.info(f"No hits object in response: {body!r:.200}")
        return []
    items = hits.get('hits')
    if not isinstance(items, list):
        logger.info(f"No hits array in response: {hits!r:.200}")
        return []
    return [item for item in items if isinstance(item, dict)]


class SearchService:
    """Translates free-text queries into engine searches and shapes the results."""

    def __init__(self, client: AsyncElasticsearch, index_name: str = DEFAULT_INDEX,
                 fields: Sequence[str] = ('title', 'content'), size: int = 10,
                 monitor: Optional[CrawlerMonitor] = None):
        self.client = client
        self.index_name = index_name
        self.fields = tuple(fields)
        self.size = size
        self.monitor = monitor or get_monitor()

    async def search(self, query: str) -> List[SearchHit]:
        """
        Run a keyword search.

        Raises:
            MissingQueryError: ``query`` is empty; the engine is not contacted
            SearchError: the engine failed the request
        """
        if not query or not query.strip():
            raise MissingQueryError("missing query")

        try:
            response = await self.client.search(
                index=self.index_name,
                query=build_query(query, self.fields),
                size=self.size,
            )
        except ApiError as e:
            self.monitor.record_search(failed=True)
            logger.error(f"Elasticsearch error for query {query!r}: {error_detail(e)}")
            raise SearchError(f"Search failed: {e}", status_code=error_status(e),
                              detail=error_detail(e)) from e
        except TransportError as e:
            self.monitor.record_search(failed=True)
            logger.error(f"Error performing search: {e}")
            raise SearchError(f"Search failed: {e}", detail=str(e)) from e

        self.monitor.record_search()
        return [SearchHit.from_hit(hit) for hit in extract_hits(response_body(response))]
