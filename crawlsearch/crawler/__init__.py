"""
Fetch, extract and index components.
"""

from .fetcher import WebFetcher, FetchResult
from .parser import LinkExtractor, LinkResolutionPolicy, ParsedPage, SeedRelativeResolution
from .indexer import DocumentIndexer, PageDocument, document_id
from .crawl import Crawler, CrawlReport, crawl
from .scheduler import FrontierWorkerPool, WorkerStats

__all__ = [
    'WebFetcher', 'FetchResult',
    'LinkExtractor', 'LinkResolutionPolicy', 'ParsedPage', 'SeedRelativeResolution',
    'DocumentIndexer', 'PageDocument', 'document_id',
    'Crawler', 'CrawlReport', 'crawl',
    'FrontierWorkerPool', 'WorkerStats',
]
