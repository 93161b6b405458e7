"""
Exception hierarchy for the crawl-and-index pipeline.
"""

from typing import Any, Optional


class CrawlSearchError(Exception):
    """Base class for all pipeline errors."""
    pass


class SearchEngineConnectionError(CrawlSearchError):
    """Search engine unreachable or unhealthy after the retry budget."""

    def __init__(self, message: str, attempts: int = 0, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause


class IndexSetupError(CrawlSearchError):
    """Target index is missing and could not be created."""

    def __init__(self, message: str, index_name: str, detail: Any = None):
        super().__init__(message)
        self.index_name = index_name
        self.detail = detail


class FetchError(CrawlSearchError):
    """Top-level page fetch failed."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class QueueError(CrawlSearchError):
    """Frontier persistence failed for a reason other than a duplicate URL."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class IndexWriteError(CrawlSearchError):
    """A document write was rejected or never reached the engine."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None,
                 detail: Any = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.detail = detail


class SearchError(CrawlSearchError):
    """Query execution failed on the engine side."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class MissingQueryError(CrawlSearchError):
    """Raised before contacting the engine when the query is empty."""
    pass
