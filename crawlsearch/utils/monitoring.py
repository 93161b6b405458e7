"""
Metrics for the crawl-and-index pipeline.

Failures the pipeline deliberately swallows (per-link errors, index
writes) are counted here so they remain observable.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


class MetricsCollector:
    """Owns the Prometheus registry and metric objects."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self._server_started = False

        self.pages_fetched = Counter(
            'crawlsearch_pages_fetched_total',
            'Pages fetched successfully',
            registry=self.registry
        )
        self.fetch_failures = Counter(
            'crawlsearch_fetch_failures_total',
            'Top-level page fetches that failed',
            registry=self.registry
        )
        self.links_discovered = Counter(
            'crawlsearch_links_discovered_total',
            'Anchor links resolved to absolute URLs',
            registry=self.registry
        )
        self.links_enqueued = Counter(
            'crawlsearch_links_enqueued_total',
            'Links inserted into the frontier as new rows',
            registry=self.registry
        )
        self.link_errors = Counter(
            'crawlsearch_link_errors_total',
            'Links skipped because of a parse or queue failure',
            ['stage'],
            registry=self.registry
        )
        self.documents_indexed = Counter(
            'crawlsearch_documents_indexed_total',
            'Documents written to the search index',
            registry=self.registry
        )
        self.index_write_failures = Counter(
            'crawlsearch_index_write_failures_total',
            'Document writes that failed and were swallowed',
            registry=self.registry
        )
        self.searches = Counter(
            'crawlsearch_searches_total',
            'Search queries executed',
            registry=self.registry
        )
        self.search_errors = Counter(
            'crawlsearch_search_errors_total',
            'Search queries that failed on the engine',
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'crawlsearch_fetch_seconds',
            'Wall time of page fetches',
            registry=self.registry
        )

    def start_server(self, port: int):
        """Expose the registry over HTTP."""
        if self._server_started:
            return
        start_http_server(port, registry=self.registry)
        self._server_started = True
        self.logger.info(f"Prometheus metrics server started on port {port}")

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 if it was never recorded."""
        sample = self.registry.get_sample_value(name, labels or {})
        return sample or 0.0


class CrawlerMonitor:
    """High-level recording interface used by the pipeline components."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()

    def record_page_fetched(self, elapsed: float):
        self.metrics.pages_fetched.inc()
        self.metrics.fetch_seconds.observe(elapsed)

    def record_fetch_failure(self):
        self.metrics.fetch_failures.inc()

    def record_link_discovered(self):
        self.metrics.links_discovered.inc()

    def record_link_enqueued(self):
        self.metrics.links_enqueued.inc()

    def record_link_error(self, stage: str):
        self.metrics.link_errors.labels(stage=stage).inc()

    def record_document_indexed(self):
        self.metrics.documents_indexed.inc()

    def record_index_failure(self):
        self.metrics.index_write_failures.inc()

    def record_search(self, failed: bool = False):
        self.metrics.searches.inc()
        if failed:
            self.metrics.search_errors.inc()

    def get_summary(self) -> Dict[str, float]:
        """Snapshot of the counters, for logs and the health endpoint."""
        value = self.metrics.value
        return {
            'pages_fetched': value('crawlsearch_pages_fetched_total'),
            'fetch_failures': value('crawlsearch_fetch_failures_total'),
            'links_discovered': value('crawlsearch_links_discovered_total'),
            'links_enqueued': value('crawlsearch_links_enqueued_total'),
            'link_parse_errors': value('crawlsearch_link_errors_total', {'stage': 'parse'}),
            'link_queue_errors': value('crawlsearch_link_errors_total', {'stage': 'queue'}),
            'documents_indexed': value('crawlsearch_documents_indexed_total'),
            'index_write_failures': value('crawlsearch_index_write_failures_total'),
            'searches': value('crawlsearch_searches_total'),
            'search_errors': value('crawlsearch_search_errors_total'),
        }


# Global monitoring instance
_global_monitor: Optional[CrawlerMonitor] = None


def initialize_monitoring(enable_server: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Create the process-wide monitor, optionally serving it over HTTP."""
    global _global_monitor

    _global_monitor = CrawlerMonitor(MetricsCollector())
    if enable_server:
        _global_monitor.metrics.start_server(prometheus_port)

    return _global_monitor


def get_monitor() -> CrawlerMonitor:
    """Get the global monitor, creating an unexported one on first use."""
    global _global_monitor
    if _global_monitor is None:
        _global_monitor = CrawlerMonitor()
    return _global_monitor
