"""
CrawlSearch

Crawls pages from a seed URL, keeps a de-duplicated frontier of discovered
links in PostgreSQL and indexes page content into Elasticsearch for
keyword search.
"""

__version__ = "1.0.0"
__description__ = "Crawl-and-index pipeline with a PostgreSQL frontier and Elasticsearch search"
