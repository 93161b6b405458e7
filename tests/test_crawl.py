import pytest

from crawlsearch.crawler.crawl import Crawler, crawl
from crawlsearch.exceptions import FetchError, IndexSetupError
from crawlsearch.utils.config import Config

from .conftest import StubFetcher, api_error


SEED = "https://example.com/"


def make_crawler(frontier, es_client, monitor, pages, **kwargs):
    return Crawler(frontier, es_client, StubFetcher(pages, **kwargs), index_name="pages",
                   monitor=monitor)


class TestCrawl:
    async def test_links_are_enqueued_and_page_is_indexed(self, frontier, pool, es_client, monitor):
        body = '<html><title>Home</title><a href="/about">About</a><a href="/news">News</a></html>'
        crawler = make_crawler(frontier, es_client, monitor, {SEED: body})

        report = await crawler.crawl(SEED)

        assert set(pool.rows) == {"https://example.com/about", "https://example.com/news"}
        assert report.links_discovered == 2
        assert report.links_enqueued == 2
        assert report.indexed is True

        kwargs = es_client.index.await_args.kwargs
        assert kwargs['document']['url'] == SEED
        assert kwargs['document']['content'] == body
        assert kwargs['document']['title'] == "Home"

    async def test_one_bad_link_does_not_stop_the_others(self, frontier, pool, es_client, monitor):
        body = '<a href="/one">1</a><a href="http://[bad">2</a><a href="/three">3</a>'
        crawler = make_crawler(frontier, es_client, monitor, {SEED: body})

        report = await crawler.crawl(SEED)

        assert set(pool.rows) == {"https://example.com/one", "https://example.com/three"}
        assert report.link_errors == 1
        assert monitor.get_summary()['link_parse_errors'] == 1

    async def test_queue_failure_is_contained_per_link(self, frontier, pool, es_client, monitor):
        pool.fail_urls.add("https://example.com/one")
        body = '<a href="/one">1</a><a href="/two">2</a>'
        crawler = make_crawler(frontier, es_client, monitor, {SEED: body})

        report = await crawler.crawl(SEED)

        assert list(pool.rows) == ["https://example.com/two"]
        assert report.link_errors == 1
        assert report.links_enqueued == 1
        assert monitor.get_summary()['link_queue_errors'] == 1

    async def test_rediscovered_links_are_not_counted_as_new(self, frontier, es_client, monitor):
        await frontier.enqueue("https://example.com/about")
        crawler = make_crawler(frontier, es_client, monitor, {SEED: '<a href="/about">a</a>'})

        report = await crawler.crawl(SEED)

        assert report.links_discovered == 1
        assert report.links_enqueued == 0

    async def test_index_failure_does_not_fail_the_crawl(self, frontier, pool, es_client, monitor):
        es_client.index.side_effect = api_error(500, {'error': 'boom'})
        crawler = make_crawler(frontier, es_client, monitor, {SEED: '<a href="/a">a</a>'})

        report = await crawler.crawl(SEED)

        assert report.indexed is False
        assert report.index_failures == 1
        assert "https://example.com/a" in pool.rows

    async def test_fetch_failure_propagates_without_writes(self, frontier, pool, es_client, monitor):
        crawler = make_crawler(frontier, es_client, monitor, {})

        with pytest.raises(FetchError):
            await crawler.crawl(SEED)

        es_client.index.assert_not_awaited()
        assert pool.rows == {}
        assert monitor.get_summary()['fetch_failures'] == 1

    async def test_missing_index_aborts_before_fetching(self, frontier, es_client, monitor):
        es_client.indices.exists.return_value = False
        es_client.indices.create.side_effect = api_error(400, {'error': {'type': 'illegal_argument_exception'}})
        crawler = make_crawler(frontier, es_client, monitor, {SEED: ''})

        with pytest.raises(IndexSetupError):
            await crawler.crawl(SEED)

        assert crawler.fetcher.requested == []

    async def test_index_is_checked_once_per_crawler(self, frontier, es_client, monitor):
        crawler = make_crawler(frontier, es_client, monitor, {SEED: ''})

        await crawler.crawl(SEED)
        await crawler.crawl(SEED)

        es_client.indices.exists.assert_awaited_once()

    async def test_non_html_pages_are_indexed_without_link_extraction(self, frontier, pool, es_client, monitor):
        crawler = make_crawler(frontier, es_client, monitor, {SEED: '<a href="/x">x</a>'},
                               content_type='text/plain')

        report = await crawler.crawl(SEED)

        assert pool.rows == {}
        assert report.indexed is True


async def test_end_to_end_against_a_live_page(frontier, pool, es_client, page_server):
    body = '<html><body><a href="/about">About us</a></body></html>'
    page_server.add('/', body)
    start_url = page_server.url('/')

    report = await crawl(frontier, es_client, start_url, Config())

    assert list(pool.rows) == [page_server.url('/about')]
    es_client.index.assert_awaited_once()
    document = es_client.index.await_args.kwargs['document']
    assert document['url'] == start_url
    assert document['content'] == body
    assert report.final_url == start_url
