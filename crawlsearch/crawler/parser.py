"""
Anchor extraction and link resolution.
"""

import re
import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit
from dataclasses import dataclass, field

from bs4 import BeautifulSoup


class LinkResolutionPolicy(Enum):
    """Which URL relative hrefs are resolved against."""
    # Always the crawl's start URL, even when the page was reached by redirect
    SEED_RELATIVE = 'seed_relative'
    # The URL the page was finally served from
    PAGE_RELATIVE = 'page_relative'


# Name used for the default policy in logs and configuration docs
SeedRelativeResolution = LinkResolutionPolicy.SEED_RELATIVE


@dataclass
class ParsedPage:
    """What link extraction produced for one page."""
    links: List[str] = field(default_factory=list)
    errors: List[Tuple[str, str]] = field(default_factory=list)
    title: Optional[str] = None


def normalize_url(url: str) -> str:
    """Drop the fragment and lower-case scheme and host."""
    parts = urlsplit(url)
    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        parts.path,
        parts.query,
        ''
    ))


class LinkExtractor:
    """
    Pulls ``a[href]`` targets out of HTML and resolves them to absolute URLs.

    A link that cannot be parsed is logged and skipped; it never fails the
    page.
    """

    def __init__(self, policy: LinkResolutionPolicy = SeedRelativeResolution,
                 allowed_schemes: Sequence[str] = ('http', 'https')):
        self.policy = policy
        self.allowed_schemes = {s.lower() for s in allowed_schemes}
        self.logger = logging.getLogger(__name__)
        self.whitespace_pattern = re.compile(r'\s+')

    def base_for(self, seed_url: str, page_url: str) -> str:
        if self.policy is LinkResolutionPolicy.PAGE_RELATIVE:
            return page_url
        return seed_url

    def parse(self, html: str, seed_url: str, page_url: Optional[str] = None) -> ParsedPage:
        """
        Extract the title and every resolvable outbound link.

        Args:
            html: Page body
            seed_url: Start URL of the crawl
            page_url: URL the body was served from, defaults to ``seed_url``

        Returns:
            ParsedPage with de-duplicated links in document order
        """
        soup = BeautifulSoup(html, 'lxml')
        page = ParsedPage(title=self._extract_title(soup))

        base_url = self.base_for(seed_url, page_url or seed_url)
        try:
            urlsplit(base_url)
        except ValueError as e:
            self.logger.error(f"Error parsing base URL '{base_url}': {e}")
            page.errors = [(a['href'], str(e)) for a in soup.find_all('a', href=True)]
            return page

        seen = {}
        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.startswith('#'):
                continue

            try:
                absolute_url = normalize_url(urljoin(base_url, href))
            except ValueError as e:
                self.logger.warning(f"Error parsing URL '{href}': {e}")
                page.errors.append((href, str(e)))
                continue

            if urlsplit(absolute_url).scheme not in self.allowed_schemes:
                self.logger.debug(f"Ignoring non-web link: {absolute_url}")
                continue

            seen.setdefault(absolute_url, None)

        page.links = list(seen)
        self.logger.debug(f"Extracted {len(page.links)} links ({len(page.errors)} unparseable) "
                          f"relative to {base_url}")
        return page

    def _extract_title(self, soup: BeautifulSoup) -> Optional[str]:
        title_tag = soup.find('title')
        if title_tag is None:
            return None
        title = self.whitespace_pattern.sub(' ', title_tag.get_text()).strip()
        return title or None
