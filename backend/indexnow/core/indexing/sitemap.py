"""
Sitemap fetching and parsing.

Fetches a sitemap over HTTP and returns the page URLs it lists. Both flat
``<urlset>`` documents and ``<sitemapindex>`` documents (whose entries are
fetched recursively) are supported, as are gzip-compressed payloads.

Usage:
    from indexnow.core.indexing.sitemap import SitemapFetcher

    fetcher = SitemapFetcher()
    urls = await fetcher.fetch_urls("https://example.com/sitemap.xml")
"""

import gzip
import logging
from typing import List, Optional, Set

import httpx
from bs4 import BeautifulSoup

from ...config import settings
from .errors import SitemapError

logger = logging.getLogger("indexnow.indexing.sitemap")

GZIP_MAGIC = b"\x1f\x8b"


def parse_sitemap_document(content: bytes):
    """
    Parse a sitemap document.

    Args:
        content: Raw (possibly gzipped) XML bytes

    Returns:
        Tuple of (page_urls, nested_sitemap_urls)

    Raises:
        SitemapError: If the payload is not a sitemap
    """
    if content[:2] == GZIP_MAGIC:
        try:
            content = gzip.decompress(content)
        except OSError as e:
            raise SitemapError(f"Invalid gzip sitemap payload: {e}") from e

    soup = BeautifulSoup(content, "xml")

    urlset = soup.find("urlset")
    index = soup.find("sitemapindex")
    if urlset is None and index is None:
        raise SitemapError("Document is neither a <urlset> nor a <sitemapindex>")

    page_urls: List[str] = []
    nested: List[str] = []

    if urlset is not None:
        for entry in urlset.find_all("url"):
            loc = entry.find("loc")
            if loc is not None and loc.get_text(strip=True):
                page_urls.append(loc.get_text(strip=True))

    if index is not None:
        for entry in index.find_all("sitemap"):
            loc = entry.find("loc")
            if loc is not None and loc.get_text(strip=True):
                nested.append(loc.get_text(strip=True))

    return page_urls, nested


class SitemapFetcher:
    """
    Recursive sitemap crawler.

    Attributes:
        timeout: Per-request timeout in seconds
        max_depth: Maximum sitemap index nesting followed
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_depth: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = settings.sitemap_timeout if timeout is None else timeout
        self.max_depth = settings.sitemap_max_depth if max_depth is None else max_depth
        self._client = client

    async def fetch_urls(self, sitemap_url: str) -> List[str]:
        """
        Fetch every page URL reachable from ``sitemap_url``.

        URLs are returned in document order, nested sitemaps expanded in
        place of their index entry.

        Raises:
            SitemapError: If the root or any nested sitemap cannot be fetched
                or parsed
        """
        headers = {}
        if settings.sitemap_user_agent:
            headers["User-Agent"] = settings.sitemap_user_agent

        if self._client is not None:
            urls = await self._collect(self._client, sitemap_url, 0, set())
        else:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, headers=headers
            ) as client:
                urls = await self._collect(client, sitemap_url, 0, set())

        logger.info(f"Extracted {len(urls)} URLs from sitemap {sitemap_url}")
        return urls

    async def _collect(
        self,
        client: httpx.AsyncClient,
        sitemap_url: str,
        depth: int,
        visited: Set[str],
    ) -> List[str]:
        if sitemap_url in visited:
            logger.debug(f"Skipping already visited sitemap {sitemap_url}")
            return []
        visited.add(sitemap_url)

        content = await self._fetch(client, sitemap_url)
        page_urls, nested = parse_sitemap_document(content)

        for child in nested:
            if depth + 1 > self.max_depth:
                logger.warning(
                    f"Sitemap nesting deeper than {self.max_depth} levels, skipping {child}"
                )
                continue
            page_urls.extend(await self._collect(client, child, depth + 1, visited))

        return page_urls

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> bytes:
        logger.debug(f"Fetching sitemap {url}")
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise SitemapError(f"Failed to fetch sitemap {url}: {e}") from e

        if response.status_code >= 400:
            raise SitemapError(
                f"Failed to fetch sitemap {url}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.content
