"""
URL source strategies, one per job kind.

A strategy turns a job's ``source_data`` into the list of URLs to submit.
It may also return an updated ``source_data`` payload that the caller
persists (the sitemap strategy caches parsed URLs there so a resumed job
never re-crawls).

Usage:
    from indexnow.core.indexing.url_sources import get_url_source

    extraction = await get_url_source(job.kind).extract(job.source_data or {})
    urls = extraction.urls
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.models import JobKind
from .errors import InvalidJobError
from .sitemap import SitemapFetcher

logger = logging.getLogger("indexnow.indexing.url_sources")


@dataclass
class UrlExtraction:
    """Result of a URL source strategy."""

    urls: List[str]
    source_data: Optional[Dict[str, Any]] = None  # new payload to persist, if changed


class UrlSource:
    """Base strategy."""

    kind: JobKind

    async def extract(self, source_data: Dict[str, Any]) -> UrlExtraction:
        raise NotImplementedError


class ManualUrlSource(UrlSource):
    """URLs listed directly in ``source_data["urls"]``."""

    kind = JobKind.MANUAL

    async def extract(self, source_data: Dict[str, Any]) -> UrlExtraction:
        urls = source_data.get("urls")
        if not isinstance(urls, list):
            raise InvalidJobError("Manual job has no URL list in source_data")
        cleaned = [u.strip() for u in urls if isinstance(u, str) and u.strip()]
        return UrlExtraction(urls=cleaned)


class SitemapUrlSource(UrlSource):
    """URLs crawled from ``source_data["sitemap_url"]``, cached after the first crawl."""

    kind = JobKind.SITEMAP

    def __init__(self, fetcher: Optional[SitemapFetcher] = None):
        self.fetcher = fetcher or SitemapFetcher()

    async def extract(self, source_data: Dict[str, Any]) -> UrlExtraction:
        cached = source_data.get("parsed_urls")
        if isinstance(cached, list):
            logger.info(f"Using {len(cached)} cached sitemap URLs")
            return UrlExtraction(urls=list(cached))

        sitemap_url = source_data.get("sitemap_url")
        if not sitemap_url:
            raise InvalidJobError("Sitemap job has no sitemap_url in source_data")

        urls = await self.fetcher.fetch_urls(sitemap_url)
        updated = dict(source_data)
        updated["parsed_urls"] = urls
        updated["last_parsed"] = datetime.utcnow().isoformat()
        updated["total_parsed"] = len(urls)
        return UrlExtraction(urls=urls, source_data=updated)


_SOURCES: Dict[JobKind, UrlSource] = {}


def register_url_source(source: UrlSource) -> None:
    _SOURCES[source.kind] = source


def get_url_source(kind) -> UrlSource:
    """
    Look up the strategy for a job kind.

    Raises:
        InvalidJobError: For an unknown kind
    """
    try:
        return _SOURCES[JobKind(kind)]
    except (KeyError, ValueError):
        raise InvalidJobError(f"Unsupported job kind: {kind}") from None


register_url_source(ManualUrlSource())
register_url_source(SitemapUrlSource())
