"""
Tests for URL source strategies.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from indexnow.core.database.models import JobKind
from indexnow.core.indexing.errors import InvalidJobError
from indexnow.core.indexing.url_sources import (
    ManualUrlSource,
    SitemapUrlSource,
    get_url_source,
)


class TestManualUrlSource:

    @pytest.mark.asyncio
    async def test_returns_urls_without_blanks(self):
        extraction = await ManualUrlSource().extract(
            {"urls": ["https://example.com/a", "  ", "", " https://example.com/b "]}
        )
        assert extraction.urls == ["https://example.com/a", "https://example.com/b"]
        assert extraction.source_data is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"urls": "https://example.com"}, {"urls": None}])
    async def test_missing_or_malformed_list(self, payload):
        with pytest.raises(InvalidJobError):
            await ManualUrlSource().extract(payload)


class TestSitemapUrlSource:

    @pytest.mark.asyncio
    async def test_cached_urls_skip_network(self):
        fetcher = MagicMock()
        fetcher.fetch_urls = AsyncMock()
        source = SitemapUrlSource(fetcher=fetcher)

        extraction = await source.extract({
            "sitemap_url": "https://example.com/sitemap.xml",
            "parsed_urls": ["https://example.com/1"],
        })

        assert extraction.urls == ["https://example.com/1"]
        assert extraction.source_data is None
        fetcher.fetch_urls.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_crawl_returns_updated_payload(self):
        fetcher = MagicMock()
        fetcher.fetch_urls = AsyncMock(return_value=["https://example.com/1", "https://example.com/2"])
        source = SitemapUrlSource(fetcher=fetcher)

        extraction = await source.extract({"sitemap_url": "https://example.com/sitemap.xml"})

        assert extraction.urls == ["https://example.com/1", "https://example.com/2"]
        assert extraction.source_data["sitemap_url"] == "https://example.com/sitemap.xml"
        assert extraction.source_data["parsed_urls"] == extraction.urls
        assert extraction.source_data["total_parsed"] == 2
        assert "last_parsed" in extraction.source_data

    @pytest.mark.asyncio
    async def test_missing_sitemap_url(self):
        with pytest.raises(InvalidJobError):
            await SitemapUrlSource(fetcher=MagicMock()).extract({})


class TestRegistry:

    def test_lookup_by_kind(self):
        assert isinstance(get_url_source(JobKind.MANUAL), ManualUrlSource)
        assert isinstance(get_url_source("sitemap"), SitemapUrlSource)

    def test_unknown_kind(self):
        with pytest.raises(InvalidJobError):
            get_url_source("rss")
