"""
Tests for reply-context metadata extraction and the revalidating cache.
"""

import json

import httpx
import pytest

from indiepub.services.reply_context import cache_file_name, get_cached_metadata, parse_metadata

H_ENTRY_PAGE = """
<html><head><title>Site title</title>
<meta property="og:description" content="OG description">
</head><body>
<article class="h-entry">
  <h1 class="p-name">Entry title</h1>
  <a class="p-author h-card" href="https://alice.example/">Alice</a>
  <time class="dt-published" datetime="2026-10-01T09:00:00Z">Oct 1</time>
  <div class="e-content"><p>Entry body text.</p></div>
</article>
</body></html>
"""

PLAIN_PAGE = """
<html><head>
<meta property="og:title" content="OG title">
<meta name="author" content="Bob">
<link rel="canonical" href="https://bob.example/canonical/">
</head><body><p></p><p>First real paragraph.</p></body></html>
"""


class TestParseMetadata:
    """Test extracting card metadata from HTML."""

    def test_h_entry(self):
        metadata = parse_metadata("https://alice.example/post", H_ENTRY_PAGE)

        assert metadata["type"] == "entry"
        assert metadata["title"] == "Entry title"
        assert metadata["content"] == "Entry body text."
        assert metadata["author"] == {"name": "Alice", "url": "https://alice.example/"}
        assert metadata["published"] == "2026-10-01T09:00:00Z"
        assert metadata["url"] == "https://alice.example/post"

    def test_meta_fallbacks(self):
        metadata = parse_metadata("https://bob.example/p", PLAIN_PAGE)

        assert metadata["type"] == "page"
        assert metadata["title"] == "OG title"
        assert metadata["content"] == "First real paragraph."
        assert metadata["author"]["name"] == "Bob"
        assert metadata["url"] == "https://bob.example/canonical/"


class TestGetCachedMetadata:
    """Test the ETag / Last-Modified revalidation cache."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, tmp_path):
        def handler(request):
            return httpx.Response(200, text=H_ENTRY_PAGE, headers={"etag": '"v1"'})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        metadata = await get_cached_metadata("https://alice.example/post", tmp_path, client)

        assert metadata["title"] == "Entry title"
        assert metadata["etag"] == '"v1"'
        stored = json.loads((tmp_path / cache_file_name("https://alice.example/post")).read_text())
        assert stored == metadata

    @pytest.mark.asyncio
    async def test_not_modified_serves_cache(self, tmp_path):
        cached = {"url": "https://alice.example/post", "title": "Cached", "etag": '"v1"', "lastModified": "yesterday"}
        (tmp_path / cache_file_name("https://alice.example/post")).write_text(json.dumps(cached))
        seen = {}

        def handler(request):
            seen["if-none-match"] = request.headers.get("if-none-match")
            seen["if-modified-since"] = request.headers.get("if-modified-since")
            return httpx.Response(304)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        metadata = await get_cached_metadata("https://alice.example/post", tmp_path, client)

        assert metadata == cached
        assert seen == {"if-none-match": '"v1"', "if-modified-since": "yesterday"}

    @pytest.mark.asyncio
    async def test_changed_page_replaces_cache(self, tmp_path):
        cache_file = tmp_path / cache_file_name("https://alice.example/post")
        cache_file.write_text(json.dumps({"title": "Old", "etag": '"v1"'}))

        def handler(request):
            return httpx.Response(200, text=H_ENTRY_PAGE, headers={"etag": '"v2"'})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        metadata = await get_cached_metadata("https://alice.example/post", tmp_path, client)

        assert metadata["title"] == "Entry title"
        assert json.loads(cache_file.read_text())["etag"] == '"v2"'

    @pytest.mark.asyncio
    async def test_network_error_serves_cache(self, tmp_path):
        cached = {"title": "Cached"}
        (tmp_path / cache_file_name("https://alice.example/post")).write_text(json.dumps(cached))

        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        assert await get_cached_metadata("https://alice.example/post", tmp_path, client) == cached

    @pytest.mark.asyncio
    async def test_failure_without_cache_returns_error_marker(self, tmp_path):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

        metadata = await get_cached_metadata("https://gone.example/", tmp_path, client)

        assert metadata == {"url": "https://gone.example/", "error": True}
        assert not (tmp_path / cache_file_name("https://gone.example/")).exists()
