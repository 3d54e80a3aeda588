"""
Tests for the webmention counts cache.
"""

import base64
import json

import httpx
import pytest

from indiepub.services.webmentions import (
    cache_file_name,
    cache_key,
    dedupe_mentions,
    extract_sitemap_urls,
    fetch_all_mentions,
    summarize,
    sync_webmentions,
    variants_for,
)

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/posts/a/</loc></url>
  <url><loc> https://example.com/about/ </loc></url>
  <url><loc>https://elsewhere.example/x/</loc></url>
</urlset>
"""


class TestUrlHelpers:
    """Test URL variants and cache naming."""

    def test_variants_cover_scheme_host_and_path(self):
        variants = variants_for("https://blog.example.com/posts/a/")

        assert len(variants) == 18
        assert variants[0] == "https://blog.example.com/posts/a"
        assert "https://blog.example.com/posts/a/" in variants
        assert "https://www.blog.example.com/posts/a/" in variants
        assert "http://example.com/posts/a/index.html" in variants
        assert len(set(variants)) == len(variants)

    def test_root_url_variants_are_deduplicated(self):
        variants = variants_for("https://example.com/")

        assert len(variants) == 12
        assert "https://www.example.com/" in variants
        assert "http://blog.example.com/index.html" in variants

    def test_cache_key_adds_slash_and_drops_fragment(self):
        assert cache_key("https://example.com/posts/a#comments") == "https://example.com/posts/a/"

    def test_cache_file_name_is_unpadded_base64url(self):
        name = cache_file_name("https://example.com/posts/a/?x=1")

        assert name.endswith(".json")
        encoded = name[:-len(".json")]
        assert "=" not in encoded and "/" not in encoded and "+" not in encoded
        padded = encoded + "=" * (-len(encoded) % 4)
        assert base64.urlsafe_b64decode(padded).decode() == "https://example.com/posts/a/?x=1"

    def test_sitemap_urls_are_limited_to_the_site(self):
        assert extract_sitemap_urls(SITEMAP, "https://example.com") == [
            "https://example.com/posts/a/",
            "https://example.com/about/",
        ]


class TestMentions:
    """Test de-duplication and counting."""

    def test_dedupe_by_id_then_source_target_then_url(self):
        mentions = [
            {"wm-id": 1, "url": "https://a"},
            {"wm-id": 1, "url": "https://a-again"},
            {"wm-source": "https://s", "wm-target": "https://t"},
            {"wm-source": "https://s", "wm-target": "https://t"},
            {"url": "https://u"},
            {"url": "https://u"},
            {"author": {"name": "anonymous"}},
            {"author": {"name": "anonymous"}},
        ]

        unique = dedupe_mentions(mentions)

        assert len(unique) == 5
        assert unique[0]["url"] == "https://a"

    def test_summarize(self):
        counts = summarize([
            {"wm-property": "like-of"},
            {"wm-property": "like-of"},
            {"wm-property": "in-reply-to"},
            {"wm-property": "repost-of"},
            {"wm-property": "rsvp"},
            {"wm-property": "bookmark-of"},
            {},
        ])

        assert counts == {"reply": 1, "like": 2, "repost": 1, "mention": 2, "rsvp": 1, "total": 7}


class TestFetching:
    @pytest.mark.asyncio
    async def test_all_pages_are_fetched(self):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            assert request.url.params["per-page"] == "100"
            size = 100 if page == 0 else 5
            return httpx.Response(200, json={"children": [{"wm-id": page * 1000 + i} for i in range(size)]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        mentions = await fetch_all_mentions(client, "https://example.com/posts/a/")

        assert len(mentions) == 105
        assert pages == [0, 1]


class TestSyncWebmentions:
    """Test the full sync job against a mocked sitemap and API."""

    @pytest.mark.asyncio
    async def test_writes_per_url_cache_and_index(self, tmp_path):
        def handler(request):
            if request.url.path == "/sitemap.xml":
                return httpx.Response(200, text=SITEMAP)
            target = request.url.params["target"]
            if target == "https://example.com/posts/a/":
                return httpx.Response(200, json={"children": [
                    {"wm-id": 1, "wm-property": "like-of"},
                    {"wm-id": 2, "wm-property": "in-reply-to"},
                ]})
            if target == "http://example.com/posts/a/":
                return httpx.Response(200, json={"children": [{"wm-id": 1, "wm-property": "like-of"}]})
            if target.startswith("http://www."):
                return httpx.Response(500, text="oops")
            return httpx.Response(200, json={"children": []})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        totals = await sync_webmentions("https://example.com", tmp_path, client)

        assert totals["https://example.com/posts/a/"] == {
            "reply": 1, "like": 1, "repost": 0, "mention": 0, "rsvp": 0, "total": 2,
        }
        assert totals["https://example.com/about/"]["total"] == 0

        index = json.loads((tmp_path / "index.json").read_text())
        assert index == {"totalsByUrl": totals}

        cached = json.loads((tmp_path / cache_file_name("https://example.com/posts/a/")).read_text())
        assert cached["target"] == "https://example.com/posts/a/"
        assert [m["wm-id"] for m in cached["items"]] == [1, 2]
        assert cached["fetchedAt"].endswith("Z")

    @pytest.mark.asyncio
    async def test_sitemap_failure_raises(self, tmp_path):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

        with pytest.raises(RuntimeError):
            await sync_webmentions("https://example.com", tmp_path, client)
