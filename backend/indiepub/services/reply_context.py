"""
Reply-context metadata cache.

Replies, likes and bookmarks show a small card for the page they point at.
``get_cached_metadata`` fetches that page once, extracts title / summary /
author / date, and keeps the result on disk. Later calls revalidate with
``If-None-Match`` / ``If-Modified-Since`` and only re-parse when the page
changed. Failures never propagate: the cached copy is served if there is
one, otherwise ``{"url": url, "error": True}``.
"""

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class ReplyContextError(Exception):
    """The target page could not be fetched."""


def cache_file_name(url: str) -> str:
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{encoded}.json"


def _meta(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return ""


def _text(node) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def parse_metadata(url: str, html: str) -> Dict[str, Any]:
    """
    Extract card metadata from a page.

    An ``h-entry`` (microformats2) is preferred; Open Graph / standard meta
    tags fill the gaps, and the first paragraph of the page is the last
    resort for the summary.
    """
    soup = BeautifulSoup(html, "html.parser")
    entry = soup.find(class_="h-entry")

    title = ""
    content = ""
    author_name = ""
    author_url = ""
    published = ""

    if entry is not None:
        title = _text(entry.find(class_="p-name"))
        content = _text(entry.find(class_="p-summary")) or _text(entry.find(class_="e-content"))
        author = entry.find(class_="p-author")
        if author is not None:
            author_name = _text(author.find(class_="p-name")) or _text(author)
            link = author if author.name == "a" else author.find("a", href=True)
            author_url = link.get("href", "") if link is not None else ""
        date_node = entry.find(class_="dt-published")
        if date_node is not None:
            published = date_node.get("datetime") or _text(date_node)

    title = title or _meta(soup, "og:title", "twitter:title") or _text(soup.title) or _text(soup.find("h1"))
    content = content or _meta(soup, "og:description", "description", "twitter:description")
    author_name = author_name or _meta(soup, "author", "article:author")
    published = published or _meta(soup, "article:published_time", "date")

    if not content:
        for paragraph in soup.find_all("p"):
            text = _text(paragraph)
            if text:
                content = text
                break

    canonical = soup.find("link", rel="canonical")
    page_url = _meta(soup, "og:url") or (canonical.get("href") if canonical is not None else "") or url

    return {
        "url": page_url,
        "title": title,
        "content": content,
        "author": {"name": author_name, "url": author_url},
        "published": published,
        "type": "entry" if entry is not None else "page",
    }


def metadata_from_response(url: str, response: httpx.Response) -> Dict[str, Any]:
    if response.status_code != 200:
        raise ReplyContextError(f"Failed to fetch {url}: {response.status_code}")
    metadata = parse_metadata(url, response.text)
    metadata["etag"] = response.headers.get("etag")
    metadata["lastModified"] = response.headers.get("last-modified")
    return metadata


async def _get(client: Optional[httpx.AsyncClient], url: str, headers: Dict[str, str]) -> httpx.Response:
    if client is not None:
        return await client.get(url, headers=headers)
    async with httpx.AsyncClient(timeout=15.0, follow_redirects=True) as own_client:
        return await own_client.get(url, headers=headers)


async def get_cached_metadata(
    url: str,
    cache_dir: Path,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """Metadata for ``url``, from cache when the page has not changed."""
    cache_dir = Path(cache_dir)
    cache_file = cache_dir / cache_file_name(url)
    logger.info(f"Reply context requested for {url}")

    try:
        cache_dir.mkdir(parents=True, exist_ok=True)

        if not cache_file.exists():
            fresh = metadata_from_response(url, await _get(client, url, {}))
            cache_file.write_text(json.dumps(fresh, indent=2), encoding="utf-8")
            return fresh

        cached = json.loads(cache_file.read_text(encoding="utf-8"))
        headers = {}
        if cached.get("etag"):
            headers["If-None-Match"] = cached["etag"]
        if cached.get("lastModified"):
            headers["If-Modified-Since"] = cached["lastModified"]

        try:
            response = await _get(client, url, headers)
        except httpx.HTTPError as e:
            logger.warning(f"Revalidation failed for {url}, serving cache: {e}")
            return cached

        if response.status_code == 200:
            fresh = metadata_from_response(url, response)
            cache_file.write_text(json.dumps(fresh, indent=2), encoding="utf-8")
            return fresh

        # 304 Not Modified, or anything unexpected: keep what we have
        return cached

    except Exception as e:
        logger.error(f"Reply context failed for {url}: {e}")
        return {"url": url, "error": True}
