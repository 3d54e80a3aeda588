"""
Webmention counts cache.

Scheduled batch job (see ``scripts/sync_webmentions.py``): for every URL in
the site's sitemap, pull all webmentions from webmention.io and write a
per-URL JSON cache plus an ``index.json`` of totals that the templates read.

A post can be mentioned under several spellings of its URL (http/https,
``www.``/``blog.`` hosts, with or without trailing slash or ``index.html``),
so every variant is queried and the results de-duplicated.
"""

import asyncio
import base64
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

logger = logging.getLogger(__name__)

WEBMENTION_API = "https://webmention.io/api/mentions.jf2"
PER_PAGE = 100
INDEX_FILE = "index.json"

COUNT_KEYS = ("reply", "like", "repost", "mention", "rsvp")

# wm-property / wm-type -> bucket
_PROPERTY_BUCKETS = {
    "in-reply-to": "reply",
    "reply": "reply",
    "like-of": "like",
    "like": "like",
    "repost-of": "repost",
    "repost": "repost",
    "mention-of": "mention",
    "mention": "mention",
    "rsvp": "rsvp",
    "rsvp-yes": "rsvp",
    "rsvp-no": "rsvp",
    "rsvp-maybe": "rsvp",
    "rsvp-interested": "rsvp",
}


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def normalize_url(url: str) -> str:
    """Drop the fragment, keep everything else (including the trailing slash)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", parts.query, ""))


def with_slash(url: str) -> str:
    return url if url.endswith("/") else f"{url}/"


def without_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def cache_key(url: str) -> str:
    return with_slash(normalize_url(url))


def cache_file_name(url: str) -> str:
    """base64url of the URL, unpadded, plus ``.json``."""
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{encoded}.json"


def variants_for(url: str) -> List[str]:
    """
    Every spelling of ``url`` webmention senders are likely to have used.

    https and http, the host with ``www.`` and ``blog.`` toggled, and the
    path bare, with a trailing slash and with ``/index.html``. Order is
    stable and duplicates are removed.
    """
    parts = urlsplit(normalize_url(url))
    host = parts.netloc

    hosts = [host]
    hosts.append(host[4:] if host.startswith("www.") else f"www.{host}")
    hosts.append(host[5:] if host.startswith("blog.") else f"blog.{host}")

    path = parts.path.rstrip("/")
    paths = [path or "/", f"{path}/", f"{path}/index.html"]

    variants: List[str] = []
    for scheme in ("https", "http"):
        for variant_host in hosts:
            for variant_path in paths:
                variant = urlunsplit((scheme, variant_host, variant_path, parts.query, ""))
                if variant not in variants:
                    variants.append(variant)
    return variants


def extract_sitemap_urls(xml: str, site_url: str) -> List[str]:
    """``<loc>`` entries of a sitemap that belong to ``site_url``."""
    urls = [m.strip() for m in re.findall(r"<loc>([^<]+)</loc>", xml)]
    return [u for u in urls if u.startswith(site_url)]


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------

def mention_key(mention: Dict[str, Any]) -> Optional[str]:
    """Identity of a mention across target variants, if it has one."""
    if mention.get("wm-id") is not None:
        return f"id:{mention['wm-id']}"
    if mention.get("wm-source") and mention.get("wm-target"):
        return f"st:{mention['wm-source']}->{mention['wm-target']}"
    if mention.get("url"):
        return f"url:{mention['url']}"
    return None


def dedupe_mentions(mentions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """First occurrence of each mention wins; mentions without identity are all kept."""
    seen = set()
    unique = []
    for mention in mentions:
        key = mention_key(mention)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        unique.append(mention)
    return unique


def summarize(mentions: List[Dict[str, Any]]) -> Dict[str, int]:
    """Counts per kind of mention, plus ``total``."""
    counts = {key: 0 for key in COUNT_KEYS}
    for mention in mentions:
        prop = mention.get("wm-property") or mention.get("wm-type") or "mention"
        counts[_PROPERTY_BUCKETS.get(prop, "mention")] += 1
    counts["total"] = sum(counts[key] for key in COUNT_KEYS)
    return counts


async def fetch_sitemap_urls(client: httpx.AsyncClient, site_url: str) -> List[str]:
    response = await client.get(f"{without_slash(site_url)}/sitemap.xml")
    if not response.is_success:
        raise RuntimeError(f"Couldn't load sitemap: {response.status_code} {response.reason_phrase}")
    return extract_sitemap_urls(response.text, site_url)


async def fetch_all_mentions(client: httpx.AsyncClient, target: str) -> List[Dict[str, Any]]:
    """All pages of webmention.io results for one exact target."""
    mentions: List[Dict[str, Any]] = []
    page = 0
    while True:
        query = urlencode({"target": target, "per-page": PER_PAGE, "page": page})
        response = await client.get(f"{WEBMENTION_API}?{query}")
        if not response.is_success:
            raise RuntimeError(f"Webmention API error {response.status_code} for {target}")
        children = response.json().get("children") or []
        mentions.extend(children)
        if len(children) < PER_PAGE:
            return mentions
        page += 1


async def fetch_mentions_for(client: httpx.AsyncClient, url: str) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Mentions of ``url`` under any of its variants.

    Returns ``(cache key, de-duplicated mentions)``. A variant that fails
    contributes nothing.
    """
    variants = variants_for(url)

    async def fetch(target: str) -> List[Dict[str, Any]]:
        try:
            items = await fetch_all_mentions(client, target)
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            logger.debug(f"Webmention fetch failed for {target}: {e}")
            return []
        logger.info(f"Webmention fetch target={target} -> {len(items)} items")
        return items

    batches = await asyncio.gather(*(fetch(target) for target in variants))
    mentions = [mention for batch in batches for mention in batch]
    return cache_key(url), dedupe_mentions(mentions)


# ---------------------------------------------------------------------------
# Sync job
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def sync_webmentions(
    site_url: str,
    cache_dir: Path,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Dict[str, int]]:
    """
    Refresh the cache for every sitemap URL and rewrite ``index.json``.

    A URL whose fetch fails keeps its previous cache file (if any). Returns
    the totals written to the index.
    """
    if client is None:
        async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as own_client:
            return await sync_webmentions(site_url, cache_dir, own_client)

    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)

    urls = await fetch_sitemap_urls(client, site_url)
    logger.info(f"Sitemap lists {len(urls)} URLs for {site_url}")

    for original in urls:
        try:
            canon, items = await fetch_mentions_for(client, original)
            counts = summarize(items)
            payload = {
                "target": canon,
                "counts": counts,
                "items": items,
                "fetchedAt": _now_iso(),
            }
            (cache_dir / cache_file_name(canon)).write_text(json.dumps(payload, indent=2), encoding="utf-8")
            logger.info(f"Cached {canon} ({counts['total']})")
        except Exception as e:
            logger.warning(f"Skipped {original}: {e}")

    totals: Dict[str, Dict[str, int]] = {}
    for original in urls:
        canon = cache_key(original)
        cache_file = cache_dir / cache_file_name(canon)
        if cache_file.exists():
            cached = json.loads(cache_file.read_text(encoding="utf-8"))
            totals[canon] = cached.get("counts") or {"total": 0}
        else:
            totals[canon] = {"total": 0}

    (cache_dir / INDEX_FILE).write_text(json.dumps({"totalsByUrl": totals}, indent=2), encoding="utf-8")
    return totals
