#!/usr/bin/env python3
"""
Warm the reply-context cache for one or more URLs.

Usage
-----
python scripts/fetch_reply_context.py https://example.com/post/1 https://example.org/note

Environment / .env
------------------
REPLY_CONTEXT_CACHE_DIR   Cache directory (default: data/reply-context).
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx

from indiepub.config import load_settings
from indiepub.services.reply_context import get_cached_metadata


async def _fetch_all(urls, cache_dir: Path) -> list:
    async with httpx.AsyncClient(timeout=15.0, follow_redirects=True) as client:
        return [await get_cached_metadata(url, cache_dir, client) for url in urls]


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = load_settings()

    parser = argparse.ArgumentParser(
        prog="fetch_reply_context.py",
        description="Fetch (or revalidate) reply-context metadata for URLs.",
    )
    parser.add_argument("urls", nargs="+", metavar="URL")
    parser.add_argument(
        "--cache-dir",
        default=settings.reply_context_cache_dir,
        metavar="PATH",
        help=f"Cache directory (default: {settings.reply_context_cache_dir})",
    )
    args = parser.parse_args()

    results = asyncio.run(_fetch_all(args.urls, Path(args.cache_dir)))
    print(json.dumps(results, indent=2))
    return 1 if any(r.get("error") for r in results) else 0


if __name__ == "__main__":
    sys.exit(main())
