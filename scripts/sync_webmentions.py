#!/usr/bin/env python3
"""
Scheduled job: refresh the webmention counts cache.

Reads the site's sitemap, pulls every webmention for each URL (and its
http/https, www./blog., slash/index.html variants) from webmention.io, and
writes one JSON file per URL plus an ``index.json`` of totals for the
templates.

Usage
-----
# Site and cache dir from the environment / .env
python scripts/sync_webmentions.py

# Explicit site and cache directory
python scripts/sync_webmentions.py --site-url https://blog.example.com --cache-dir data/webmentions

Environment / .env
------------------
SITE_URL               Public site root (required unless --site-url is given).
WEBMENTION_CACHE_DIR   Cache directory (default: data/webmentions).
"""

import argparse
import asyncio
import logging
import sys
import textwrap
from pathlib import Path

from indiepub.config import load_settings
from indiepub.services.webmentions import sync_webmentions

logger = logging.getLogger("sync_webmentions")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings = load_settings()

    parser = argparse.ArgumentParser(
        prog="sync_webmentions.py",
        description=textwrap.dedent("""\
            Refresh the webmention counts cache from webmention.io.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--site-url",
        default=settings.site_url or settings.micropub_base,
        help="Public site root (default: SITE_URL, then MICROPUB_BASE)",
    )
    parser.add_argument(
        "--cache-dir",
        default=settings.webmention_cache_dir,
        metavar="PATH",
        help=f"Cache directory (default: {settings.webmention_cache_dir})",
    )
    args = parser.parse_args()

    if not args.site_url:
        print("ERROR: no site URL; set SITE_URL or pass --site-url", file=sys.stderr)
        return 1

    try:
        totals = asyncio.run(sync_webmentions(args.site_url, Path(args.cache_dir)))
    except Exception as exc:
        logger.error(f"Webmention sync failed: {exc}")
        return 1

    logger.info(f"Done. {len(totals)} URLs indexed in {args.cache_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
