"""
Location rewriting.

The endpoint answers creations with the file's location inside the content
repository (``<ME>src/posts/<slug>.md``, ``<ME>src/images/<file>``). Clients
need the public URL the site build will serve, so 201 responses are
rewritten before they leave:

  post   ->  <base>/posts/<slug>/
  media  ->  <base>/images/<file>

``<base>`` is ``MICROPUB_BASE``, or the scheme and host of the request.
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin

from indiepub.config import Settings, public_base
from indiepub.models.http import CanonicalResponse

logger = logging.getLogger(__name__)


def public_location(
    location: Optional[str],
    settings: Settings,
    request_url: str,
    slug: Optional[str] = None,
) -> str:
    """Public URL for an internal ``location`` (or for the post ``slug``)."""
    base = public_base(settings, request_url)

    if slug:
        posts_path = "/" + settings.posts_public_path.strip("/") + "/"
        return urljoin(base, f"{posts_path}{slug}/")

    media_prefix = "/" + settings.media_dir.strip("/") + "/"
    media_public = "/" + settings.media_public_path.strip("/") + "/"
    path = re.sub(rf"(https?://[^/]+)?{re.escape(media_prefix)}", media_public, location or "", count=1)
    return urljoin(base, path)


def rewrite_location(
    response: CanonicalResponse,
    settings: Settings,
    request_url: str,
    slug: Optional[str] = None,
) -> CanonicalResponse:
    """
    Point a 201's ``Location`` at the public site and expose it to CORS.

    Anything that is not a 201 with a location is returned untouched, and so
    is the original response if the rewrite fails.
    """
    if response.status_code != 201 or not (response.location or slug):
        return response

    try:
        location = public_location(response.location, settings, request_url, slug=slug)
        return response.with_headers(
            location=location,
            access_control_expose_headers="Location",
        )
    except Exception as e:
        logger.warning(f"Location rewrite failed, returning original response: {e}")
        return response
