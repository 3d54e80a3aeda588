"""
Micropub delegate.

``build_endpoint`` is the one-time initialisation step: it turns a complete
``Settings`` snapshot into the ``MicropubEndpoint`` the app keeps for its
whole lifetime. ``delegate_micropub`` / ``delegate_media`` forward a
canonical request to it and never raise: anything that escapes the endpoint
becomes a 500 JSON response carrying the error message.
"""

import logging
from typing import Optional

import httpx

from indiepub.config import Settings
from indiepub.models.http import CanonicalRequest, DelegateResult, json_response
from indiepub.models.post import build_micropub_config
from indiepub.services.github_store import GitHubStore
from indiepub.services.micropub import MicropubEndpoint

logger = logging.getLogger(__name__)


def build_endpoint(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> MicropubEndpoint:
    """Construct the endpoint for a fully configured ``Settings``."""
    store = GitHubStore(
        token=settings.github_token,
        user=settings.github_user,
        repo=settings.github_repo,
        branch=settings.github_branch,
        client=http_client,
    )
    return MicropubEndpoint(
        store=store,
        me=settings.me,
        token_endpoint=settings.token_endpoint,
        content_dir=settings.content_dir,
        media_dir=settings.media_dir,
        config=build_micropub_config(settings.micropub_base),
        # Files are named <content_dir>/<slug>.md
        format_slug=lambda _post_type, slug: slug,
        http_client=http_client,
    )


def _error_result(e: Exception) -> DelegateResult:
    return DelegateResult(json_response(500, {"error": str(e) or e.__class__.__name__}))


async def delegate_micropub(endpoint: MicropubEndpoint, request: CanonicalRequest) -> DelegateResult:
    try:
        return await endpoint.micropub_handler(request)
    except Exception as e:
        logger.exception(f"Micropub handler error: {e}")
        return _error_result(e)


async def delegate_media(endpoint: MicropubEndpoint, request: CanonicalRequest) -> DelegateResult:
    try:
        return await endpoint.media_handler(request)
    except Exception as e:
        logger.exception(f"Media handler error: {e}")
        return _error_result(e)
