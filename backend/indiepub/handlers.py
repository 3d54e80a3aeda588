"""
Request handling shared by every entry point.

Flow for the Micropub endpoint:

  1. ``GET ?q=config`` is answered straight away (works unconfigured)
  2. environment gate: 500 listing every missing variable
  3. delegate to the endpoint
  4. on 201 with a slug: normalize the new post's front matter (best effort)
  5. rewrite ``Location`` to the public URL (best effort)

The media endpoint runs the same gate, fans out multi-file forms, and
rewrites ``Location`` for single uploads.

``respond`` is the outermost boundary: whatever happens, the caller gets a
response.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

import httpx

from indiepub.config import Settings, missing_env, public_base
from indiepub.models.http import CanonicalRequest, CanonicalResponse, json_response
from indiepub.models.post import build_micropub_config
from indiepub.services.delegate import build_endpoint, delegate_media, delegate_micropub
from indiepub.services.frontmatter import normalize_post
from indiepub.services.location import public_location, rewrite_location
from indiepub.services.media_fanout import fan_out, split_form
from indiepub.services.micropub import MicropubEndpoint
from indiepub.services.request_adapter import (
    BODYLESS_METHODS,
    LegacyResponseWriter,
    legacy_from_asgi,
    send_canonical,
    to_canonical,
)

logger = logging.getLogger(__name__)

Handler = Callable[[CanonicalRequest, "ServiceContext"], Awaitable[CanonicalResponse]]


@dataclass(frozen=True)
class ServiceContext:
    """Everything a request handler needs, built once at start-up."""

    settings: Settings
    endpoint: Optional[MicropubEndpoint] = None


def build_context(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> ServiceContext:
    """
    Initialise the service.

    The endpoint is only constructed when the configuration is complete;
    otherwise requests that need it are refused by the environment gate.
    """
    missing = missing_env(settings)
    if missing:
        logger.warning(f"Micropub endpoint disabled, missing environment variables: {', '.join(missing)}")
        return ServiceContext(settings=settings)
    return ServiceContext(settings=settings, endpoint=build_endpoint(settings, http_client))


def _gate(ctx: ServiceContext) -> Optional[CanonicalResponse]:
    missing = missing_env(ctx.settings)
    if missing or ctx.endpoint is None:
        return json_response(500, {"error": "Missing environment variables", "missing": missing})
    return None


def _log_request(request: CanonicalRequest) -> None:
    parts = urlsplit(request.url)
    query = f"?{parts.query}" if parts.query else ""
    logger.info(f"{request.method} {parts.path}{query}")


async def handle_micropub(request: CanonicalRequest, ctx: ServiceContext) -> CanonicalResponse:
    _log_request(request)

    if request.method == "GET" and request.query.get("q") == "config":
        base = public_base(ctx.settings, request.url)
        return json_response(200, build_micropub_config(base))

    refused = _gate(ctx)
    if refused is not None:
        return refused

    result = await delegate_micropub(ctx.endpoint, request)

    if result.response.status_code == 201 and result.slug:
        try:
            await normalize_post(ctx.endpoint.store, ctx.settings.content_dir, result.slug)
        except Exception as e:
            logger.error(f"Post-write normalization failed for {result.slug}: {e}")

    return rewrite_location(result.response, ctx.settings, request.url, slug=result.slug)


async def handle_media(request: CanonicalRequest, ctx: ServiceContext) -> CanonicalResponse:
    _log_request(request)

    refused = _gate(ctx)
    if refused is not None:
        return refused

    if request.is_multipart and request.method not in BODYLESS_METHODS:
        raw = await request.read_body()
        try:
            form = await split_form(request.with_body(raw))
        except Exception as e:
            logger.warning(f"Could not parse multipart form, falling back to single upload: {e}")
            form = None

        if form is not None and len(form.files) > 1:
            def location_for(response: CanonicalResponse) -> Optional[str]:
                if response.status_code != 201 or not response.location:
                    return None
                return public_location(response.location, ctx.settings, request.url)

            return await fan_out(
                form,
                request,
                upload_one=lambda single: delegate_media(ctx.endpoint, single),
                location_for=location_for,
            )

        request = request.with_body(raw)

    result = await delegate_media(ctx.endpoint, request)
    return rewrite_location(result.response, ctx.settings, request.url)


async def respond(handler: Handler, request: CanonicalRequest, ctx: ServiceContext) -> CanonicalResponse:
    """Run ``handler``, turning any escaped exception into a 500."""
    try:
        return await handler(request, ctx)
    except Exception as e:
        logger.exception(f"Handler error: {e}")
        return json_response(500, {"error": str(e) or e.__class__.__name__})


class LegacyHandler:
    """
    Bare ASGI callable for hosts that hand over a raw scope/receive/send.

    The context is taken from the constructor, or from the state of the
    application this handler is mounted in.
    """

    def __init__(self, handler: Handler, context: Optional[ServiceContext] = None):
        self.handler = handler
        self.context = context

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            return

        writer = LegacyResponseWriter(send)
        try:
            ctx = self.context or scope["app"].state.context
            request = to_canonical(legacy_from_asgi(scope, receive))
        except Exception as e:
            logger.exception(f"Could not read legacy request: {e}")
            await send_canonical(json_response(500, {"error": str(e)}), writer)
            return

        response = await respond(self.handler, request, ctx)
        await send_canonical(response, writer)
