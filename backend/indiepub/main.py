"""
IndiePub API
FastAPI application exposing a Micropub endpoint and media endpoint that
publish into a GitHub-backed static site.
"""

import logging
import os
from typing import List, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from indiepub.config import Settings, load_settings, missing_env
from indiepub.handlers import LegacyHandler, build_context, handle_media, handle_micropub
from indiepub.routers import media, micropub

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def get_cors_origins(settings: Settings) -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes the local dev servers and, when set, the public site
    (``MICROPUB_BASE``). Additional origins come from ``CORS_ORIGINS`` as a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://quill.p3k.io,https://indiepass.app

    Duplicates are removed while preserving order.
    """
    always_included = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]
    if settings.micropub_base:
        always_included.append(settings.micropub_base.rstrip("/"))

    extra_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]

    # Deduplicate while preserving order
    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the application.

    ``settings`` defaults to the environment. ``http_client`` is shared by
    the content store and token verification; when none is given the app
    opens its own and closes it on shutdown (tests pass a mock transport).
    """
    settings = settings or load_settings()
    owns_client = http_client is None
    if owns_client:
        http_client = httpx.AsyncClient(timeout=30.0)

    app = FastAPI(
        title="IndiePub API",
        description="Micropub publishing into a GitHub-backed static site",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.http_client = http_client
    app.state.context = build_context(settings, http_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Location"],
    )

    # Include routers
    app.include_router(micropub.router, prefix="/api/micropub", tags=["micropub"])
    app.include_router(media.router, prefix="/api/media", tags=["media"])

    # Same handlers for hosts that call a bare ASGI app
    app.mount("/legacy/micropub", LegacyHandler(handle_micropub))
    app.mount("/legacy/media", LegacyHandler(handle_media))

    @app.on_event("startup")
    async def log_startup() -> None:
        host_port = os.getenv("HOST_PORT", "8000")
        missing = missing_env(settings)
        logger.info(
            "IndiePub API running at http://localhost:%s (micropub: %s)",
            host_port,
            "ready" if not missing else f"missing {', '.join(missing)}",
        )

    @app.on_event("shutdown")
    async def close_http_client() -> None:
        if owns_client:
            await http_client.aclose()

    @app.get("/")
    async def root():
        return {"message": "IndiePub API", "version": "0.1.0"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "configured": not missing_env(settings)}

    return app


app = create_app()
