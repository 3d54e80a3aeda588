"""
Runtime configuration.

Settings are read from the environment (optionally primed from a ``.env``
file) once, by ``load_settings()``, into an immutable ``Settings`` object.
The application keeps that object on ``app.state`` and hands it to every
handler; nothing below reads ``os.environ`` while serving a request.
"""

import os
from typing import List, Mapping, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

# Environment variable -> Settings attribute, in the order they are reported
# back to clients when missing.
REQUIRED_ENV = {
    "ME": "me",
    "TOKEN_ENDPOINT": "token_endpoint",
    "GITHUB_TOKEN": "github_token",
    "GITHUB_USER": "github_user",
    "GITHUB_REPO": "github_repo",
    "MICROPUB_BASE": "micropub_base",
}

_OPTIONAL_ENV = {
    "GITHUB_BRANCH": ("github_branch", "main"),
    "CONTENT_DIR": ("content_dir", "src/posts"),
    "MEDIA_DIR": ("media_dir", "src/images"),
    "POSTS_PUBLIC_PATH": ("posts_public_path", "/posts/"),
    "MEDIA_PUBLIC_PATH": ("media_public_path", "/images/"),
    "CORS_ORIGINS": ("cors_origins", ""),
    "SITE_URL": ("site_url", ""),
    "WEBMENTION_CACHE_DIR": ("webmention_cache_dir", "data/webmentions"),
    "REPLY_CONTEXT_CACHE_DIR": ("reply_context_cache_dir", "data/reply-context"),
}


class Settings(BaseModel):
    """Immutable snapshot of the service configuration."""

    model_config = ConfigDict(frozen=True)

    # IndieAuth
    me: str = ""
    token_endpoint: str = ""

    # Content store
    github_token: str = ""
    github_user: str = ""
    github_repo: str = ""
    github_branch: str = "main"

    # Public site
    micropub_base: str = ""
    site_url: str = ""

    # Repository layout
    content_dir: str = "src/posts"
    media_dir: str = "src/images"
    posts_public_path: str = "/posts/"
    media_public_path: str = "/images/"

    cors_origins: str = ""
    webmention_cache_dir: str = "data/webmentions"
    reply_context_cache_dir: str = "data/reply-context"


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build a ``Settings`` snapshot.

    When ``environ`` is omitted, a ``.env`` file in the working directory is
    loaded first (without overriding variables already set) and
    ``os.environ`` is used. Blank values are stored as empty strings so the
    environment gate treats them as unset; optional values fall back to
    their defaults.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    values = {attr: _clean(environ.get(name)) for name, attr in REQUIRED_ENV.items()}
    for name, (attr, default) in _OPTIONAL_ENV.items():
        values[attr] = _clean(environ.get(name)) or default

    return Settings(**values)


def missing_env(settings: Settings) -> List[str]:
    """Return the required variable names that are unset or empty."""
    return [name for name, attr in REQUIRED_ENV.items() if not getattr(settings, attr)]


def public_base(settings: Settings, request_url: str) -> str:
    """
    Base URL used for public links: ``MICROPUB_BASE`` when configured,
    otherwise the scheme and host of the request being served.
    """
    if settings.micropub_base:
        return settings.micropub_base.rstrip("/")

    parts = urlsplit(request_url)
    return f"{parts.scheme}://{parts.netloc}"
