"""
Micropub endpoint (https://micropub.spec.indieweb.org/).

Turns authenticated Micropub requests into Markdown files in the content
store:

  GET  ?q=config | syndicate-to | source     queries
  POST h=entry / JSON h-entry / multipart    create a post
  POST action=delete                         delete a post
  POST multipart to the media handler        upload a file

MF2 properties are translated to front matter the way the site templates
expect them (``name`` -> ``title``, ``published`` -> ``date``,
``category`` -> ``tags``, ``content`` -> body). The post's final ``type`` and
``layout`` are settled afterwards by ``services.frontmatter``.

Both entry points return a ``DelegateResult``; when a post was created its
slug travels in the result rather than in endpoint state.
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import frontmatter
import httpx
from slugify import slugify
from starlette.datastructures import UploadFile

from indiepub.errors import MicropubError, invalid_request
from indiepub.models.http import CanonicalRequest, CanonicalResponse, DelegateResult, json_response
from indiepub.models.post import TYPE_PRECEDENCE, PostType
from indiepub.services.frontmatter import find_post
from indiepub.services.github_store import GitHubStore
from indiepub.services.indieauth import TokenInfo, extract_token, require_scope, verify_token

logger = logging.getLogger(__name__)

FormatSlug = Callable[[str, str], str]
Properties = Dict[str, List[Any]]

# MF2 property -> front-matter key
TRANSLATED_PROPS = {
    "name": "title",
    "published": "date",
    "category": "tags",
}
# Always stored as lists, even with one value
LIST_KEYS = ("tags", "syndication")
FILE_PROPS = ("photo", "video", "audio")
_SLUG_WORDS = 6


def _default_slug(_post_type: str, slug: str) -> str:
    return slug


def sanitize_filename(filename: str) -> str:
    """Replace spaces and special characters with underscores."""
    return re.sub(r"[^\w\-.]", "_", filename or "upload")


def infer_post_type(properties: Properties) -> PostType:
    """Kind of post the MF2 properties describe."""
    for key, post_type in TYPE_PRECEDENCE:
        if properties.get(key):
            return post_type
    if properties.get("name"):
        return PostType.ARTICLE
    return PostType.NOTE


def _content_text(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("html") or value.get("value") or value.get("text") or ""
    return "" if value is None else str(value)


def properties_to_post(properties: Properties, now: datetime) -> Tuple[Dict[str, Any], str]:
    """
    Translate MF2 properties into ``(front_matter, body)``.

    ``mp-*`` server commands are dropped, single values are unwrapped, and
    ``date`` defaults to ``now``.
    """
    front_matter: Dict[str, Any] = {}
    body = ""

    for prop, values in properties.items():
        if prop.startswith("mp-"):
            continue
        if prop == "content":
            body = _content_text(values[0] if values else "")
            continue

        key = TRANSLATED_PROPS.get(prop, prop)
        if key in LIST_KEYS or len(values) != 1:
            front_matter[key] = list(values)
        else:
            front_matter[key] = values[0]

    front_matter.setdefault("date", now.isoformat(timespec="seconds"))
    return front_matter, body


def render_post(front_matter: Dict[str, Any], body: str) -> str:
    post = frontmatter.Post(body.strip())
    post.metadata.update(front_matter)
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def choose_slug(properties: Properties, now: datetime) -> str:
    """``mp-slug``, else the title, else the opening words, else a timestamp."""
    for source in (properties.get("mp-slug"), properties.get("name")):
        if source and slugify(str(source[0])):
            return slugify(str(source[0]), max_length=60, word_boundary=True)

    content = properties.get("content")
    if content:
        text = re.sub(r"<[^>]+>", " ", _content_text(content[0]))
        words = " ".join(text.split()[:_SLUG_WORDS])
        if slugify(words):
            return slugify(words, max_length=60, word_boundary=True)

    return now.strftime("%Y%m%d%H%M%S")


def _plain(value: Any) -> Any:
    # YAML turns unquoted timestamps into date/datetime objects
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _slug_from_url(url: str) -> str:
    path = urlsplit(url).path.rstrip("/")
    slug = path.rsplit("/", 1)[-1]
    return re.sub(r"\.(md|mdx|markdown|html)$", "", slug)


class MicropubEndpoint:
    """Micropub and media endpoint backed by a ``GitHubStore``."""

    def __init__(
        self,
        store: GitHubStore,
        me: str,
        token_endpoint: str,
        content_dir: str = "src/posts",
        media_dir: str = "src/images",
        config: Optional[dict] = None,
        format_slug: Optional[FormatSlug] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.me = me if me.endswith("/") else f"{me}/"
        self.token_endpoint = token_endpoint
        self.content_dir = content_dir.strip("/")
        self.media_dir = media_dir.strip("/")
        self.config = config or {}
        self.format_slug = format_slug or _default_slug
        self._http_client = http_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def micropub_handler(self, request: CanonicalRequest) -> DelegateResult:
        try:
            if request.method == "GET":
                return DelegateResult(await self._query(request))
            if request.method != "POST":
                raise MicropubError(405, "invalid_request", f"Method {request.method} not allowed")
            return await self._post(request)
        except MicropubError as e:
            logger.info(f"Micropub request rejected: {e.status_code} {e.error} {e.description}")
            return DelegateResult(e.to_response())

    async def media_handler(self, request: CanonicalRequest) -> DelegateResult:
        try:
            if request.method != "POST":
                raise MicropubError(405, "invalid_request", f"Method {request.method} not allowed")
            if not request.is_multipart:
                raise invalid_request("Media uploads must be multipart/form-data")

            form = await request.form()
            info = await self._authorize(request, form.get("access_token"))
            require_scope(info, "media", "create")

            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                upload = next((v for _, v in form.multi_items() if isinstance(v, UploadFile)), None)
            if upload is None:
                raise invalid_request("No file was uploaded")

            location = await self._store_upload(upload)
            return DelegateResult(CanonicalResponse(status_code=201, headers={"location": location}))
        except MicropubError as e:
            logger.info(f"Media request rejected: {e.status_code} {e.error} {e.description}")
            return DelegateResult(e.to_response())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _query(self, request: CanonicalRequest) -> CanonicalResponse:
        q = request.query.get("q")
        if q == "config":
            return json_response(200, self.config)

        await self._authorize(request)

        if q == "syndicate-to":
            return json_response(200, {"syndicate-to": self.config.get("syndicate-to", [])})
        if q == "source":
            url = request.query.get("url")
            if not url:
                raise invalid_request("Missing 'url' parameter")
            return json_response(200, await self._source(url))

        raise invalid_request(f"Unsupported query: {q!r}")

    async def _source(self, url: str) -> dict:
        stored = await find_post(self.store, self.content_dir, _slug_from_url(url))
        if stored is None:
            raise invalid_request(f"No post found for {url}")

        post = frontmatter.loads(stored.content)
        front_matter, body = post.metadata, post.content
        reverse = {v: k for k, v in TRANSLATED_PROPS.items()}

        properties: Properties = {}
        for key, value in front_matter.items():
            if key in ("layout", "collectionType"):
                continue
            values = value if isinstance(value, list) else [value]
            properties[reverse.get(key, key)] = [_plain(v) for v in values]
        if body.strip():
            properties["content"] = [body.strip()]
        return {"type": ["h-entry"], "properties": properties}

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    async def _post(self, request: CanonicalRequest) -> DelegateResult:
        if request.content_type.startswith("application/json"):
            try:
                data = await request.json()
            except ValueError:
                raise invalid_request("Malformed JSON body")
            if not isinstance(data, dict):
                raise invalid_request("JSON body must be an object")
            info = await self._authorize(request)
            if data.get("action"):
                return await self._action(info, data["action"], data.get("url"))
            types = data.get("type") or ["h-entry"]
            if types[0] != "h-entry":
                raise invalid_request(f"Unsupported type: {types[0]}")
            properties = {k: v if isinstance(v, list) else [v] for k, v in (data.get("properties") or {}).items()}
            return await self._create(info, properties, uploads={})

        form = await request.form()
        info = await self._authorize(request, form.get("access_token"))

        if form.get("action"):
            return await self._action(info, form.get("action"), form.get("url"))

        h = form.get("h") or "entry"
        if h != "entry":
            raise invalid_request(f"Unsupported type: h-{h}")

        properties: Properties = {}
        uploads: Dict[str, List[UploadFile]] = {}
        for key, value in form.multi_items():
            if key in ("h", "access_token", "action", "url"):
                continue
            prop = key[:-2] if key.endswith("[]") else key
            if isinstance(value, UploadFile):
                uploads.setdefault(prop, []).append(value)
            else:
                properties.setdefault(prop, []).append(value)
        return await self._create(info, properties, uploads)

    async def _create(
        self,
        info: TokenInfo,
        properties: Properties,
        uploads: Dict[str, List[UploadFile]],
    ) -> DelegateResult:
        require_scope(info, "create")

        for prop, files in uploads.items():
            if prop not in FILE_PROPS:
                raise invalid_request(f"Unexpected file in '{prop}'")
            for upload in files:
                properties.setdefault(prop, []).append(await self._store_upload(upload))

        now = self._clock()
        post_type = infer_post_type(properties)
        slug = self.format_slug(post_type.value, choose_slug(properties, now))

        path = f"{self.content_dir}/{slug}.md"
        if await self.store.get_file(path) is not None:
            slug = f"{slug}-{now.strftime('%H%M%S')}"
            path = f"{self.content_dir}/{slug}.md"

        front_matter, body = properties_to_post(properties, now)
        await self.store.create_file(path, render_post(front_matter, body))
        logger.info(f"Created {post_type.value} at {path}")

        response = CanonicalResponse(status_code=201, headers={"location": f"{self.me}{path}"})
        return DelegateResult(response, slug=slug)

    async def _action(self, info: TokenInfo, action: str, url: Optional[str]) -> DelegateResult:
        if action != "delete":
            raise invalid_request(f"Unsupported action: {action}")
        require_scope(info, "delete")
        if not url:
            raise invalid_request("Missing 'url' parameter")

        stored = await find_post(self.store, self.content_dir, _slug_from_url(url))
        if stored is None:
            raise invalid_request(f"No post found for {url}")
        await self.store.delete_file(stored.path, stored.sha)
        logger.info(f"Deleted {stored.path}")
        return DelegateResult(CanonicalResponse(status_code=204))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _authorize(self, request: CanonicalRequest, form_token: Any = None) -> TokenInfo:
        token = extract_token(
            request.header("authorization"),
            form_token if isinstance(form_token, str) else None,
        )
        return await verify_token(token, self.me, self.token_endpoint, client=self._http_client)

    async def _store_upload(self, upload: UploadFile) -> str:
        data = await upload.read()
        name = f"{self._clock().strftime('%Y%m%d%H%M%S')}-{sanitize_filename(upload.filename)}"
        path = f"{self.media_dir}/{name}"
        await self.store.upload_file(path, data)
        logger.info(f"Uploaded {len(data)} bytes to {path}")
        return f"{self.me}{path}"
