"""
Request normalizer.

Converts the request shapes we can be handed into one ``CanonicalRequest``,
and converts ``CanonicalResponse`` objects back into whatever the caller
expects.

Supported shapes:
  - StandardRequest  a Starlette/FastAPI ``Request`` (routers)
  - LegacyRequest    a raw ASGI scope + receive channel, paired with a
                     ``LegacyResponseWriter`` around the ASGI ``send``
                     (bare ASGI hosts, see ``indiepub.handlers``)
"""

import logging
from typing import AsyncIterator, Dict, Mapping, Optional, Union
from urllib.parse import urlsplit

from starlette.responses import Response

from indiepub.models.http import (
    BodyStream,
    CanonicalRequest,
    CanonicalResponse,
    IncomingRequest,
    LegacyRequest,
    StandardRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost:3000"
BODYLESS_METHODS = ("GET", "HEAD")


def _is_local_host(host: str) -> bool:
    return "localhost" in host or host.startswith("127.")


def _is_absolute(url: str) -> bool:
    try:
        parts = urlsplit(url)
        # Accessing .port validates the netloc
        parts.port
    except ValueError:
        return False
    return bool(parts.scheme in ("http", "https") and parts.netloc)


def synthesize_url(target: str, host: Optional[str]) -> str:
    """
    Build an absolute URL from a request target and a Host header.

    Loopback/local hosts get ``http``, everything else ``https``; the path is
    forced to start with ``/``.
    """
    host = (host or "").strip() or DEFAULT_HOST
    scheme = "http" if _is_local_host(host) else "https"
    target = target or "/"
    path = target if target.startswith("/") else f"/{target}"
    return f"{scheme}://{host}{path}"


def _header_value(headers: Mapping, name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            if isinstance(value, (list, tuple)):
                return ", ".join(str(v) for v in value)
            return None if value is None else str(value)
    return None


def resolve_url(incoming: IncomingRequest) -> str:
    """Absolute URL of the incoming request."""
    if isinstance(incoming, StandardRequest):
        request = incoming.request
        url = str(request.url)
        if _is_absolute(url):
            return url
        target = request.url.path + (f"?{request.url.query}" if request.url.query else "")
        return synthesize_url(target, request.headers.get("host"))

    if _is_absolute(incoming.target):
        return incoming.target
    return synthesize_url(incoming.target, _header_value(incoming.headers, "host"))


def fold_headers(raw: Mapping[str, Union[str, list, None]]) -> Dict[str, str]:
    """
    Flatten a raw header mapping.

    List values (repeated headers) are joined with ``", "``, scalars are
    stringified and ``None`` values are dropped. Keys are lower-cased.
    """
    folded: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            folded[key.lower()] = ", ".join(str(v) for v in value)
        else:
            folded[key.lower()] = str(value)
    return folded


def to_canonical(incoming: IncomingRequest) -> CanonicalRequest:
    """
    Normalize any supported request shape.

    GET and HEAD never carry a body. For every other method the original
    stream is attached unread, so it is consumed only by whoever handles the
    request.
    """
    url = resolve_url(incoming)

    if isinstance(incoming, StandardRequest):
        request = incoming.request
        method = request.method.upper()
        raw_headers: Dict[str, list] = {}
        for key, value in request.headers.items():
            raw_headers.setdefault(key, []).append(value)
        headers = fold_headers(raw_headers)
        source = request.stream()
    else:
        method = (incoming.method or "GET").upper()
        headers = fold_headers(incoming.headers)
        source = incoming.stream if incoming.stream is not None else b""

    body = None if method in BODYLESS_METHODS else BodyStream(source)
    return CanonicalRequest(method=method, url=url, headers=headers, body=body)


# ---------------------------------------------------------------------------
# Legacy (bare ASGI) shape
# ---------------------------------------------------------------------------

def legacy_from_asgi(scope: dict, receive) -> LegacyRequest:
    """Wrap an ASGI HTTP scope and its receive channel as a ``LegacyRequest``."""
    headers: Dict[str, Union[str, list]] = {}
    for raw_key, raw_value in scope.get("headers", []):
        key = raw_key.decode("latin-1")
        value = raw_value.decode("latin-1")
        if key in headers:
            existing = headers[key]
            headers[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            headers[key] = value

    raw_path = scope.get("raw_path")
    if raw_path:
        target = raw_path.decode("latin-1")
    else:
        target = scope.get("root_path", "") + scope.get("path", "/")
    query = scope.get("query_string", b"")
    if query:
        target = f"{target}?{query.decode('latin-1')}"

    async def stream() -> AsyncIterator[bytes]:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            yield message.get("body", b"")
            if not message.get("more_body", False):
                return

    return LegacyRequest(
        method=scope.get("method", "GET"),
        target=target,
        headers=headers,
        stream=stream(),
    )


class LegacyResponseWriter:
    """
    Response half of the legacy pair: status and headers first, then body.

    Headers cannot be changed once the response has started.
    """

    def __init__(self, send):
        self._send = send
        self.status_code = 200
        self._headers: Dict[str, str] = {}
        self._started = False
        self._ended = False

    def set_header(self, name: str, value: str) -> None:
        if self._started:
            raise RuntimeError("Headers already sent")
        self._headers[name.lower()] = value

    async def _start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._send({
            "type": "http.response.start",
            "status": self.status_code,
            "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in self._headers.items()],
        })

    async def write(self, chunk: bytes) -> None:
        await self._start()
        await self._send({"type": "http.response.body", "body": chunk, "more_body": True})

    async def end(self) -> None:
        if self._ended:
            return
        await self._start()
        self._ended = True
        await self._send({"type": "http.response.body", "body": b"", "more_body": False})


async def send_canonical(response: CanonicalResponse, writer: LegacyResponseWriter) -> None:
    """Write a canonical response through the legacy writer."""
    writer.status_code = response.status_code
    for key, value in response.headers.items():
        writer.set_header(key, value)
    writer.set_header("content-length", str(len(response.body)))
    try:
        if response.body:
            await writer.write(response.body)
    finally:
        await writer.end()


def to_starlette_response(response: CanonicalResponse) -> Response:
    """Adapt a canonical response for a FastAPI route."""
    headers = {k: v for k, v in response.headers.items() if k != "content-length"}
    return Response(
        content=response.body,
        status_code=response.status_code,
        headers=headers,
    )
