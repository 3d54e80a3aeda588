"""
Transport-neutral request/response models.

Every inbound request, whatever shape the host hands us, is converted into a
``CanonicalRequest`` at the boundary (see ``services/request_adapter``). The
Micropub endpoint and the adapters around it only ever see canonical objects,
and produce ``CanonicalResponse`` objects that are adapted back on the way out.
"""

import json
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, AsyncIterable, AsyncIterator, Mapping, Optional, Union
from urllib.parse import parse_qs, urlsplit

from starlette.datastructures import FormData
from starlette.requests import Request


class BodyConsumedError(RuntimeError):
    """Raised when a request body is read a second time."""


class BodyStream:
    """
    A request body that can be consumed at most once.

    Wraps either raw bytes or an async byte iterator (e.g. the ASGI
    ``receive`` channel) without buffering it up front, so the body is
    streamed through to whoever reads it.
    """

    def __init__(self, source: Union[bytes, AsyncIterable[bytes]]):
        self._source = source
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise BodyConsumedError("Request body has already been consumed")
        self._consumed = True
        if isinstance(self._source, (bytes, bytearray)):
            if self._source:
                yield bytes(self._source)
            return
        async for chunk in self._source:
            if chunk:
                yield chunk

    async def read(self) -> bytes:
        chunks = [chunk async for chunk in self]
        return b"".join(chunks)


@dataclass(frozen=True)
class CanonicalRequest:
    """
    One inbound HTTP request.

    Header keys are lower-case. ``body`` is None for GET/HEAD and otherwise a
    single-use ``BodyStream``.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[BodyStream] = None

    def __post_init__(self):
        folded = {k.lower(): v for k, v in dict(self.headers).items()}
        object.__setattr__(self, "headers", MappingProxyType(folded))
        object.__setattr__(self, "method", self.method.upper())

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @property
    def content_type(self) -> str:
        return (self.header("content-type") or "").lower()

    @property
    def is_multipart(self) -> bool:
        return self.content_type.startswith("multipart/form-data")

    @property
    def query(self) -> dict[str, str]:
        """First value of each query-string parameter."""
        parsed = parse_qs(urlsplit(self.url).query, keep_blank_values=True)
        return {k: v[0] for k, v in parsed.items()}

    def with_body(self, data: bytes) -> "CanonicalRequest":
        """Same request with a fresh, already-buffered body."""
        return replace(self, body=BodyStream(data))

    async def read_body(self) -> bytes:
        if self.body is None:
            return b""
        return await self.body.read()

    async def json(self) -> Any:
        raw = await self.read_body()
        return json.loads(raw or b"null")

    async def form(self) -> FormData:
        """
        Parse a urlencoded or multipart body with Starlette's form parser.

        Files come back as ``UploadFile`` entries, plain fields as strings.
        """
        return await self.as_starlette().form()

    def as_starlette(self) -> Request:
        """Expose this request (and its unread body) as a Starlette Request."""
        parts = urlsplit(self.url)
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": self.method,
            "scheme": parts.scheme or "http",
            "server": (parts.hostname or "localhost", parts.port or (443 if parts.scheme == "https" else 80)),
            "path": parts.path or "/",
            "raw_path": (parts.path or "/").encode(),
            "query_string": parts.query.encode(),
            "root_path": "",
            "headers": [(k.encode("latin-1"), v.encode("latin-1")) for k, v in self.headers.items()],
        }
        body_iter = self.body.__aiter__() if self.body is not None else None

        async def receive() -> dict:
            if body_iter is None:
                return {"type": "http.request", "body": b"", "more_body": False}
            try:
                chunk = await body_iter.__anext__()
            except StopAsyncIteration:
                return {"type": "http.request", "body": b"", "more_body": False}
            return {"type": "http.request", "body": chunk, "more_body": True}

        return Request(scope, receive)


@dataclass(frozen=True)
class CanonicalResponse:
    """One outbound HTTP response. Header keys are lower-case."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        folded = {k.lower(): v for k, v in dict(self.headers).items()}
        object.__setattr__(self, "headers", MappingProxyType(folded))

    @property
    def location(self) -> Optional[str]:
        return self.headers.get("location")

    def with_headers(self, **updates: str) -> "CanonicalResponse":
        """Copy of this response with the given headers set (``_`` -> ``-``)."""
        merged = dict(self.headers)
        for key, value in updates.items():
            merged[key.replace("_", "-").lower()] = value
        return replace(self, headers=merged)

    def json(self) -> Any:
        return json.loads(self.body or b"null")


def json_response(
    status_code: int,
    payload: Any,
    headers: Optional[Mapping[str, str]] = None,
) -> CanonicalResponse:
    """Build a JSON ``CanonicalResponse``."""
    merged = {"content-type": "application/json"}
    merged.update({k.lower(): v for k, v in (headers or {}).items()})
    return CanonicalResponse(
        status_code=status_code,
        headers=merged,
        body=json.dumps(payload).encode("utf-8"),
    )


@dataclass(frozen=True)
class DelegateResult:
    """
    What the Micropub endpoint produced for one request.

    ``slug`` is set only when this request created a post; it travels with
    the response instead of living in shared state.
    """

    response: CanonicalResponse
    slug: Optional[str] = None


# ---------------------------------------------------------------------------
# Inbound request shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StandardRequest:
    """A framework request with header lookup, an absolute URL and a body stream."""

    request: Request


@dataclass(frozen=True)
class LegacyRequest:
    """
    A raw request as handed over by a bare ASGI host.

    ``target`` is the request target as sent (path plus optional query),
    header values are plain strings or lists of strings for repeated headers,
    and ``stream`` is the undecoded body.
    """

    method: str
    target: str
    headers: Mapping[str, Union[str, list]] = field(default_factory=dict)
    stream: Optional[AsyncIterable[bytes]] = None


IncomingRequest = Union[StandardRequest, LegacyRequest]
