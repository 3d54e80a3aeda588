"""
Shared fixtures.

``FakeGitHub`` stands in for both outbound services the endpoint talks to:
the GitHub contents API (an in-memory dict of files keyed by repo path) and
the IndieAuth token endpoint. It is wired into an ``httpx.AsyncClient`` via
``httpx.MockTransport``, so no test touches the network.
"""

import base64
import json

import httpx
import pytest

from indiepub.config import load_settings

ME = "https://example.com/"
TOKEN_ENDPOINT = "https://tokens.example.net/token"
GOOD_TOKEN = "good-token"
CONTENTS_PREFIX = "/repos/alice/blog/contents/"

FULL_ENV = {
    "ME": ME,
    "TOKEN_ENDPOINT": TOKEN_ENDPOINT,
    "GITHUB_TOKEN": "gh-test-token",
    "GITHUB_USER": "alice",
    "GITHUB_REPO": "blog",
    "MICROPUB_BASE": "https://blog.example.com",
}


class FakeGitHub:
    """In-memory GitHub contents API plus token endpoint."""

    def __init__(self, scope: str = "create media delete", me: str = ME):
        self.scope = scope
        self.me = me
        self.files: dict[str, tuple[bytes, str]] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.fail_paths: set[str] = set()
        self.conflict_on_update = False
        self.token_endpoint_down = False
        self._revision = 0

    # -- helpers for assertions ------------------------------------------

    def add(self, path: str, content: str) -> str:
        self._revision += 1
        sha = f"sha-{self._revision}"
        self.files[path] = (content.encode("utf-8"), sha)
        return sha

    def text(self, path: str) -> str:
        return self.files[path][0].decode("utf-8")

    def writes(self) -> list[tuple[str, str, dict | None]]:
        return [r for r in self.requests if r[0] in ("PUT", "DELETE")]

    # -- transport -------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(TOKEN_ENDPOINT):
            return self._token(request)

        path = request.url.path[len(CONTENTS_PREFIX):]
        payload = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, payload))

        if request.method == "GET":
            return self._get(path)
        if request.method == "PUT":
            return self._put(path, payload)
        if request.method == "DELETE":
            return self._delete(path, payload)
        return httpx.Response(405, json={"message": "Method not allowed"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_endpoint_down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.headers.get("authorization") != f"Bearer {GOOD_TOKEN}":
            return httpx.Response(401, json={"error": "invalid_token"})
        return httpx.Response(200, json={
            "me": self.me,
            "client_id": "https://client.example.org/",
            "scope": self.scope,
        })

    def _get(self, path: str) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404, json={"message": "Not Found"})
        data, sha = self.files[path]
        return httpx.Response(200, json={
            "type": "file",
            "path": path,
            "sha": sha,
            "content": base64.b64encode(data).decode("ascii"),
        })

    def _put(self, path: str, payload: dict) -> httpx.Response:
        if any(marker in path for marker in self.fail_paths):
            return httpx.Response(500, json={"message": "Server Error"})
        if path in self.files:
            if "sha" not in payload:
                return httpx.Response(422, json={"message": "Invalid request.\n\n\"sha\" wasn't supplied."})
            if self.conflict_on_update or payload["sha"] != self.files[path][1]:
                return httpx.Response(409, json={"message": f"{path} does not match {payload['sha']}"})
        self._revision += 1
        sha = f"sha-{self._revision}"
        self.files[path] = (base64.b64decode(payload["content"]), sha)
        return httpx.Response(201, json={"content": {"path": path, "sha": sha}})

    def _delete(self, path: str, payload: dict) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404, json={"message": "Not Found"})
        if payload.get("sha") != self.files[path][1]:
            return httpx.Response(409, json={"message": "sha mismatch"})
        del self.files[path]
        return httpx.Response(200, json={"commit": {}})


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def http_client(github):
    return httpx.AsyncClient(transport=httpx.MockTransport(github.handler))


@pytest.fixture
def settings():
    return load_settings(FULL_ENV)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {GOOD_TOKEN}"}
