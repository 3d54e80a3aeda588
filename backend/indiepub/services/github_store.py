"""
GitHub contents API store.

Posts and media live as files in a GitHub repository. This module reads and
writes them through https://docs.github.com/en/rest/repos/contents.

Every write that replaces an existing file must carry the blob ``sha`` that
was read; GitHub rejects the write if the file changed in between, which we
surface as ``StoreConflictError``.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


class StoreError(Exception):
    """A content-store request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreConflictError(StoreError):
    """The revision handle supplied for an update is no longer current."""


@dataclass(frozen=True)
class StoredFile:
    path: str
    content: str
    sha: str


def _encode(content: bytes | str) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return base64.b64encode(content).decode("ascii")


class GitHubStore:
    """Thin async client over the repository contents endpoints."""

    def __init__(
        self,
        token: str,
        user: str,
        repo: str,
        branch: Optional[str] = None,
        committer: Optional[dict] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._token = token
        self._user = user
        self._repo = repo
        self._branch = branch
        self._committer = committer
        self._client = client

    def _contents_url(self, path: str) -> str:
        return (
            f"{GITHUB_API}/repos/{quote(self._user, safe='')}/{quote(self._repo, safe='')}"
            f"/contents/{quote(path.lstrip('/'), safe='/')}"
        )

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
        }
        params = None
        if payload is not None:
            if self._branch:
                payload["branch"] = self._branch
            if self._committer:
                payload["committer"] = self._committer
        elif self._branch:
            params = {"ref": self._branch}

        url = self._contents_url(path)
        logger.info(f"GitHub {method} {path}")
        try:
            if self._client is not None:
                return await self._client.request(method, url, headers=headers, params=params, json=payload)
            async with httpx.AsyncClient(timeout=30.0) as client:
                return await client.request(method, url, headers=headers, params=params, json=payload)
        except httpx.HTTPError as e:
            raise StoreError(f"GitHub request failed for {path}: {str(e)}")

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        try:
            data = response.json()
        except ValueError:
            data = None
        message = (data.get("message") if isinstance(data, dict) else None) or response.text
        if response.status_code == 409 or (response.status_code == 422 and "sha" in message.lower()):
            raise StoreConflictError(
                f"GitHub rejected stale revision for {path}: {message}",
                status_code=response.status_code,
            )
        raise StoreError(
            f"GitHub request failed for {path}: {response.status_code} {message}",
            status_code=response.status_code,
        )

    async def get_file(self, path: str) -> Optional[StoredFile]:
        """
        Read a file.

        Returns None when the file does not exist (or the path is a
        directory); raises ``StoreError`` for any other failure.
        """
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path)

        body = response.json()
        if isinstance(body, list) or body.get("type") not in (None, "file"):
            return None
        raw = base64.b64decode(body.get("content") or "")
        return StoredFile(path=path, content=raw.decode("utf-8"), sha=body["sha"])

    async def get_directory(self, path: str) -> Optional[list[dict[str, Any]]]:
        """List a directory (first 1000 entries, GitHub's limit)."""
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path)
        body = response.json()
        return body if isinstance(body, list) else None

    async def create_file(self, path: str, content: str, message: Optional[str] = None) -> dict:
        response = await self._request("PUT", path, {
            "message": message or f"add: {path}",
            "content": _encode(content),
        })
        self._raise_for_status(response, path)
        return response.json()

    async def update_file(self, path: str, content: str, sha: str, message: Optional[str] = None) -> dict:
        """Replace a file; ``sha`` must be the blob hash that was read."""
        response = await self._request("PUT", path, {
            "message": message or f"update: {path}",
            "content": _encode(content),
            "sha": sha,
        })
        self._raise_for_status(response, path)
        return response.json()

    async def upload_file(self, path: str, data: bytes, message: Optional[str] = None) -> dict:
        response = await self._request("PUT", path, {
            "message": message or f"upload: {path}",
            "content": _encode(data),
        })
        self._raise_for_status(response, path)
        return response.json()

    async def delete_file(self, path: str, sha: str, message: Optional[str] = None) -> None:
        response = await self._request("DELETE", path, {
            "message": message or f"delete: {path}",
            "sha": sha,
        })
        self._raise_for_status(response, path)
