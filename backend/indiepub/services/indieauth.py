"""
IndieAuth access-token verification.

Micropub clients send a bearer token (``Authorization`` header, or an
``access_token`` form field). The token is checked against the configured
token endpoint, which answers with the ``me`` URL the token was issued for
and its scopes. A token is accepted only if it was issued for this site's
``ME`` and carries the scope the request needs.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qs

import httpx

from indiepub.errors import forbidden, insufficient_scope, unauthorized

logger = logging.getLogger(__name__)


class TokenEndpointError(Exception):
    """The token endpoint could not be reached or answered with a server error."""


@dataclass(frozen=True)
class TokenInfo:
    me: str
    client_id: str = ""
    scopes: frozenset = field(default_factory=frozenset)

    def has_scope(self, *scopes: str) -> bool:
        return any(scope in self.scopes for scope in scopes)


def extract_token(authorization: Optional[str], form_token: Optional[str] = None) -> str:
    """
    Pull the bearer token out of the request.

    The ``Authorization`` header wins; ``access_token`` from the body is the
    fallback. Raises 401 when neither is usable.
    """
    if authorization:
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
            raise unauthorized("Invalid authentication credentials")
        return parts[1]

    if form_token:
        return form_token

    raise unauthorized()


def _same_site(a: str, b: str) -> bool:
    return a.strip().rstrip("/").lower() == b.strip().rstrip("/").lower()


def _parse_token_response(response: httpx.Response) -> dict:
    content_type = response.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        return {k: v[0] for k, v in parse_qs(response.text).items()}
    return response.json()


async def verify_token(
    token: str,
    me: str,
    token_endpoint: str,
    client: Optional[httpx.AsyncClient] = None,
) -> TokenInfo:
    """
    Verify ``token`` with the token endpoint.

    Raises:
        MicropubError: 401 if the endpoint rejects the token, 403 if it was
            issued for a different site
        TokenEndpointError: the endpoint is unreachable or fails with a
            status other than 400/401/403
    """
    headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
    try:
        if client is not None:
            response = await client.get(token_endpoint, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=15.0) as own_client:
                response = await own_client.get(token_endpoint, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Token endpoint unreachable: {e}")
        raise TokenEndpointError(f"Token endpoint unreachable: {e}")

    if response.status_code in (400, 401, 403):
        raise unauthorized("Invalid token")
    if not response.is_success:
        logger.error(f"Token endpoint returned {response.status_code}")
        raise TokenEndpointError(f"Token endpoint returned {response.status_code}")

    try:
        data = _parse_token_response(response)
    except ValueError:
        raise unauthorized("Invalid token")

    if data.get("active") is False or not data.get("me"):
        raise unauthorized("Invalid token")

    if not _same_site(data["me"], me):
        raise forbidden("Token was issued for a different site")

    scope = data.get("scope") or ""
    return TokenInfo(
        me=data["me"],
        client_id=data.get("client_id", ""),
        scopes=frozenset(scope.split()),
    )


def require_scope(info: TokenInfo, *scopes: str) -> None:
    """Raise 403 unless the token has at least one of ``scopes``."""
    if not info.has_scope(*scopes):
        raise insufficient_scope(scopes[0])

