"""
Micropub router.

Endpoints:
  GET  /api/micropub?q=config   advertised config, always available
  GET  /api/micropub?q=...      other queries (authenticated)
  POST /api/micropub            create / delete posts
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from indiepub.handlers import handle_micropub, respond
from indiepub.models.http import StandardRequest
from indiepub.services.request_adapter import to_canonical, to_starlette_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("", methods=["GET", "POST"])
async def micropub(request: Request) -> Response:
    canonical = to_canonical(StandardRequest(request))
    response = await respond(handle_micropub, canonical, request.app.state.context)
    logger.info(f"Micropub {canonical.method} {request.url.path} -> {response.status_code}")
    return to_starlette_response(response)
