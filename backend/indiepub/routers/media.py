"""
Media endpoint router.

Endpoints:
  POST /api/media   upload one file (201 + Location) or several
                    (201 + {"locations": [...]})
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from indiepub.handlers import handle_media, respond
from indiepub.models.http import StandardRequest
from indiepub.services.request_adapter import to_canonical, to_starlette_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("")
async def media(request: Request) -> Response:
    canonical = to_canonical(StandardRequest(request))
    response = await respond(handle_media, canonical, request.app.state.context)
    logger.info(f"Media upload -> {response.status_code}")
    return to_starlette_response(response)
