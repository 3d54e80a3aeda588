"""
Multi-file media uploads.

Micropub media endpoints take one file per request. Some clients send
several files in one multipart form; those are split into one single-file
request per file, delegated one after another in upload order, and answered
together:

    201 {"locations": ["<url or null>", ...]}

A failed sub-upload leaves ``null`` at its position instead of aborting the
batch. Forms with zero or one file are not touched here.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from starlette.datastructures import UploadFile

from indiepub.models.http import (
    BodyStream,
    CanonicalRequest,
    CanonicalResponse,
    DelegateResult,
    json_response,
)

logger = logging.getLogger(__name__)

SingleUpload = Callable[[CanonicalRequest], Awaitable[DelegateResult]]
LocationFor = Callable[[CanonicalResponse], Optional[str]]


@dataclass
class SplitForm:
    fields: List[Tuple[str, str]]
    files: List[Tuple[str, str, str, bytes]]  # (field name, filename, content type, data)


async def split_form(request: CanonicalRequest) -> SplitForm:
    """Parse a multipart request into plain fields and files, in form order."""
    form = await request.form()
    fields: List[Tuple[str, str]] = []
    files: List[Tuple[str, str, str, bytes]] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            files.append((
                key,
                value.filename or "upload",
                value.content_type or "application/octet-stream",
                await value.read(),
            ))
        else:
            fields.append((key, value))
    return SplitForm(fields=fields, files=files)


def encode_multipart(fields: List[Tuple[str, str]], file: Tuple[str, str, str, bytes]) -> Tuple[str, bytes]:
    """
    Encode ``fields`` plus one file as multipart/form-data.

    Returns ``(content_type, body)``; the content type carries the new
    boundary.
    """
    name, filename, content_type, data = file
    values: Dict[str, List[str]] = {}
    for key, value in fields:
        values.setdefault(key, []).append(value)
    built = httpx.Request(
        "POST",
        "http://localhost/",
        data=values,
        files=[(name, (filename, data, content_type))],
    )
    return built.headers["content-type"], built.read()


def single_file_request(
    original: CanonicalRequest,
    fields: List[Tuple[str, str]],
    file: Tuple[str, str, str, bytes],
) -> CanonicalRequest:
    """A copy of ``original`` whose body carries all fields and only ``file``."""
    content_type, body = encode_multipart(fields, file)
    headers = {
        k: v for k, v in original.headers.items()
        if k not in ("content-type", "content-length")
    }
    headers["content-type"] = content_type
    headers["content-length"] = str(len(body))
    return CanonicalRequest(
        method=original.method,
        url=original.url,
        headers=headers,
        body=BodyStream(body),
    )


async def fan_out(
    form: SplitForm,
    original: CanonicalRequest,
    upload_one: SingleUpload,
    location_for: LocationFor,
) -> CanonicalResponse:
    """
    Upload each file of ``form`` as its own request, sequentially.

    ``location_for`` turns a sub-response into the public URL to report
    (None when that upload did not succeed).
    """
    locations: List[Optional[str]] = []
    for index, file in enumerate(form.files):
        location = None
        try:
            result = await upload_one(single_file_request(original, form.fields, file))
            location = location_for(result.response)
            if location is None:
                logger.warning(
                    f"Upload {index + 1}/{len(form.files)} ({file[1]}) returned {result.response.status_code}"
                )
        except Exception as e:
            logger.error(f"Upload {index + 1}/{len(form.files)} ({file[1]}) failed: {e}")
        locations.append(location)

    return json_response(
        201,
        {"locations": locations},
        headers={"access-control-expose-headers": "Location"},
    )
