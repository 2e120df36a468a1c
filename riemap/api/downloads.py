"""Artifact download with HTTP Range support.

GET /download/{region_id}/{version}     ``version`` may be ``latest``

A single ``bytes=`` range gets a 206 with Content-Range; an unsatisfiable
one gets a 416. Multi-range requests are answered with the whole file.
"""

import re

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from riemap.api.dependencies import get_portal, http_error
from riemap.errors import InvalidRangeError, RiemapError
from riemap.service import PortalService

router = APIRouter(tags=["downloads"])

_RANGE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(header: str | None, size: int) -> tuple[int, int | None] | None:
    """Parse a single byte range into (start, end-or-None).

    Returns None when the header is absent, malformed or multi-range, in
    which case the whole file is served.

    Raises:
        InvalidRangeError: A well-formed range that cannot be satisfied.
    """
    if not header:
        return None
    match = _RANGE.match(header.strip())
    if match is None:
        return None
    first, last = match.groups()
    if not first and not last:
        return None
    if not first:
        # Suffix range: the final N bytes.
        suffix = int(last)
        if suffix == 0:
            raise InvalidRangeError(0, 0, size)
        return max(0, size - suffix), None
    start = int(first)
    end = int(last) if last else None
    if start >= size or (end is not None and end < start):
        raise InvalidRangeError(start, end, size)
    return start, end


@router.get("/download/{region_id}/{version}")
async def download_artifact(
    region_id: str,
    version: str,
    range_header: str | None = Header(default=None, alias="Range"),
    portal: PortalService = Depends(get_portal),
) -> StreamingResponse:
    try:
        data_file = portal.resolve_version(region_id, version)
        requested = parse_range(range_header, data_file.size_bytes)
        start, end = requested if requested is not None else (0, None)
        piece = portal.download(region_id, data_file.version, start, end)
    except InvalidRangeError as exc:
        raise HTTPException(
            status_code=416,
            detail=str(exc),
            headers={"Content-Range": f"bytes */{exc.size}"},
        ) from exc
    except RiemapError as exc:
        raise http_error(exc) from exc

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(piece.length),
        "Content-Disposition": (
            f'attachment; filename="{region_id}-{data_file.filename}"'
        ),
        "ETag": f'"{data_file.checksum}"',
    }
    status_code = 200
    if requested is not None:
        status_code = 206
        headers["Content-Range"] = f"bytes {piece.start}-{piece.end}/{data_file.size_bytes}"
    return StreamingResponse(
        piece.chunks,
        status_code=status_code,
        media_type=data_file.format.media_type,
        headers=headers,
    )
