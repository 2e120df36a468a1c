"""FastAPI dependencies and error mapping shared by the routers."""

from fastapi import HTTPException, Request

from riemap.errors import (
    AlreadyInProgressError,
    DecodeError,
    FetchError,
    InvalidOrderError,
    InvalidRangeError,
    InvalidTransitionError,
    NotFoundError,
    RegionNotServedError,
    RiemapError,
    StorageError,
    VersionConflictError,
)
from riemap.service import PortalService

_STATUS_BY_ERROR: list[tuple[type[RiemapError], int]] = [
    (NotFoundError, 404),
    (AlreadyInProgressError, 409),
    (VersionConflictError, 409),
    (InvalidTransitionError, 409),
    (InvalidOrderError, 400),
    (RegionNotServedError, 422),
    (InvalidRangeError, 416),
    (DecodeError, 422),
    (FetchError, 502),
    (StorageError, 500),
]


def get_portal(request: Request) -> PortalService:
    """The PortalService built at startup (overridden in tests)."""
    return request.app.state.portal


def http_error(exc: RiemapError) -> HTTPException:
    """Translate a core error into the matching HTTP status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
