"""Processing job endpoints.

GET    /api/jobs                    list jobs (optionally ?region=)
GET    /api/jobs/{job_id}           job status
POST   /api/jobs/{job_id}/cancel    request cancellation
DELETE /api/jobs/{job_id}           purge a finished job
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response

from riemap.api.dependencies import get_portal, http_error
from riemap.errors import RiemapError
from riemap.models.job import ProcessingJob
from riemap.service import PortalService

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("", response_model=list[ProcessingJob])
async def list_jobs(
    region: str | None = None,
    portal: PortalService = Depends(get_portal),
) -> list[ProcessingJob]:
    return await portal.list_jobs(region)


@router.get("/{job_id}", response_model=ProcessingJob)
async def get_job(
    job_id: UUID,
    portal: PortalService = Depends(get_portal),
) -> ProcessingJob:
    try:
        return await portal.job_status(job_id)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.post("/{job_id}/cancel", response_model=ProcessingJob)
async def cancel_job(
    job_id: UUID,
    portal: PortalService = Depends(get_portal),
) -> ProcessingJob:
    try:
        return await portal.cancel_job(job_id)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.delete("/{job_id}", status_code=204)
async def purge_job(
    job_id: UUID,
    portal: PortalService = Depends(get_portal),
) -> Response:
    try:
        await portal.purge_job(job_id)
    except RiemapError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
