"""Region catalog endpoints.

GET  /api/regions                               region tree
GET  /api/regions/search                        name / level / parent search
GET  /api/regions/{region_id}                   one tree node
GET  /api/regions/{region_id}/files             published data files
GET  /api/regions/{region_id}/boundaries        GeoJSON boxes of region + children
GET  /api/regions/{region_id}/compare           compare two versions
POST /api/regions/{region_id}/process           request processing (202)
"""

import logging

from fastapi import APIRouter, Depends, Query

from riemap.api.dependencies import get_portal, http_error
from riemap.errors import RiemapError
from riemap.models.artifact import DataFile
from riemap.models.comparison import RegionComparison
from riemap.models.job import ProcessingJob
from riemap.models.region import AdminLevel, Region, RegionTreeNode
from riemap.service import PortalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/regions", tags=["regions"])


@router.get("", response_model=list[RegionTreeNode])
async def list_region_tree(portal: PortalService = Depends(get_portal)) -> list[RegionTreeNode]:
    return portal.region_tree()


@router.get("/search", response_model=list[Region])
async def search_regions(
    q: str | None = Query(default=None, description="Case-insensitive name fragment."),
    level: AdminLevel | None = None,
    parent: str | None = None,
    portal: PortalService = Depends(get_portal),
) -> list[Region]:
    return portal.search_regions(q, admin_level=level, parent_id=parent)


@router.get("/{region_id}", response_model=RegionTreeNode)
async def get_region(
    region_id: str,
    depth: int = Query(default=1, ge=0),
    portal: PortalService = Depends(get_portal),
) -> RegionTreeNode:
    try:
        return portal.region_node(region_id, depth=depth)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.get("/{region_id}/files", response_model=list[DataFile])
async def list_region_files(
    region_id: str,
    portal: PortalService = Depends(get_portal),
) -> list[DataFile]:
    try:
        return portal.data_files(region_id)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.get("/{region_id}/boundaries")
async def get_region_boundaries(
    region_id: str,
    portal: PortalService = Depends(get_portal),
) -> dict:
    try:
        return portal.boundaries(region_id)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.get("/{region_id}/compare", response_model=RegionComparison)
async def compare_versions(
    region_id: str,
    from_version: str = Query(alias="from"),
    to_version: str = Query(alias="to"),
    portal: PortalService = Depends(get_portal),
) -> RegionComparison:
    try:
        return await portal.compare(region_id, from_version, to_version)
    except RiemapError as exc:
        raise http_error(exc) from exc


@router.post("/{region_id}/process", response_model=ProcessingJob, status_code=202)
async def request_processing(
    region_id: str,
    portal: PortalService = Depends(get_portal),
) -> ProcessingJob:
    try:
        job = await portal.request_processing(region_id)
    except RiemapError as exc:
        raise http_error(exc) from exc
    logger.info("Processing requested for %s as job %s", region_id, job.job_id)
    return job
