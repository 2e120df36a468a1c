"""Quality report endpoints.

GET /api/reports/{report_id}
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from riemap.api.dependencies import get_portal, http_error
from riemap.errors import RiemapError
from riemap.models.quality import QualityReport
from riemap.service import PortalService

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/{report_id}", response_model=QualityReport)
async def get_report(
    report_id: UUID,
    portal: PortalService = Depends(get_portal),
) -> QualityReport:
    try:
        return await portal.quality_report(report_id)
    except RiemapError as exc:
        raise http_error(exc) from exc
