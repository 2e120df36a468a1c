"""Quality report repository and the SQL-backed ReportStore.

Reports are immutable: the repository only inserts and reads.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riemap.db.session import unit_of_work
from riemap.db.tables import QualityReportRow
from riemap.models.common import ensure_utc
from riemap.models.quality import IssueSummary, QualityMetrics, QualityReport
from riemap.stores import ReportStore


def report_from_row(row: QualityReportRow) -> QualityReport:
    return QualityReport(
        report_id=row.report_id,
        region_id=row.region_id,
        version=row.version,
        report_date=ensure_utc(row.report_date),
        source_timestamp=ensure_utc(row.source_timestamp) if row.source_timestamp else None,
        completeness_score=row.completeness_score,
        accuracy_score=row.accuracy_score,
        freshness_score=row.freshness_score,
        overall_score=row.overall_score,
        issues=IssueSummary.model_validate(row.issues),
        metrics=QualityMetrics.model_validate(row.metrics),
        recommendations=list(row.recommendations),
        summary=row.summary,
    )


class QualityReportRepository:
    """Repository for immutable quality reports."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, report: QualityReport) -> QualityReportRow:
        row = QualityReportRow(
            report_id=report.report_id,
            region_id=report.region_id,
            version=report.version,
            report_date=report.report_date,
            source_timestamp=report.source_timestamp,
            completeness_score=report.completeness_score,
            accuracy_score=report.accuracy_score,
            freshness_score=report.freshness_score,
            overall_score=report.overall_score,
            issues=report.issues.model_dump(mode="json"),
            metrics=report.metrics.model_dump(mode="json"),
            recommendations=list(report.recommendations),
            summary=report.summary,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, report_id: UUID) -> QualityReportRow | None:
        return await self._session.get(QualityReportRow, report_id)

    async def get_by_region(self, region_id: str) -> list[QualityReportRow]:
        """All reports for a region, newest first."""
        result = await self._session.execute(
            select(QualityReportRow)
            .where(QualityReportRow.region_id == region_id)
            .order_by(QualityReportRow.report_date.desc())
        )
        return list(result.scalars().all())


class SqlReportStore(ReportStore):
    """ReportStore over the quality_reports table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def save(self, report: QualityReport) -> None:
        async with unit_of_work(self._factory) as session:
            await QualityReportRepository(session).create(report)

    async def get(self, report_id: UUID) -> QualityReport | None:
        async with unit_of_work(self._factory) as session:
            row = await QualityReportRepository(session).get(report_id)
            return report_from_row(row) if row is not None else None

    async def list_for_region(self, region_id: str) -> list[QualityReport]:
        async with unit_of_work(self._factory) as session:
            rows = await QualityReportRepository(session).get_by_region(region_id)
            return [report_from_row(row) for row in rows]
