"""Store ABCs and in-memory implementations for jobs and quality reports.

The orchestrator, differ and service depend only on these contracts. The
in-memory versions back tests and the CLI; ``riemap.repositories`` provides
SQLAlchemy-backed versions for the API deployment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

from riemap.models.job import ProcessingJob
from riemap.models.quality import QualityReport

# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobStore(ABC):
    """Persists ProcessingJob snapshots; ``save`` inserts or replaces."""

    @abstractmethod
    async def save(self, job: ProcessingJob) -> None: ...

    @abstractmethod
    async def get(self, job_id: UUID) -> ProcessingJob | None: ...

    @abstractmethod
    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJob]:
        """Newest first, optionally for one region."""

    @abstractmethod
    async def delete(self, job_id: UUID) -> bool: ...


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: dict[UUID, ProcessingJob] = {}

    async def save(self, job: ProcessingJob) -> None:
        self._jobs[job.job_id] = job

    async def get(self, job_id: UUID) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJob]:
        jobs = [j for j in self._jobs.values() if region_id is None or j.region_id == region_id]
        jobs.sort(key=lambda j: (j.created_at, j.job_id), reverse=True)
        return jobs

    async def delete(self, job_id: UUID) -> bool:
        return self._jobs.pop(job_id, None) is not None


# ---------------------------------------------------------------------------
# Quality reports
# ---------------------------------------------------------------------------


class ReportStore(ABC):
    """Append-only store of immutable quality reports."""

    @abstractmethod
    async def save(self, report: QualityReport) -> None: ...

    @abstractmethod
    async def get(self, report_id: UUID) -> QualityReport | None: ...

    @abstractmethod
    async def list_for_region(self, region_id: str) -> list[QualityReport]:
        """Newest report date first."""


class InMemoryReportStore(ReportStore):
    def __init__(self) -> None:
        self._reports: dict[UUID, QualityReport] = {}

    async def save(self, report: QualityReport) -> None:
        if report.report_id in self._reports:
            msg = f"Quality report {report.report_id} already stored."
            raise ValueError(msg)
        self._reports[report.report_id] = report

    async def get(self, report_id: UUID) -> QualityReport | None:
        return self._reports.get(report_id)

    async def list_for_region(self, region_id: str) -> list[QualityReport]:
        reports = [r for r in self._reports.values() if r.region_id == region_id]
        reports.sort(key=lambda r: r.report_date, reverse=True)
        return reports
