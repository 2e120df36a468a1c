"""Processing job repository and the SQL-backed JobStore.

The repository takes an AsyncSession and calls add()/flush() only, never
commit(). SqlJobStore opens one unit of work per store call because the
orchestrator writes from background tasks, outside any request scope.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riemap.db.session import unit_of_work
from riemap.db.tables import ProcessingJobRow
from riemap.models.common import ensure_utc
from riemap.models.job import JobStatus, JobType, ProcessingJob
from riemap.stores import JobStore


def _maybe_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def job_from_row(row: ProcessingJobRow) -> ProcessingJob:
    return ProcessingJob(
        job_id=row.job_id,
        region_id=row.region_id,
        job_type=JobType(row.job_type),
        status=JobStatus(row.status),
        progress=row.progress,
        message=row.message,
        version=row.version,
        cancel_requested=row.cancel_requested,
        created_at=ensure_utc(row.created_at),
        started_at=_maybe_utc(row.started_at),
        completed_at=_maybe_utc(row.completed_at),
    )


class ProcessingJobRepository:
    """Repository for processing job snapshots (status updates allowed)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, job: ProcessingJob) -> ProcessingJobRow:
        row = await self._session.get(ProcessingJobRow, job.job_id)
        if row is None:
            row = ProcessingJobRow(job_id=job.job_id, created_at=job.created_at)
            self._session.add(row)
        row.region_id = job.region_id
        row.job_type = job.job_type.value
        row.status = job.status.value
        row.progress = job.progress
        row.message = job.message
        row.version = job.version
        row.cancel_requested = job.cancel_requested
        row.started_at = job.started_at
        row.completed_at = job.completed_at
        await self._session.flush()
        return row

    async def get(self, job_id: UUID) -> ProcessingJobRow | None:
        return await self._session.get(ProcessingJobRow, job_id)

    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJobRow]:
        """Newest first, optionally for one region."""
        stmt = select(ProcessingJobRow)
        if region_id is not None:
            stmt = stmt.where(ProcessingJobRow.region_id == region_id)
        stmt = stmt.order_by(ProcessingJobRow.created_at.desc(), ProcessingJobRow.job_id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, job_id: UUID) -> bool:
        row = await self._session.get(ProcessingJobRow, job_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True


class SqlJobStore(JobStore):
    """JobStore over the processing_jobs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def save(self, job: ProcessingJob) -> None:
        async with unit_of_work(self._factory) as session:
            await ProcessingJobRepository(session).upsert(job)

    async def get(self, job_id: UUID) -> ProcessingJob | None:
        async with unit_of_work(self._factory) as session:
            row = await ProcessingJobRepository(session).get(job_id)
            return job_from_row(row) if row is not None else None

    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJob]:
        async with unit_of_work(self._factory) as session:
            rows = await ProcessingJobRepository(session).list_jobs(region_id)
            return [job_from_row(row) for row in rows]

    async def delete(self, job_id: UUID) -> bool:
        async with unit_of_work(self._factory) as session:
            return await ProcessingJobRepository(session).delete(job_id)
