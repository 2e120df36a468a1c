"""Tests for ProcessingJobRepository and SqlJobStore."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from riemap.db.session import make_session_factory
from riemap.jobs.state import advance, transition
from riemap.models.job import JobStatus, ProcessingJob
from riemap.repositories.jobs import ProcessingJobRepository, SqlJobStore, job_from_row


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class TestProcessingJobRepository:
    @pytest.mark.anyio
    async def test_insert_and_get(self, db_session: AsyncSession) -> None:
        repo = ProcessingJobRepository(db_session)
        job = ProcessingJob(region_id="testland")

        await repo.upsert(job)
        row = await repo.get(job.job_id)

        assert row is not None
        assert job_from_row(row) == job

    @pytest.mark.anyio
    async def test_upsert_updates_status(self, db_session: AsyncSession) -> None:
        repo = ProcessingJobRepository(db_session)
        job = ProcessingJob(region_id="testland")
        await repo.upsert(job)

        running = advance(transition(job, JobStatus.RUNNING), 25.0, "Decoding")
        await repo.upsert(running)
        done = transition(running, JobStatus.COMPLETED, progress=100.0, version="2024-01-01")
        await repo.upsert(done)

        stored = job_from_row(await repo.get(job.job_id))
        assert stored.status is JobStatus.COMPLETED
        assert stored.version == "2024-01-01"
        assert stored.started_at is not None
        assert stored.completed_at is not None

    @pytest.mark.anyio
    async def test_list_filters_by_region(self, db_session: AsyncSession) -> None:
        repo = ProcessingJobRepository(db_session)
        first = ProcessingJob(region_id="testland")
        second = ProcessingJob(region_id="testland")
        other = ProcessingJob(region_id="atlantis")
        for job in (first, second, other):
            await repo.upsert(job)

        rows = await repo.list_jobs("testland")
        assert [r.job_id for r in rows] == [second.job_id, first.job_id]
        assert len(await repo.list_jobs()) == 3

    @pytest.mark.anyio
    async def test_delete(self, db_session: AsyncSession) -> None:
        repo = ProcessingJobRepository(db_session)
        job = ProcessingJob(region_id="testland")
        await repo.upsert(job)

        assert await repo.delete(job.job_id) is True
        assert await repo.get(job.job_id) is None
        assert await repo.delete(job.job_id) is False


class TestSqlJobStore:
    @pytest.mark.anyio
    async def test_round_trip_through_units_of_work(self, db_engine) -> None:
        store = SqlJobStore(make_session_factory(db_engine))
        job = ProcessingJob(region_id="testland")

        await store.save(job)
        await store.save(job.model_copy(update={"cancel_requested": True}))

        loaded = await store.get(job.job_id)
        assert loaded.cancel_requested is True
        assert [j.job_id for j in await store.list_jobs("testland")] == [job.job_id]
        assert await store.delete(job.job_id) is True
        assert await store.get(job.job_id) is None
