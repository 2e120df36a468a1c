"""Job orchestrator: Fetch -> Decode -> Analyze -> Publish per region.

Each accepted request becomes an asyncio task. Blocking work (decoding a
large file, publishing) runs in worker threads via ``asyncio.to_thread``.

Admission control is keyed by region id: while a region has a PENDING or
RUNNING job, further requests for it are rejected with
AlreadyInProgressError. They are not queued. Across regions, a semaphore
caps how many jobs run at once; jobs waiting on it stay PENDING.

Cancellation is a flag. It is observed between stages, between download
chunks and between decoded record batches, never mid-step.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

from riemap.catalog.catalog import RegionCatalog
from riemap.errors import (
    AlreadyInProgressError,
    FetchError,
    InvalidTransitionError,
    JobCancelledError,
    JobNotFoundError,
    RegionNotServedError,
    RiemapError,
    StorageError,
)
from riemap.ingestion.decoders.dataset import DecodedDataset
from riemap.ingestion.decoders.router import DecoderRouter
from riemap.ingestion.fetcher import FetchResult, SourceFetcher
from riemap.jobs.state import advance, transition
from riemap.models.artifact import DataFile
from riemap.models.common import utc_now
from riemap.models.job import JobStatus, JobType, ProcessingJob
from riemap.models.quality import QualityReport
from riemap.models.region import Region
from riemap.quality.analyzer import QualityAnalyzer
from riemap.storage.artifacts import ArtifactStore
from riemap.stores import InMemoryJobStore, InMemoryReportStore, JobStore, ReportStore

logger = logging.getLogger(__name__)

PROGRESS_FETCHED = 25.0
PROGRESS_DECODED = 50.0
PROGRESS_ANALYZED = 75.0
PROGRESS_PUBLISHED = 100.0

_MAX_REVISIONS = 99


def next_version(store: ArtifactStore, region_id: str, captured_at: datetime) -> str:
    """Version id for a new artifact: ``YYYY-MM-DD`` of capture, ``-rNN`` on reuse.

    The result always sorts after the current latest version, so version ids
    stay ordered even when upstream serves an older extract or old versions
    were pruned.
    """
    base = captured_at.astimezone(timezone.utc).strftime("%Y-%m-%d")
    latest = store.latest(region_id)
    if latest is not None and latest.version[:10] > base:
        base = latest.version[:10]
    candidates = [base] + [f"{base}-r{n:02d}" for n in range(2, _MAX_REVISIONS + 1)]
    for candidate in candidates:
        if latest is not None and candidate <= latest.version:
            continue
        if not store.has_version(region_id, candidate):
            return candidate
    msg = f"Region {region_id} already has {_MAX_REVISIONS} versions dated {base}."
    raise StorageError(msg)


@dataclass
class _LiveJob:
    """In-process state of an admitted job.

    ``snapshot`` is the last copy written to the job store. Every write of
    the job goes through ``lock``.
    """

    snapshot: ProcessingJob
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class JobOrchestrator:
    """Runs and tracks processing jobs."""

    def __init__(
        self,
        catalog: RegionCatalog,
        store: ArtifactStore,
        fetcher: SourceFetcher,
        *,
        analyzer: QualityAnalyzer | None = None,
        router: DecoderRouter | None = None,
        jobs: JobStore | None = None,
        reports: ReportStore | None = None,
        max_concurrent_jobs: int = 2,
        keep_versions: int | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._fetcher = fetcher
        self._analyzer = analyzer or QualityAnalyzer()
        self._router = router or DecoderRouter()
        self._jobs = jobs or InMemoryJobStore()
        self._reports = reports or InMemoryReportStore()
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._keep_versions = keep_versions
        # region id -> job id for every PENDING or RUNNING job
        self._active: dict[str, UUID] = {}
        self._live: dict[UUID, _LiveJob] = {}
        self._tasks: dict[UUID, asyncio.Task[ProcessingJob]] = {}
        self._cancel_requested: set[UUID] = set()

    @property
    def jobs(self) -> JobStore:
        return self._jobs

    @property
    def reports(self) -> ReportStore:
        return self._reports

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def request_processing(self, region_id: str) -> ProcessingJob:
        """Accept a processing request and return the PENDING job at once.

        Raises:
            RegionNotFoundError: Unknown region.
            RegionNotServedError: Region has no upstream extract.
            AlreadyInProgressError: Region already has a PENDING/RUNNING job.
        """
        region = self._catalog.resolve(region_id)
        if not region.provides_data_services or not region.source_url:
            raise RegionNotServedError(region_id)

        # No await between the check and the claim: admission is atomic.
        active = self._active.get(region_id)
        if active is not None:
            raise AlreadyInProgressError(region_id, active)
        job = ProcessingJob(region_id=region_id, job_type=JobType.PROCESS)
        self._active[region_id] = job.job_id
        self._live[job.job_id] = _LiveJob(job)

        try:
            await self._jobs.save(job)
        except Exception:
            self._active.pop(region_id, None)
            self._live.pop(job.job_id, None)
            raise

        task = asyncio.create_task(self._run(job, region), name=f"riemap-job-{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        logger.info("Accepted processing job %s for %s", job.job_id, region_id)
        return job

    async def get_job(self, job_id: UUID) -> ProcessingJob:
        job = await self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJob]:
        return await self._jobs.list_jobs(region_id)

    def active_job_id(self, region_id: str) -> UUID | None:
        return self._active.get(region_id)

    async def cancel(self, job_id: UUID) -> ProcessingJob:
        """Flag a job for cancellation; terminal jobs are returned unchanged."""
        live = self._live.get(job_id)
        if live is None:
            # Not running in this process, so nothing else writes it.
            job = await self.get_job(job_id)
            if job.status.is_terminal:
                return job
            job = job.model_copy(update={"cancel_requested": True})
            await self._jobs.save(job)
            return job

        async with live.lock:
            job = live.snapshot
            if job.status.is_terminal:
                return job
            self._cancel_requested.add(job_id)
            job = job.model_copy(update={"cancel_requested": True})
            await self._jobs.save(job)
            live.snapshot = job
        logger.info("Cancellation requested for job %s", job_id)
        return job

    async def purge(self, job_id: UUID) -> None:
        """Forget a finished job.

        Raises:
            JobNotFoundError: Unknown job.
            InvalidTransitionError: The job is still PENDING or RUNNING.
        """
        job = await self.get_job(job_id)
        if not job.status.is_terminal:
            msg = f"Job {job_id} is {job.status}; only finished jobs can be purged."
            raise InvalidTransitionError(msg)
        await self._jobs.delete(job_id)

    async def wait(self, job_id: UUID, timeout: float | None = None) -> ProcessingJob:
        """Wait for a job to finish and return its final snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_job(job_id)

    async def recover_interrupted(self) -> int:
        """Fail jobs a previous process left PENDING or RUNNING.

        Call once at startup, before accepting requests.
        """
        count = 0
        for job in await self._jobs.list_jobs():
            if job.status.is_terminal or job.job_id in self._live:
                continue
            await self._finish(job, JobStatus.FAILED, "Interrupted by service restart")
            count += 1
        if count:
            logger.warning("Marked %d interrupted jobs as failed", count)
        return count

    async def shutdown(self) -> None:
        """Cancel outstanding tasks (used on application shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _is_cancelled(self, job_id: UUID) -> bool:
        return job_id in self._cancel_requested

    def _checkpoint(self, job_id: UUID) -> None:
        if self._is_cancelled(job_id):
            raise JobCancelledError(f"Job {job_id} cancelled.")

    def _latest(self, job: ProcessingJob) -> ProcessingJob:
        live = self._live.get(job.job_id)
        return live.snapshot if live is not None else job

    async def _save(self, job: ProcessingJob) -> ProcessingJob:
        live = self._live.get(job.job_id)
        if live is None:
            await self._jobs.save(job)
            return job
        async with live.lock:
            if self._is_cancelled(job.job_id) and not job.cancel_requested:
                job = job.model_copy(update={"cancel_requested": True})
            await self._jobs.save(job)
            live.snapshot = job
        return job

    async def _run(self, job: ProcessingJob, region: Region) -> ProcessingJob:
        job_id = job.job_id
        keep_partial = False
        try:
            async with self._semaphore:
                job = await self._save(transition(job, JobStatus.RUNNING, message="Fetching"))
                job = await self._pipeline(job, region)
        except JobCancelledError:
            job = await self._finish(self._latest(job), JobStatus.CANCELLED, "Cancelled on request")
        except asyncio.CancelledError:
            await self._finish(self._latest(job), JobStatus.CANCELLED, "Cancelled on shutdown")
            raise
        except RiemapError as exc:
            # The fetcher already dropped the partial on fatal errors; what is
            # left after exhausted retries is resumed by the next job.
            keep_partial = isinstance(exc, FetchError)
            logger.warning("Job %s for %s failed: %s", job_id, region.region_id, exc)
            job = await self._finish(
                self._latest(job), JobStatus.FAILED, f"{type(exc).__name__}: {exc}",
            )
        except Exception as exc:
            logger.exception("Job %s for %s crashed", job_id, region.region_id)
            job = await self._finish(self._latest(job), JobStatus.FAILED, f"Unexpected error: {exc}")
        finally:
            if self._active.get(region.region_id) == job_id:
                del self._active[region.region_id]
            self._live.pop(job_id, None)
            self._cancel_requested.discard(job_id)
            if not keep_partial:
                self._fetcher.discard(region.region_id)
        return job

    async def _finish(self, job: ProcessingJob, status: JobStatus, message: str) -> ProcessingJob:
        if job.status.is_terminal:
            return job
        if job.status is JobStatus.PENDING:
            job = transition(job, JobStatus.RUNNING)
        return await self._save(transition(job, status, message=message))

    async def _pipeline(self, job: ProcessingJob, region: Region) -> ProcessingJob:
        job_id = job.job_id
        self._checkpoint(job_id)

        fetched = await self._fetcher.fetch(
            region, should_cancel=lambda: self._is_cancelled(job_id),
        )
        job = await self._save(advance(job, PROGRESS_FETCHED, "Decoding"))
        self._checkpoint(job_id)

        dataset = await asyncio.to_thread(self._decode, fetched, job_id)
        job = await self._save(advance(job, PROGRESS_DECODED, "Analyzing"))
        self._checkpoint(job_id)

        captured_at = dataset.source_timestamp or fetched.last_modified or utc_now()
        version = await asyncio.to_thread(
            next_version, self._store, region.region_id, captured_at,
        )
        report = self._analyzer.analyze(
            dataset, region, version=version, captured_at=captured_at,
        )
        await self._reports.save(report)
        job = await self._save(advance(job, PROGRESS_ANALYZED, "Publishing"))
        self._checkpoint(job_id)

        data_file = await asyncio.to_thread(self._publish, fetched, version, report)
        if self._keep_versions:
            await self._prune(region.region_id)

        return await self._save(transition(
            job,
            JobStatus.COMPLETED,
            message=f"Published version {data_file.version}",
            progress=PROGRESS_PUBLISHED,
            version=data_file.version,
        ))

    def _decode(self, fetched: FetchResult, job_id: UUID) -> DecodedDataset:
        with Path(fetched.path).open("rb") as stream:
            return self._router.decode(
                stream,
                fetched.data_format,
                should_cancel=lambda: self._is_cancelled(job_id),
            )

    def _publish(self, fetched: FetchResult, version: str, report: QualityReport) -> DataFile:
        with Path(fetched.path).open("rb") as stream:
            return self._store.publish(
                fetched.region_id,
                version,
                fetched.data_format,
                stream,
                quality_report_id=report.report_id,
            )

    async def _prune(self, region_id: str) -> None:
        try:
            await asyncio.to_thread(self._store.prune, region_id, self._keep_versions)
        except StorageError:
            # Retention is best effort; the new version is already live.
            logger.warning("Pruning old versions of %s failed", region_id, exc_info=True)
