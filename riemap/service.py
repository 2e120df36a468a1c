"""Portal service: the transport-agnostic facade over the core components.

The API routers and the CLI call only this class. It resolves ``latest``
version aliases, assembles region tree nodes, and maps store lookups to the
NotFound error family.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riemap.catalog.catalog import RegionCatalog, load_regions_file
from riemap.catalog.seed import default_regions
from riemap.config.settings import Settings
from riemap.diff.differ import VersionDiffer
from riemap.errors import ArtifactNotFoundError, ReportNotFoundError
from riemap.ingestion.decoders.router import DecoderRouter
from riemap.ingestion.fetcher import SourceFetcher
from riemap.jobs.orchestrator import JobOrchestrator
from riemap.models.artifact import DataFile
from riemap.models.common import utc_now
from riemap.models.comparison import RegionComparison
from riemap.models.job import ProcessingJob
from riemap.models.quality import QualityReport
from riemap.models.region import AdminLevel, DownloadStats, Region, RegionTreeNode
from riemap.quality.analyzer import QualityAnalyzer
from riemap.repositories.jobs import SqlJobStore
from riemap.repositories.reports import SqlReportStore
from riemap.storage.artifacts import ArtifactStore
from riemap.stores import InMemoryJobStore, InMemoryReportStore, JobStore, ReportStore

logger = logging.getLogger(__name__)

LATEST_ALIAS = "latest"
_MB = 1024 * 1024


@dataclass(frozen=True)
class DownloadSlice:
    """A resolved byte range of one artifact, ready to stream."""

    data_file: DataFile
    start: int
    end: int
    chunks: Iterator[bytes]

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_partial(self) -> bool:
        return self.start > 0 or self.end < self.data_file.size_bytes - 1


class PortalService:
    """Read operations plus the processing trigger."""

    def __init__(
        self,
        catalog: RegionCatalog,
        store: ArtifactStore,
        orchestrator: JobOrchestrator,
        differ: VersionDiffer,
        reports: ReportStore,
        analyzer: QualityAnalyzer | None = None,
        router: DecoderRouter | None = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.orchestrator = orchestrator
        self.differ = differ
        self.reports = reports
        self.analyzer = analyzer or QualityAnalyzer()
        self.router = router or DecoderRouter()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> PortalService:
        """Wire every component from settings.

        With a ``session_factory`` jobs and reports go to the database;
        otherwise they live in memory for the life of the process.
        """
        if settings.REGIONS_FILE:
            regions = load_regions_file(settings.REGIONS_FILE)
        else:
            regions = default_regions()
        catalog = RegionCatalog(regions)
        store = ArtifactStore(Path(settings.DATA_DIR) / "artifacts", catalog)
        store.recover()

        jobs: JobStore
        reports: ReportStore
        if session_factory is not None:
            jobs = SqlJobStore(session_factory)
            reports = SqlReportStore(session_factory)
        else:
            jobs = InMemoryJobStore()
            reports = InMemoryReportStore()

        analyzer = QualityAnalyzer()
        router = DecoderRouter()
        orchestrator = JobOrchestrator(
            catalog,
            store,
            SourceFetcher.from_settings(settings, client=http_client),
            analyzer=analyzer,
            router=router,
            jobs=jobs,
            reports=reports,
            max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
            keep_versions=settings.KEEP_VERSIONS,
        )
        differ = VersionDiffer(catalog, store, reports)
        return cls(catalog, store, orchestrator, differ, reports, analyzer, router)

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def _download_stats(self, files: list[DataFile]) -> DownloadStats:
        latest = next((f for f in files if f.is_latest), None)
        return DownloadStats(
            file_count=len(files),
            total_size_mb=round(sum(f.size_bytes for f in files) / _MB, 2),
            last_updated=latest.created_at if latest else None,
        )

    def region_node(self, region_id: str, *, depth: int | None = 1) -> RegionTreeNode:
        """One region with its files and children down to ``depth`` levels.

        ``depth=None`` expands the whole subtree; ``0`` omits children.
        """
        snapshot = self.catalog.load_tree()
        return self._node(snapshot.get(region_id), depth)

    def _node(self, region: Region, depth: int | None) -> RegionTreeNode:
        files = self.store.list_versions(region.region_id)
        children: list[RegionTreeNode] = []
        if depth is None or depth > 0:
            child_depth = None if depth is None else depth - 1
            children = [self._node(c, child_depth) for c in self.catalog.children(region.region_id)]
        return RegionTreeNode(
            region=region,
            data_files=files,
            download_stats=self._download_stats(files),
            children=children,
        )

    def region_tree(self) -> list[RegionTreeNode]:
        """The full hierarchy from every top-level region."""
        return [self._node(root, None) for root in self.catalog.roots()]

    def search_regions(
        self,
        query: str | None = None,
        *,
        admin_level: AdminLevel | None = None,
        parent_id: str | None = None,
    ) -> list[Region]:
        return self.catalog.search(query, admin_level=admin_level, parent_id=parent_id)

    def boundaries(self, region_id: str) -> dict:
        """GeoJSON FeatureCollection of the region's and its children's boxes."""
        region = self.catalog.resolve(region_id)
        features = [
            {
                "type": "Feature",
                "id": r.region_id,
                "geometry": r.bounding_box.to_geojson_polygon(),
                "properties": {
                    "name": r.name,
                    "admin_level": r.admin_level.value,
                    "parent_id": r.parent_id,
                    "provides_data_services": r.provides_data_services,
                },
            }
            for r in [region, *self.catalog.children(region_id)]
        ]
        return {"type": "FeatureCollection", "features": features}

    # ------------------------------------------------------------------
    # Artifacts and reports
    # ------------------------------------------------------------------

    def data_files(self, region_id: str) -> list[DataFile]:
        return self.store.list_versions(region_id)

    def resolve_version(self, region_id: str, version: str) -> DataFile:
        """Look up a version; ``latest`` follows the region's pointer."""
        if version == LATEST_ALIAS:
            latest = self.store.latest(region_id)
            if latest is None:
                raise ArtifactNotFoundError(region_id, version)
            return latest
        return self.store.get(region_id, version)

    def download(
        self, region_id: str, version: str, start: int = 0, end: int | None = None,
    ) -> DownloadSlice:
        data_file = self.resolve_version(region_id, version)
        chunks = self.store.read_range(region_id, data_file.version, start, end)
        last = data_file.size_bytes - 1 if end is None else min(end, data_file.size_bytes - 1)
        return DownloadSlice(data_file=data_file, start=start, end=last, chunks=chunks)

    async def quality_report(self, report_id: UUID) -> QualityReport:
        report = await self.reports.get(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    async def analyze_version(self, region_id: str, version: str) -> QualityReport:
        """Re-score a stored artifact without publishing anything.

        The capture time is the stream's own timestamp when it has one,
        otherwise the artifact's creation time.
        """
        region = self.catalog.resolve(region_id)
        data_file = self.resolve_version(region_id, version)

        def _decode():
            with self.store.read(region_id, data_file.version) as stream:
                return self.router.decode(stream, data_file.format)

        dataset = await asyncio.to_thread(_decode)
        return self.analyzer.analyze(
            dataset,
            region,
            version=data_file.version,
            captured_at=dataset.source_timestamp or data_file.created_at,
            reference_date=utc_now(),
        )

    async def compare(self, region_id: str, from_version: str, to_version: str) -> RegionComparison:
        return await self.differ.compare(region_id, from_version, to_version)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def request_processing(self, region_id: str) -> ProcessingJob:
        return await self.orchestrator.request_processing(region_id)

    async def job_status(self, job_id: UUID) -> ProcessingJob:
        return await self.orchestrator.get_job(job_id)

    async def list_jobs(self, region_id: str | None = None) -> list[ProcessingJob]:
        return await self.orchestrator.list_jobs(region_id)

    async def cancel_job(self, job_id: UUID) -> ProcessingJob:
        return await self.orchestrator.cancel(job_id)

    async def purge_job(self, job_id: UUID) -> None:
        await self.orchestrator.purge(job_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def stats(self) -> dict[str, object]:
        """Catalog counts plus artifact and job totals."""
        catalog_stats = self.catalog.stats()
        served = [r for r in self.catalog.search() if r.provides_data_services]
        file_count = 0
        total_bytes = 0
        for region in served:
            files = self.store.list_versions(region.region_id)
            file_count += len(files)
            total_bytes += sum(f.size_bytes for f in files)
        jobs = await self.orchestrator.list_jobs()
        by_status: dict[str, int] = {}
        for job in jobs:
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        return {
            **catalog_stats,
            "regions_with_data_services": len(served),
            "total_files": file_count,
            "total_size_mb": round(total_bytes / _MB, 2),
            "jobs_by_status": by_status,
        }
