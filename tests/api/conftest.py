"""API fixtures: an app wired to an in-memory portal and a scripted upstream."""

import asyncio

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from riemap.api.main import create_app
from riemap.config.settings import Settings
from riemap.diff.differ import VersionDiffer
from riemap.ingestion.fetcher import RetryPolicy, SourceFetcher
from riemap.jobs.orchestrator import JobOrchestrator
from riemap.service import PortalService
from riemap.stores import InMemoryJobStore, InMemoryReportStore

# 2024-05-01T00:00:00Z
REPLICATION_TS = 1_714_521_600


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class Upstream:
    """Serves one extract body; requests block while ``release`` is unset."""

    def __init__(self, body: bytes) -> None:
        self.body = body
        self.release = asyncio.Event()
        self.release.set()
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await self.release.wait()
        return httpx.Response(200, content=self.body)


@pytest.fixture
def upstream(make_pbf, sample_nodes, sample_ways) -> Upstream:
    return Upstream(make_pbf(sample_nodes, sample_ways, replication_timestamp=REPLICATION_TS))


@pytest.fixture
def portal(tmp_path, catalog, store, upstream) -> PortalService:
    reports = InMemoryReportStore()
    fetcher = SourceFetcher(
        tmp_path / "temp",
        client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
        retry=RetryPolicy(max_attempts=1),
    )
    orchestrator = JobOrchestrator(
        catalog, store, fetcher, jobs=InMemoryJobStore(), reports=reports,
    )
    differ = VersionDiffer(catalog, store, reports)
    return PortalService(catalog, store, orchestrator, differ, reports)


@pytest.fixture
async def client(tmp_path, portal) -> AsyncClient:
    # ASGITransport does not run the lifespan, so the portal is set directly.
    app = create_app(Settings(DATA_DIR=str(tmp_path)))
    app.state.portal = portal
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await portal.orchestrator.shutdown()
