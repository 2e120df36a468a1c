"""Shared pytest fixtures for the RieMap test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- catalog / store: a small region tree and an ArtifactStore under tmp_path
- make_pbf / make_osm_xml / make_geojsonl: sample extract builders
"""

import json
import zlib
from collections.abc import Callable, Iterable

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from riemap.catalog.catalog import RegionCatalog
from riemap.db.session import Base
import riemap.db.tables  # noqa: F401  register ORM models on Base.metadata
from riemap.models.region import AdminLevel, BoundingBox, Region
from riemap.storage.artifacts import ArtifactStore

TESTLAND_URL = "https://extracts.test/europe/testland-latest.osm.pbf"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed; it rolls back at teardown.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        nested = await conn.begin_nested()

        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(sync_session, transaction):  # noqa: ARG001
            nonlocal nested
            if transaction.nested and not transaction._parent.nested:
                nested = conn.sync_connection.begin_nested()

        yield session

        await session.close()
        await trans.rollback()


# ---------------------------------------------------------------------------
# Regions and storage
# ---------------------------------------------------------------------------


def _box(min_lat: float, min_lon: float, max_lat: float, max_lon: float) -> BoundingBox:
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


def sample_regions() -> list[Region]:
    return [
        Region(
            region_id="world",
            name="World",
            admin_level=AdminLevel.WORLD,
            bounding_box=_box(-90, -180, 90, 180),
        ),
        Region(
            region_id="europe",
            name="Europe",
            admin_level=AdminLevel.CONTINENT,
            parent_id="world",
            bounding_box=_box(35, -25, 72, 45),
        ),
        Region(
            region_id="testland",
            name="Testland",
            admin_level=AdminLevel.COUNTRY,
            parent_id="europe",
            bounding_box=_box(47.0, 9.0, 48.0, 10.0),
            area_km2=8_300.0,
            population=1_000_000,
            country_code="TL",
            source_url=TESTLAND_URL,
            provides_data_services=True,
        ),
        Region(
            region_id="atlantis",
            name="Atlantis",
            admin_level=AdminLevel.COUNTRY,
            parent_id="europe",
            bounding_box=_box(36.0, -10.0, 37.0, -9.0),
        ),
        Region(
            region_id="testland-north",
            name="Testland North",
            admin_level=AdminLevel.SUBREGION,
            parent_id="testland",
            bounding_box=_box(47.5, 9.0, 48.0, 10.0),
            source_url="https://extracts.test/europe/testland/north-latest.geojsonl",
            provides_data_services=True,
        ),
    ]


@pytest.fixture
def regions() -> list[Region]:
    return sample_regions()


@pytest.fixture
def catalog(regions) -> RegionCatalog:
    return RegionCatalog(regions)


@pytest.fixture
def store(tmp_path, catalog) -> ArtifactStore:
    return ArtifactStore(tmp_path / "artifacts", catalog)


# ---------------------------------------------------------------------------
# PBF encoder (just enough protobuf to write OSMHeader + DenseNodes blocks)
# ---------------------------------------------------------------------------

Node = tuple[int, float, float, dict[str, str]]
Member = tuple[int, list[int], dict[str, str]]


def _varint(value: int) -> bytes:
    value &= (1 << 64) - 1
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _zz(value: int) -> int:
    return (value << 1) ^ (value >> 63)


def _vfield(number: int, value: int) -> bytes:
    return _varint(number << 3) + _varint(value)


def _bfield(number: int, data: bytes) -> bytes:
    return _varint((number << 3) | 2) + _varint(len(data)) + data


def _packed(number: int, values: Iterable[int]) -> bytes:
    return _bfield(number, b"".join(_varint(v) for v in values))


def _deltas(values: Iterable[int]) -> list[int]:
    out = []
    previous = 0
    for value in values:
        out.append(_zz(value - previous))
        previous = value
    return out


def _frame(blob_type: str, payload: bytes, *, corrupt: bool = False) -> bytes:
    compressed = zlib.compress(payload)
    if corrupt:
        # 0xff starts a deflate block with the reserved type: always invalid.
        compressed = compressed[:2] + b"\xff" * max(len(compressed) - 2, 4)
    blob = _vfield(2, len(payload)) + _bfield(3, compressed)
    header = _bfield(1, blob_type.encode()) + _vfield(3, len(blob))
    return len(header).to_bytes(4, "big") + header + blob


def build_pbf(
    nodes: list[Node],
    ways: list[Member] = (),
    relations: list[Member] = (),
    *,
    replication_timestamp: int | None = None,
    required_features: tuple[str, ...] = ("OsmSchema-V0.6", "DenseNodes"),
    corrupt_blocks: int = 0,
    edit_timestamp: int | None = None,
) -> bytes:
    header = b"".join(_bfield(4, f.encode()) for f in required_features)
    header += _bfield(16, b"riemap-tests")
    if replication_timestamp is not None:
        header += _vfield(32, replication_timestamp)

    strings = [""]
    index: dict[str, int] = {}

    def sid(text: str) -> int:
        if text not in index:
            index[text] = len(strings)
            strings.append(text)
        return index[text]

    keys_vals: list[int] = []
    for _, _, _, tags in nodes:
        for key, value in tags.items():
            keys_vals += [sid(key), sid(value)]
        keys_vals.append(0)
    dense = (
        _packed(1, _deltas(n[0] for n in nodes))
        + _packed(8, _deltas(round(n[1] * 1e7) for n in nodes))
        + _packed(9, _deltas(round(n[2] * 1e7) for n in nodes))
        + _packed(10, keys_vals)
    )
    if edit_timestamp is not None:
        dense_info = _packed(1, [1] * len(nodes)) + _packed(2, _deltas([edit_timestamp] * len(nodes)))
        dense += _bfield(5, dense_info)
    groups = [_bfield(2, dense)]

    def member_message(osm_id: int, refs: list[int], tags: dict[str, str], refs_field: int) -> bytes:
        return (
            _vfield(1, osm_id)
            + _packed(2, [sid(k) for k in tags])
            + _packed(3, [sid(v) for v in tags.values()])
            + _packed(refs_field, _deltas(refs))
        )

    if ways:
        groups.append(b"".join(_bfield(3, member_message(*w, 8)) for w in ways))
    if relations:
        groups.append(b"".join(_bfield(4, member_message(*r, 9)) for r in relations))

    string_table = b"".join(_bfield(1, s.encode()) for s in strings)
    block = _bfield(1, string_table) + b"".join(_bfield(2, g) for g in groups)

    out = _frame("OSMHeader", header) + _frame("OSMData", block)
    for _ in range(corrupt_blocks):
        out += _frame("OSMData", block, corrupt=True)
    return out


@pytest.fixture
def make_pbf() -> Callable[..., bytes]:
    return build_pbf


# ---------------------------------------------------------------------------
# Text encodings
# ---------------------------------------------------------------------------


def build_osm_xml(nodes: list[Node], ways: list[Member] = (), *, timestamp: str | None = None) -> bytes:
    stamp = f' timestamp="{timestamp}"' if timestamp else ""
    lines = [f'<?xml version="1.0" encoding="UTF-8"?>\n<osm version="0.6" generator="riemap-tests"{stamp}>']
    for osm_id, lat, lon, tags in nodes:
        lines.append(f'  <node id="{osm_id}" lat="{lat}" lon="{lon}" timestamp="2024-03-01T12:00:00Z">')
        lines.extend(f'    <tag k="{k}" v="{v}"/>' for k, v in tags.items())
        lines.append("  </node>")
    for osm_id, refs, tags in ways:
        lines.append(f'  <way id="{osm_id}">')
        lines.extend(f'    <nd ref="{r}"/>' for r in refs)
        lines.extend(f'    <tag k="{k}" v="{v}"/>' for k, v in tags.items())
        lines.append("  </way>")
    lines.append("</osm>")
    return "\n".join(lines).encode()


def build_geojsonl(features: list[dict]) -> bytes:
    return b"".join(json.dumps(f).encode() + b"\n" for f in features)


@pytest.fixture
def make_osm_xml() -> Callable[..., bytes]:
    return build_osm_xml


@pytest.fixture
def make_geojsonl() -> Callable[..., bytes]:
    return build_geojsonl


# A small, fully tagged and error-free extract.
SAMPLE_NODES: list[Node] = [
    (1, 47.10, 9.10, {"highway": "traffic_signals"}),
    (2, 47.20, 9.20, {"amenity": "cafe", "name": "Cafe"}),
    (3, 47.30, 9.30, {"natural": "tree"}),
    (4, 47.40, 9.40, {"building": "yes"}),
]
SAMPLE_WAYS: list[Member] = [
    (10, [1, 2], {"highway": "residential"}),
    (11, [3, 4, 3], {"building": "house"}),
]


@pytest.fixture
def sample_nodes() -> list[Node]:
    return list(SAMPLE_NODES)


@pytest.fixture
def sample_ways() -> list[Member]:
    return list(SAMPLE_WAYS)
