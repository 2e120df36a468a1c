"""OSM PBF (PackedBinary) decoder.

A PBF file is a sequence of frames: a 4-byte big-endian BlobHeader length,
the BlobHeader message, then a Blob holding either the OSMHeader block (which
must come first) or an OSMData PrimitiveBlock. Framing damage is fatal since
the next frame boundary is lost; a blob that is framed correctly but fails to
inflate or parse is reported as ``Malformed`` and skipped.
"""

from __future__ import annotations

import logging
import lzma
import zlib
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO

from riemap.errors import DecodeError
from riemap.ingestion.decoders.base import (
    DecodedItem,
    ElementKind,
    GeoDecoder,
    GeoRecord,
    Malformed,
    StreamHeader,
)
from riemap.ingestion.decoders.wire import (
    WireFormatError,
    as_int64,
    delta_decode,
    expect_bytes,
    expect_int,
    extend_repeated,
    iter_fields,
    zigzag,
)
from riemap.models.artifact import DataFormat

logger = logging.getLogger(__name__)

MAX_BLOB_HEADER_SIZE = 64 * 1024
MAX_BLOB_SIZE = 32 * 1024 * 1024
SUPPORTED_FEATURES = frozenset({"OsmSchema-V0.6", "DenseNodes", "HistoricalInformation"})

_BLOB_ERRORS = (WireFormatError, zlib.error, lzma.LZMAError)
_NANO = 1e-9


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            msg = f"PBF stream truncated inside {what} ({size - remaining}/{size} bytes)."
            raise DecodeError(msg)
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "replace")


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


def _parse_blob_header(raw: bytes) -> tuple[str, int]:
    blob_type: str | None = None
    datasize: int | None = None
    for number, wire_type, value in iter_fields(raw):
        if number == 1:
            blob_type = _text(expect_bytes(wire_type, value))
        elif number == 3:
            datasize = expect_int(wire_type, value)
    if blob_type is None or datasize is None:
        raise WireFormatError("BlobHeader without type or datasize")
    return blob_type, datasize


def _inflate(raw: bytes) -> bytes:
    raw_size: int | None = None
    codec: str | None = None
    payload = b""
    for number, wire_type, value in iter_fields(raw):
        if number == 1:
            codec, payload = "raw", expect_bytes(wire_type, value)
        elif number == 2:
            raw_size = expect_int(wire_type, value)
        elif number == 3:
            codec, payload = "zlib", expect_bytes(wire_type, value)
        elif number == 4:
            codec, payload = "lzma", expect_bytes(wire_type, value)
        elif number in (5, 6, 7):
            codec = {5: "bzip2", 6: "lz4", 7: "zstd"}[number]

    if codec == "raw":
        data = payload
    elif codec == "zlib":
        data = zlib.decompress(payload)
    elif codec == "lzma":
        data = lzma.decompress(payload)
    elif codec is None:
        raise WireFormatError("blob carries no data")
    else:
        raise WireFormatError(f"unsupported blob compression '{codec}'")

    if raw_size is not None and len(data) != raw_size:
        raise WireFormatError(f"inflated {len(data)} bytes, header declared {raw_size}")
    return data


def _parse_header_block(data: bytes) -> StreamHeader:
    required: list[str] = []
    program = None
    replication = None
    for number, wire_type, value in iter_fields(data):
        if number == 4:
            required.append(_text(expect_bytes(wire_type, value)))
        elif number == 16:
            program = _text(expect_bytes(wire_type, value))
        elif number == 32:
            replication = as_int64(expect_int(wire_type, value))

    unsupported = [name for name in required if name not in SUPPORTED_FEATURES]
    if unsupported:
        msg = f"PBF stream requires unsupported features: {', '.join(unsupported)}."
        raise DecodeError(msg)

    source_timestamp = None
    if replication:
        try:
            source_timestamp = datetime.fromtimestamp(replication, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Ignoring out-of-range replication timestamp %d", replication)
    return StreamHeader(source_timestamp=source_timestamp, writing_program=program)


# ---------------------------------------------------------------------------
# PrimitiveBlock
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _BlockContext:
    strings: list[str] = field(default_factory=list)
    granularity: int = 100
    date_granularity: int = 1000
    lat_offset: int = 0
    lon_offset: int = 0

    def coordinate(self, lat: int, lon: int) -> tuple[float, float]:
        return (
            _NANO * (self.lat_offset + self.granularity * lat),
            _NANO * (self.lon_offset + self.granularity * lon),
        )

    def seconds(self, timestamp: int) -> int:
        return timestamp * self.date_granularity // 1000

    def tags(self, keys: list[int], values: list[int]) -> tuple[dict[str, str], int]:
        """Resolve string-table indexes; returns (tags, defect count)."""
        defects = abs(len(keys) - len(values))
        tags: dict[str, str] = {}
        for key, value in zip(keys, values):
            try:
                tags[self.strings[key]] = self.strings[value]
            except IndexError:
                defects += 1
        return tags, defects

    def info_timestamp(self, data: bytes) -> int | None:
        for number, wire_type, value in iter_fields(data):
            if number == 2:
                return self.seconds(as_int64(expect_int(wire_type, value)))
        return None


def _parse_node(ctx: _BlockContext, data: bytes) -> GeoRecord:
    osm_id = 0
    keys: list[int] = []
    values: list[int] = []
    lat_raw = lon_raw = None
    timestamp = None
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            osm_id = zigzag(expect_int(wire_type, value))
        elif number == 2:
            extend_repeated(keys, wire_type, value)
        elif number == 3:
            extend_repeated(values, wire_type, value)
        elif number == 4:
            timestamp = ctx.info_timestamp(expect_bytes(wire_type, value))
        elif number == 8:
            lat_raw = zigzag(expect_int(wire_type, value))
        elif number == 9:
            lon_raw = zigzag(expect_int(wire_type, value))

    tags, defects = ctx.tags(keys, values)
    lat = lon = None
    if lat_raw is not None and lon_raw is not None:
        lat, lon = ctx.coordinate(lat_raw, lon_raw)
    return GeoRecord(
        ElementKind.NODE, osm_id, tags, lat=lat, lon=lon,
        timestamp=timestamp, tag_defects=defects,
    )


def _parse_dense_nodes(ctx: _BlockContext, data: bytes) -> list[GeoRecord]:
    ids: list[int] = []
    lats: list[int] = []
    lons: list[int] = []
    keys_vals: list[int] = []
    timestamps: list[int] = []
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            extend_repeated(ids, wire_type, value)
        elif number == 5:
            for info_number, info_type, info_value in iter_fields(expect_bytes(wire_type, value)):
                if info_number == 2:
                    extend_repeated(timestamps, info_type, info_value)
        elif number == 8:
            extend_repeated(lats, wire_type, value)
        elif number == 9:
            extend_repeated(lons, wire_type, value)
        elif number == 10:
            extend_repeated(keys_vals, wire_type, value)

    ids, lats, lons = delta_decode(ids), delta_decode(lats), delta_decode(lons)
    if not len(ids) == len(lats) == len(lons):
        raise WireFormatError("dense node columns differ in length")
    if timestamps and len(timestamps) != len(ids):
        raise WireFormatError("dense info timestamps do not match node count")
    timestamps = delta_decode(timestamps)

    records = []
    strings = ctx.strings
    cursor = 0
    for index, osm_id in enumerate(ids):
        # keys_vals holds (key, value) index pairs per node, each node ended by 0.
        tags: dict[str, str] = {}
        defects = 0
        while cursor < len(keys_vals):
            key = keys_vals[cursor]
            cursor += 1
            if key == 0:
                break
            if cursor >= len(keys_vals):
                defects += 1
                break
            value = keys_vals[cursor]
            cursor += 1
            try:
                tags[strings[key]] = strings[value]
            except IndexError:
                defects += 1
        lat, lon = ctx.coordinate(lats[index], lons[index])
        records.append(GeoRecord(
            ElementKind.NODE, osm_id, tags, lat=lat, lon=lon,
            timestamp=ctx.seconds(timestamps[index]) if timestamps else None,
            tag_defects=defects,
        ))
    return records


def _parse_member_element(ctx: _BlockContext, data: bytes, kind: ElementKind) -> GeoRecord:
    """Ways (refs in field 8) and relations (member ids in field 9)."""
    refs_field = 8 if kind is ElementKind.WAY else 9
    osm_id = 0
    keys: list[int] = []
    values: list[int] = []
    refs: list[int] = []
    timestamp = None
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            osm_id = as_int64(expect_int(wire_type, value))
        elif number == 2:
            extend_repeated(keys, wire_type, value)
        elif number == 3:
            extend_repeated(values, wire_type, value)
        elif number == 4:
            timestamp = ctx.info_timestamp(expect_bytes(wire_type, value))
        elif number == refs_field:
            extend_repeated(refs, wire_type, value)

    tags, defects = ctx.tags(keys, values)
    return GeoRecord(
        kind, osm_id, tags, refs=tuple(delta_decode(refs)),
        timestamp=timestamp, tag_defects=defects,
    )


def _parse_primitive_block(data: bytes) -> list[GeoRecord]:
    ctx = _BlockContext()
    groups: list[bytes] = []
    # Granularity fields follow the groups on the wire, so collect first.
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            ctx.strings = [
                _text(expect_bytes(s_type, s_value))
                for s_number, s_type, s_value in iter_fields(expect_bytes(wire_type, value))
                if s_number == 1
            ]
        elif number == 2:
            groups.append(expect_bytes(wire_type, value))
        elif number == 17:
            ctx.granularity = expect_int(wire_type, value)
        elif number == 18:
            ctx.date_granularity = expect_int(wire_type, value)
        elif number == 19:
            ctx.lat_offset = as_int64(expect_int(wire_type, value))
        elif number == 20:
            ctx.lon_offset = as_int64(expect_int(wire_type, value))

    records: list[GeoRecord] = []
    for group in groups:
        for number, wire_type, value in iter_fields(group):
            if number == 1:
                records.append(_parse_node(ctx, expect_bytes(wire_type, value)))
            elif number == 2:
                records.extend(_parse_dense_nodes(ctx, expect_bytes(wire_type, value)))
            elif number == 3:
                records.append(
                    _parse_member_element(ctx, expect_bytes(wire_type, value), ElementKind.WAY)
                )
            elif number == 4:
                records.append(
                    _parse_member_element(ctx, expect_bytes(wire_type, value), ElementKind.RELATION)
                )
    return records


class PbfDecoder(GeoDecoder):
    """Streams an OSM PBF file one blob at a time."""

    data_format = DataFormat.PACKED_BINARY

    def records(self, stream: BinaryIO) -> Iterator[DecodedItem]:
        header_seen = False
        while True:
            prefix = stream.read(4)
            if not prefix:
                if not header_seen:
                    raise DecodeError("Empty PBF stream.")
                return
            if len(prefix) < 4:
                raise DecodeError("PBF stream truncated inside a frame length prefix.")

            header_size = int.from_bytes(prefix, "big")
            if not 0 < header_size <= MAX_BLOB_HEADER_SIZE:
                msg = f"Invalid BlobHeader size {header_size}: not a PBF stream or corrupt framing."
                raise DecodeError(msg)
            try:
                blob_type, datasize = _parse_blob_header(
                    _read_exact(stream, header_size, "BlobHeader")
                )
            except WireFormatError as exc:
                raise DecodeError(f"Unreadable BlobHeader: {exc}") from exc
            if datasize > MAX_BLOB_SIZE:
                raise DecodeError(f"Blob of {datasize} bytes exceeds the PBF limit.")
            blob = _read_exact(stream, datasize, f"{blob_type} blob")

            if not header_seen:
                if blob_type != "OSMHeader":
                    raise DecodeError("PBF stream does not start with an OSMHeader blob.")
                try:
                    header = _parse_header_block(_inflate(blob))
                except _BLOB_ERRORS as exc:
                    raise DecodeError(f"Unreadable OSMHeader block: {exc}") from exc
                header_seen = True
                yield header
                continue

            if blob_type != "OSMData":
                logger.debug("Skipping %s blob", blob_type)
                continue
            try:
                block = _parse_primitive_block(_inflate(blob))
            except _BLOB_ERRORS as exc:
                yield Malformed(f"OSMData blob: {exc}")
                continue
            yield from block
