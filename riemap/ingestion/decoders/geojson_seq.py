"""Newline-delimited GeoJSON (JsonFeatures) decoder.

Accepts one ``Feature`` object per line, optionally prefixed with the RFC
8142 record separator. OSM identity comes from the feature ``id`` or an
``@id`` property in ``"way/123"`` form; without a typed id the kind is
inferred from the geometry type.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterator
from datetime import datetime
from typing import Any, BinaryIO

from riemap.errors import DecodeError
from riemap.ingestion.decoders.base import (
    DecodedItem,
    ElementKind,
    GeoDecoder,
    GeoRecord,
    Malformed,
)
from riemap.models.artifact import DataFormat
from riemap.models.common import ensure_utc

logger = logging.getLogger(__name__)

_RECORD_SEPARATOR = b"\x1e"

_ID_PREFIXES = {
    "node": ElementKind.NODE,
    "n": ElementKind.NODE,
    "way": ElementKind.WAY,
    "w": ElementKind.WAY,
    "relation": ElementKind.RELATION,
    "r": ElementKind.RELATION,
}

_GEOMETRY_KINDS = {
    "Point": ElementKind.NODE,
    "LineString": ElementKind.WAY,
    "Polygon": ElementKind.WAY,
    "MultiPoint": ElementKind.RELATION,
    "MultiLineString": ElementKind.RELATION,
    "MultiPolygon": ElementKind.RELATION,
    "GeometryCollection": ElementKind.RELATION,
}


class _BadFeature(ValueError):
    pass


def _parse_id(raw: Any) -> tuple[ElementKind | None, int]:
    if isinstance(raw, bool):
        raise _BadFeature("boolean feature id")
    if isinstance(raw, int):
        return None, raw
    if isinstance(raw, str):
        prefix, sep, number = raw.partition("/")
        if not sep:
            prefix, number = raw[:1], raw[1:]
            if raw[:1].isdigit() or raw[:1] == "-":
                prefix, number = "", raw
        kind = _ID_PREFIXES.get(prefix.lower()) if prefix else None
        if prefix and kind is None:
            raise _BadFeature(f"unrecognised feature id {raw!r}")
        try:
            return kind, int(number)
        except ValueError:
            raise _BadFeature(f"unrecognised feature id {raw!r}") from None
    raise _BadFeature("feature has no id")


def _position(value: Any) -> tuple[float, float] | None:
    """GeoJSON [lon, lat] to (lat, lon); None when not a numeric pair."""
    if not isinstance(value, list) or len(value) < 2:
        return None
    lon, lat = value[0], value[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return None
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return None
    return float(lat), float(lon)


def _flatten(coordinates: Any, depth: int, out: list[tuple[float, float] | None]) -> None:
    if depth == 0:
        out.append(_position(coordinates))
        return
    if not isinstance(coordinates, list):
        out.append(None)
        return
    for item in coordinates:
        _flatten(item, depth - 1, out)


_NESTING = {
    "Point": 0,
    "MultiPoint": 1,
    "LineString": 1,
    "MultiLineString": 2,
    "Polygon": 2,
    "MultiPolygon": 3,
}


def _ring_closed(ring: Any) -> bool:
    return isinstance(ring, list) and len(ring) >= 4 and ring[0] == ring[-1]


def _timestamp(properties: dict[str, Any]) -> int | None:
    raw = properties.get("@timestamp", properties.get("timestamp"))
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw) if math.isfinite(raw) else None
    if isinstance(raw, str):
        try:
            return int(ensure_utc(datetime.fromisoformat(raw)).timestamp())
        except ValueError:
            return None
    return None


def _feature_record(feature: Any) -> GeoRecord:
    if not isinstance(feature, dict) or feature.get("type") != "Feature":
        raise _BadFeature("not a GeoJSON Feature")
    properties = feature.get("properties") or {}
    if not isinstance(properties, dict):
        raise _BadFeature("properties is not an object")

    raw_id = feature.get("id", properties.get("@id", properties.get("osm_id")))
    kind, osm_id = _parse_id(raw_id)

    geometry = feature.get("geometry")
    geometry_type = geometry.get("type") if isinstance(geometry, dict) else None
    if kind is None:
        kind = _GEOMETRY_KINDS.get(geometry_type or "", ElementKind.NODE)

    tags: dict[str, str] = {}
    defects = 0
    for key, value in properties.items():
        if key.startswith("@") or key in ("osm_id", "timestamp"):
            continue
        if value is None:
            defects += 1
        elif isinstance(value, (dict, list)):
            tags[key] = json.dumps(value, separators=(",", ":"))
        else:
            tags[key] = str(value)

    record = GeoRecord(kind, osm_id, tags, timestamp=_timestamp(properties), tag_defects=defects)

    positions: list[tuple[float, float] | None] = []
    if geometry_type in _NESTING:
        _flatten(geometry.get("coordinates"), _NESTING[geometry_type], positions)
    elif geometry_type == "GeometryCollection":
        parts = geometry.get("geometries") or []
        if not isinstance(parts, list):
            raise _BadFeature("GeometryCollection geometries is not an array")
        for part in parts:
            part_type = part.get("type") if isinstance(part, dict) else None
            if part_type in _NESTING:
                _flatten(part.get("coordinates"), _NESTING[part_type], positions)
            else:
                positions.append(None)

    valid = [p for p in positions if p is not None]
    record.bad_geometry = geometry is not None and (len(valid) != len(positions) or not valid)
    if kind is ElementKind.NODE:
        if valid:
            record.lat, record.lon = valid[0]
    else:
        record.shape = tuple(valid)
        if geometry_type == "Polygon":
            rings = geometry.get("coordinates") or []
            if not isinstance(rings, list):
                rings = []
            record.bad_topology = not rings or not all(_ring_closed(r) for r in rings)
    return record


class GeoJsonSeqDecoder(GeoDecoder):
    """Line-oriented, so a bad line costs one record, not the stream."""

    data_format = DataFormat.JSON_FEATURES

    def records(self, stream: BinaryIO) -> Iterator[DecodedItem]:
        first = True
        for line_number, raw_line in enumerate(stream, start=1):
            line = raw_line.lstrip(_RECORD_SEPARATOR).strip()
            if not line:
                continue
            try:
                record = _feature_record(json.loads(line))
            except ValueError as exc:
                # JSON syntax, UTF-8 and feature shape errors alike.
                if first:
                    raise DecodeError(
                        f"Line {line_number} is not a GeoJSON Feature: {exc}"
                    ) from exc
                yield Malformed(f"line {line_number}: {exc}")
                continue
            first = False
            yield record
        if first:
            raise DecodeError("No GeoJSON features in stream.")
