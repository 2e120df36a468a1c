"""Record types shared by every decoder and the decoder interface."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import BinaryIO

from riemap.models.artifact import DataFormat

MAX_TAG_LENGTH = 255


class ElementKind(StrEnum):
    NODE = "node"
    WAY = "way"
    RELATION = "relation"


def valid_coordinate(lat: float | None, lon: float | None) -> bool:
    if lat is None or lon is None:
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


@dataclass(slots=True)
class GeoRecord:
    """One decoded primitive.

    Ways and relations from OSM encodings carry ``refs`` (node ids or member
    ids). Encodings that embed geometry instead (GeoJSON) fill ``shape`` with
    ``(lat, lon)`` positions and leave ``refs`` empty.
    """

    kind: ElementKind
    osm_id: int
    tags: dict[str, str] = field(default_factory=dict)
    lat: float | None = None
    lon: float | None = None
    refs: tuple[int, ...] = ()
    shape: tuple[tuple[float, float], ...] | None = None
    timestamp: int | None = None
    bad_geometry: bool = False
    bad_topology: bool = False
    tag_defects: int = 0

    @property
    def key(self) -> tuple[ElementKind, int]:
        return (self.kind, self.osm_id)

    def geometry_ok(self) -> bool:
        if self.bad_geometry:
            return False
        if self.kind is ElementKind.NODE:
            return valid_coordinate(self.lat, self.lon)
        if self.shape is not None:
            return all(valid_coordinate(lat, lon) for lat, lon in self.shape)
        return True

    def topology_ok(self) -> bool:
        if self.bad_topology:
            return False
        if self.kind is ElementKind.WAY:
            points = len(self.shape) if self.shape is not None else len(self.refs)
            return points >= 2
        if self.kind is ElementKind.RELATION:
            return bool(self.refs) or bool(self.shape)
        return True

    def tag_error_count(self) -> int:
        count = self.tag_defects
        for key, value in self.tags.items():
            if not key.strip() or not value.strip():
                count += 1
            elif len(key) > MAX_TAG_LENGTH or len(value) > MAX_TAG_LENGTH:
                count += 1
        return count


@dataclass(slots=True, frozen=True)
class Malformed:
    """A record or block that could not be read; decoding continues past it."""

    reason: str
    blocks: int = 1


@dataclass(slots=True, frozen=True)
class StreamHeader:
    """Stream-level metadata, emitted at most once and before any record."""

    source_timestamp: datetime | None = None
    writing_program: str | None = None


DecodedItem = GeoRecord | Malformed | StreamHeader


class GeoDecoder(ABC):
    """Streams one encoding into records without holding the whole input.

    ``records`` raises DecodeError when the stream is not the declared
    format or is truncated past recovery; recoverable damage is yielded as
    ``Malformed`` items instead.
    """

    data_format: DataFormat

    @abstractmethod
    def records(self, stream: BinaryIO) -> Iterator[DecodedItem]:
        ...
