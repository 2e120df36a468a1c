"""OSM XML (XmlText) decoder built on ``ElementTree.iterparse``."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from datetime import datetime
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
from riemap.models.artifact import DataFormat
from riemap.models.common import ensure_utc

logger = logging.getLogger(__name__)

_KINDS = {"node": ElementKind.NODE, "way": ElementKind.WAY, "relation": ElementKind.RELATION}


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def _parse_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _element_record(kind: ElementKind, elem: ET.Element) -> GeoRecord | Malformed:
    try:
        osm_id = int(elem.attrib["id"])
    except (KeyError, ValueError):
        return Malformed(f"<{kind.value}> without a numeric id")

    tags: dict[str, str] = {}
    refs: list[int] = []
    defects = 0
    bad_refs = False
    for child in elem:
        if child.tag == "tag":
            key = child.get("k")
            if key is None:
                defects += 1
                continue
            tags[key] = child.get("v", "")
        elif child.tag in ("nd", "member"):
            try:
                refs.append(int(child.attrib["ref"]))
            except (KeyError, ValueError):
                bad_refs = True

    edited = _parse_time(elem.get("timestamp"))
    record = GeoRecord(
        kind,
        osm_id,
        tags,
        refs=tuple(refs),
        timestamp=int(edited.timestamp()) if edited else None,
        bad_topology=bad_refs,
        tag_defects=defects,
    )
    if kind is ElementKind.NODE:
        record.lat = _parse_float(elem.get("lat"))
        record.lon = _parse_float(elem.get("lon"))
    return record


class OsmXmlDecoder(GeoDecoder):
    """Streams ``<osm>`` documents element by element.

    Any XML syntax error, truncation included, is fatal: the parser cannot
    resynchronise after it.
    """

    data_format = DataFormat.XML_TEXT

    def records(self, stream: BinaryIO) -> Iterator[DecodedItem]:
        events = ET.iterparse(stream, events=("start", "end"))
        root: ET.Element | None = None
        depth = 0
        try:
            for event, elem in events:
                if root is None:
                    if elem.tag != "osm":
                        raise DecodeError(f"Expected an <osm> root element, found <{elem.tag}>.")
                    root = elem
                    yield StreamHeader(
                        source_timestamp=_parse_time(elem.get("timestamp")),
                        writing_program=elem.get("generator"),
                    )
                    continue

                if event == "start":
                    depth += 1
                    continue
                depth -= 1
                if depth != 0:
                    continue
                kind = _KINDS.get(elem.tag)
                if kind is not None:
                    yield _element_record(kind, elem)
                # Drop finished top-level elements so memory stays flat.
                root.clear()
        except ET.ParseError as exc:
            raise DecodeError(f"Malformed OSM XML: {exc}") from exc
        if root is None:
            raise DecodeError("Empty OSM XML stream.")
