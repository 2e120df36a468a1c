"""Artifact models: data formats and versioned data files."""

from __future__ import annotations

from enum import StrEnum
from uuid import UUID

from pydantic import Field, computed_field

from riemap.models.common import RiemapBase, UTCTimestamp


class DataFormat(StrEnum):
    """Closed set of raw extract encodings."""

    PACKED_BINARY = "PACKED_BINARY"
    XML_TEXT = "XML_TEXT"
    JSON_FEATURES = "JSON_FEATURES"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]

    @classmethod
    def from_filename(cls, name: str) -> DataFormat:
        """Infer the encoding from a file name or URL path.

        Raises:
            ValueError: If the suffix matches no known encoding.
        """
        lowered = name.lower().split("?", 1)[0]
        for suffix, data_format in _SUFFIXES:
            if lowered.endswith(suffix):
                return data_format
        msg = f"Cannot infer data format from '{name}'."
        raise ValueError(msg)


_EXTENSIONS: dict[DataFormat, str] = {
    DataFormat.PACKED_BINARY: "osm.pbf",
    DataFormat.XML_TEXT: "osm",
    DataFormat.JSON_FEATURES: "geojsonl",
}

_MEDIA_TYPES: dict[DataFormat, str] = {
    DataFormat.PACKED_BINARY: "application/x-protobuf",
    DataFormat.XML_TEXT: "application/xml",
    DataFormat.JSON_FEATURES: "application/geo+json-seq",
}

_SUFFIXES: tuple[tuple[str, DataFormat], ...] = (
    (".osm.pbf", DataFormat.PACKED_BINARY),
    (".pbf", DataFormat.PACKED_BINARY),
    (".osm.xml", DataFormat.XML_TEXT),
    (".osm", DataFormat.XML_TEXT),
    (".geojsonl", DataFormat.JSON_FEATURES),
    (".geojsonseq", DataFormat.JSON_FEATURES),
    (".ndjson", DataFormat.JSON_FEATURES),
)


class DataFile(RiemapBase, frozen=True):
    """One immutable, versioned snapshot of a region's data.

    ``is_latest`` is not stored with the artifact: the store derives it from
    the region's latest pointer each time a DataFile is read back.
    """

    region_id: str
    version: str
    format: DataFormat
    size_bytes: int = Field(ge=0)
    checksum: str = Field(description="Canonical 'sha256:<hex>' digest of the bytes.")
    created_at: UTCTimestamp
    is_latest: bool = False
    quality_report_id: UUID | None = None

    @property
    def data_file_id(self) -> str:
        return f"{self.region_id}_{self.version}"

    @property
    def filename(self) -> str:
        return f"{self.version}.{self.format.extension}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def download_url(self) -> str:
        return f"/download/{self.region_id}/{self.version}"
