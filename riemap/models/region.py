"""Region hierarchy models: admin levels, bounding boxes, regions, tree nodes."""

from __future__ import annotations

import math
from enum import StrEnum

from pydantic import Field, model_validator

from riemap.models.artifact import DataFile
from riemap.models.common import RiemapBase, UTCTimestamp

# Rough conversion used for approximate areas.
_KM_PER_DEGREE = 111.0


class AdminLevel(StrEnum):
    """Administrative levels, ordered World < Continent < Country < SubRegion."""

    WORLD = "WORLD"
    CONTINENT = "CONTINENT"
    COUNTRY = "COUNTRY"
    SUBREGION = "SUBREGION"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK: dict[AdminLevel, int] = {
    AdminLevel.WORLD: 0,
    AdminLevel.CONTINENT: 1,
    AdminLevel.COUNTRY: 2,
    AdminLevel.SUBREGION: 3,
}


class BoundingBox(RiemapBase, frozen=True):
    """Geographic bounding box in WGS84 degrees."""

    min_lat: float = Field(ge=-90.0, le=90.0)
    min_lon: float = Field(ge=-180.0, le=180.0)
    max_lat: float = Field(ge=-90.0, le=90.0)
    max_lon: float = Field(ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def _check_ordering(self) -> BoundingBox:
        if self.min_lat > self.max_lat:
            msg = f"min_lat ({self.min_lat}) must not exceed max_lat ({self.max_lat})."
            raise ValueError(msg)
        if self.min_lon > self.max_lon:
            msg = f"min_lon ({self.min_lon}) must not exceed max_lon ({self.max_lon})."
            raise ValueError(msg)
        return self

    def area_km2(self) -> float:
        """Approximate area, treating a degree as 111 km scaled by latitude."""
        lat_km = (self.max_lat - self.min_lat) * _KM_PER_DEGREE
        mid_lat = math.radians((self.min_lat + self.max_lat) / 2.0)
        lon_km = (self.max_lon - self.min_lon) * _KM_PER_DEGREE * math.cos(mid_lat)
        return lat_km * lon_km

    def center(self) -> tuple[float, float]:
        """Return the (lat, lon) center point."""
        return (
            (self.min_lat + self.max_lat) / 2.0,
            (self.min_lon + self.max_lon) / 2.0,
        )

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon

    def to_geojson_polygon(self) -> dict:
        """Closed GeoJSON polygon ring (lon, lat order)."""
        return {
            "type": "Polygon",
            "coordinates": [[
                [self.min_lon, self.min_lat],
                [self.max_lon, self.min_lat],
                [self.max_lon, self.max_lat],
                [self.min_lon, self.max_lat],
                [self.min_lon, self.min_lat],
            ]],
        }


class Region(RiemapBase, frozen=True):
    """A named administrative area.

    Parent and children are referenced by id only; the catalog resolves them.
    """

    region_id: str = Field(min_length=1)
    name: str
    admin_level: AdminLevel
    parent_id: str | None = None
    bounding_box: BoundingBox
    area_km2: float | None = Field(default=None, ge=0.0)
    population: int | None = Field(default=None, ge=0)
    country_code: str | None = None
    source_url: str | None = Field(
        default=None,
        description="Upstream extract URL for regions that host artifacts.",
    )
    provides_data_services: bool = False


class DownloadStats(RiemapBase):
    """Per-region artifact statistics shown alongside tree nodes."""

    file_count: int = 0
    total_size_mb: float = 0.0
    last_updated: UTCTimestamp | None = None


class RegionTreeNode(RiemapBase):
    """A region with its data files and nested children, for tree browsing."""

    region: Region
    data_files: list[DataFile] = Field(default_factory=list)
    download_stats: DownloadStats = Field(default_factory=DownloadStats)
    children: list[RegionTreeNode] = Field(default_factory=list)
