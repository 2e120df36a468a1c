"""Built-in Geofabrik-style region hierarchy.

Used when no REGIONS_FILE is configured and by ``riemap init``. Regions are
listed parent-first so the list can be handed straight to a catalog reload.
"""

from __future__ import annotations

from riemap.models.region import AdminLevel, BoundingBox, Region

GEOFABRIK_BASE_URL = "https://download.geofabrik.de"

_CONTINENTS: list[tuple[str, str, tuple[float, float, float, float]]] = [
    ("africa", "Africa", (-35.0, -20.0, 38.0, 55.0)),
    ("antarctica", "Antarctica", (-90.0, -180.0, -60.0, 180.0)),
    ("asia", "Asia", (-11.0, 25.0, 82.0, 180.0)),
    ("australia-oceania", "Australia and Oceania", (-55.0, 110.0, 0.0, 180.0)),
    ("europe", "Europe", (35.0, -25.0, 72.0, 45.0)),
    ("north-america", "North America", (15.0, -180.0, 85.0, -50.0)),
    ("south-america", "South America", (-60.0, -85.0, 15.0, -30.0)),
]

# (id, name, bbox, population, ISO code)
_EUROPEAN_COUNTRIES: list[tuple[str, str, tuple[float, float, float, float], int, str]] = [
    ("germany", "Germany", (47.2, 5.8, 55.1, 15.0), 83_200_000, "DE"),
    ("france", "France", (41.3, -5.5, 51.1, 9.6), 67_800_000, "FR"),
    ("spain", "Spain", (35.9, -9.3, 43.8, 4.3), 47_400_000, "ES"),
    ("italy", "Italy", (36.6, 6.6, 47.1, 18.5), 59_100_000, "IT"),
    ("united-kingdom", "United Kingdom", (49.9, -8.6, 60.9, 1.8), 67_500_000, "GB"),
    ("poland", "Poland", (49.0, 14.1, 54.8, 24.1), 38_000_000, "PL"),
    ("austria", "Austria", (46.4, 9.5, 49.0, 17.2), 9_000_000, "AT"),
    ("switzerland", "Switzerland", (45.8, 5.9, 47.8, 10.5), 8_700_000, "CH"),
    ("liechtenstein", "Liechtenstein", (47.048, 9.471, 47.270, 9.636), 39_000, "LI"),
]

_GERMAN_STATES: list[tuple[str, str, tuple[float, float, float, float]]] = [
    ("baden-wuerttemberg", "Baden-Württemberg", (47.5, 7.5, 49.8, 10.5)),
    ("bayern", "Bayern", (47.3, 8.9, 50.6, 13.8)),
    ("berlin", "Berlin", (52.3, 13.1, 52.7, 13.8)),
    ("brandenburg", "Brandenburg", (51.4, 11.2, 53.6, 14.8)),
    ("hamburg", "Hamburg", (53.4, 9.7, 53.8, 10.3)),
]


def _bbox(values: tuple[float, float, float, float]) -> BoundingBox:
    min_lat, min_lon, max_lat, max_lon = values
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


def default_regions() -> list[Region]:
    """World, continents, European countries and a few German states."""
    regions = [
        Region(
            region_id="world",
            name="World",
            admin_level=AdminLevel.WORLD,
            bounding_box=_bbox((-90.0, -180.0, 90.0, 180.0)),
        )
    ]

    for region_id, name, bbox in _CONTINENTS:
        regions.append(
            Region(
                region_id=region_id,
                name=name,
                admin_level=AdminLevel.CONTINENT,
                parent_id="world",
                bounding_box=_bbox(bbox),
            )
        )

    for region_id, name, bbox, population, code in _EUROPEAN_COUNTRIES:
        box = _bbox(bbox)
        regions.append(
            Region(
                region_id=region_id,
                name=name,
                admin_level=AdminLevel.COUNTRY,
                parent_id="europe",
                bounding_box=box,
                area_km2=box.area_km2(),
                population=population,
                country_code=code,
                source_url=f"{GEOFABRIK_BASE_URL}/europe/{region_id}-latest.osm.pbf",
                provides_data_services=True,
            )
        )

    for state_id, name, bbox in _GERMAN_STATES:
        box = _bbox(bbox)
        regions.append(
            Region(
                region_id=f"germany-{state_id}",
                name=name,
                admin_level=AdminLevel.SUBREGION,
                parent_id="germany",
                bounding_box=box,
                area_km2=box.area_km2(),
                country_code="DE",
                source_url=f"{GEOFABRIK_BASE_URL}/europe/germany/{state_id}-latest.osm.pbf",
                provides_data_services=True,
            )
        )

    return regions
