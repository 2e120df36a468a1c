"""Region catalog: the read-mostly administrative hierarchy.

The catalog owns every Region. Parent/child links are ids resolved through
an immutable snapshot; ``reload`` builds a complete new snapshot and swaps a
single reference, so readers see either the old tree or the new one and
never need a lock.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from pydantic import ValidationError

from riemap.errors import CatalogError, RegionNotFoundError
from riemap.models.region import AdminLevel, Region

logger = logging.getLogger(__name__)


def _sort_key(region: Region) -> tuple[int, str]:
    return (region.admin_level.rank, region.name)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable, fully-linked view of the region tree."""

    regions: Mapping[str, Region]
    children: Mapping[str, tuple[str, ...]]
    roots: tuple[str, ...]

    @classmethod
    def build(cls, regions: Iterable[Region]) -> CatalogSnapshot:
        """Validate and link a region list.

        Parents must appear before their children, which makes cycles
        impossible by construction. A child sits at a strictly deeper
        administrative level than its parent.

        Raises:
            CatalogError: On duplicate ids, a parent not yet known, or a
                child level not below its parent.
        """
        by_id: dict[str, Region] = {}
        children: dict[str, list[Region]] = {}
        roots: list[Region] = []

        for region in regions:
            if region.region_id in by_id:
                msg = f"Duplicate region id '{region.region_id}'."
                raise CatalogError(msg)
            if region.parent_id is None:
                roots.append(region)
            elif region.parent_id not in by_id:
                msg = (
                    f"Region '{region.region_id}' references parent "
                    f"'{region.parent_id}' before it was defined."
                )
                raise CatalogError(msg)
            else:
                parent = by_id[region.parent_id]
                if region.admin_level.rank <= parent.admin_level.rank:
                    msg = (
                        f"Region '{region.region_id}' ({region.admin_level}) must sit "
                        f"below its parent '{parent.region_id}' ({parent.admin_level})."
                    )
                    raise CatalogError(msg)
                children.setdefault(region.parent_id, []).append(region)
            by_id[region.region_id] = region

        return cls(
            regions=MappingProxyType(by_id),
            children=MappingProxyType({
                parent: tuple(r.region_id for r in sorted(kids, key=_sort_key))
                for parent, kids in children.items()
            }),
            roots=tuple(r.region_id for r in sorted(roots, key=_sort_key)),
        )

    def get(self, region_id: str) -> Region:
        try:
            return self.regions[region_id]
        except KeyError:
            raise RegionNotFoundError(region_id) from None

    def child_ids(self, region_id: str) -> tuple[str, ...]:
        return self.children.get(region_id, ())


class RegionCatalog:
    """Read API over the current snapshot plus an administrative reload."""

    def __init__(self, regions: Iterable[Region] = ()) -> None:
        self._snapshot = CatalogSnapshot.build(regions)

    def reload(self, regions: Iterable[Region]) -> CatalogSnapshot:
        """Replace the whole tree. On validation failure the old tree stays."""
        snapshot = CatalogSnapshot.build(regions)
        self._snapshot = snapshot
        logger.info("Region catalog reloaded with %d regions", len(snapshot.regions))
        return snapshot

    def load_tree(self) -> CatalogSnapshot:
        """Return the current snapshot for read-only traversal."""
        return self._snapshot

    def __contains__(self, region_id: object) -> bool:
        return region_id in self._snapshot.regions

    def __len__(self) -> int:
        return len(self._snapshot.regions)

    def resolve(self, region_id: str) -> Region:
        """Raises RegionNotFoundError for unknown ids."""
        return self._snapshot.get(region_id)

    def roots(self) -> list[Region]:
        snapshot = self._snapshot
        return [snapshot.regions[rid] for rid in snapshot.roots]

    def children(self, region_id: str) -> list[Region]:
        """Direct children ordered by admin level, then name."""
        snapshot = self._snapshot
        snapshot.get(region_id)
        return [snapshot.regions[cid] for cid in snapshot.child_ids(region_id)]

    def ancestors_of(self, region_id: str) -> list[Region]:
        """Path from the top-level region down to (and including) region_id."""
        snapshot = self._snapshot
        path = [snapshot.get(region_id)]
        while path[-1].parent_id is not None:
            path.append(snapshot.regions[path[-1].parent_id])
        path.reverse()
        return path

    def search(
        self,
        query: str | None = None,
        *,
        admin_level: AdminLevel | None = None,
        parent_id: str | None = None,
    ) -> list[Region]:
        """Case-insensitive name search with optional level / parent filters."""
        needle = query.lower() if query else None
        results = []
        for region in self._snapshot.regions.values():
            if needle and needle not in region.name.lower():
                continue
            if admin_level is not None and region.admin_level != admin_level:
                continue
            if parent_id is not None and region.parent_id != parent_id:
                continue
            results.append(region)
        return sorted(results, key=_sort_key)

    def stats(self) -> dict[str, object]:
        """Counts by level plus total area and population."""
        regions = list(self._snapshot.regions.values())
        by_level = Counter(r.admin_level.value for r in regions)
        return {
            "total_regions": len(regions),
            "by_level": dict(by_level),
            "total_area_km2": sum(r.area_km2 for r in regions if r.area_km2 is not None),
            "total_population": sum(r.population for r in regions if r.population is not None),
        }


# ---------------------------------------------------------------------------
# JSON persistence
# ---------------------------------------------------------------------------


def load_regions_file(path: str | Path) -> list[Region]:
    """Read a JSON array of regions, in parent-before-child order.

    Raises:
        CatalogError: If the file is not a JSON array of valid regions.
    """
    raw = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Region file {path} is not valid JSON: {exc}"
        raise CatalogError(msg) from exc
    if not isinstance(data, list):
        msg = f"Region file {path} must contain a JSON array."
        raise CatalogError(msg)
    try:
        return [Region.model_validate(item) for item in data]
    except ValidationError as exc:
        msg = f"Region file {path} contains an invalid region: {exc}"
        raise CatalogError(msg) from exc


def save_regions_file(path: str | Path, regions: Iterable[Region]) -> None:
    """Write regions as a JSON array (round-trips with load_regions_file)."""
    payload = [r.model_dump(mode="json") for r in regions]
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
