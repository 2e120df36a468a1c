"""Version differ: directional comparison of two published versions.

Identity is the (kind, id) pair. Aggregate totals count a feature whose
category changed as modified. Per-category tallies count that same feature
as deleted from its old category and added to its new one, so
``total_from + added == total_to + deleted`` holds for every category and
for the aggregate.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field

from riemap.catalog.catalog import RegionCatalog
from riemap.diff.index import FeatureIndex, FeatureIndexCache
from riemap.errors import InvalidOrderError, VersionNotFoundError
from riemap.ingestion.categories import FeatureCategory
from riemap.models.artifact import DataFile
from riemap.models.comparison import CategoryChange, RegionComparison
from riemap.storage.artifacts import ArtifactStore
from riemap.stores import ReportStore

logger = logging.getLogger(__name__)


@dataclass
class IndexDiff:
    """Raw tallies between two feature indexes."""

    total_from: int = 0
    total_to: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0
    recategorized: int = 0
    category_from: Counter[str] = field(default_factory=Counter)
    category_to: Counter[str] = field(default_factory=Counter)
    category_added: Counter[str] = field(default_factory=Counter)
    category_modified: Counter[str] = field(default_factory=Counter)
    category_deleted: Counter[str] = field(default_factory=Counter)

    def category_changes(self) -> list[CategoryChange]:
        """One row per closed category, plus any unexpected category seen."""
        names = [c.value for c in FeatureCategory]
        seen = set(self.category_from) | set(self.category_to)
        names += sorted(seen - set(names))
        return [
            CategoryChange(
                category=name,
                total_from=self.category_from[name],
                total_to=self.category_to[name],
                added=self.category_added[name],
                modified=self.category_modified[name],
                deleted=self.category_deleted[name],
            )
            for name in names
        ]


def diff_indexes(old: FeatureIndex, new: FeatureIndex) -> IndexDiff:
    result = IndexDiff(total_from=len(old), total_to=len(new))
    new_entries = new.entries

    for key, (category, digest) in old.entries.items():
        result.category_from[category] += 1
        match = new_entries.get(key)
        if match is None:
            result.deleted += 1
            result.category_deleted[category] += 1
            continue
        new_category, new_digest = match
        if new_category != category:
            result.modified += 1
            result.recategorized += 1
            result.category_deleted[category] += 1
            result.category_added[new_category] += 1
        elif new_digest != digest:
            result.modified += 1
            result.category_modified[category] += 1

    old_entries = old.entries
    for key, (category, _) in new_entries.items():
        result.category_to[category] += 1
        if key not in old_entries:
            result.added += 1
            result.category_added[category] += 1
    return result


class VersionDiffer:
    """Compares two stored versions of a region on demand."""

    def __init__(
        self,
        catalog: RegionCatalog,
        store: ArtifactStore,
        reports: ReportStore | None = None,
        cache: FeatureIndexCache | None = None,
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._reports = reports
        self._cache = cache or FeatureIndexCache()

    async def compare(self, region_id: str, from_version: str, to_version: str) -> RegionComparison:
        """Compare ``from_version`` -> ``to_version``.

        Raises:
            RegionNotFoundError: Unknown region.
            InvalidOrderError: ``from_version`` sorts after ``to_version``.
                Checked before either version is looked up.
            VersionNotFoundError: Either version is not published.
            DecodeError: A stored artifact no longer decodes.
        """
        self._catalog.resolve(region_id)
        if from_version > to_version:
            raise InvalidOrderError(from_version, to_version)
        old_file = self._require(region_id, from_version)
        new_file = self._require(region_id, to_version)

        old_index = await asyncio.to_thread(self._index, old_file)
        if from_version == to_version:
            new_index = old_index
        else:
            new_index = await asyncio.to_thread(self._index, new_file)
        result = diff_indexes(old_index, new_index)

        comparison = RegionComparison(
            region_id=region_id,
            from_version=from_version,
            to_version=to_version,
            categories=result.category_changes(),
            total_from=result.total_from,
            total_to=result.total_to,
            added=result.added,
            modified=result.modified,
            deleted=result.deleted,
            recategorized=result.recategorized,
            file_size_change=new_file.size_bytes - old_file.size_bytes,
            quality_score_change=await self._score_change(old_file, new_file),
            summary=(
                f"{result.added:,} added, {result.modified:,} modified, "
                f"{result.deleted:,} deleted between {from_version} and {to_version}."
            ),
        )
        logger.info(
            "Compared %s %s..%s: +%d ~%d -%d",
            region_id, from_version, to_version,
            result.added, result.modified, result.deleted,
        )
        return comparison

    def _require(self, region_id: str, version: str) -> DataFile:
        if not self._store.has_version(region_id, version):
            raise VersionNotFoundError(region_id, version)
        return self._store.get(region_id, version)

    def _index(self, data_file: DataFile) -> FeatureIndex:
        return self._cache.get_or_build(
            data_file.region_id,
            data_file.version,
            data_file.checksum,
            data_file.format,
            lambda: self._store.read(data_file.region_id, data_file.version),
        )

    async def _score_change(self, old_file: DataFile, new_file: DataFile) -> float | None:
        if self._reports is None:
            return None
        if old_file.quality_report_id is None or new_file.quality_report_id is None:
            return None
        old_report = await self._reports.get(old_file.quality_report_id)
        new_report = await self._reports.get(new_file.quality_report_id)
        if old_report is None or new_report is None:
            return None
        return round(new_report.overall_score - old_report.overall_score, 2)
