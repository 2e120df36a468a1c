"""Streaming fold of decoded records into countable totals."""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from riemap.errors import JobCancelledError
from riemap.ingestion.categories import classify, has_semantic_tags
from riemap.ingestion.decoders.base import ElementKind, GeoRecord, Malformed, StreamHeader
from riemap.models.artifact import DataFormat

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10_000

CancelCheck = Callable[[], bool]


@dataclass
class DecodedDataset:
    """Counts, defect tallies and histograms for one decoded artifact.

    Only aggregates are kept; records are discarded once folded in.
    """

    data_format: DataFormat
    total_nodes: int = 0
    total_ways: int = 0
    total_relations: int = 0
    tagged_nodes: int = 0
    tagged_ways: int = 0
    tagged_relations: int = 0
    geometry_errors: int = 0
    topology_errors: int = 0
    tag_errors: int = 0
    malformed_blocks: int = 0
    feature_distribution: Counter[str] = field(default_factory=Counter)
    edit_years: Counter[int] = field(default_factory=Counter)
    source_timestamp: datetime | None = None
    writing_program: str | None = None

    @property
    def total_features(self) -> int:
        return self.total_nodes + self.total_ways + self.total_relations

    @property
    def tagged_features(self) -> int:
        return self.tagged_nodes + self.tagged_ways + self.tagged_relations

    def add(self, record: GeoRecord) -> None:
        tagged = has_semantic_tags(record.tags)
        if record.kind is ElementKind.NODE:
            self.total_nodes += 1
            self.tagged_nodes += tagged
        elif record.kind is ElementKind.WAY:
            self.total_ways += 1
            self.tagged_ways += tagged
        else:
            self.total_relations += 1
            self.tagged_relations += tagged

        if not record.geometry_ok():
            self.geometry_errors += 1
        if not record.topology_ok():
            self.topology_errors += 1
        self.tag_errors += record.tag_error_count()
        self.feature_distribution[classify(record.tags).value] += 1

        if record.timestamp is not None:
            try:
                self.edit_years[time.gmtime(record.timestamp).tm_year] += 1
            except (OverflowError, OSError, ValueError):
                logger.debug("Ignoring out-of-range timestamp on %s %d", record.kind, record.osm_id)

    def add_malformed(self, item: Malformed) -> None:
        # An unreadable record has no usable geometry either.
        self.malformed_blocks += item.blocks
        self.geometry_errors += item.blocks

    def apply_header(self, header: StreamHeader) -> None:
        self.source_timestamp = header.source_timestamp
        self.writing_program = header.writing_program


def fold_records(
    items: Iterable[GeoRecord | Malformed | StreamHeader],
    data_format: DataFormat,
    *,
    should_cancel: CancelCheck | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> DecodedDataset:
    """Fold a record stream into a DecodedDataset.

    ``should_cancel`` is polled once per ``batch_size`` items; a true result
    raises JobCancelledError.
    """
    dataset = DecodedDataset(data_format=data_format)
    seen = 0
    for item in items:
        if isinstance(item, GeoRecord):
            dataset.add(item)
        elif isinstance(item, Malformed):
            logger.warning("Skipping malformed %s data: %s", data_format.value, item.reason)
            dataset.add_malformed(item)
        else:
            dataset.apply_header(item)

        seen += 1
        if should_cancel is not None and seen % batch_size == 0 and should_cancel():
            raise JobCancelledError(f"Decode cancelled after {seen} records.")

    logger.info(
        "Decoded %d nodes, %d ways, %d relations (%d malformed blocks)",
        dataset.total_nodes, dataset.total_ways, dataset.total_relations,
        dataset.malformed_blocks,
    )
    return dataset
