"""Per-version feature indexes: (kind, id) -> (category, content digest)."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import BinaryIO

from riemap.ingestion.categories import classify
from riemap.ingestion.decoders.base import DecodedItem, GeoRecord
from riemap.ingestion.decoders.router import DecoderRouter
from riemap.models.artifact import DataFormat

logger = logging.getLogger(__name__)

FeatureKey = tuple[str, int]
FeatureEntry = tuple[str, bytes]


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogatepass")


def feature_digest(record: GeoRecord) -> bytes:
    """8-byte digest over sorted tags plus geometry (coords, refs or shape)."""
    hasher = hashlib.blake2b(digest_size=8)
    for key, value in sorted(record.tags.items()):
        hasher.update(_encode(key))
        hasher.update(b"\x00")
        hasher.update(_encode(value))
        hasher.update(b"\x00")
    hasher.update(b"\x01")
    if record.lat is not None and record.lon is not None:
        hasher.update(f"{record.lat:.7f},{record.lon:.7f}".encode())
    if record.refs:
        hasher.update(",".join(map(str, record.refs)).encode())
    if record.shape:
        hasher.update(";".join(f"{lat:.7f},{lon:.7f}" for lat, lon in record.shape).encode())
    return hasher.digest()


@dataclass(frozen=True)
class FeatureIndex:
    region_id: str
    version: str
    entries: dict[FeatureKey, FeatureEntry]

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_records(
        cls, region_id: str, version: str, items: Iterable[DecodedItem],
    ) -> FeatureIndex:
        """Index decoded records. Unreadable records have no identity and are skipped.

        A repeated id (history extracts) keeps its last occurrence.
        """
        entries: dict[FeatureKey, FeatureEntry] = {}
        for item in items:
            if isinstance(item, GeoRecord):
                entries[(item.kind.value, item.osm_id)] = (
                    classify(item.tags).value,
                    feature_digest(item),
                )
        return cls(region_id=region_id, version=version, entries=entries)


class FeatureIndexCache:
    """Thread-safe LRU of feature indexes keyed by (region, version, checksum)."""

    def __init__(self, router: DecoderRouter | None = None, max_entries: int = 4) -> None:
        self._router = router or DecoderRouter()
        self._max_entries = max_entries
        self._entries: OrderedDict[tuple[str, str, str], FeatureIndex] = OrderedDict()
        self._lock = threading.Lock()

    def get_or_build(
        self,
        region_id: str,
        version: str,
        checksum: str,
        data_format: DataFormat,
        open_stream: Callable[[], BinaryIO],
    ) -> FeatureIndex:
        key = (region_id, version, checksum)
        with self._lock:
            index = self._entries.get(key)
            if index is not None:
                self._entries.move_to_end(key)
                return index

        logger.info("Building feature index for %s %s", region_id, version)
        with open_stream() as stream:
            records = self._router.decoder_for(data_format).records(stream)
            index = FeatureIndex.from_records(region_id, version, records)

        with self._lock:
            self._entries[key] = index
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
        return index

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
