"""Versioned artifact storage with an atomic per-region latest pointer.

Layout under the store root::

    <region_id>/
        <version>.<ext>          raw extract bytes (immutable)
        <version>.meta.json      DataFile metadata record
        LATEST                   {"version": ...} pointer record

Publishing writes the data and metadata to temporary files in the region
directory, renames them into place, and only then swaps the pointer with
``os.replace``. A crash at any point leaves the previous pointer intact, and
a version becomes visible only once its metadata record exists, which is
always after its data file.

Publishes for a region are serialized by a per-region lock. Readers never
take the lock; they read the pointer first and then the metadata records.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import BinaryIO
from uuid import UUID

from riemap.catalog.catalog import RegionCatalog
from riemap.errors import (
    ArtifactNotFoundError,
    InvalidRangeError,
    StorageError,
    VersionConflictError,
)
from riemap.models.artifact import DataFile, DataFormat
from riemap.models.common import utc_now

logger = logging.getLogger(__name__)

_POINTER_NAME = "LATEST"
_META_SUFFIX = ".meta.json"
_TEMP_PREFIX = ".tmp-"
_COPY_CHUNK = 1024 * 1024
_VERSION_PATTERN = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._-]*$")


def _fsync_dir(path: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ArtifactStore:
    """Filesystem-backed store of immutable, versioned region extracts."""

    def __init__(self, root: str | Path, catalog: RegionCatalog) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._catalog = catalog
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def _region_dir(self, region_id: str) -> Path:
        self._catalog.resolve(region_id)
        return self._root / region_id

    def _region_lock(self, region_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(region_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[region_id] = lock
            return lock

    @staticmethod
    def _validate_version(version: str) -> None:
        if not _VERSION_PATTERN.match(version) or version.endswith(".meta"):
            msg = f"Invalid version identifier: {version!r}"
            raise ValueError(msg)

    # ------------------------------------------------------------------
    # Metadata records
    # ------------------------------------------------------------------

    def _read_pointer(self, region_dir: Path) -> str | None:
        try:
            raw = (region_dir / _POINTER_NAME).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return json.loads(raw)["version"]

    @staticmethod
    def _read_meta(meta_path: Path, latest_version: str | None) -> DataFile:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
        data["is_latest"] = data["version"] == latest_version
        return DataFile.model_validate(data)

    def _meta_path(self, region_dir: Path, version: str) -> Path:
        return region_dir / f"{version}{_META_SUFFIX}"

    def _data_path(self, region_dir: Path, data_file: DataFile) -> Path:
        return region_dir / data_file.filename

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        region_id: str,
        version: str,
        data_format: DataFormat,
        content: bytes | BinaryIO,
        *,
        quality_report_id: UUID | None = None,
    ) -> DataFile:
        """Store a new version and make it the region's latest.

        Re-publishing an existing version with byte-identical content is an
        idempotent no-op that returns the stored DataFile (the pointer is not
        moved). Different content under an existing version is rejected.

        Raises:
            RegionNotFoundError: Unknown region.
            VersionConflictError: Version exists with different content.
            StorageError: Any I/O failure; nothing partial is left visible.
        """
        self._validate_version(version)
        region_dir = self._region_dir(region_id)
        stream = io.BytesIO(content) if isinstance(content, (bytes, bytearray)) else content

        with self._region_lock(region_id):
            temp_paths: list[Path] = []
            try:
                region_dir.mkdir(parents=True, exist_ok=True)
                data_tmp, size, checksum = self._write_temp_data(region_dir, stream)
                temp_paths.append(data_tmp)

                meta_path = self._meta_path(region_dir, version)
                if meta_path.exists():
                    existing = self._read_meta(meta_path, self._read_pointer(region_dir))
                    if existing.checksum != checksum:
                        raise VersionConflictError(region_id, version)
                    logger.info(
                        "Version %s of %s already published with identical content",
                        version, region_id,
                    )
                    return existing

                data_file = DataFile(
                    region_id=region_id,
                    version=version,
                    format=data_format,
                    size_bytes=size,
                    checksum=checksum,
                    created_at=utc_now(),
                    is_latest=True,
                    quality_report_id=quality_report_id,
                )
                meta_tmp = self._write_temp_text(
                    region_dir,
                    data_file.model_dump_json(exclude={"is_latest", "download_url"}),
                )
                temp_paths.append(meta_tmp)

                data_path = self._data_path(region_dir, data_file)
                os.replace(data_tmp, data_path)
                temp_paths[0] = data_path
                os.replace(meta_tmp, meta_path)
                temp_paths[1] = meta_path
                _fsync_dir(region_dir)

                self._swap_pointer(region_dir, version)
                temp_paths.clear()
            except OSError as exc:
                msg = f"Failed to publish {region_id} version {version}: {exc}"
                raise StorageError(msg) from exc
            finally:
                # Anything still listed here was never made latest: roll it back.
                for path in reversed(temp_paths):
                    path.unlink(missing_ok=True)

        logger.info(
            "Published %s version %s (%d bytes, %s)",
            region_id, version, data_file.size_bytes, data_format.value,
        )
        return data_file

    def _write_temp_data(self, region_dir: Path, stream: BinaryIO) -> tuple[Path, int, str]:
        hasher = hashlib.sha256()
        size = 0
        with tempfile.NamedTemporaryFile(
            dir=region_dir, prefix=_TEMP_PREFIX, delete=False,
        ) as handle:
            path = Path(handle.name)
            try:
                while chunk := stream.read(_COPY_CHUNK):
                    hasher.update(chunk)
                    handle.write(chunk)
                    size += len(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            except BaseException:
                path.unlink(missing_ok=True)
                raise
        return path, size, f"sha256:{hasher.hexdigest()}"

    def _write_temp_text(self, region_dir: Path, text: str) -> Path:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=region_dir, prefix=_TEMP_PREFIX, delete=False,
        ) as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        return Path(handle.name)

    def _swap_pointer(self, region_dir: Path, version: str) -> None:
        record = json.dumps({"version": version, "updated_at": utc_now().isoformat()})
        pointer_tmp = self._write_temp_text(region_dir, record)
        try:
            os.replace(pointer_tmp, region_dir / _POINTER_NAME)
        except OSError:
            pointer_tmp.unlink(missing_ok=True)
            raise
        _fsync_dir(region_dir)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_versions(self, region_id: str) -> list[DataFile]:
        """All published versions, newest creation time first."""
        region_dir = self._region_dir(region_id)
        if not region_dir.exists():
            return []
        latest_version = self._read_pointer(region_dir)
        files = [
            self._read_meta(meta_path, latest_version)
            for meta_path in region_dir.glob(f"*{_META_SUFFIX}")
        ]
        files.sort(key=lambda f: (f.created_at, f.version), reverse=True)
        return files

    def get(self, region_id: str, version: str) -> DataFile:
        """Raises ArtifactNotFoundError when the version is not published."""
        region_dir = self._region_dir(region_id)
        meta_path = self._meta_path(region_dir, version)
        latest_version = self._read_pointer(region_dir) if region_dir.exists() else None
        try:
            return self._read_meta(meta_path, latest_version)
        except FileNotFoundError:
            raise ArtifactNotFoundError(region_id, version) from None

    def has_version(self, region_id: str, version: str) -> bool:
        return self._meta_path(self._region_dir(region_id), version).exists()

    def latest(self, region_id: str) -> DataFile | None:
        """Latest DataFile, or None if the region was never processed.

        Raises:
            RegionNotFoundError: Unknown region (distinct from None).
        """
        region_dir = self._region_dir(region_id)
        if not region_dir.exists():
            return None
        version = self._read_pointer(region_dir)
        if version is None:
            return None
        return self._read_meta(self._meta_path(region_dir, version), version)

    def read(self, region_id: str, version: str) -> BinaryIO:
        """Open the artifact bytes for streaming. Caller closes the handle."""
        data_file = self.get(region_id, version)
        path = self._data_path(self._root / region_id, data_file)
        try:
            return path.open("rb")
        except FileNotFoundError:
            raise ArtifactNotFoundError(region_id, version) from None

    def read_range(
        self,
        region_id: str,
        version: str,
        start: int = 0,
        end: int | None = None,
        *,
        chunk_size: int = 64 * 1024,
    ) -> Iterator[bytes]:
        """Yield bytes ``start..end`` inclusive (HTTP Range semantics).

        The range is validated eagerly, before the first chunk is requested.
        """
        data_file = self.get(region_id, version)
        size = data_file.size_bytes
        if start < 0 or start >= max(size, 1) or (end is not None and end < start):
            raise InvalidRangeError(start, end, size)
        last = size - 1 if end is None else min(end, size - 1)
        handle = self.read(region_id, version)
        return self._iter_range(handle, start, last - start + 1, chunk_size)

    @staticmethod
    def _iter_range(handle: BinaryIO, start: int, length: int, chunk_size: int) -> Iterator[bytes]:
        with handle:
            handle.seek(start)
            remaining = length
            while remaining > 0:
                chunk = handle.read(min(chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk

    # ------------------------------------------------------------------
    # Retention / recovery
    # ------------------------------------------------------------------

    def prune(self, region_id: str, keep: int) -> list[str]:
        """Delete all but the newest ``keep`` versions. The latest always stays.

        Returns the removed version identifiers.
        """
        if keep < 1:
            msg = "keep must be at least 1."
            raise ValueError(msg)
        region_dir = self._region_dir(region_id)
        removed: list[str] = []
        with self._region_lock(region_id):
            files = self.list_versions(region_id)
            for data_file in files[keep:]:
                if data_file.is_latest:
                    continue
                try:
                    self._meta_path(region_dir, data_file.version).unlink(missing_ok=True)
                    self._data_path(region_dir, data_file).unlink(missing_ok=True)
                except OSError as exc:
                    msg = f"Failed to prune {region_id} version {data_file.version}: {exc}"
                    raise StorageError(msg) from exc
                removed.append(data_file.version)
        if removed:
            logger.info("Pruned %d old versions of %s", len(removed), region_id)
        return removed

    def recover(self) -> int:
        """Remove temp files left behind by interrupted publishes."""
        count = 0
        for path in self._root.glob(f"*/{_TEMP_PREFIX}*"):
            path.unlink(missing_ok=True)
            count += 1
        if count:
            logger.warning("Removed %d orphaned temp files from %s", count, self._root)
        return count

    def total_size(self, region_id: str) -> int:
        return sum(f.size_bytes for f in self.list_versions(region_id))

    def last_updated(self, region_id: str) -> datetime | None:
        latest = self.latest(region_id)
        return latest.created_at if latest else None

