"""Source fetcher: streams upstream extracts to disk with retry and resume.

Downloads go to ``<temp_dir>/<region_id>.part``. A partial file left by an
earlier attempt (or an earlier job) is resumed with a ``Range`` request; a
server that answers 200 instead of 206 restarts the file from scratch.
Transport errors, timeouts, attempts that overrun their deadline, 429 and
5xx responses are retried with capped exponential backoff. Any other 4xx is fatal straight away.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path

import httpx

from riemap.config.settings import Settings
from riemap.errors import FetchError, JobCancelledError, RegionNotServedError
from riemap.models.artifact import DataFormat
from riemap.models.region import Region

logger = logging.getLogger(__name__)

_CONTENT_RANGE = re.compile(r"bytes\s+(\d+)-(\d+)/(\d+|\*)")
_HASH_CHUNK = 1024 * 1024

CancelCheck = Callable[[], bool]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class FetchResult:
    """A fully downloaded extract waiting in the temp directory."""

    region_id: str
    path: Path
    data_format: DataFormat
    size_bytes: int
    checksum: str
    last_modified: datetime | None
    attempts: int
    resumed: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and backoff schedule for one fetch."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0

    def compute_backoff_delays(self) -> list[float]:
        """Delay before each retry: base * 2**i, capped at max_delay."""
        return [
            min(self.base_delay * (2**i), self.max_delay)
            for i in range(self.max_attempts - 1)
        ]


class _RetryableStatus(Exception):
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"upstream answered HTTP {status_code}")


class _Incomplete(Exception):
    """Body ended before the advertised length; resume on the next attempt."""


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _sha256_file(path: Path) -> str:
    hasher = hashlib.sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(_HASH_CHUNK):
            hasher.update(chunk)
    return f"sha256:{hasher.hexdigest()}"


def _last_modified(response: httpx.Response) -> datetime | None:
    raw = response.headers.get("last-modified")
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None


class SourceFetcher:
    """Downloads a region's upstream extract.

    Pass ``client`` to reuse a connection pool (or a mock transport in
    tests); otherwise each fetch opens and closes its own client.
    """

    def __init__(
        self,
        temp_dir: str | Path,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        attempt_timeout: float | None = 3600.0,
        retry: RetryPolicy | None = None,
        chunk_size: int = 1024 * 1024,
        max_file_size: int = 1024 * 1024 * 1024,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._temp_dir = Path(temp_dir)
        self._client = client
        self._timeout = timeout
        self._attempt_timeout = attempt_timeout
        self._retry = retry or RetryPolicy()
        self._chunk_size = chunk_size
        self._max_file_size = max_file_size
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, settings: Settings, *, client: httpx.AsyncClient | None = None,
    ) -> SourceFetcher:
        return cls(
            settings.TEMP_DIR,
            client=client,
            timeout=settings.FETCH_TIMEOUT_SECONDS,
            attempt_timeout=settings.FETCH_ATTEMPT_TIMEOUT_SECONDS,
            retry=RetryPolicy(
                max_attempts=settings.FETCH_MAX_ATTEMPTS,
                base_delay=settings.FETCH_BACKOFF_BASE_SECONDS,
                max_delay=settings.FETCH_BACKOFF_MAX_SECONDS,
            ),
            chunk_size=settings.FETCH_CHUNK_SIZE,
            max_file_size=settings.MAX_FILE_SIZE,
        )

    def partial_path(self, region_id: str) -> Path:
        return self._temp_dir / f"{region_id}.part"

    def discard(self, region_id: str) -> None:
        """Delete any partial download for the region."""
        self.partial_path(region_id).unlink(missing_ok=True)

    async def fetch(
        self, region: Region, *, should_cancel: CancelCheck | None = None,
    ) -> FetchResult:
        """Download ``region.source_url`` completely.

        Raises:
            RegionNotServedError: The region has no upstream source.
            FetchError: Fatal response, size limit, or retries exhausted.
            JobCancelledError: ``should_cancel`` fired between chunks.
        """
        if not region.source_url:
            raise RegionNotServedError(region.region_id)
        data_format = DataFormat.from_filename(region.source_url)
        self._temp_dir.mkdir(parents=True, exist_ok=True)

        if self._client is not None:
            return await self._fetch_with(self._client, region, data_format, should_cancel)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._fetch_with(client, region, data_format, should_cancel)

    async def _fetch_with(
        self,
        client: httpx.AsyncClient,
        region: Region,
        data_format: DataFormat,
        should_cancel: CancelCheck | None,
    ) -> FetchResult:
        url = region.source_url or ""
        path = self.partial_path(region.region_id)
        delays = self._retry.compute_backoff_delays()
        last_error: Exception | None = None
        last_status: int | None = None
        resumed = False

        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                last_modified, was_resumed = await self._attempt(client, url, path, should_cancel)
            except (httpx.TransportError, _RetryableStatus, _Incomplete) as exc:
                last_error = exc
                last_status = getattr(exc, "status_code", None)
                if attempt >= self._retry.max_attempts:
                    break
                delay = delays[attempt - 1]
                logger.warning(
                    "Fetch attempt %d/%d for %s failed (%s); retrying in %.1fs",
                    attempt, self._retry.max_attempts, region.region_id, exc, delay,
                )
                await self._sleep(delay)
                continue
            except (FetchError, JobCancelledError):
                path.unlink(missing_ok=True)
                raise

            resumed = resumed or was_resumed
            size = path.stat().st_size
            checksum = await asyncio.to_thread(_sha256_file, path)
            logger.info(
                "Fetched %s (%d bytes) in %d attempt(s)", region.region_id, size, attempt,
            )
            return FetchResult(
                region_id=region.region_id,
                path=path,
                data_format=data_format,
                size_bytes=size,
                checksum=checksum,
                last_modified=last_modified,
                attempts=attempt,
                resumed=resumed,
            )

        # The partial file stays so a later job can resume it.
        msg = (
            f"Download of {region.region_id} failed after "
            f"{self._retry.max_attempts} attempts: {last_error}"
        )
        raise FetchError(msg, attempts=self._retry.max_attempts, status_code=last_status)

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        url: str,
        path: Path,
        should_cancel: CancelCheck | None,
    ) -> tuple[datetime | None, bool]:
        """One GET bounded by the per-attempt deadline.

        The httpx timeout bounds each network wait, not the whole attempt.
        Hitting the deadline leaves the partial file for the next attempt.
        """
        try:
            async with asyncio.timeout(self._attempt_timeout):
                return await self._stream(client, url, path, should_cancel)
        except TimeoutError as exc:
            raise _Incomplete(
                f"attempt exceeded {self._attempt_timeout:g}s deadline",
            ) from exc

    async def _stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        path: Path,
        should_cancel: CancelCheck | None,
    ) -> tuple[datetime | None, bool]:
        """One GET; returns (last_modified, resumed)."""
        offset = path.stat().st_size if path.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else {}

        async with client.stream("GET", url, headers=headers, timeout=self._timeout) as response:
            status = response.status_code
            if status == 416 and offset:
                # Stale partial no longer matches upstream; start over.
                path.unlink(missing_ok=True)
                raise _Incomplete("range not satisfiable for partial download")
            if _is_retryable(status):
                raise _RetryableStatus(status)
            if status >= 400:
                raise FetchError(
                    f"Upstream rejected {url} with HTTP {status}.", attempts=1, status_code=status,
                )

            resumed = False
            if status == 206 and offset:
                match = _CONTENT_RANGE.match(response.headers.get("content-range", ""))
                if match and int(match.group(1)) == offset:
                    resumed = True
                else:
                    path.unlink(missing_ok=True)
                    raise _Incomplete("server resumed at an unexpected offset")
            if not resumed:
                offset = 0

            length = response.headers.get("content-length")
            expected = offset + int(length) if length and length.isdigit() else None
            if expected is not None and expected > self._max_file_size:
                raise FetchError(
                    f"Extract at {url} is {expected} bytes, above the "
                    f"{self._max_file_size} byte limit.",
                )

            received = offset
            with path.open("ab" if resumed else "wb") as handle:
                async for chunk in response.aiter_bytes(self._chunk_size):
                    await asyncio.to_thread(handle.write, chunk)
                    received += len(chunk)
                    if received > self._max_file_size:
                        raise FetchError(
                            f"Extract at {url} exceeded the {self._max_file_size} byte limit.",
                        )
                    if should_cancel is not None and should_cancel():
                        raise JobCancelledError(f"Download of {url} cancelled.")

            if expected is not None and received < expected:
                raise _Incomplete(f"received {received} of {expected} bytes")
            return _last_modified(response), resumed
