"""Error taxonomy for the RieMap core.

Component-local problems (a single malformed feature) never surface as
exceptions; they are tallied as metrics. Everything below is raised to the
caller, and the job orchestrator records stage failures on the job.
"""


class RiemapError(Exception):
    """Base class for all RieMap errors."""


# --- Lookup failures (surfaced to caller, never retried) ---


class NotFoundError(RiemapError):
    """A region, version, report or job id is unknown."""


class RegionNotFoundError(NotFoundError):
    def __init__(self, region_id: str) -> None:
        self.region_id = region_id
        super().__init__(f"Region '{region_id}' not found.")


class ArtifactNotFoundError(NotFoundError):
    def __init__(self, region_id: str, version: str) -> None:
        self.region_id = region_id
        self.version = version
        super().__init__(f"No artifact for region '{region_id}' version '{version}'.")


class ReportNotFoundError(NotFoundError):
    def __init__(self, report_id: object) -> None:
        self.report_id = report_id
        super().__init__(f"Quality report {report_id} not found.")


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: object) -> None:
        self.job_id = job_id
        super().__init__(f"Processing job {job_id} not found.")


# --- Pipeline stage failures ---


class DecodeError(RiemapError):
    """The stream is not the declared format, or is truncated beyond recovery."""


class FetchError(RiemapError):
    """Upstream download failed after exhausting retries (or fatally)."""

    def __init__(self, message: str, *, attempts: int = 0, status_code: int | None = None) -> None:
        self.attempts = attempts
        self.status_code = status_code
        super().__init__(message)


class StorageError(RiemapError):
    """Disk I/O failure while publishing; nothing was made visible."""


class VersionConflictError(RiemapError):
    """A different artifact already exists under the same region and version."""

    def __init__(self, region_id: str, version: str) -> None:
        self.region_id = region_id
        self.version = version
        super().__init__(
            f"Version '{version}' of region '{region_id}' already exists with different content."
        )


class CatalogError(RiemapError):
    """The region list handed to a catalog reload is inconsistent."""


# --- Differ ---


class VersionNotFoundError(NotFoundError):
    def __init__(self, region_id: str, version: str) -> None:
        self.region_id = region_id
        self.version = version
        super().__init__(f"Version '{version}' of region '{region_id}' is not published.")


class InvalidOrderError(RiemapError):
    """from_version is chronologically after to_version."""

    def __init__(self, from_version: str, to_version: str) -> None:
        self.from_version = from_version
        self.to_version = to_version
        super().__init__(
            f"from_version '{from_version}' must not be later than to_version '{to_version}'."
        )


# --- Orchestrator ---


class AlreadyInProgressError(RiemapError):
    """Admission control rejected a request; the existing job is unaffected."""

    def __init__(self, region_id: str, job_id: object) -> None:
        self.region_id = region_id
        self.job_id = job_id
        super().__init__(f"Region '{region_id}' already has an active job ({job_id}).")


class RegionNotServedError(RiemapError):
    """The region exists but hosts no data artifacts (no upstream source)."""

    def __init__(self, region_id: str) -> None:
        self.region_id = region_id
        super().__init__(f"Region '{region_id}' does not provide data services.")


class InvalidTransitionError(ValueError, RiemapError):
    """A job state transition not permitted by the state machine."""


class JobCancelledError(RiemapError):
    """Raised at a checkpoint when cancellation was requested."""


class InvalidRangeError(RiemapError):
    """A requested byte range lies outside the artifact."""

    def __init__(self, start: int, end: int | None, size: int) -> None:
        self.start = start
        self.end = end
        self.size = size
        super().__init__(f"Range {start}-{'' if end is None else end} not satisfiable for {size} bytes.")
