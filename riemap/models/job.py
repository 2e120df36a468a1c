"""Processing job models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from riemap.models.common import RiemapBase, UTCTimestamp, UUIDv7, new_uuid7, utc_now


class JobType(StrEnum):
    """Kinds of tracked work."""

    PROCESS = "PROCESS"
    DOWNLOAD = "DOWNLOAD"
    DECODE = "DECODE"
    QUALITY_ANALYSIS = "QUALITY_ANALYSIS"
    CLEANUP = "CLEANUP"


class JobStatus(StrEnum):
    """Job lifecycle states. PENDING is the only initial state."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class ProcessingJob(RiemapBase, frozen=True):
    """Snapshot of one unit of fetch -> decode -> analyze -> publish work.

    Snapshots are immutable; the orchestrator replaces them on every change.
    """

    job_id: UUIDv7 = Field(default_factory=new_uuid7)
    region_id: str
    job_type: JobType = JobType.PROCESS
    status: JobStatus = JobStatus.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str | None = None
    version: str | None = Field(
        default=None,
        description="Artifact version published by this job, once completed.",
    )
    cancel_requested: bool = False
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    started_at: UTCTimestamp | None = None
    completed_at: UTCTimestamp | None = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal
