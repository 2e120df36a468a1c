"""Processing job state machine.

PENDING -> RUNNING -> {COMPLETED, FAILED, CANCELLED}

PENDING is the only initial state and the three outcomes are terminal.
Snapshots are immutable; every transition returns a new ProcessingJob.
"""

from __future__ import annotations

from riemap.errors import InvalidTransitionError
from riemap.models.common import utc_now
from riemap.models.job import JobStatus, ProcessingJob

VALID_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def transition(
    job: ProcessingJob,
    to_status: JobStatus,
    *,
    message: str | None = None,
    progress: float | None = None,
    version: str | None = None,
) -> ProcessingJob:
    """Return ``job`` moved to ``to_status``.

    Raises:
        InvalidTransitionError: If the move is not in VALID_JOB_TRANSITIONS.
    """
    allowed = VALID_JOB_TRANSITIONS[job.status]
    if to_status not in allowed:
        msg = (
            f"Cannot transition job {job.job_id} from {job.status} to {to_status}. "
            f"Allowed: {sorted(s.value for s in allowed)}."
        )
        raise InvalidTransitionError(msg)

    now = utc_now()
    update: dict[str, object] = {"status": to_status}
    if message is not None:
        update["message"] = message
    if progress is not None:
        update["progress"] = progress
    if version is not None:
        update["version"] = version
    if to_status is JobStatus.RUNNING:
        update["started_at"] = now
    if to_status.is_terminal:
        update["completed_at"] = now
    return job.model_copy(update=update)


def advance(job: ProcessingJob, progress: float, message: str) -> ProcessingJob:
    """Record a stage boundary on a running job."""
    if job.status is not JobStatus.RUNNING:
        msg = f"Job {job.job_id} is {job.status}; progress only moves while RUNNING."
        raise InvalidTransitionError(msg)
    if progress < job.progress:
        msg = f"Job {job.job_id} progress cannot go back from {job.progress} to {progress}."
        raise InvalidTransitionError(msg)
    return job.model_copy(update={"progress": progress, "message": message})
