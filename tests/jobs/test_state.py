"""Tests for the processing job state machine."""

import pytest

from riemap.errors import InvalidTransitionError
from riemap.jobs.state import VALID_JOB_TRANSITIONS, advance, transition
from riemap.models.job import JobStatus, ProcessingJob


def _job(status: JobStatus = JobStatus.PENDING) -> ProcessingJob:
    job = ProcessingJob(region_id="testland")
    if status is JobStatus.PENDING:
        return job
    job = transition(job, JobStatus.RUNNING)
    if status is JobStatus.RUNNING:
        return job
    return transition(job, status)


class TestTransitionTable:
    def test_pending_is_initial(self) -> None:
        assert ProcessingJob(region_id="x").status is JobStatus.PENDING

    def test_terminal_states_have_no_exits(self) -> None:
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            assert VALID_JOB_TRANSITIONS[status] == frozenset()
            assert status.is_terminal

    def test_every_status_has_an_entry(self) -> None:
        assert set(VALID_JOB_TRANSITIONS) == set(JobStatus)


class TestTransition:
    def test_start_sets_started_at(self) -> None:
        job = transition(_job(), JobStatus.RUNNING, message="Fetching")
        assert job.status is JobStatus.RUNNING
        assert job.started_at is not None
        assert job.completed_at is None
        assert job.message == "Fetching"

    def test_complete_sets_version_and_completed_at(self) -> None:
        job = transition(
            _job(JobStatus.RUNNING), JobStatus.COMPLETED, progress=100.0, version="2024-01-01",
        )
        assert job.completed_at is not None
        assert job.version == "2024-01-01"
        assert job.progress == 100.0

    def test_original_snapshot_unchanged(self) -> None:
        pending = _job()
        transition(pending, JobStatus.RUNNING)
        assert pending.status is JobStatus.PENDING

    @pytest.mark.parametrize(
        ("start", "target"),
        [
            (JobStatus.PENDING, JobStatus.COMPLETED),
            (JobStatus.RUNNING, JobStatus.PENDING),
            (JobStatus.COMPLETED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.RUNNING),
            (JobStatus.CANCELLED, JobStatus.COMPLETED),
        ],
    )
    def test_invalid_transitions(self, start, target) -> None:
        with pytest.raises(InvalidTransitionError, match="Cannot transition"):
            transition(_job(start), target)


class TestAdvance:
    def test_progress_moves_forward(self) -> None:
        job = advance(_job(JobStatus.RUNNING), 25.0, "Decoding")
        assert job.progress == 25.0
        assert job.message == "Decoding"

    def test_progress_never_goes_back(self) -> None:
        job = advance(_job(JobStatus.RUNNING), 50.0, "Analyzing")
        with pytest.raises(InvalidTransitionError):
            advance(job, 25.0, "Decoding")

    def test_only_while_running(self) -> None:
        with pytest.raises(InvalidTransitionError):
            advance(_job(), 25.0, "Decoding")
