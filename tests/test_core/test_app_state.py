# tests/test_core/test_app_state.py
"""Unit tests for `AppState`.
============================

The state applies outcomes by generation: only the newest submission of a
kind may replace the cached result, a failure keeps the last good result
next to the error, and a cancellation just leaves the loading state.
"""

from pathlib import Path

import pytest

from gitpane.core.AppState import AppState, ApplyStatus
from gitpane.core.Errors import BackendError
from gitpane.core.Jobs import GenerationCounter, JobHandle, JobKind, JobOutcome, JobState


@pytest.fixture
def generations() -> GenerationCounter:
    return GenerationCounter()


@pytest.fixture
def state(generations: GenerationCounter) -> AppState:
    return AppState("/tmp/repo", generations)


def submit(state: AppState, kind: JobKind, job_id: int = 1) -> JobHandle:
    handle = JobHandle(job_id, kind, state.generations.advance(kind))
    state.mark_submitted(handle)
    return handle


def outcome(handle: JobHandle, state: JobState = JobState.COMPLETED, result=None, error=None) -> JobOutcome:
    return JobOutcome(handle.job_id, handle.kind, handle.generation, state, result, error)


class TestAppStateApply:
    """Test: accepting and discarding outcomes."""

    def test_initial_state_is_empty(self, state: AppState) -> None:
        assert state.repo_path == Path("/tmp/repo")
        assert state.current(JobKind.STATUS) is None
        assert not state.is_loading(JobKind.STATUS)
        assert state.take_dirty() == set()

    def test_submit_enters_loading(self, state: AppState) -> None:
        submit(state, JobKind.STATUS)
        assert state.is_loading(JobKind.STATUS)
        assert state.take_dirty() == {JobKind.STATUS}

    def test_current_outcome_is_accepted(self, state: AppState) -> None:
        handle = submit(state, JobKind.STATUS)
        assert state.apply(outcome(handle, result="snap")) is ApplyStatus.ACCEPTED
        assert state.current(JobKind.STATUS) == "snap"
        assert state.generation(JobKind.STATUS) == handle.generation
        assert not state.is_loading(JobKind.STATUS)

    def test_superseded_outcome_is_stale(self, state: AppState) -> None:
        old = submit(state, JobKind.DIFF, 1)
        new = submit(state, JobKind.DIFF, 2)
        assert state.apply(outcome(old, result="old")) is ApplyStatus.STALE
        assert state.current(JobKind.DIFF) is None
        assert state.is_loading(JobKind.DIFF)
        assert state.apply(outcome(new, result="new")) is ApplyStatus.ACCEPTED
        assert state.current(JobKind.DIFF) == "new"

    def test_older_outcome_after_newer_is_stale(self, state: AppState) -> None:
        first = submit(state, JobKind.LOG, 1)
        second = submit(state, JobKind.LOG, 2)
        state.apply(outcome(second, result="second"))
        assert state.apply(outcome(first, result="first")) is ApplyStatus.STALE
        assert state.current(JobKind.LOG) == "second"

    def test_duplicate_outcome_is_stale(self, state: AppState) -> None:
        handle = submit(state, JobKind.LOG)
        state.apply(outcome(handle, result="a"))
        assert state.apply(outcome(handle, result="b")) is ApplyStatus.STALE
        assert state.current(JobKind.LOG) == "a"

    def test_kinds_are_independent(self, state: AppState) -> None:
        status = submit(state, JobKind.STATUS, 1)
        submit(state, JobKind.DIFF, 2)
        submit(state, JobKind.DIFF, 3)
        assert state.apply(outcome(status, result="s")) is ApplyStatus.ACCEPTED

    def test_failure_keeps_previous_result(self, state: AppState) -> None:
        first = submit(state, JobKind.STATUS, 1)
        state.apply(outcome(first, result="good"))
        second = submit(state, JobKind.STATUS, 2)
        error = BackendError("git status failed", returncode=128, stderr="fatal: bad")
        status = state.apply(outcome(second, JobState.FAILED, error=error))
        assert status is ApplyStatus.FAILED
        assert state.current(JobKind.STATUS) == "good"
        assert state.error(JobKind.STATUS) is error
        assert not state.is_loading(JobKind.STATUS)

    def test_success_clears_error(self, state: AppState) -> None:
        first = submit(state, JobKind.STATUS, 1)
        state.apply(outcome(first, JobState.FAILED, error=BackendError("boom")))
        second = submit(state, JobKind.STATUS, 2)
        state.apply(outcome(second, result="ok"))
        assert state.error(JobKind.STATUS) is None

    def test_cancelled_leaves_loading_and_keeps_result(self, state: AppState) -> None:
        first = submit(state, JobKind.BLAME, 1)
        state.apply(outcome(first, result="blame"))
        second = submit(state, JobKind.BLAME, 2)
        assert state.apply(outcome(second, JobState.CANCELLED)) is ApplyStatus.CANCELLED
        assert state.current(JobKind.BLAME) == "blame"
        assert not state.is_loading(JobKind.BLAME)

    def test_apply_batch_preserves_order(self, state: AppState) -> None:
        a = submit(state, JobKind.STATUS, 1)
        b = submit(state, JobKind.LOG, 2)
        statuses = state.apply_batch([outcome(a, result=1), outcome(b, result=2)])
        assert statuses == [ApplyStatus.ACCEPTED, ApplyStatus.ACCEPTED]
        assert state.take_dirty() == {JobKind.STATUS, JobKind.LOG}
        assert state.take_dirty() == set()


class TestAppStateInvalidate:
    """Test: marking cached results out of date."""

    def test_invalidate_keeps_result(self, state: AppState) -> None:
        handle = submit(state, JobKind.BRANCHES)
        state.apply(outcome(handle, result=("main",)))
        state.invalidate(JobKind.BRANCHES)
        assert state.is_invalidated(JobKind.BRANCHES)
        assert state.current(JobKind.BRANCHES) == ("main",)

    def test_new_result_clears_invalidation(self, state: AppState) -> None:
        state.invalidate(JobKind.LOG)
        handle = submit(state, JobKind.LOG)
        state.apply(outcome(handle, result="fresh"))
        assert not state.is_invalidated(JobKind.LOG)
