# tests/test_core/test_async_engine.py
"""`tests/test_core/test_async_engine.py`
=========================================

Unit tests for the AsyncEngine class.

This test suite validates the following aspects of AsyncEngine:

1. **Thread and event loop management**
   - Starting the engine launches a background thread with an active loop.
   - Stopping the engine refuses further submissions.

2. **Scheduling rules**
   - Read-only kinds supersede: a newer submission cancels the older job.
   - Mutating kinds are serialized: a second one raises `BusyError` and
     consumes no generation.
   - Cancelling a mutating job is ignored; cancelling a read is honoured.
   - At most `max_workers` backend calls run at once.

3. **Outcomes**
   - Backend errors become FAILED outcomes carrying the error.
   - Unexpected exceptions are wrapped in `BackendError`.
   - A closed notification channel surfaces as `SchedulerFatal`.

4. **Testing methodology**
   - Uses the gated `FakeBackend` from `tests.stubs` to hold jobs open.
   - Uses `pytest-asyncio` to drive `dispatch_job` directly.
"""

import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Generator

import pytest

from gitpane.core.AsyncEngine import AsyncEngine, default_worker_count
from gitpane.core.Errors import BackendError, BusyError, SchedulerFatal
from gitpane.core.Jobs import Job, JobKind, JobOutcome, JobState
from gitpane.core.NotificationChannel import NotificationChannel

from tests.stubs import FakeBackend, make_config, wait_until


def collect_until(
    engine: AsyncEngine, predicate: Callable[[list[Any]], bool], timeout: float = 3.0
) -> list[Any]:
    """Polls the engine until ``predicate`` holds for everything received."""
    received: list[Any] = []

    def check() -> bool:
        received.extend(engine.poll_notifications())
        return predicate(received)

    assert wait_until(check, timeout), f"condition not reached; received {received!r}"
    return received


def outcome_for(received: list[Any], handle: Any) -> JobOutcome:
    return next(o for o in received if isinstance(o, JobOutcome) and o.job_id == handle.job_id)


def has_outcome(handle: Any) -> Callable[[list[Any]], bool]:
    return lambda received: any(
        isinstance(o, JobOutcome) and o.job_id == handle.job_id for o in received
    )


@pytest.fixture
def single_worker_engine(fake_backend: FakeBackend) -> Generator[AsyncEngine, None, None]:
    instance = AsyncEngine(fake_backend, NotificationChannel(), make_config(), max_workers=1)
    instance.start()
    yield instance
    for gate in list(fake_backend.gates.values()):
        gate.set()
    instance.stop()


class TestEngineLifecycle:
    """Test: starting and stopping the loop thread."""

    def test_start_runs_loop_thread(self, engine: AsyncEngine) -> None:
        assert engine.is_running
        assert engine.thread is not None and engine.thread.name == "AsyncEngineThread"
        assert engine.max_workers == 2

    def test_stop_refuses_new_jobs(self, fake_backend: FakeBackend) -> None:
        instance = AsyncEngine(fake_backend, NotificationChannel(), make_config(), max_workers=1)
        instance.start()
        instance.stop()
        assert not instance.is_running
        with pytest.raises(SchedulerFatal):
            instance.submit(JobKind.STATUS)

    def test_submit_before_start_is_fatal(self, fake_backend: FakeBackend) -> None:
        instance = AsyncEngine(fake_backend, NotificationChannel(), make_config(), max_workers=1)
        with pytest.raises(SchedulerFatal):
            instance.submit(JobKind.STATUS)

    def test_stop_cancels_running_reads(self, fake_backend: FakeBackend) -> None:
        channel = NotificationChannel()
        instance = AsyncEngine(fake_backend, channel, make_config(), max_workers=1)
        instance.start()
        fake_backend.block("log")
        instance.submit(JobKind.LOG, {"start": 0, "limit": 10})
        assert fake_backend.started["log"].wait(2)
        instance.stop()
        # The gated call notices its token and gives up.
        assert wait_until(lambda: not instance.active_jobs())


class TestEngineSubmission:
    """Test: completion, supersede, busy gate and cancellation."""

    def test_status_job_completes(self, engine: AsyncEngine, fake_backend: FakeBackend) -> None:
        handle = engine.submit(JobKind.STATUS)
        received = collect_until(engine, has_outcome(handle))
        outcome = outcome_for(received, handle)
        assert outcome.state is JobState.COMPLETED
        assert outcome.result is fake_backend.status_result
        assert outcome.generation == handle.generation == 1

    def test_params_reach_the_backend(self, engine: AsyncEngine, fake_backend: FakeBackend) -> None:
        handle = engine.submit(JobKind.DIFF, {"path": "src/app.py", "staged": True, "context_lines": 5})
        collect_until(engine, has_outcome(handle))
        assert fake_backend.calls_to("diff") == [("src/app.py", 5, True)]

    def test_newer_read_supersedes_running_one(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.block("diff")
        first = engine.submit(JobKind.DIFF, {"path": "a.py"})
        assert fake_backend.started["diff"].wait(2)
        second = engine.submit(JobKind.DIFF, {"path": "b.py"})
        assert second.generation == first.generation + 1

        received = collect_until(engine, has_outcome(first))
        assert outcome_for(received, first).state is JobState.CANCELLED

        fake_backend.release("diff")
        received += collect_until(engine, has_outcome(second))
        final = outcome_for(received, second)
        assert final.state is JobState.COMPLETED
        assert final.result.path == "b.py"

    def test_second_mutation_is_busy(self, engine: AsyncEngine, fake_backend: FakeBackend) -> None:
        fake_backend.block("commit")
        commit = engine.submit(JobKind.COMMIT, {"message": "msg"})
        assert engine.mutation_in_flight is JobKind.COMMIT

        with pytest.raises(BusyError) as excinfo:
            engine.submit(JobKind.PUSH, {"force": False})
        assert excinfo.value.outstanding == "commit"
        # A rejected submission consumes no generation.
        assert engine.generations.current(JobKind.PUSH) == 0

        fake_backend.release("commit")
        collect_until(engine, has_outcome(commit))
        assert wait_until(lambda: engine.mutation_in_flight is None)
        push = engine.submit(JobKind.PUSH, {"force": False})
        assert push.generation == 1

    def test_reads_run_while_mutation_in_flight(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.block("pull")
        engine.submit(JobKind.PULL)
        status = engine.submit(JobKind.STATUS)
        received = collect_until(engine, has_outcome(status))
        assert outcome_for(received, status).ok
        assert engine.mutation_in_flight is JobKind.PULL

    def test_cancel_of_mutation_is_ignored(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.block("stage")
        handle = engine.submit(JobKind.STAGE, {"paths": ["a.py"]})
        assert fake_backend.started["stage"].wait(2)
        assert engine.cancel(handle) is False
        fake_backend.release("stage")
        received = collect_until(engine, has_outcome(handle))
        assert outcome_for(received, handle).state is JobState.COMPLETED

    def test_cancel_of_running_read(self, engine: AsyncEngine, fake_backend: FakeBackend) -> None:
        fake_backend.block("blame")
        handle = engine.submit(JobKind.BLAME, {"path": "a.py"})
        assert fake_backend.started["blame"].wait(2)
        assert engine.cancel(handle) is True
        received = collect_until(engine, has_outcome(handle))
        assert outcome_for(received, handle).state is JobState.CANCELLED

    def test_cancel_of_finished_job(self, engine: AsyncEngine) -> None:
        handle = engine.submit(JobKind.STASHES)
        collect_until(engine, has_outcome(handle))
        assert wait_until(lambda: not engine.active_jobs())
        assert engine.cancel(handle) is False

    def test_active_jobs_lists_outstanding_handles(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.block("branches")
        handle = engine.submit(JobKind.BRANCHES)
        assert handle in engine.active_jobs()


class TestEngineFailures:
    """Test: backend errors and infrastructure failures."""

    def test_backend_error_becomes_failed_outcome(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        error = BackendError("git status failed", returncode=128, stderr="fatal: not a git repository")
        fake_backend.failures["status"] = error
        handle = engine.submit(JobKind.STATUS)
        outcome = outcome_for(collect_until(engine, has_outcome(handle)), handle)
        assert outcome.state is JobState.FAILED
        assert outcome.error is error
        assert engine.is_running

    def test_unexpected_exception_is_wrapped(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.failures["log"] = RuntimeError("kaput")
        handle = engine.submit(JobKind.LOG, {"start": 0, "limit": 5})
        outcome = outcome_for(collect_until(engine, has_outcome(handle)), handle)
        assert outcome.state is JobState.FAILED
        assert isinstance(outcome.error, BackendError)
        assert "kaput" in str(outcome.error)

    def test_failed_mutation_releases_the_gate(
        self, engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.failures["push"] = BackendError("git push failed", returncode=1)
        handle = engine.submit(JobKind.PUSH)
        collect_until(engine, has_outcome(handle))
        assert engine.mutation_in_flight is None
        engine.submit(JobKind.PULL)

    def test_closed_channel_is_fatal(self, engine: AsyncEngine, fake_backend: FakeBackend) -> None:
        fake_backend.block("status")
        engine.submit(JobKind.STATUS)
        assert fake_backend.started["status"].wait(2)
        engine.channel.close()
        fake_backend.release("status")
        assert wait_until(lambda: engine._fatal is not None)
        with pytest.raises(SchedulerFatal):
            list(engine.poll_notifications())
        with pytest.raises(SchedulerFatal):
            engine.submit(JobKind.LOG)


class TestWorkerPool:
    """Test: the pool bound."""

    def test_single_worker_runs_one_call_at_a_time(
        self, single_worker_engine: AsyncEngine, fake_backend: FakeBackend
    ) -> None:
        fake_backend.block("status")
        engine = single_worker_engine
        engine.submit(JobKind.STATUS)
        assert fake_backend.started["status"].wait(2)
        log = engine.submit(JobKind.LOG, {"start": 0, "limit": 5})
        # Queued, not dropped: it waits for the only worker.
        assert not fake_backend.started["log"].wait(0.2)
        fake_backend.release("status")
        received = collect_until(engine, has_outcome(log))
        assert outcome_for(received, log).ok

    @pytest.mark.parametrize(
        "configured, expected",
        [(3, 3), ("2", 2), (-4, 1)],
    )
    def test_default_worker_count_from_config(self, configured: Any, expected: int) -> None:
        assert default_worker_count({"engine": {"workers": configured}}) == expected

    def test_default_worker_count_falls_back_to_cpus(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(os, "cpu_count", lambda: 6)
        assert default_worker_count({"engine": {"workers": 0}}) == 6
        assert default_worker_count({"engine": {"workers": "many"}}) == 6
        assert default_worker_count(None) == 6


class TestDispatchJob:
    """Test: the loop-side coroutine, driven directly."""

    @pytest.mark.asyncio
    async def test_dispatch_job_publishes_outcome(self, fake_backend: FakeBackend) -> None:
        channel = NotificationChannel()
        engine = AsyncEngine(fake_backend, channel, make_config(), max_workers=1)
        engine.loop = asyncio.get_running_loop()
        engine._executor = ThreadPoolExecutor(max_workers=1)
        try:
            job = Job(JobKind.STASHES, 1)
            engine._active[job.id] = job
            await engine.dispatch_job(job)
        finally:
            engine._executor.shutdown(wait=True)

        (outcome,) = channel.drain()
        assert outcome.ok
        assert outcome.result == fake_backend.stash_list
        assert job.id not in engine._active

    @pytest.mark.asyncio
    async def test_dispatch_without_pool_records_fatal(self, fake_backend: FakeBackend) -> None:
        channel = NotificationChannel()
        engine = AsyncEngine(fake_backend, channel, make_config(), max_workers=1)
        engine.loop = asyncio.get_running_loop()
        await engine.dispatch_job(Job(JobKind.STATUS, 1))
        assert isinstance(engine._fatal, SchedulerFatal)
        assert channel.drain() == []
