# gitpane/core/AsyncEngine.py
"""AsyncEngine Module
==================
This module provides the `AsyncEngine` class, the job scheduler of gitpane. It
runs potentially slow, blocking repository queries and mutations off the UI
thread so that the curses render loop never waits on git.

Key Features:
-------------
- Runs an asyncio event loop in a dedicated background thread. The loop pulls
  submitted jobs from a thread-safe queue and hands each one to a bounded
  `ThreadPoolExecutor`, so at most `max_workers` backend calls run at once and
  extra submissions wait their turn instead of being dropped.
- Read-only job kinds (status, diff, log, ...) supersede on submit: a new
  submission cancels the previous job of the same kind and bumps that kind's
  generation so late completions can be recognised and discarded.
- Mutating job kinds (commit, push, pull, ...) pass through a single-slot
  gate. A second mutating submission while one is outstanding raises
  `BusyError` and is never enqueued.
- Every job reports exactly one `JobOutcome` through the notification
  channel. Backend failures become FAILED outcomes and never escape a worker.
- Failures of the machinery itself (executor gone, channel closed, loop crash)
  are remembered and surface as `SchedulerFatal` on the next call from the UI.

Classes:
--------
- AsyncEngine: lifecycle of the loop thread and the worker pool, job
  submission, cancellation and outcome delivery.

Dependencies:
-------------
- asyncio
- concurrent.futures
- threading
- queue
- logging
"""

import asyncio
import logging
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping, Optional

from gitpane.core.Errors import BackendError, BusyError, JobCancelled, SchedulerFatal
from gitpane.core.Jobs import (
    CancelToken,
    GenerationCounter,
    Job,
    JobHandle,
    JobKind,
    JobOutcome,
    JobState,
    Notification,
)
from gitpane.core.NotificationChannel import NotificationChannel


if TYPE_CHECKING:
    from gitpane.integrations.GitBridge import RepositoryBackend


# The queue carries jobs, or None to stop the loop.
QueueItem = Optional[Job]

BackendCall = Callable[["RepositoryBackend", Mapping[str, Any], CancelToken], Any]

# Dispatch table: which backend call runs for which job kind.
JOB_HANDLERS: dict[JobKind, BackendCall] = {
    JobKind.STATUS: lambda b, p, t: b.status(cancel_token=t),
    JobKind.DIFF: lambda b, p, t: b.diff(
        p["path"],
        p.get("context_lines", 3),
        staged=p.get("staged", False),
        cancel_token=t,
    ),
    JobKind.LOG: lambda b, p, t: b.log(
        p.get("start", 0), p.get("limit", 200), cancel_token=t
    ),
    JobKind.BLAME: lambda b, p, t: b.blame(p["path"], cancel_token=t),
    JobKind.BRANCHES: lambda b, p, t: b.branches(cancel_token=t),
    JobKind.STASHES: lambda b, p, t: b.stashes(cancel_token=t),
    JobKind.STAGE: lambda b, p, t: b.stage(p["paths"], cancel_token=t),
    JobKind.UNSTAGE: lambda b, p, t: b.unstage(p["paths"], cancel_token=t),
    JobKind.COMMIT: lambda b, p, t: b.commit(
        p["message"], no_verify=p.get("no_verify", False), cancel_token=t
    ),
    JobKind.PUSH: lambda b, p, t: b.push(force=p.get("force", False), cancel_token=t),
    JobKind.PULL: lambda b, p, t: b.pull(cancel_token=t),
    JobKind.FETCH: lambda b, p, t: b.fetch(cancel_token=t),
    JobKind.REBASE: lambda b, p, t: b.rebase(p["onto"], cancel_token=t),
    JobKind.STASH: lambda b, p, t: b.stash(
        p["mode"],
        message=p.get("message", ""),
        index=p.get("index", 0),
        cancel_token=t,
    ),
    JobKind.CHECKOUT: lambda b, p, t: b.checkout(p["branch"], cancel_token=t),
    JobKind.RENAME_BRANCH: lambda b, p, t: b.rename_branch(
        p["old"], p["new"], cancel_token=t
    ),
}


def default_worker_count(config: Optional[Mapping[str, Any]] = None) -> int:
    """Pool size from ``[engine] workers``, else the number of CPUs, at least 1."""
    configured = (config or {}).get("engine", {}).get("workers")
    try:
        workers = int(configured) if configured else (os.cpu_count() or 1)
    except (TypeError, ValueError):
        logging.warning("Invalid [engine] workers value %r, using CPU count.", configured)
        workers = os.cpu_count() or 1
    return max(1, workers)


# ==================== AsyncEngine Class ====================
class AsyncEngine:
    """Class AsyncEngine
    ===================
    Job scheduler backed by an asyncio loop thread and a bounded worker pool.

    The UI thread calls `submit`, `cancel` and `poll_notifications`. Worker
    threads only run backend calls and produce immutable `JobOutcome` values;
    they never touch application state.

    Attributes:
        backend (RepositoryBackend): The repository backend jobs run against.
        channel (NotificationChannel): Where outcomes are delivered.
        config (dict): Application configuration (``[engine]`` is consulted).
        max_workers (int): Size of the worker pool, fixed at construction.
        generations (GenerationCounter): Per-kind generation numbers.
        loop (Optional[asyncio.AbstractEventLoop]): The loop running in `thread`.
        thread (Optional[threading.Thread]): The background loop thread.
        from_ui_queue (queue.Queue): Jobs waiting to be picked up by the loop.
    """

    def __init__(
        self,
        backend: "RepositoryBackend",
        channel: NotificationChannel,
        config: Optional[dict[str, Any]] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.channel = channel
        self.config: dict[str, Any] = config or {}
        self.max_workers: int = (
            max(1, int(max_workers)) if max_workers else default_worker_count(self.config)
        )
        self.generations = GenerationCounter()

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.thread: Optional[threading.Thread] = None
        self.from_ui_queue: queue.Queue[QueueItem] = queue.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self._jobs_lock = threading.Lock()
        self._active: dict[int, Job] = {}
        self._latest: dict[JobKind, Job] = {}
        self._mutation: Optional[Job] = None
        self._fatal: Optional[BaseException] = None
        self._stopping = False

    # ---------------------- lifecycle ----------------------
    def _start_loop_in_thread(self) -> None:
        """Internal method to set up and run the event loop."""
        try:
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.loop.run_until_complete(self.main_loop())
        except Exception as e:
            self._record_fatal(SchedulerFatal(f"engine loop crashed: {e}"))
        finally:
            if self.loop:
                if self.loop.is_running():
                    self.loop.stop()
                self.loop.close()
            logging.info("AsyncEngine event loop has shut down.")

    def start(self) -> None:
        """Creates the worker pool and starts the loop thread."""
        if self.thread is not None:
            logging.warning("AsyncEngine already started.")
            return
        logging.info("Starting AsyncEngine with %d worker(s)...", self.max_workers)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="gitpane-worker"
        )
        self.thread = threading.Thread(
            target=self._start_loop_in_thread, daemon=True, name="AsyncEngineThread"
        )
        self.thread.start()

    @property
    def is_running(self) -> bool:
        return (
            self.thread is not None
            and self.thread.is_alive()
            and not self._stopping
            and self._fatal is None
        )

    def stop(self) -> None:
        """Stops the loop thread and the pool.

        Read-only jobs still in flight get their cancel tokens set so their
        backend calls can give up at the next checkpoint. Mutating jobs are
        left to finish; the pool does not wait for them here.
        """
        if self._stopping:
            return
        self._stopping = True
        logging.info("Stopping AsyncEngine...")

        with self._jobs_lock:
            for job in self._active.values():
                if not job.kind.is_mutating:
                    job.cancel_token.cancel()

        if self.thread is not None and self.thread.is_alive():
            self.from_ui_queue.put(None)
            self.thread.join(timeout=2.0)
            if self.thread.is_alive():
                logging.error("AsyncEngine thread did not stop within the timeout.")
                if self.loop is not None and not self.loop.is_closed():
                    self.loop.call_soon_threadsafe(self.loop.stop)
            else:
                logging.info("AsyncEngine thread has been stopped and joined.")

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # ---------------------- loop side ----------------------
    async def main_loop(self) -> None:
        """Waits for jobs from the UI thread until a stop signal (None) arrives."""
        if not self.loop:
            logging.error("Event loop not initialized before starting main_loop.")
            return

        logging.info("AsyncEngine main_loop is running and waiting for jobs.")
        while True:
            job = await self.loop.run_in_executor(None, self.from_ui_queue.get)
            if job is None:
                logging.info("AsyncEngine received stop signal. Breaking main_loop.")
                break
            task = self.loop.create_task(self.dispatch_job(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        await self._shutdown_tasks()

    async def dispatch_job(self, job: Job) -> None:
        """Runs one job on the pool and publishes its outcome."""
        assert self.loop is not None
        try:
            if self._executor is None:
                raise SchedulerFatal("worker pool was never created")
            try:
                outcome = await self.loop.run_in_executor(
                    self._executor, self._execute, job
                )
            except RuntimeError as e:
                # Raised by a pool that has been shut down.
                raise SchedulerFatal(f"worker pool unavailable: {e}") from e
            # Release the mutation slot before the UI can see the outcome.
            self._finish(job)
            self.channel.put(outcome)
        except SchedulerFatal as e:
            self._record_fatal(e)
        finally:
            self._finish(job)

    def _execute(self, job: Job) -> JobOutcome:
        """Worker-thread body: run the backend call and build the outcome."""
        if not job.begin():
            logging.debug("Job %s cancelled before it started.", job)
            return JobOutcome.cancelled(job)

        handler = JOB_HANDLERS[job.kind]
        logging.debug("Worker running %s", job)
        try:
            result = handler(self.backend, job.params, job.cancel_token)
        except JobCancelled:
            job.transition(JobState.CANCELLED)
            logging.debug("Job %s stopped at a cancellation checkpoint.", job)
            return JobOutcome.cancelled(job)
        except BackendError as e:
            job.transition(JobState.FAILED)
            logging.warning("Job %s failed: %s", job, e)
            return JobOutcome.failed(job, e)
        except Exception as e:
            job.transition(JobState.FAILED)
            logging.error("Job %s raised unexpectedly: %s", job, e, exc_info=True)
            return JobOutcome.failed(job, BackendError(f"{job.kind.label} failed: {e}"))

        if job.cancel_token.cancelled and not job.kind.is_mutating:
            # Finished anyway, but nobody wants the result any more.
            job.transition(JobState.CANCELLED)
            return JobOutcome.cancelled(job)

        job.transition(JobState.COMPLETED)
        return JobOutcome.completed(job, result)

    def _finish(self, job: Job) -> None:
        with self._jobs_lock:
            self._active.pop(job.id, None)
            if self._latest.get(job.kind) is job:
                del self._latest[job.kind]
            if self._mutation is job:
                self._mutation = None

    async def _shutdown_tasks(self) -> None:
        """Internal coroutine to cancel all running dispatch tasks."""
        if not self._tasks:
            return
        logging.info("Cancelling %d outstanding dispatch task(s)...", len(self._tasks))
        tasks_to_cancel = list(self._tasks)
        for task in tasks_to_cancel:
            task.cancel()
        await asyncio.gather(*tasks_to_cancel, return_exceptions=True)

    def _record_fatal(self, error: BaseException) -> None:
        if self._fatal is None:
            self._fatal = error
            logging.critical("AsyncEngine failure: %s", error, exc_info=error)

    # ---------------------- UI side ----------------------
    def _check_healthy(self) -> None:
        if self._fatal is not None:
            raise SchedulerFatal(str(self._fatal)) from self._fatal
        if self.thread is None or self._stopping:
            raise SchedulerFatal("AsyncEngine is not running")
        if self.channel.closed:
            raise SchedulerFatal("notification channel is closed")

    def submit(
        self, kind: JobKind, params: Optional[Mapping[str, Any]] = None
    ) -> JobHandle:
        """Records and dispatches a job, returning its handle.

        Raises:
            BusyError: ``kind`` is mutating and another mutating job is outstanding.
            SchedulerFatal: the engine is stopped or broken.
        """
        self._check_healthy()
        with self._jobs_lock:
            if kind.is_mutating and self._mutation is not None:
                raise BusyError(kind.label, self._mutation.kind.label)

            job = Job(kind, self.generations.advance(kind), params or {})
            if kind.is_mutating:
                self._mutation = job
            else:
                previous = self._latest.get(kind)
                if previous is not None:
                    previous.try_cancel_pending()
            self._latest[kind] = job
            self._active[job.id] = job

        self.from_ui_queue.put(job)
        logging.debug("Submitted %s", job)
        return job.handle

    def cancel(self, handle: JobHandle) -> bool:
        """Advisory cancellation. Returns True if the request was recorded."""
        with self._jobs_lock:
            job = self._active.get(handle.job_id)
        if job is None:
            return False
        if job.kind.is_mutating:
            logging.warning("Ignoring cancel of mutating job %s.", job)
            return False
        job.try_cancel_pending()
        logging.debug("Cancel requested for %s", job)
        return True

    def poll_notifications(self) -> Iterator[Notification]:
        """Non-blocking: iterate over everything delivered since the last poll."""
        if self._fatal is not None:
            raise SchedulerFatal(str(self._fatal)) from self._fatal
        return iter(self.channel.drain())

    @property
    def mutation_in_flight(self) -> Optional[JobKind]:
        with self._jobs_lock:
            return self._mutation.kind if self._mutation is not None else None

    def active_jobs(self) -> list[JobHandle]:
        with self._jobs_lock:
            return [job.handle for job in self._active.values()]
