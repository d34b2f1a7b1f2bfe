# gitpane/core/Jobs.py
"""Jobs.py
========================
The job model: a deferred unit of work executed against the repository
backend off the UI thread.

A job has an identity that is unique per submission, a cooperative
cancellation token, the generation of its kind at submission time, and a
lifecycle with exactly one terminal transition:

    PENDING -> RUNNING -> COMPLETED | CANCELLED | FAILED
    PENDING -> CANCELLED

Workers report the terminal state as an immutable ``JobOutcome`` that travels
back to the UI thread through the notification channel. Out-of-band signals
such as ``RepoChanged`` use the same channel.
"""

from __future__ import annotations

import enum
import itertools
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from gitpane.core.Errors import BackendError, InvalidTransition, JobCancelled


class JobKind(enum.Enum):
    """Every operation the engine knows how to run."""

    # Read-only kinds: supersede-on-submit.
    STATUS = "status"
    DIFF = "diff"
    LOG = "log"
    BLAME = "blame"
    BRANCHES = "branches"
    STASHES = "stashes"
    # Mutating kinds: serialized through a single-slot gate.
    STAGE = "stage"
    UNSTAGE = "unstage"
    COMMIT = "commit"
    PUSH = "push"
    PULL = "pull"
    FETCH = "fetch"
    REBASE = "rebase"
    STASH = "stash"
    CHECKOUT = "checkout"
    RENAME_BRANCH = "rename_branch"

    @property
    def is_mutating(self) -> bool:
        return self not in READ_ONLY_KINDS

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


READ_ONLY_KINDS = frozenset(
    {
        JobKind.STATUS,
        JobKind.DIFF,
        JobKind.LOG,
        JobKind.BLAME,
        JobKind.BRANCHES,
        JobKind.STASHES,
    }
)


class JobState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED)


_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING, JobState.CANCELLED}),
    JobState.RUNNING: frozenset(
        {JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED}
    ),
    JobState.COMPLETED: frozenset(),
    JobState.CANCELLED: frozenset(),
    JobState.FAILED: frozenset(),
}

_job_ids = itertools.count(1)


class CancelToken:
    """Thread-safe cancellation flag polled by backend calls at safe points."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Checkpoint: abort the current backend call if cancellation was requested."""
        if self._event.is_set():
            raise JobCancelled("job cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early (True) on cancellation."""
        return self._event.wait(timeout)


@dataclass(frozen=True)
class JobHandle:
    """Opaque reference to a submitted job, returned by ``AsyncEngine.submit``."""

    job_id: int
    kind: JobKind
    generation: int


@dataclass(eq=False)
class Job:
    """A single submission. Mutable only through ``transition``."""

    kind: JobKind
    generation: int
    params: Mapping[str, Any] = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_job_ids))
    cancel_token: CancelToken = field(default_factory=CancelToken)
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        self.params = MappingProxyType(dict(self.params))
        self._state = JobState.PENDING
        self._lock = threading.Lock()

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def handle(self) -> JobHandle:
        return JobHandle(self.id, self.kind, self.generation)

    def transition(self, new_state: JobState) -> None:
        """Move the job to ``new_state``.

        Raises:
            InvalidTransition: if the move is not part of the lifecycle, e.g. a
                second terminal transition.
        """
        with self._lock:
            if new_state not in _ALLOWED_TRANSITIONS[self._state]:
                raise InvalidTransition(
                    f"job {self.id} ({self.kind.value}): "
                    f"{self._state.value} -> {new_state.value} is not allowed"
                )
            self._state = new_state

    def begin(self) -> bool:
        """Atomically move PENDING -> RUNNING.

        Returns False, leaving the job CANCELLED, if it was cancelled before a
        worker got to it.
        """
        with self._lock:
            if self._state is JobState.CANCELLED:
                return False
            if self._state is not JobState.PENDING:
                raise InvalidTransition(
                    f"job {self.id} ({self.kind.value}) started twice"
                )
            if self.cancel_token.cancelled:
                self._state = JobState.CANCELLED
                return False
            self._state = JobState.RUNNING
            return True

    def try_cancel_pending(self) -> bool:
        """Cancel the job if no worker has picked it up yet."""
        self.cancel_token.cancel()
        with self._lock:
            if self._state is JobState.PENDING:
                self._state = JobState.CANCELLED
                return True
        return False

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, kind={self.kind.value}, "
            f"generation={self.generation}, state={self._state.value})"
        )


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result of a job: a payload on success or an error on failure."""

    job_id: int
    kind: JobKind
    generation: int
    state: JobState
    result: Any = None
    error: Optional[BackendError] = None

    @property
    def ok(self) -> bool:
        return self.state is JobState.COMPLETED

    @classmethod
    def completed(cls, job: Job, result: Any) -> "JobOutcome":
        return cls(job.id, job.kind, job.generation, JobState.COMPLETED, result=result)

    @classmethod
    def failed(cls, job: Job, error: BackendError) -> "JobOutcome":
        return cls(job.id, job.kind, job.generation, JobState.FAILED, error=error)

    @classmethod
    def cancelled(cls, job: Job) -> "JobOutcome":
        return cls(job.id, job.kind, job.generation, JobState.CANCELLED)


@dataclass(frozen=True)
class RepoChanged:
    """Out-of-band signal: the repository changed on disk."""

    paths: tuple[str, ...] = ()
    reason: str = "filesystem"
    at: float = field(default_factory=time.monotonic)


Notification = Union[JobOutcome, RepoChanged]


class GenerationCounter:
    """Per-kind monotonically increasing generation numbers.

    This is the only piece of state read from more than one thread, so every
    read-compare-update goes through one lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[JobKind, int] = {kind: 0 for kind in JobKind}

    def advance(self, kind: JobKind) -> int:
        with self._lock:
            self._values[kind] += 1
            return self._values[kind]

    def current(self, kind: JobKind) -> int:
        with self._lock:
            return self._values[kind]

    def is_current(self, kind: JobKind, generation: int) -> bool:
        with self._lock:
            return generation >= self._values[kind]
