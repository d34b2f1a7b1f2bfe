# gitpane/core/AppState.py
"""AppState.py
========================
Process-wide application state: the repository root and, for every job kind,
the most recently accepted result.

Only the UI thread reads or writes this object. Workers hand results over as
immutable `JobOutcome` values through the notification channel, and the UI
thread applies a whole drained batch before it renders, so a frame never sees
a partially applied batch.

Per kind the state machine is::

    Idle(cached result) -> Loading(generation N) -> Idle(result of N)
                                                 -> Idle(unchanged, outcome < current dropped)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, Optional

from gitpane.core.Errors import BackendError
from gitpane.core.Jobs import GenerationCounter, JobHandle, JobKind, JobOutcome, JobState


logger = logging.getLogger("gitpane")


class ApplyStatus(enum.Enum):
    ACCEPTED = "accepted"
    FAILED = "failed"
    STALE = "stale"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Slot:
    """Latest accepted state for one job kind."""

    result: Any = None
    error: Optional[BackendError] = None
    accepted_generation: int = 0
    pending_generation: int = 0
    invalidated: bool = False

    @property
    def is_loading(self) -> bool:
        return self.pending_generation > self.accepted_generation


class AppState:
    """Single-owner cache of the latest result per job kind."""

    def __init__(self, repo_path: Path | str, generations: GenerationCounter) -> None:
        self.repo_path = Path(repo_path)
        self.generations = generations
        self._slots: dict[JobKind, Slot] = {kind: Slot() for kind in JobKind}
        self._dirty: set[JobKind] = set()

    # ---- writes (UI thread) ----
    def mark_submitted(self, handle: JobHandle) -> None:
        """Enter Loading for the handle's kind."""
        slot = self._slots[handle.kind]
        if handle.generation > slot.pending_generation:
            self._slots[handle.kind] = replace(slot, pending_generation=handle.generation)
            self._dirty.add(handle.kind)

    def apply(self, outcome: JobOutcome) -> ApplyStatus:
        """Fold one outcome into the cache, dropping it if it is stale."""
        kind = outcome.kind
        slot = self._slots[kind]

        if (
            outcome.generation < self.generations.current(kind)
            or outcome.generation <= slot.accepted_generation
        ):
            logger.debug(
                "Discarding stale %s outcome (generation %d, current %d).",
                kind.value,
                outcome.generation,
                self.generations.current(kind),
            )
            return ApplyStatus.STALE

        if outcome.state is JobState.CANCELLED:
            # Nothing newer was submitted: leave Loading, keep the old result.
            self._slots[kind] = replace(
                slot,
                accepted_generation=outcome.generation,
                pending_generation=max(slot.pending_generation, outcome.generation),
            )
            self._dirty.add(kind)
            return ApplyStatus.CANCELLED

        if outcome.state is JobState.FAILED:
            self._slots[kind] = replace(
                slot,
                error=outcome.error,
                accepted_generation=outcome.generation,
                pending_generation=max(slot.pending_generation, outcome.generation),
            )
            self._dirty.add(kind)
            logger.info("%s failed: %s", kind.label, outcome.error)
            return ApplyStatus.FAILED

        self._slots[kind] = Slot(
            result=outcome.result,
            error=None,
            accepted_generation=outcome.generation,
            pending_generation=max(slot.pending_generation, outcome.generation),
        )
        self._dirty.add(kind)
        return ApplyStatus.ACCEPTED

    def apply_batch(self, outcomes: Iterable[JobOutcome]) -> list[ApplyStatus]:
        return [self.apply(outcome) for outcome in outcomes]

    def invalidate(self, kind: JobKind) -> None:
        """Flag a cached result as out of date without dropping it."""
        slot = self._slots[kind]
        if not slot.invalidated:
            self._slots[kind] = replace(slot, invalidated=True)

    def take_dirty(self) -> set[JobKind]:
        dirty, self._dirty = self._dirty, set()
        return dirty

    # ---- reads (never block) ----
    def current(self, kind: JobKind) -> Optional[Any]:
        return self._slots[kind].result

    def error(self, kind: JobKind) -> Optional[BackendError]:
        return self._slots[kind].error

    def is_loading(self, kind: JobKind) -> bool:
        return self._slots[kind].is_loading

    def is_invalidated(self, kind: JobKind) -> bool:
        return self._slots[kind].invalidated

    def generation(self, kind: JobKind) -> int:
        return self._slots[kind].accepted_generation
