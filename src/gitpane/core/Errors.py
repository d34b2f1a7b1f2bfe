# gitpane/core/Errors.py
"""Errors.py
========================
Error taxonomy shared by the job engine, the application state and the UI.

- BackendError: a repository operation failed. Reported inline in the panel
  that asked for it, never fatal.
- BusyError: a mutating operation was requested while another one is still
  outstanding. Shown as a transient message, nothing is submitted.
- SchedulerFatal: the worker pool or the notification channel is broken.
  The render loop shuts down in order when it sees one.
- JobCancelled: raised at cooperative checkpoints inside backend calls.

A stale completion is not an error at all; ``AppState.apply`` reports it as
``ApplyStatus.STALE`` and drops it silently.
"""

from __future__ import annotations

from typing import Optional, Sequence


class GitpaneError(Exception):
    """Base class for all gitpane errors."""


class BackendError(GitpaneError):
    """A repository backend call failed."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command: tuple[str, ...] = tuple(command or ())
        self.returncode = returncode
        self.stderr = stderr

    def summary(self, limit: int = 120) -> str:
        """First meaningful line of the error, clipped to ``limit`` characters."""
        for candidate in (self.stderr, self.message):
            for line in candidate.splitlines():
                line = line.strip()
                if line:
                    return line[:limit]
        return "unknown error"

    def __str__(self) -> str:
        if self.returncode is not None:
            return f"{self.message} (exit {self.returncode})"
        return self.message


class BusyError(GitpaneError):
    """A mutating job is already in flight."""

    def __init__(self, requested: str, outstanding: str) -> None:
        super().__init__(
            f"Cannot start '{requested}': '{outstanding}' is still running."
        )
        self.requested = requested
        self.outstanding = outstanding


class SchedulerFatal(GitpaneError):
    """Unrecoverable failure of the scheduling infrastructure."""


class InvalidTransition(SchedulerFatal):
    """A job was driven through an illegal lifecycle transition."""


class JobCancelled(GitpaneError):
    """Raised at a checkpoint when the running job has been cancelled."""
