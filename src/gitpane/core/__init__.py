# src/gitpane/core/__init__.py
"""Public facade for gitpane.core: re-export main classes from CamelCase modules.

Keeps the CamelCase file names (AsyncEngine.py, AppState.py, ...),
but provides flat imports for convenience and stability. The `Gitpane`
controller is imported from gitpane.core.Gitpane directly: it depends on the
ui and integrations packages, which depend on this one.
"""

# Re-export classes/symbols from CamelCase modules
from .AppState import AppState, ApplyStatus  # noqa: F401
from .AsyncEngine import AsyncEngine  # noqa: F401
from .Errors import BackendError, BusyError, GitpaneError, JobCancelled, SchedulerFatal  # noqa: F401
from .Jobs import CancelToken, JobHandle, JobKind, JobOutcome, JobState, RepoChanged  # noqa: F401
from .NotificationChannel import NotificationChannel  # noqa: F401


__all__ = [
    "AppState",
    "ApplyStatus",
    "AsyncEngine",
    "BackendError",
    "BusyError",
    "CancelToken",
    "GitpaneError",
    "JobCancelled",
    "JobHandle",
    "JobKind",
    "JobOutcome",
    "JobState",
    "NotificationChannel",
    "RepoChanged",
    "SchedulerFatal",
]
