# tests/stubs.py
"""Test stubs for gitpane tests.

This module provides stub implementations of the pieces the engine and the
components talk to:

- `FakeBackend`: an in-memory `RepositoryBackend` whose calls can be held
  open ("gated") to simulate slow git commands, or made to fail.
- `StubApp`: the subset of `Gitpane` that components use, with job
  submission recorded instead of run.
- `StubWindow`: a character grid standing in for a curses window.
"""

from __future__ import annotations

import copy
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from gitpane.core.AppState import AppState
from gitpane.core.Errors import BackendError
from gitpane.core.Jobs import CancelToken, GenerationCounter, JobHandle, JobKind, JobOutcome, JobState
from gitpane.core.Snapshots import (
    BlameLine,
    BlameResult,
    BranchInfo,
    ChangeFlag,
    CommitSummary,
    DiffHunk,
    DiffLine,
    FileDiff,
    FileStatus,
    LineTag,
    LogSlice,
    MutationResult,
    StashEntry,
    StatusSnapshot,
)
from gitpane.integrations.Clipboard import Clipboard
from gitpane.ui.components import (
    BlamePopup,
    ConfirmPopup,
    DiffComponent,
    HelpPopup,
    MessagePopup,
    TextInputPopup,
)
from gitpane.ui.KeyBinder import KeyBinder
from gitpane.utils.utils import DEFAULT_CONFIG, deep_merge


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Polls ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def make_config(**sections: dict[str, Any]) -> dict[str, Any]:
    """The default configuration with the watcher off and ``sections`` merged in."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["watcher"]["enabled"] = False
    return deep_merge(config, sections)


SAMPLE_STATUS = StatusSnapshot(
    branch="main",
    files=(
        FileStatus("src/app.py", ChangeFlag.MODIFIED, staged=False),
        FileStatus("notes.txt", ChangeFlag.UNTRACKED, staged=False),
        FileStatus("README.md", ChangeFlag.ADDED, staged=True),
    ),
)


def sample_diff(path: str = "src/app.py", staged: bool = False) -> FileDiff:
    return FileDiff(
        path=path,
        staged=staged,
        hunks=(
            DiffHunk(
                "@@ -1,2 +1,2 @@",
                (
                    DiffLine(LineTag.REMOVE, "x = 1", 1, None),
                    DiffLine(LineTag.ADD, "x = 2", None, 1),
                    DiffLine(LineTag.CONTEXT, "print(x)", 2, 2),
                ),
            ),
        ),
    )


def sample_commits(count: int) -> tuple[CommitSummary, ...]:
    return tuple(
        CommitSummary(
            id=f"{i:040x}",
            author="Ada",
            time=1_700_000_000 + i,
            summary=f"commit number {i}",
            parents=(f"{i + 1:040x}",),
        )
        for i in range(count)
    )


# ==================== FakeBackend ====================
class FakeBackend:
    """In-memory repository backend.

    Every call is recorded in ``calls`` as ``(method, args)``. A method listed
    in ``gates`` blocks until its gate is released (or its cancel token is
    set), which lets tests hold a job in RUNNING. ``failures`` maps a method
    name to the exception it raises.
    """

    METHODS = (
        "status", "diff", "log", "blame", "branches", "stashes",
        "stage", "unstage", "commit", "push", "pull", "fetch",
        "rebase", "stash", "checkout", "rename_branch",
    )

    def __init__(self, repo_path: str = "/tmp/fake-repo") -> None:
        self.repo_path = Path(repo_path)
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.gates: dict[str, threading.Event] = {}
        self.started: dict[str, threading.Event] = {m: threading.Event() for m in self.METHODS}
        self.failures: dict[str, BaseException] = {}
        self.status_result = SAMPLE_STATUS
        self.commits = sample_commits(5)
        self.branch_list = (
            BranchInfo("feature", upstream="origin/feature", ahead=1),
            BranchInfo("main", is_head=True, upstream="origin/main", behind=2),
        )
        self.stash_list = (StashEntry(0, "stash@{0}", "WIP on main: tidy"),)
        self._lock = threading.Lock()

    # ---- test controls ----
    def block(self, method: str) -> threading.Event:
        gate = threading.Event()
        self.gates[method] = gate
        return gate

    def release(self, method: str) -> None:
        self.gates.pop(method).set()

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        with self._lock:
            return [args for name, args in self.calls if name == method]

    def _enter(self, method: str, args: tuple[Any, ...], token: Optional[CancelToken]) -> None:
        with self._lock:
            self.calls.append((method, args))
        self.started[method].set()
        gate = self.gates.get(method)
        if gate is not None:
            while not gate.wait(0.01):
                if token is not None:
                    token.raise_if_cancelled()
        if token is not None:
            token.raise_if_cancelled()
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    # ---- read-only ----
    def status(self, cancel_token: Optional[CancelToken] = None) -> StatusSnapshot:
        self._enter("status", (), cancel_token)
        return self.status_result

    def diff(
        self,
        path: str,
        context_lines: int = 3,
        staged: bool = False,
        cancel_token: Optional[CancelToken] = None,
    ) -> FileDiff:
        self._enter("diff", (path, context_lines, staged), cancel_token)
        return sample_diff(path, staged)

    def log(self, start: int, limit: int, cancel_token: Optional[CancelToken] = None) -> LogSlice:
        self._enter("log", (start, limit), cancel_token)
        window = self.commits[start:start + limit]
        return LogSlice(start, window, has_more=start + limit < len(self.commits))

    def blame(self, path: str, cancel_token: Optional[CancelToken] = None) -> BlameResult:
        self._enter("blame", (path,), cancel_token)
        return BlameResult(path, (BlameLine(1, "a" * 40, "Ada", 1_700_000_000, "x = 2"),))

    def branches(self, cancel_token: Optional[CancelToken] = None) -> tuple[BranchInfo, ...]:
        self._enter("branches", (), cancel_token)
        return self.branch_list

    def stashes(self, cancel_token: Optional[CancelToken] = None) -> tuple[StashEntry, ...]:
        self._enter("stashes", (), cancel_token)
        return self.stash_list

    # ---- mutating ----
    def stage(self, paths: Sequence[str], cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("stage", (tuple(paths),), cancel_token)
        return MutationResult("stage", f"Staged {len(paths)}")

    def unstage(self, paths: Sequence[str], cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("unstage", (tuple(paths),), cancel_token)
        return MutationResult("unstage", f"Unstaged {len(paths)}")

    def commit(
        self, message: str, no_verify: bool = False, cancel_token: Optional[CancelToken] = None
    ) -> MutationResult:
        self._enter("commit", (message, no_verify), cancel_token)
        return MutationResult("commit", "[main abc1234] " + message)

    def push(self, force: bool = False, cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("push", (force,), cancel_token)
        return MutationResult("push", "Pushed")

    def pull(self, cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("pull", (), cancel_token)
        return MutationResult("pull", "Pulled")

    def fetch(self, cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("fetch", (), cancel_token)
        return MutationResult("fetch", "Fetched")

    def rebase(self, onto: str, cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("rebase", (onto,), cancel_token)
        return MutationResult("rebase", f"Rebased onto {onto}")

    def stash(
        self,
        mode: str,
        message: str = "",
        index: int = 0,
        cancel_token: Optional[CancelToken] = None,
    ) -> MutationResult:
        self._enter("stash", (mode, message, index), cancel_token)
        return MutationResult("stash", mode)

    def checkout(self, branch: str, cancel_token: Optional[CancelToken] = None) -> MutationResult:
        self._enter("checkout", (branch,), cancel_token)
        return MutationResult("checkout", f"Switched to {branch}")

    def rename_branch(
        self, old: str, new: str, cancel_token: Optional[CancelToken] = None
    ) -> MutationResult:
        self._enter("rename_branch", (old, new), cancel_token)
        return MutationResult("rename_branch", f"Renamed {old} to {new}")


# ==================== StubWindow ====================
class StubWindow:
    """Records ``addstr`` calls into a grid of characters."""

    def __init__(self, height: int = 24, width: int = 80) -> None:
        self.height = height
        self.width = width
        self.attrs: dict[tuple[int, int], int] = {}
        self.erase()

    def getmaxyx(self) -> tuple[int, int]:
        return self.height, self.width

    def erase(self) -> None:
        self.grid = [[" "] * self.width for _ in range(self.height)]

    def addstr(self, y: int, x: int, text: str, attr: int = 0) -> None:
        if not (0 <= y < self.height and 0 <= x < self.width):
            raise AssertionError(f"addstr outside the window at ({y}, {x})")
        for offset, ch in enumerate(text):
            if x + offset >= self.width:
                raise AssertionError(f"addstr overflows the window at ({y}, {x}): {text!r}")
            self.grid[y][x + offset] = ch
            self.attrs[(y, x + offset)] = attr

    def noutrefresh(self) -> None:
        pass

    def row(self, y: int) -> str:
        return "".join(self.grid[y]).rstrip()

    def text(self) -> str:
        return "\n".join(self.row(y) for y in range(self.height))


# ==================== StubApp ====================
class StubApp:
    """The services components use from `Gitpane`, without an engine.

    ``request`` records the submission and marks the state as loading; tests
    then call ``complete`` or ``fail`` to deliver an outcome.
    """

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        self.config = config or make_config()
        self.generations = GenerationCounter()
        self.state = AppState("/tmp/fake-repo", self.generations)
        self.keybinder = KeyBinder(self.config)
        self.colors: dict[str, int] = {}
        self.clipboard = Clipboard(use_system=False)
        self.requests: list[tuple[JobKind, dict[str, Any]]] = []
        self.handles: dict[JobKind, JobHandle] = {}
        self.cancelled: list[JobHandle] = []
        self.messages: list[str] = []
        self.overlays: list[Any] = []
        self.quit_called = False
        self._next_id = 1

        self.diff_view = DiffComponent(self)
        self.confirm_popup = ConfirmPopup(self)
        self.input_popup = TextInputPopup(self)
        self.message_popup = MessagePopup(self)
        self.help_popup = HelpPopup(self)
        self.blame_popup = BlamePopup(self)

    def request(self, kind: JobKind, params: Optional[dict[str, Any]] = None) -> JobHandle:
        handle = JobHandle(self._next_id, kind, self.generations.advance(kind))
        self._next_id += 1
        self.requests.append((kind, dict(params or {})))
        self.handles[kind] = handle
        self.state.mark_submitted(handle)
        return handle

    def requested(self, kind: JobKind) -> list[dict[str, Any]]:
        return [params for k, params in self.requests if k is kind]

    def complete(self, kind: JobKind, result: Any) -> None:
        handle = self.handles[kind]
        self.state.apply(JobOutcome(handle.job_id, kind, handle.generation, JobState.COMPLETED, result))

    def fail(self, kind: JobKind, error: BackendError) -> None:
        handle = self.handles[kind]
        self.state.apply(JobOutcome(handle.job_id, kind, handle.generation, JobState.FAILED, error=error))

    def cancel(self, handle: JobHandle) -> bool:
        self.cancelled.append(handle)
        return True

    def open_overlay(self, overlay: Any) -> None:
        overlay.show()
        overlay.focused = True
        self.overlays.append(overlay)

    def set_status_message(self, message: str, is_error: bool = False) -> None:
        self.messages.append(message)

    def quit(self) -> None:
        self.quit_called = True

    def refresh_visible(self) -> None:
        self.messages.append("refresh")
