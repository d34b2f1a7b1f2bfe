# gitpane/ui/components.py
"""components.py
=============

The visible parts of gitpane: base panels that live in tabs and modal
overlays that sit on the focus stack.

Overview:
---------
Every component implements the same small contract:

- ``handle_event(event) -> EventResult``: CONSUMED stops dispatch,
  PASS_THROUGH lets the focus router offer the event to the next layer.
- ``draw(region)``: render into a clipped rectangle of the screen.
- ``is_visible()`` / ``show()`` / ``hide()``.
- ``wants_focus_on_show()``: whether the router should focus it when its tab
  is selected.

Components are created once when the application starts and live for the
whole process; selecting a tab or closing a popup only toggles visibility.
Each one keeps its own view state (selection, scroll offset, text filter)
and reads results from the shared `AppState` through ``app.state``. None of
them ever waits for a result: a missing result draws as ``loading...``, a
failed one draws an inline error line above whatever was last loaded.

Key Components:
---------------
- Region: a clipped drawing rectangle over a curses window.
- BaseComponent: the contract plus list/scroll helpers.
- StatusComponent, DiffComponent, LogComponent, BranchListComponent,
  StashListComponent: the base panels.
- ConfirmPopup, TextInputPopup, HelpPopup, MessagePopup, BlamePopup: the
  overlays.
"""

from __future__ import annotations

import curses
import enum
import logging
import textwrap
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence

from gitpane.core.Jobs import JobHandle, JobKind
from gitpane.core.Snapshots import (
    BlameResult,
    BranchInfo,
    ChangeFlag,
    CommitSummary,
    DiffLine,
    FileDiff,
    FileStatus,
    LineTag,
    LogSlice,
    StashEntry,
    StatusSnapshot,
)
from gitpane.utils.utils import clip_to_width, display_width


if TYPE_CHECKING:
    from gitpane.core.Errors import BackendError
    from gitpane.core.Gitpane import Gitpane

CursesWindow = Any
KeyCode = int | str

BACKSPACE_CODES = (curses.KEY_BACKSPACE, 8, 127)
LOADING_TEXT = "loading..."

FLAG_COLORS: dict[ChangeFlag, str] = {
    ChangeFlag.MODIFIED: "modified",
    ChangeFlag.TYPE_CHANGED: "modified",
    ChangeFlag.ADDED: "added",
    ChangeFlag.COPIED: "added",
    ChangeFlag.RENAMED: "added",
    ChangeFlag.DELETED: "removed",
    ChangeFlag.UNTRACKED: "untracked",
    ChangeFlag.CONFLICTED: "error",
}


class EventResult(enum.Enum):
    CONSUMED = "consumed"
    PASS_THROUGH = "pass_through"


@dataclass(frozen=True)
class KeyEvent:
    """One key press as delivered by `KeyBinder.get_key_input`."""

    key: KeyCode

    @property
    def char(self) -> Optional[str]:
        """The typed character for printable input, else None."""
        if isinstance(self.key, str):
            return self.key if len(self.key) == 1 and self.key.isprintable() else None
        if 32 <= self.key < 127:
            return chr(self.key)
        return None


# ==================== Region ====================
class Region:
    """A rectangle of a curses window. All writes are clipped to it."""

    def __init__(self, win: CursesWindow, y: int, x: int, height: int, width: int) -> None:
        self.win = win
        self.y = y
        self.x = x
        self.height = max(0, height)
        self.width = max(0, width)

    def __repr__(self) -> str:
        return f"Region(y={self.y}, x={self.x}, height={self.height}, width={self.width})"

    def addstr(self, row: int, col: int, text: str, attr: int = 0) -> int:
        """Writes ``text`` at (row, col); returns the number of cells used."""
        if not (0 <= row < self.height) or not (0 <= col < self.width):
            return 0
        clipped = clip_to_width(text, self.width - col)
        if not clipped:
            return 0
        try:
            self.win.addstr(self.y + row, self.x + col, clipped, attr)
        except curses.error:
            # Writing the bottom-right cell of a window moves the cursor off
            # screen and raises, after the text has been drawn.
            pass
        return display_width(clipped)

    def add_segments(
        self, row: int, col: int, segments: Iterable[tuple[str, int]]
    ) -> int:
        """Writes ``(text, attr)`` pairs one after another on a single row."""
        used = 0
        for text, attr in segments:
            if col + used >= self.width:
                break
            used += self.addstr(row, col + used, text, attr)
        return used

    def clear_row(self, row: int, attr: int = 0) -> None:
        self.addstr(row, 0, " " * self.width, attr)

    def clear(self, attr: int = 0) -> None:
        for row in range(self.height):
            self.clear_row(row, attr)

    def sub(self, row: int, col: int, height: int, width: int) -> "Region":
        """A child rectangle, clamped to this one."""
        row = min(max(0, row), self.height)
        col = min(max(0, col), self.width)
        return Region(
            self.win,
            self.y + row,
            self.x + col,
            min(height, self.height - row),
            min(width, self.width - col),
        )

    def centered(self, height: int, width: int) -> "Region":
        height = min(height, self.height)
        width = min(width, self.width)
        return self.sub((self.height - height) // 2, (self.width - width) // 2, height, width)


# ==================== BaseComponent ====================
class BaseComponent:
    """Class BaseComponent
    =====================
    Common contract and view-local state for every component.

    Attributes:
        app (Gitpane): The running application (state, key bindings, colours,
            job submission).
        visible (bool): Whether the component is currently shown.
        focused (bool): Whether the component has keyboard focus.
        selected (int): Selection index into the component's rows.
        scroll (int): Index of the first visible row.
        filter_text (str): Case-insensitive filter applied to the rows.
    """

    title = "component"
    kinds: tuple[JobKind, ...] = ()

    def __init__(self, app: "Gitpane") -> None:
        self.app = app
        self.visible = False
        self.focused = False
        self.selected = 0
        self.scroll = 0
        self.filter_text = ""
        self._page_height = 10

    # ---- contract ----
    def is_visible(self) -> bool:
        return self.visible

    def wants_focus_on_show(self) -> bool:
        return False

    def show(self) -> None:
        self.visible = True
        logging.debug(f"Component '{self.__class__.__name__}' shown.")

    def hide(self) -> None:
        self.visible = False
        self.focused = False
        logging.debug(f"Component '{self.__class__.__name__}' hidden.")

    def handle_event(self, event: KeyEvent) -> EventResult:
        raise NotImplementedError(
            "The 'handle_event' method must be implemented in a child class."
        )

    def draw(self, region: Region) -> None:
        raise NotImplementedError("The 'draw' method must be implemented in a child class.")

    # ---- lifecycle hooks used by the router and the render loop ----
    def on_navigate(self) -> None:
        """The user navigated to this component's tab: reload its data."""
        self.reload()

    def reload(self) -> None:
        """Submit the jobs this component displays. Panels override."""

    def on_state_changed(self, kinds: set[JobKind]) -> None:
        """Called after a batch of outcomes changed ``kinds``."""

    # ---- helpers ----
    def is_action(self, event: KeyEvent, action: str) -> bool:
        return self.app.keybinder.is_action(event.key, action)

    def attr(self, name: str) -> int:
        return self.app.colors.get(name, 0)

    def _move_selection(self, event: KeyEvent, count: int) -> bool:
        """Handles the list movement actions. Returns True if one matched."""
        if self.is_action(event, "move_up"):
            new = self.selected - 1
        elif self.is_action(event, "move_down"):
            new = self.selected + 1
        elif self.is_action(event, "page_up"):
            new = self.selected - self._page_height
        elif self.is_action(event, "page_down"):
            new = self.selected + self._page_height
        elif self.is_action(event, "home"):
            new = 0
        elif self.is_action(event, "end"):
            new = count - 1
        else:
            return False
        self.selected = max(0, min(new, count - 1)) if count else 0
        return True

    def _ensure_visible(self, row: int, height: int) -> None:
        self._page_height = max(1, height)
        if row < self.scroll:
            self.scroll = row
        elif row >= self.scroll + height:
            self.scroll = row - height + 1
        self.scroll = max(0, self.scroll)

    def _draw_frame(self, region: Region, title: str) -> Region:
        """Draws a border with ``title`` and returns the inner region."""
        if region.height < 3 or region.width < 4:
            return region
        attr = self.attr("title") if self.focused else self.attr("dim")
        inner_w = region.width - 2
        region.addstr(0, 0, "┌" + "─" * inner_w + "┐", attr)
        for row in range(1, region.height - 1):
            region.addstr(row, 0, "│", attr)
            region.addstr(row, region.width - 1, "│", attr)
        region.addstr(region.height - 1, 0, "└" + "─" * inner_w + "┘", attr)
        region.addstr(0, 2, f" {title} ", attr | (curses.A_BOLD if self.focused else 0))
        inner = region.sub(1, 1, region.height - 2, inner_w)
        inner.clear()
        return inner

    def _title_for(self, kind: JobKind) -> str:
        title = self.title
        if self.filter_text:
            title += f" [/{self.filter_text}]"
        if self.app.state.is_loading(kind):
            title += " ..."
        elif self.app.state.is_invalidated(kind):
            title += " *"
        return title

    def _draw_state_banner(self, region: Region, kind: JobKind) -> int:
        """Draws the loading/error line for ``kind``; returns rows used."""
        error = self.app.state.error(kind)
        if error is not None:
            region.addstr(0, 0, f"! {error.summary(region.width)}", self.attr("error"))
            return 1
        if self.app.state.current(kind) is None:
            if self.app.state.is_loading(kind):
                region.addstr(0, 0, LOADING_TEXT, self.attr("dim"))
            return 1
        return 0

    def _matches_filter(self, *fields: str) -> bool:
        if not self.filter_text:
            return True
        needle = self.filter_text.lower()
        return any(needle in f.lower() for f in fields)

    def _open_filter(self) -> None:
        def apply(text: str, _no_verify: bool) -> None:
            self.filter_text = text.strip()
            self.selected = 0
            self.scroll = 0
            self.on_state_changed(set(self.kinds))

        self.app.input_popup.ask("Filter", apply, initial=self.filter_text)


def _format_date(timestamp: int) -> str:
    if not timestamp:
        return "----------"
    return time.strftime("%Y-%m-%d", time.localtime(timestamp))


# ==================== StatusComponent ====================
class StatusComponent(BaseComponent):
    """Working tree and index lists with the staging and sync operations."""

    title = "Status"
    kinds = (JobKind.STATUS,)

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.entries: list[FileStatus] = []
        self._selected_key: Optional[tuple[str, bool]] = None
        self._synced_generation = 0

    def wants_focus_on_show(self) -> bool:
        return True

    def reload(self) -> None:
        self.app.request(JobKind.STATUS)

    @property
    def snapshot(self) -> Optional[StatusSnapshot]:
        return self.app.state.current(JobKind.STATUS)

    def selected_entry(self) -> Optional[FileStatus]:
        if 0 <= self.selected < len(self.entries):
            return self.entries[self.selected]
        return None

    def _rebuild_entries(self) -> None:
        snapshot = self.snapshot
        files = snapshot.files if snapshot else ()
        unstaged = [f for f in files if not f.staged and self._matches_filter(f.path)]
        staged = [f for f in files if f.staged and self._matches_filter(f.path)]
        self.entries = unstaged + staged

        # Keep the selection on the same file across refreshes.
        if self._selected_key is not None:
            for index, entry in enumerate(self.entries):
                if (entry.path, entry.staged) == self._selected_key:
                    self.selected = index
                    break
        self.selected = max(0, min(self.selected, len(self.entries) - 1))

    def on_state_changed(self, kinds: set[JobKind]) -> None:
        if JobKind.STATUS not in kinds:
            return
        self._rebuild_entries()
        # Submitting a status job marks it changed too; only a new snapshot
        # makes the diff on screen out of date.
        state = self.app.state
        generation = state.generation(JobKind.STATUS)
        fresh = generation != self._synced_generation and state.error(JobKind.STATUS) is None
        self._synced_generation = generation
        if self.visible:
            self._sync_diff(force=fresh)

    def _sync_diff(self, force: bool = False) -> None:
        entry = self.selected_entry()
        self._selected_key = (entry.path, entry.staged) if entry else None
        if entry is None:
            self.app.diff_view.clear()
        else:
            self.app.diff_view.show_file(entry.path, entry.staged, force=force)

    def handle_event(self, event: KeyEvent) -> EventResult:
        if self._move_selection(event, len(self.entries)):
            self._sync_diff()
            return EventResult.CONSUMED

        entry = self.selected_entry()
        if self.is_action(event, "stage_toggle"):
            if entry is not None:
                kind = JobKind.UNSTAGE if entry.staged else JobKind.STAGE
                self.app.request(kind, {"paths": [entry.path]})
            return EventResult.CONSUMED
        if self.is_action(event, "stage_all"):
            paths = sorted({f.path for f in self.entries if not f.staged})
            if paths:
                self.app.request(JobKind.STAGE, {"paths": paths})
            else:
                self.app.set_status_message("Nothing to stage")
            return EventResult.CONSUMED
        if self.is_action(event, "commit"):
            self._open_commit()
            return EventResult.CONSUMED
        if self.is_action(event, "force_push"):
            self.app.confirm_popup.ask(
                "Force push (with lease) to the remote?",
                lambda: self.app.request(JobKind.PUSH, {"force": True}),
            )
            return EventResult.CONSUMED
        if self.is_action(event, "push"):
            self.app.request(JobKind.PUSH, {"force": False})
            return EventResult.CONSUMED
        if self.is_action(event, "pull"):
            self.app.request(JobKind.PULL)
            return EventResult.CONSUMED
        if self.is_action(event, "fetch"):
            self.app.request(JobKind.FETCH)
            return EventResult.CONSUMED
        if self.is_action(event, "stash_save"):
            self.app.input_popup.ask(
                "Stash message (optional)",
                lambda text, _nv: self.app.request(
                    JobKind.STASH, {"mode": "save", "message": text.strip()}
                ),
                allow_empty=True,
            )
            return EventResult.CONSUMED
        if self.is_action(event, "blame"):
            if entry is not None and entry.flag not in (ChangeFlag.UNTRACKED, ChangeFlag.DELETED, ChangeFlag.ADDED):
                self.app.blame_popup.open_for(entry.path)
            elif entry is not None:
                self.app.set_status_message(f"No history to blame for {entry.path}")
            return EventResult.CONSUMED
        if self.is_action(event, "copy"):
            if entry is not None:
                where = self.app.clipboard.copy(entry.path)
                self.app.set_status_message(f"Copied {entry.path} to {where}")
            return EventResult.CONSUMED
        if self.is_action(event, "filter"):
            self._open_filter()
            return EventResult.CONSUMED
        return EventResult.PASS_THROUGH

    def _open_commit(self) -> None:
        snapshot = self.snapshot
        if snapshot is None or not snapshot.staged:
            self.app.set_status_message("Nothing staged to commit")
            return
        self.app.input_popup.ask(
            "Commit message",
            lambda text, no_verify: self.app.request(
                JobKind.COMMIT, {"message": text, "no_verify": no_verify}
            ),
            allow_no_verify=True,
        )

    def _rows(self) -> list[tuple[Optional[int], str, int]]:
        """Display rows as (entry index or None for headers, text, attr)."""
        rows: list[tuple[Optional[int], str, int]] = []
        unstaged_header = False
        staged_header = False
        for index, entry in enumerate(self.entries):
            if not entry.staged and not unstaged_header:
                rows.append((None, "Changes", self.attr("title")))
                unstaged_header = True
            if entry.staged and not staged_header:
                rows.append((None, "Staged", self.attr("title")))
                staged_header = True
            label = f"{entry.old_path} -> {entry.path}" if entry.old_path else entry.path
            rows.append((index, f" {entry.flag.value} {label}", self.attr(FLAG_COLORS[entry.flag])))
        return rows

    def draw(self, region: Region) -> None:
        snapshot = self.snapshot
        title = self._title_for(JobKind.STATUS)
        if snapshot is not None and snapshot.branch:
            title = f"{title} ({snapshot.branch})"
        inner = self._draw_frame(region, title)
        top = self._draw_state_banner(inner, JobKind.STATUS)
        if snapshot is None:
            return
        body = inner.sub(top, 0, inner.height - top, inner.width)
        if not self.entries:
            body.addstr(0, 0, "Working tree clean" if snapshot.is_clean else "No matches", self.attr("dim"))
            return

        rows = self._rows()
        selected_row = next(i for i, r in enumerate(rows) if r[0] == self.selected)
        self._ensure_visible(selected_row, body.height)
        for screen_row, (index, text, attr) in enumerate(rows[self.scroll:self.scroll + body.height]):
            if index is not None and index == self.selected and self.focused:
                attr = self.attr("selected") or curses.A_REVERSE
                body.clear_row(screen_row, attr)
            body.addstr(screen_row, 0, text, attr)


# ==================== DiffComponent ====================
class DiffComponent(BaseComponent):
    """Scrollable, highlighted diff of the file selected in the status panel."""

    title = "Diff"
    kinds = (JobKind.DIFF,)

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.target: Optional[tuple[str, bool]] = None
        self.handle: Optional[JobHandle] = None
        # Generation -> target it was requested for; errors name their file.
        self._requested: dict[int, tuple[str, bool]] = {}

    def show_file(self, path: str, staged: bool, force: bool = False) -> None:
        if (path, staged) == self.target and not force:
            return
        if (path, staged) != self.target:
            self.scroll = 0
        self.target = (path, staged)
        self.reload()

    def clear(self) -> None:
        if self.handle is not None:
            self.app.cancel(self.handle)
        self.target = None
        self.handle = None
        self.scroll = 0

    def reload(self) -> None:
        if self.target is None:
            return
        path, staged = self.target
        context = self.app.config.get("ui", {}).get("diff_context", 3)
        self.handle = self.app.request(
            JobKind.DIFF, {"path": path, "staged": staged, "context_lines": context}
        )
        if self.handle is not None:
            accepted = self.app.state.generation(JobKind.DIFF)
            self._requested = {g: t for g, t in self._requested.items() if g >= accepted}
            self._requested[self.handle.generation] = self.target

    def current_diff(self) -> Optional[FileDiff]:
        diff = self.app.state.current(JobKind.DIFF)
        if diff is None or self.target is None or (diff.path, diff.staged) != self.target:
            return None
        return diff

    def current_error(self) -> Optional[BackendError]:
        """The DIFF error, if it came from a request for the shown file."""
        error = self.app.state.error(JobKind.DIFF)
        if error is None or self.target is None:
            return None
        if self._requested.get(self.app.state.generation(JobKind.DIFF)) != self.target:
            return None
        return error

    def handle_event(self, event: KeyEvent) -> EventResult:
        diff = self.current_diff()
        count = diff.line_count if diff else 0
        if self.is_action(event, "move_up"):
            self.scroll = max(0, self.scroll - 1)
        elif self.is_action(event, "move_down"):
            self.scroll = max(0, min(self.scroll + 1, count - 1))
        elif self.is_action(event, "page_up"):
            self.scroll = max(0, self.scroll - self._page_height)
        elif self.is_action(event, "page_down"):
            self.scroll = max(0, min(self.scroll + self._page_height, count - 1))
        elif self.is_action(event, "home"):
            self.scroll = 0
        elif self.is_action(event, "end"):
            self.scroll = max(0, count - self._page_height)
        else:
            return EventResult.PASS_THROUGH
        return EventResult.CONSUMED

    def _line_segments(self, line: DiffLine) -> list[tuple[str, int]]:
        if line.tag is LineTag.HEADER:
            return [(line.content, self.attr("hunk"))]
        old = "" if line.old_lineno is None else str(line.old_lineno)
        new = "" if line.new_lineno is None else str(line.new_lineno)
        gutter = (f"{old:>4} {new:>4} ", self.attr("dim"))
        if line.tag is LineTag.ADD:
            marker = ("+", self.attr("added"))
        elif line.tag is LineTag.REMOVE:
            marker = ("-", self.attr("removed"))
        else:
            marker = (" ", 0)
        if line.tokens:
            body = [(text, self.attr(name)) for name, text in line.tokens]
        else:
            body = [(line.content, 0)]
        return [gutter, marker, *body]

    def draw(self, region: Region) -> None:
        title = self.title
        if self.target is not None:
            title = f"{self._title_for(JobKind.DIFF)}: {self.target[0]}"
            if self.target[1]:
                title += " (staged)"
        inner = self._draw_frame(region, title)
        self._page_height = max(1, inner.height)
        if self.target is None:
            inner.addstr(0, 0, "No file selected", self.attr("dim"))
            return

        error = self.current_error()
        top = 0
        if error is not None:
            inner.addstr(0, 0, f"! {error.summary(inner.width)}", self.attr("error"))
            top = 1
        diff = self.current_diff()
        if diff is None:
            if error is None:
                inner.addstr(0, 0, LOADING_TEXT, self.attr("dim"))
            return
        body = inner.sub(top, 0, inner.height - top, inner.width)
        if diff.binary:
            body.addstr(0, 0, "Binary file", self.attr("dim"))
            return
        lines = diff.flat_lines()
        if not lines:
            body.addstr(0, 0, "No changes", self.attr("dim"))
            return
        self.scroll = max(0, min(self.scroll, len(lines) - 1))
        for row, line in enumerate(lines[self.scroll:self.scroll + body.height]):
            body.add_segments(row, 0, self._line_segments(line))


# ==================== LogComponent ====================
class LogComponent(BaseComponent):
    """Paged commit history. Moving past the last row loads the next page."""

    title = "Log"
    kinds = (JobKind.LOG,)

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.page_size = int(app.config.get("ui", {}).get("log_page_size", 200))
        self.limit = self.page_size
        self.commits: list[CommitSummary] = []

    def wants_focus_on_show(self) -> bool:
        return True

    def reload(self) -> None:
        self.app.request(JobKind.LOG, {"start": 0, "limit": self.limit})

    def load_more(self) -> None:
        self.limit += self.page_size
        self.app.set_status_message(f"Loading up to {self.limit} commits...")
        self.reload()

    @property
    def log_slice(self) -> Optional[LogSlice]:
        return self.app.state.current(JobKind.LOG)

    def on_state_changed(self, kinds: set[JobKind]) -> None:
        if JobKind.LOG not in kinds:
            return
        log = self.log_slice
        commits = log.commits if log else ()
        self.commits = [
            c for c in commits if self._matches_filter(c.id, c.author, c.summary)
        ]
        self.selected = max(0, min(self.selected, len(self.commits) - 1))

    def selected_commit(self) -> Optional[CommitSummary]:
        if 0 <= self.selected < len(self.commits):
            return self.commits[self.selected]
        return None

    def handle_event(self, event: KeyEvent) -> EventResult:
        log = self.log_slice
        at_end = self.selected >= len(self.commits) - 1
        if self.is_action(event, "move_down") and at_end and log is not None and log.has_more:
            if not self.app.state.is_loading(JobKind.LOG):
                self.load_more()
            return EventResult.CONSUMED
        if self._move_selection(event, len(self.commits)):
            return EventResult.CONSUMED
        if self.is_action(event, "copy"):
            commit = self.selected_commit()
            if commit is not None:
                where = self.app.clipboard.copy(commit.id)
                self.app.set_status_message(f"Copied {commit.short_id} to {where}")
            return EventResult.CONSUMED
        if self.is_action(event, "filter"):
            self._open_filter()
            return EventResult.CONSUMED
        return EventResult.PASS_THROUGH

    def draw(self, region: Region) -> None:
        inner = self._draw_frame(region, self._title_for(JobKind.LOG))
        top = self._draw_state_banner(inner, JobKind.LOG)
        log = self.log_slice
        if log is None:
            return
        # Bottom two rows: details of the selected commit.
        details_h = 2 if inner.height > 6 else 0
        body = inner.sub(top, 0, inner.height - top - details_h, inner.width)
        if not self.commits:
            body.addstr(0, 0, "No commits" if not log.commits else "No matches", self.attr("dim"))
            return

        self._ensure_visible(self.selected, body.height)
        for row, commit in enumerate(self.commits[self.scroll:self.scroll + body.height]):
            index = self.scroll + row
            selected = index == self.selected and self.focused
            base = (self.attr("selected") or curses.A_REVERSE) if selected else 0
            if selected:
                body.clear_row(row, base)
            body.add_segments(
                row,
                0,
                [
                    (commit.short_id + " ", self.attr("hash") | base),
                    (_format_date(commit.time) + " ", self.attr("dim") | base),
                    (f"{commit.author[:14]:<14} ", base),
                    (("M " if commit.is_merge else "") + commit.summary, base),
                ],
            )
        if log.has_more and self.scroll + body.height >= len(self.commits):
            body.addstr(body.height - 1, 0, "-- more below --", self.attr("dim"))

        commit = self.selected_commit()
        if details_h and commit is not None:
            details = inner.sub(inner.height - details_h, 0, details_h, inner.width)
            parents = " ".join(p[:7] for p in commit.parents) or "(root)"
            details.addstr(0, 0, f"commit {commit.id}", self.attr("hash"))
            details.addstr(1, 0, f"parents {parents}  by {commit.author}", self.attr("dim"))


# ==================== BranchListComponent ====================
class BranchListComponent(BaseComponent):
    """Local branches with checkout, rename and rebase-onto."""

    title = "Branches"
    kinds = (JobKind.BRANCHES,)

    def wants_focus_on_show(self) -> bool:
        return True

    def reload(self) -> None:
        self.app.request(JobKind.BRANCHES)

    @property
    def branches(self) -> Sequence[BranchInfo]:
        return self.app.state.current(JobKind.BRANCHES) or ()

    def on_state_changed(self, kinds: set[JobKind]) -> None:
        if JobKind.BRANCHES in kinds:
            self.selected = max(0, min(self.selected, len(self.branches) - 1))

    def selected_branch(self) -> Optional[BranchInfo]:
        branches = self.branches
        if 0 <= self.selected < len(branches):
            return branches[self.selected]
        return None

    def head(self) -> Optional[BranchInfo]:
        return next((b for b in self.branches if b.is_head), None)

    def handle_event(self, event: KeyEvent) -> EventResult:
        if self._move_selection(event, len(self.branches)):
            return EventResult.CONSUMED
        branch = self.selected_branch()
        if branch is None:
            return EventResult.PASS_THROUGH

        if self.is_action(event, "checkout"):
            if branch.is_head:
                self.app.set_status_message(f"Already on {branch.name}")
            else:
                self.app.request(JobKind.CHECKOUT, {"branch": branch.name})
            return EventResult.CONSUMED
        if self.is_action(event, "rename_branch"):
            self.app.input_popup.ask(
                f"Rename branch {branch.name}",
                lambda text, _nv: self.app.request(
                    JobKind.RENAME_BRANCH, {"old": branch.name, "new": text.strip()}
                ),
                initial=branch.name,
            )
            return EventResult.CONSUMED
        if self.is_action(event, "rebase"):
            head = self.head()
            if branch.is_head or head is None:
                self.app.set_status_message("Select a branch other than the current one")
            else:
                self.app.confirm_popup.ask(
                    f"Rebase {head.name} onto {branch.name}?",
                    lambda: self.app.request(JobKind.REBASE, {"onto": branch.name}),
                )
            return EventResult.CONSUMED
        if self.is_action(event, "copy"):
            where = self.app.clipboard.copy(branch.name)
            self.app.set_status_message(f"Copied {branch.name} to {where}")
            return EventResult.CONSUMED
        return EventResult.PASS_THROUGH

    def draw(self, region: Region) -> None:
        inner = self._draw_frame(region, self._title_for(JobKind.BRANCHES))
        top = self._draw_state_banner(inner, JobKind.BRANCHES)
        if self.app.state.current(JobKind.BRANCHES) is None:
            return
        body = inner.sub(top, 0, inner.height - top, inner.width)
        branches = self.branches
        if not branches:
            body.addstr(0, 0, "No branches", self.attr("dim"))
            return
        self._ensure_visible(self.selected, body.height)
        for row, branch in enumerate(branches[self.scroll:self.scroll + body.height]):
            selected = self.scroll + row == self.selected and self.focused
            base = (self.attr("selected") or curses.A_REVERSE) if selected else 0
            if selected:
                body.clear_row(row, base)
            track = ""
            if branch.upstream:
                track = f"  {branch.upstream}"
                if branch.ahead:
                    track += f" ↑{branch.ahead}"
                if branch.behind:
                    track += f" ↓{branch.behind}"
            body.add_segments(
                row,
                0,
                [
                    ("* " if branch.is_head else "  ", self.attr("added") | base),
                    (branch.name, (curses.A_BOLD if branch.is_head else 0) | base),
                    (track, self.attr("dim") | base),
                ],
            )


# ==================== StashListComponent ====================
class StashListComponent(BaseComponent):
    """Stash entries with apply, pop and drop."""

    title = "Stashes"
    kinds = (JobKind.STASHES,)

    def wants_focus_on_show(self) -> bool:
        return True

    def reload(self) -> None:
        self.app.request(JobKind.STASHES)

    @property
    def stashes(self) -> Sequence[StashEntry]:
        return self.app.state.current(JobKind.STASHES) or ()

    def on_state_changed(self, kinds: set[JobKind]) -> None:
        if JobKind.STASHES in kinds:
            self.selected = max(0, min(self.selected, len(self.stashes) - 1))

    def handle_event(self, event: KeyEvent) -> EventResult:
        stashes = self.stashes
        if self._move_selection(event, len(stashes)):
            return EventResult.CONSUMED
        if not 0 <= self.selected < len(stashes):
            return EventResult.PASS_THROUGH
        entry = stashes[self.selected]

        if self.is_action(event, "stash_apply"):
            self.app.request(JobKind.STASH, {"mode": "apply", "index": entry.index})
            return EventResult.CONSUMED
        if self.is_action(event, "stash_pop"):
            self.app.request(JobKind.STASH, {"mode": "pop", "index": entry.index})
            return EventResult.CONSUMED
        if self.is_action(event, "stash_drop"):
            self.app.confirm_popup.ask(
                f"Drop {entry.ref}?",
                lambda: self.app.request(JobKind.STASH, {"mode": "drop", "index": entry.index}),
            )
            return EventResult.CONSUMED
        return EventResult.PASS_THROUGH

    def draw(self, region: Region) -> None:
        inner = self._draw_frame(region, self._title_for(JobKind.STASHES))
        top = self._draw_state_banner(inner, JobKind.STASHES)
        if self.app.state.current(JobKind.STASHES) is None:
            return
        body = inner.sub(top, 0, inner.height - top, inner.width)
        stashes = self.stashes
        if not stashes:
            body.addstr(0, 0, "No stashes", self.attr("dim"))
            return
        self._ensure_visible(self.selected, body.height)
        for row, entry in enumerate(stashes[self.scroll:self.scroll + body.height]):
            selected = self.scroll + row == self.selected and self.focused
            base = (self.attr("selected") or curses.A_REVERSE) if selected else 0
            if selected:
                body.clear_row(row, base)
            body.add_segments(
                row, 0, [(entry.ref + " ", self.attr("hash") | base), (entry.message, base)]
            )


# ==================== Popups ====================
class Popup(BaseComponent):
    """Base for overlays: modal, centred, focused when shown."""

    width = 60
    height = 7

    def wants_focus_on_show(self) -> bool:
        return True

    def open(self) -> None:
        self.app.open_overlay(self)

    def close(self) -> None:
        self.hide()

    def _box(self, region: Region, title: str, height: Optional[int] = None) -> Region:
        box = region.centered(height or self.height, min(self.width, region.width - 2))
        box.clear()
        self.focused = True
        return self._draw_frame(box, title)


class ConfirmPopup(Popup):
    """Yes/no question; runs a callback on confirmation."""

    title = "Confirm"

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.message = ""
        self.on_confirm: Optional[Callable[[], Any]] = None

    def ask(self, message: str, on_confirm: Callable[[], Any]) -> None:
        self.message = message
        self.on_confirm = on_confirm
        self.open()

    def handle_event(self, event: KeyEvent) -> EventResult:
        if self.is_action(event, "confirm"):
            callback, self.on_confirm = self.on_confirm, None
            self.close()
            if callback is not None:
                callback()
        elif self.is_action(event, "close") or event.char in ("n", "N", "q"):
            self.on_confirm = None
            self.close()
        return EventResult.CONSUMED

    def draw(self, region: Region) -> None:
        lines = textwrap.wrap(self.message, max(10, self.width - 4)) or [""]
        inner = self._box(region, self.title, height=len(lines) + 4)
        for row, line in enumerate(lines):
            inner.addstr(row, 1, line)
        inner.addstr(inner.height - 1, 1, f"[{self.app.keybinder.describe('confirm')}] yes   [esc/n] no", self.attr("dim"))


class TextInputPopup(Popup):
    """Single-line text entry (commit message, branch name, filter, stash message)."""

    title = "Input"

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.prompt = ""
        self.text = ""
        self.cursor = 0
        self.allow_no_verify = False
        self.allow_empty = False
        self.no_verify = False
        self.on_submit: Optional[Callable[[str, bool], Any]] = None

    def ask(
        self,
        prompt: str,
        on_submit: Callable[[str, bool], Any],
        initial: str = "",
        allow_no_verify: bool = False,
        allow_empty: bool = False,
    ) -> None:
        self.prompt = prompt
        self.text = initial
        self.cursor = len(initial)
        self.allow_no_verify = allow_no_verify
        self.allow_empty = allow_empty or prompt == "Filter"
        self.no_verify = False
        self.on_submit = on_submit
        self.open()

    def handle_event(self, event: KeyEvent) -> EventResult:
        key = event.key
        if self.is_action(event, "close"):
            self.on_submit = None
            self.close()
        elif self.is_action(event, "enter"):
            if not self.text.strip() and not self.allow_empty:
                self.app.set_status_message(f"{self.prompt}: empty input")
                return EventResult.CONSUMED
            callback, self.on_submit = self.on_submit, None
            self.close()
            if callback is not None:
                callback(self.text, self.no_verify)
        elif self.allow_no_verify and self.is_action(event, "toggle_verify"):
            self.no_verify = not self.no_verify
        elif key in BACKSPACE_CODES:
            if self.cursor > 0:
                self.text = self.text[: self.cursor - 1] + self.text[self.cursor:]
                self.cursor -= 1
        elif key == curses.KEY_DC:
            self.text = self.text[: self.cursor] + self.text[self.cursor + 1:]
        elif key == curses.KEY_LEFT:
            self.cursor = max(0, self.cursor - 1)
        elif key == curses.KEY_RIGHT:
            self.cursor = min(len(self.text), self.cursor + 1)
        elif key == curses.KEY_HOME:
            self.cursor = 0
        elif key == curses.KEY_END:
            self.cursor = len(self.text)
        elif event.char is not None:
            self.text = self.text[: self.cursor] + event.char + self.text[self.cursor:]
            self.cursor += 1
        return EventResult.CONSUMED

    def draw(self, region: Region) -> None:
        inner = self._box(region, self.prompt)
        field_w = max(1, inner.width - 2)
        # Scroll the field so the cursor stays visible.
        start = max(0, self.cursor - field_w + 1)
        visible = self.text[start:start + field_w]
        inner.addstr(1, 1, " " * field_w, curses.A_UNDERLINE)
        inner.addstr(1, 1, visible, curses.A_UNDERLINE)
        cursor_col = 1 + display_width(self.text[start:self.cursor])
        under_cursor = self.text[self.cursor] if self.cursor < len(self.text) else " "
        inner.addstr(1, cursor_col, under_cursor, curses.A_REVERSE)
        hint = "[enter] ok  [esc] cancel"
        if self.allow_no_verify:
            state = "skip hooks" if self.no_verify else "run hooks"
            hint += f"  [{self.app.keybinder.describe('toggle_verify')}] {state}"
        inner.addstr(inner.height - 1, 1, hint, self.attr("dim"))


class MessagePopup(Popup):
    """Error or information text; any close key dismisses it."""

    title = "Message"
    width = 70

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.heading = ""
        self.lines: list[str] = []
        self.is_error = False

    def show_message(self, heading: str, text: str, is_error: bool = False) -> None:
        self.heading = heading
        self.is_error = is_error
        self.lines = []
        for paragraph in text.splitlines() or [""]:
            self.lines.extend(textwrap.wrap(paragraph, self.width - 4) or [""])
        self.scroll = 0
        self.open()

    def handle_event(self, event: KeyEvent) -> EventResult:
        if self.is_action(event, "move_down"):
            self.scroll = min(self.scroll + 1, max(0, len(self.lines) - 1))
        elif self.is_action(event, "move_up"):
            self.scroll = max(0, self.scroll - 1)
        elif (
            self.is_action(event, "close")
            or self.is_action(event, "enter")
            or event.char == "q"
        ):
            self.close()
        return EventResult.CONSUMED

    def draw(self, region: Region) -> None:
        height = min(len(self.lines) + 3, max(5, region.height - 4))
        inner = self._box(region, self.heading, height=height)
        attr = self.attr("error") if self.is_error else 0
        for row, line in enumerate(self.lines[self.scroll:self.scroll + inner.height - 1]):
            inner.addstr(row, 1, line, attr)
        inner.addstr(inner.height - 1, 1, "[esc/enter] close", self.attr("dim"))


class HelpPopup(Popup):
    """Lists every bound action and its keys."""

    title = "Help"
    width = 64

    def _lines(self) -> list[str]:
        binder = self.app.keybinder
        return [
            f"{action.replace('_', ' '):<16} {binder.describe(action)}"
            for action in binder.specs
        ]

    def handle_event(self, event: KeyEvent) -> EventResult:
        if self.is_action(event, "move_down"):
            self.scroll += 1
        elif self.is_action(event, "move_up"):
            self.scroll = max(0, self.scroll - 1)
        elif self.is_action(event, "close") or self.is_action(event, "help") or event.char == "q":
            self.close()
        return EventResult.CONSUMED

    def draw(self, region: Region) -> None:
        lines = self._lines()
        inner = self._box(region, "Key bindings", height=max(5, region.height - 4))
        self.scroll = max(0, min(self.scroll, len(lines) - inner.height))
        for row, line in enumerate(lines[self.scroll:self.scroll + inner.height]):
            inner.addstr(row, 1, line)


class BlamePopup(Popup):
    """Per-line commit attribution of one file, loaded on open."""

    title = "Blame"
    kinds = (JobKind.BLAME,)
    width = 120

    def __init__(self, app: "Gitpane") -> None:
        super().__init__(app)
        self.path: Optional[str] = None
        self.handle: Optional[JobHandle] = None

    def open_for(self, path: str) -> None:
        self.path = path
        self.scroll = 0
        self.reload()
        self.open()

    def reload(self) -> None:
        if self.path is not None:
            self.handle = self.app.request(JobKind.BLAME, {"path": self.path})

    def close(self) -> None:
        if self.handle is not None and self.app.state.is_loading(JobKind.BLAME):
            self.app.cancel(self.handle)
        self.handle = None
        super().close()

    def current_blame(self) -> Optional[BlameResult]:
        blame = self.app.state.current(JobKind.BLAME)
        if blame is None or blame.path != self.path:
            return None
        return blame

    def handle_event(self, event: KeyEvent) -> EventResult:
        blame = self.current_blame()
        count = len(blame.lines) if blame else 0
        if self.is_action(event, "close") or self.is_action(event, "blame") or event.char == "q":
            self.close()
        elif self.is_action(event, "move_down"):
            self.scroll = min(self.scroll + 1, max(0, count - 1))
        elif self.is_action(event, "move_up"):
            self.scroll = max(0, self.scroll - 1)
        elif self.is_action(event, "page_down"):
            self.scroll = min(self.scroll + self._page_height, max(0, count - 1))
        elif self.is_action(event, "page_up"):
            self.scroll = max(0, self.scroll - self._page_height)
        elif self.is_action(event, "home"):
            self.scroll = 0
        elif self.is_action(event, "end"):
            self.scroll = max(0, count - self._page_height)
        elif self.is_action(event, "copy") and blame is not None and count:
            line = blame.lines[min(self.scroll, count - 1)]
            where = self.app.clipboard.copy(line.commit_id)
            self.app.set_status_message(f"Copied {line.commit_id[:7]} to {where}")
        return EventResult.CONSUMED

    def draw(self, region: Region) -> None:
        self.width = max(40, region.width - 4)
        title = f"{self._title_for(JobKind.BLAME)}: {self.path or ''}"
        inner = self._box(region, title, height=max(5, region.height - 2))
        self._page_height = max(1, inner.height)
        error = self.app.state.error(JobKind.BLAME)
        blame = self.current_blame()
        if blame is None:
            if error is not None:
                inner.addstr(0, 0, f"! {error.summary(inner.width)}", self.attr("error"))
            else:
                inner.addstr(0, 0, LOADING_TEXT, self.attr("dim"))
            return
        previous = None
        for row, line in enumerate(blame.lines[self.scroll:self.scroll + inner.height]):
            if line.commit_id != previous:
                who = f"{line.commit_id[:7]} {_format_date(line.time)} {line.author[:12]:<12}"
            else:
                who = " " * 31
            previous = line.commit_id
            segments = [(who, self.attr("hash")), (f" {line.lineno:>5} │ ", self.attr("dim"))]
            if line.tokens:
                segments.extend((text, self.attr(name)) for name, text in line.tokens)
            else:
                segments.append((line.content, 0))
            inner.add_segments(row, 0, segments)
