# gitpane/core/Gitpane.py
"""gitpane.core.Gitpane.py
============================
Gitpane: the application controller.

This module defines the `Gitpane` class, which owns everything the render
loop touches:

- the `AppState` result cache and the `AsyncEngine` that fills it,
- the notification channel shared with the engine and the file watcher,
- the components (created once, shown and hidden as tabs change),
- the `FocusRouter` that dispatches keys and lays out the screen,
- the `DrawScreen` renderer and the transient status-bar message.

One loop iteration drains notifications, applies the whole batch to the
state, reads at most one key, and redraws when something changed. Nothing in
the loop waits for git. After a mutating job finishes, the status and the
kinds shown by the visible tab are reloaded; a filesystem change only
reloads the status. A `SchedulerFatal` from the engine or the watcher ends the
loop: the watcher, the engine and the channel are shut down in that order and
the error is re-raised to the caller.
"""

import curses
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional

from gitpane.core.AppState import AppState, ApplyStatus
from gitpane.core.AsyncEngine import AsyncEngine
from gitpane.core.Errors import BusyError, SchedulerFatal
from gitpane.core.Jobs import JobHandle, JobKind, JobOutcome, RepoChanged
from gitpane.core.NotificationChannel import NotificationChannel
from gitpane.integrations.Clipboard import Clipboard
from gitpane.integrations.FileWatcher import FileWatcher
from gitpane.integrations.GitBridge import GitBridge, RepositoryBackend
from gitpane.integrations.SyntaxHighlighter import SyntaxHighlighter
from gitpane.ui.components import (
    BaseComponent,
    BlamePopup,
    BranchListComponent,
    ConfirmPopup,
    DiffComponent,
    EventResult,
    HelpPopup,
    KeyEvent,
    LogComponent,
    MessagePopup,
    StashListComponent,
    StatusComponent,
    TextInputPopup,
)
from gitpane.ui.DrawScreen import DrawScreen
from gitpane.ui.FocusRouter import FocusRouter, Tab
from gitpane.ui.KeyBinder import KeyBinder
from gitpane.utils.logging_config import logger


# Kinds whose cached results a successful mutation makes out of date.
MUTATION_EFFECTS: dict[JobKind, tuple[JobKind, ...]] = {
    JobKind.STAGE: (JobKind.STATUS, JobKind.DIFF),
    JobKind.UNSTAGE: (JobKind.STATUS, JobKind.DIFF),
    JobKind.COMMIT: (JobKind.STATUS, JobKind.DIFF, JobKind.LOG, JobKind.BRANCHES),
    JobKind.PUSH: (JobKind.STATUS, JobKind.BRANCHES),
    JobKind.PULL: (JobKind.STATUS, JobKind.DIFF, JobKind.LOG, JobKind.BRANCHES),
    JobKind.FETCH: (JobKind.STATUS, JobKind.BRANCHES),
    JobKind.REBASE: (JobKind.STATUS, JobKind.DIFF, JobKind.LOG, JobKind.BRANCHES),
    JobKind.STASH: (JobKind.STATUS, JobKind.DIFF, JobKind.STASHES),
    JobKind.CHECKOUT: (JobKind.STATUS, JobKind.DIFF, JobKind.LOG, JobKind.BRANCHES),
    JobKind.RENAME_BRANCH: (JobKind.STATUS, JobKind.BRANCHES),
}


class Gitpane:
    """Class Gitpane
    ===============
    Wires the engine, state, watcher and UI together and runs the render loop.

    Attributes:
        stdscr (curses.window): The main curses window.
        config (dict): Merged application configuration.
        backend (RepositoryBackend): The repository backend jobs run against.
        channel (NotificationChannel): Outcomes and change signals.
        engine (AsyncEngine): Job scheduler.
        state (AppState): Latest accepted result per job kind.
        keybinder (KeyBinder): Key input and action lookup.
        clipboard (Clipboard): Copy target for paths and commit ids.
        colors (dict[str, int]): Colour name -> curses attribute.
        router (FocusRouter): Focus stack and layout.
        drawer (DrawScreen): Frame renderer.
        watcher (Optional[FileWatcher]): Background change detection.
        running (bool): Cleared to leave the loop.
        fatal_error (Optional[SchedulerFatal]): Why the loop stopped, if it failed.
    """

    def __init__(
        self,
        stdscr: Any,
        config: dict[str, Any],
        repo_path: Optional[os.PathLike | str] = None,
        backend: Optional[RepositoryBackend] = None,
        clipboard: Optional[Clipboard] = None,
        watcher: Optional[FileWatcher] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.stdscr = stdscr
        self.config = config
        if backend is None:
            backend = GitBridge.discover(repo_path or os.getcwd(), highlighter=SyntaxHighlighter())
        self.backend = backend
        repo_root = Path(getattr(backend, "repo_path", repo_path or os.getcwd()))

        self.channel = NotificationChannel()
        self.engine = AsyncEngine(backend, self.channel, config, max_workers=max_workers)
        self.state = AppState(repo_root, self.engine.generations)
        self.keybinder = KeyBinder(config, stdscr)
        self.clipboard = clipboard or Clipboard()
        self.colors: dict[str, int] = {}

        self.running = False
        self.fatal_error: Optional[SchedulerFatal] = None
        self._background_fatal: Optional[BaseException] = None
        self._shut_down = False
        self._force_redraw = True

        ui_config = config.get("ui", {})
        self.message_timeout = float(ui_config.get("message_timeout", 4.0))
        self.tick_ms = int(ui_config.get("tick_ms", 100))
        self.status_message = ""
        self.status_is_error = False
        self._message_expires = 0.0

        # Components are created once and live for the whole session.
        self.status_view = StatusComponent(self)
        self.diff_view = DiffComponent(self)
        self.log_view = LogComponent(self)
        self.stash_view = StashListComponent(self)
        self.branch_view = BranchListComponent(self)
        self.confirm_popup = ConfirmPopup(self)
        self.input_popup = TextInputPopup(self)
        self.message_popup = MessagePopup(self)
        self.help_popup = HelpPopup(self)
        self.blame_popup = BlamePopup(self)

        self.router = FocusRouter(
            self,
            {
                Tab.STATUS: [(self.status_view, 0.4), (self.diff_view, 0.6)],
                Tab.LOG: [(self.log_view, 1.0)],
                Tab.STASHES: [(self.stash_view, 1.0)],
                Tab.BRANCHES: [(self.branch_view, 1.0)],
            },
        )
        self.drawer = DrawScreen(self)

        watcher_config = config.get("watcher", {})
        if watcher is None and watcher_config.get("enabled", True) and isinstance(backend, GitBridge):
            watcher = FileWatcher(
                repo_root,
                backend.git_dir(),
                self.channel,
                interval=watcher_config.get("interval", 1.0),
                on_fatal=self._on_background_fatal,
            )
        self.watcher = watcher
        logger.info(f"Gitpane initialised for {repo_root}")

    @property
    def components(self) -> list[BaseComponent]:
        return [
            self.status_view,
            self.diff_view,
            self.log_view,
            self.stash_view,
            self.branch_view,
            self.blame_popup,
        ]

    # ------------------ lifecycle ------------------
    def setup_terminal(self) -> None:
        """Curses settings and colours; needs an initialised screen."""
        try:
            curses.curs_set(0)
        except curses.error:
            logging.debug("Terminal does not support hiding the cursor.")
        self.stdscr.keypad(True)
        self.stdscr.timeout(self.tick_ms)
        self.colors = self.drawer.init_colors()

    def start(self) -> None:
        """Starts the background services and loads the first tab."""
        self.engine.start()
        if self.watcher is not None:
            self.watcher.start()
        self.router.select_tab(Tab.STATUS)

    def shutdown(self) -> None:
        """Stops the watcher, then the engine, then closes the channel."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down gitpane...")
        if self.watcher is not None:
            try:
                self.watcher.stop()
            except Exception:
                logging.exception("Error while stopping the file watcher")
        self.engine.stop()
        self.channel.close()

    def quit(self) -> None:
        logger.info("Quit requested.")
        self.running = False

    def _on_background_fatal(self, error: BaseException) -> None:
        # Called from the watcher thread; the loop raises it on its next turn.
        self._background_fatal = error

    # ------------------  Main loop  ------------------------
    def run(self) -> None:
        """The main loop. Re-raises `SchedulerFatal` after an orderly shutdown."""
        logger.info("Gitpane main loop started.")
        self.setup_terminal()
        self.running = True
        try:
            self.start()
            while self.running:
                try:
                    redraw_needed = self._process_events_and_input()
                    self._render_screen(redraw_needed)
                except KeyboardInterrupt:
                    logger.info("Main loop interrupted by KeyboardInterrupt.")
                    self.running = False
        except SchedulerFatal as e:
            logger.critical("Scheduler failure, leaving the main loop: %s", e, exc_info=True)
            self.fatal_error = e
        finally:
            self.running = False
            self.shutdown()
        logger.info("Gitpane main loop finished.")
        if self.fatal_error is not None:
            raise self.fatal_error

    def _process_events_and_input(self) -> bool:
        redraw_needed = self.process_notifications()

        key_input = self.keybinder.get_key_input()
        if key_input != curses.ERR and key_input != -1:
            if key_input == curses.KEY_RESIZE:
                redraw_needed |= self.handle_resize()
            else:
                self.handle_key(key_input)
                redraw_needed = True
                # Keys often submit jobs; show their loading state right away.
                redraw_needed |= self.process_notifications()

        if self.status_message and time.monotonic() >= self._message_expires:
            self.status_message = ""
            self.status_is_error = False
            redraw_needed = True
        if self.engine.active_jobs():
            # Keeps the activity spinner moving.
            redraw_needed = True
        return redraw_needed

    def _render_screen(self, redraw_needed: bool) -> None:
        if redraw_needed or self._force_redraw:
            self.render()

    def render(self) -> None:
        self._force_redraw = False
        self.drawer.draw()

    def handle_resize(self) -> bool:
        height, width = self.stdscr.getmaxyx()
        logging.debug(f"Window resized to {width}x{height}.")
        self._force_redraw = True
        return True

    def handle_key(self, key: Any) -> EventResult:
        return self.router.dispatch(KeyEvent(key))

    # ------------------ notifications ------------------
    def process_notifications(self) -> bool:
        """Drains the channel and applies everything in it as one batch.

        Returns:
            bool: True if anything arrived (the screen needs a redraw).
        """
        if self._background_fatal is not None:
            error, self._background_fatal = self._background_fatal, None
            raise SchedulerFatal(f"file watcher failed: {error}") from error

        outcomes: list[JobOutcome] = []
        changes: list[RepoChanged] = []
        for notification in self.engine.poll_notifications():
            if isinstance(notification, JobOutcome):
                outcomes.append(notification)
            elif isinstance(notification, RepoChanged):
                changes.append(notification)

        status_requested = False
        for outcome, status in zip(outcomes, self.state.apply_batch(outcomes)):
            if outcome.kind.is_mutating and status is not ApplyStatus.STALE:
                self._after_mutation(outcome, status)
                status_requested = True

        if changes:
            logging.debug(
                "Repository changed (%s): %s",
                ", ".join(sorted({c.reason for c in changes})),
                [p for c in changes for p in c.paths][:20],
            )
            # A running mutation refreshes everything when it finishes.
            if not status_requested and self.engine.mutation_in_flight is None:
                self.request(JobKind.STATUS)

        dirty = self.state.take_dirty()
        if dirty:
            for component in self.components:
                try:
                    component.on_state_changed(dirty)
                except Exception:
                    logging.exception(
                        "on_state_changed crashed for %s", component.__class__.__name__
                    )
        return bool(outcomes or changes or dirty)

    def _after_mutation(self, outcome: JobOutcome, status: ApplyStatus) -> None:
        label = outcome.kind.label
        if status is ApplyStatus.ACCEPTED:
            message = getattr(outcome.result, "message", "") or f"{label} done"
            self.set_status_message(message)
        elif status is ApplyStatus.FAILED and outcome.error is not None:
            error = outcome.error
            details = error.stderr.strip() or str(error)
            self.set_status_message(f"{label} failed: {error.summary(80)}", is_error=True)
            self.message_popup.show_message(f"{label} failed", details, is_error=True)
        self.refresh_after_mutation(outcome.kind)

    def refresh_after_mutation(self, kind: JobKind) -> None:
        """Reloads the status and the visible tab; flags the rest as out of date."""
        visible = self.router.visible_components()
        shown = {k for component in visible for k in component.kinds}
        self.request(JobKind.STATUS)
        for component in visible:
            if JobKind.STATUS not in component.kinds:
                component.reload()
        for affected in MUTATION_EFFECTS.get(kind, ()):
            if affected not in shown and affected is not JobKind.STATUS:
                self.state.invalidate(affected)

    def refresh_visible(self) -> None:
        """Reloads everything on screen (the global refresh key)."""
        visible = self.router.visible_components()
        if not any(JobKind.STATUS in c.kinds for c in visible):
            self.request(JobKind.STATUS)
        for component in visible:
            component.reload()
        self.set_status_message("Refreshing...")

    # ------------------ services for components ------------------
    def request(
        self, kind: JobKind, params: Optional[dict[str, Any]] = None
    ) -> Optional[JobHandle]:
        """Submits a job. Returns None (and says why) if a mutation is in flight."""
        try:
            handle = self.engine.submit(kind, params)
        except BusyError as e:
            logging.info(f"Rejected {kind.label}: {e}")
            self.set_status_message(str(e), is_error=True)
            return None
        self.state.mark_submitted(handle)
        if kind.is_mutating:
            self.set_status_message(f"{kind.label}...")
        return handle

    def cancel(self, handle: JobHandle) -> bool:
        return self.engine.cancel(handle)

    def open_overlay(self, overlay: BaseComponent) -> None:
        self.router.push(overlay)

    def set_status_message(self, message: str, is_error: bool = False) -> None:
        message = str(message)
        if self.status_message != message:
            logging.debug(f"Status message set to: '{message}'")
        self.status_message = message
        self.status_is_error = is_error
        self._message_expires = time.monotonic() + self.message_timeout

    def current_message(self) -> tuple[str, bool]:
        if self.status_message and time.monotonic() < self._message_expires:
            return self.status_message, self.status_is_error
        return "", False
