# gitpane/integrations/FileWatcher.py
"""FileWatcher.py
========================
Poll-based repository change detection.

A daemon thread recomputes a cheap digest over git control files (index,
HEAD, the checked-out ref, merge/rebase markers) and over the stat data of
the work tree's top level. When the digest changes it puts a `RepoChanged`
signal on the notification channel; the render loop answers that by
resubmitting the status job only.
"""

import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

from gitpane.core.Errors import SchedulerFatal
from gitpane.core.Jobs import RepoChanged
from gitpane.core.NotificationChannel import NotificationChannel


def _update_digest(digest, token: str) -> None:
    digest.update(token.encode("utf-8", errors="surrogateescape"))
    digest.update(b"\0")


def _path_stat_signature(path: Path) -> tuple[str, int, int, int]:
    try:
        st = path.stat()
    except FileNotFoundError:
        return ("missing", 0, 0, 0)
    except OSError:
        return ("error", 0, 0, 0)
    return ("ok", st.st_mtime_ns, st.st_size, st.st_mode)


def build_git_signature(git_dir: Path) -> str:
    """Digest over the git metadata that changes when status can change."""
    digest = hashlib.blake2b(digest_size=20)
    _update_digest(digest, f"git_dir:{git_dir}")

    def add_path_token(label: str, path: Path) -> None:
        state, mtime_ns, size, mode = _path_stat_signature(path)
        _update_digest(digest, f"{label}:{state}:{mtime_ns}:{size}:{mode}")

    head_path = git_dir / "HEAD"
    add_path_token("index", git_dir / "index")
    add_path_token("head", head_path)

    ref_name = ""
    try:
        head_text = head_path.read_text(encoding="utf-8", errors="replace").strip()
        if head_text.startswith("ref: "):
            ref_name = head_text[5:].strip()
    except OSError:
        ref_name = ""
    _update_digest(digest, f"head_ref:{ref_name}")
    if ref_name:
        add_path_token("head_ref_file", git_dir / ref_name)

    add_path_token("merge_head", git_dir / "MERGE_HEAD")
    add_path_token("cherry_pick_head", git_dir / "CHERRY_PICK_HEAD")
    add_path_token("rebase_head", git_dir / "REBASE_HEAD")
    add_path_token("stash", git_dir / "refs" / "stash")
    return digest.hexdigest()


def build_worktree_signature(repo_root: Path) -> dict[str, str]:
    """Stat token per entry in the top level of the work tree."""
    tokens: dict[str, str] = {}
    try:
        with os.scandir(repo_root) as entries:
            for child in entries:
                if child.name == ".git":
                    continue
                try:
                    st = child.stat(follow_symlinks=False)
                    tokens[child.name] = f"{st.st_mtime_ns}:{st.st_size}:{st.st_mode}"
                except OSError:
                    tokens[child.name] = "error"
    except OSError:
        logging.debug(f"Could not scan work tree {repo_root}.")
    return tokens


def changed_entries(before: dict[str, str], after: dict[str, str]) -> tuple[str, ...]:
    """Names added, removed or modified between two work tree signatures."""
    names = set(before) | set(after)
    return tuple(sorted(n for n in names if before.get(n) != after.get(n)))


class FileWatcher:
    """Class FileWatcher
    =================
    Background poller that turns on-disk repository changes into
    `RepoChanged` notifications.

    Attributes:
        repo_root (Path): The work tree root.
        git_dir (Path): The repository's git directory.
        channel (NotificationChannel): Where signals are posted.
        interval (float): Seconds between polls.
    """

    def __init__(
        self,
        repo_root: os.PathLike | str,
        git_dir: os.PathLike | str,
        channel: NotificationChannel,
        interval: float = 1.0,
        on_fatal: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.git_dir = Path(git_dir)
        self.channel = channel
        self.interval = max(0.05, float(interval))
        self.on_fatal = on_fatal
        self.thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._git_sig = ""
        self._tree_sig: dict[str, str] = {}

    def start(self) -> None:
        if self.thread is not None:
            return
        self.prime()
        self.thread = threading.Thread(
            target=self._run, daemon=True, name="FileWatcherThread"
        )
        self.thread.start()
        logging.info(f"FileWatcher started on {self.repo_root} (every {self.interval}s).")

    def stop(self) -> None:
        self._stop.set()
        if self.thread is not None and self.thread.is_alive():
            self.thread.join(timeout=self.interval + 1.0)
        logging.info("FileWatcher stopped.")

    def prime(self) -> None:
        """Records the current state as the baseline for the next `check`."""
        self._git_sig = build_git_signature(self.git_dir)
        self._tree_sig = build_worktree_signature(self.repo_root)

    def check(self) -> bool:
        """Polls once. Returns True and posts a signal if anything changed."""
        git_sig = build_git_signature(self.git_dir)
        tree_sig = build_worktree_signature(self.repo_root)
        paths = changed_entries(self._tree_sig, tree_sig)
        if git_sig == self._git_sig and not paths:
            return False

        reason = "git" if git_sig != self._git_sig else "worktree"
        self._git_sig, self._tree_sig = git_sig, tree_sig
        logging.debug(f"FileWatcher detected a {reason} change: {paths}")
        self.channel.put(RepoChanged(paths=paths, reason=reason))
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check()
            except SchedulerFatal as e:
                # The channel is gone; nothing left to notify.
                logging.info(f"FileWatcher stopping: {e}")
                if self.on_fatal is not None:
                    self.on_fatal(e)
                return
            except Exception as e:
                logging.error(f"FileWatcher poll failed: {e}", exc_info=True)
