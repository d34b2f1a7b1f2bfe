# tests/integrations/test_file_watcher.py
"""Tests for the poll-based `FileWatcher`.
=========================================

The watcher is driven with explicit `check()` calls on a fake repository
layout in a temporary directory; only one test starts the real thread.
"""

import os
import time
from pathlib import Path

import pytest

from gitpane.core.Errors import SchedulerFatal
from gitpane.core.Jobs import RepoChanged
from gitpane.core.NotificationChannel import NotificationChannel
from gitpane.integrations.FileWatcher import (
    FileWatcher,
    build_git_signature,
    build_worktree_signature,
    changed_entries,
)

from tests.stubs import wait_until


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    git_dir = tmp_path / ".git"
    (git_dir / "refs" / "heads").mkdir(parents=True)
    (git_dir / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (git_dir / "refs" / "heads" / "main").write_text("a" * 40 + "\n", encoding="utf-8")
    (git_dir / "index").write_bytes(b"DIRC")
    (tmp_path / "app.py").write_text("x = 1\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def channel() -> NotificationChannel:
    return NotificationChannel()


@pytest.fixture
def watcher(repo: Path, channel: NotificationChannel) -> FileWatcher:
    instance = FileWatcher(repo, repo / ".git", channel, interval=0.05)
    instance.prime()
    return instance


def touch(path: Path, content: str) -> None:
    """Writes ``content`` and moves the mtime forward so the change is visible."""
    path.write_text(content, encoding="utf-8")
    later = time.time() + 5
    os.utime(path, (later, later))


class TestSignatures:
    """Test: the digests the watcher compares."""

    def test_git_signature_is_stable(self, repo: Path) -> None:
        assert build_git_signature(repo / ".git") == build_git_signature(repo / ".git")

    def test_git_signature_follows_checked_out_ref(self, repo: Path) -> None:
        before = build_git_signature(repo / ".git")
        touch(repo / ".git" / "refs" / "heads" / "main", "b" * 40 + "\n")
        assert build_git_signature(repo / ".git") != before

    def test_git_signature_sees_merge_marker(self, repo: Path) -> None:
        before = build_git_signature(repo / ".git")
        (repo / ".git" / "MERGE_HEAD").write_text("c" * 40, encoding="utf-8")
        assert build_git_signature(repo / ".git") != before

    def test_missing_git_dir_does_not_raise(self, tmp_path: Path) -> None:
        assert build_git_signature(tmp_path / "nowhere")

    def test_worktree_signature_skips_git_dir(self, repo: Path) -> None:
        assert set(build_worktree_signature(repo)) == {"app.py"}

    def test_worktree_signature_of_missing_dir(self, tmp_path: Path) -> None:
        assert build_worktree_signature(tmp_path / "nowhere") == {}

    def test_changed_entries(self) -> None:
        before = {"a": "1", "b": "1", "c": "1"}
        after = {"a": "1", "b": "2", "d": "1"}
        assert changed_entries(before, after) == ("b", "c", "d")


class TestCheck:
    """Test: one poll posts at most one signal."""

    def test_no_change(self, watcher: FileWatcher, channel: NotificationChannel) -> None:
        assert watcher.check() is False
        assert channel.drain() == []

    def test_worktree_change(self, watcher: FileWatcher, repo: Path, channel: NotificationChannel) -> None:
        (repo / "notes.txt").write_text("todo\n", encoding="utf-8")
        assert watcher.check() is True
        (signal,) = channel.drain()
        assert (signal.paths, signal.reason) == (("notes.txt",), "worktree")
        # The new state becomes the baseline.
        assert watcher.check() is False

    def test_git_change_wins_reason(
        self, watcher: FileWatcher, repo: Path, channel: NotificationChannel
    ) -> None:
        touch(repo / ".git" / "index", "DIRC2")
        (repo / "app.py").unlink()
        assert watcher.check() is True
        (signal,) = channel.drain()
        assert signal.reason == "git"
        assert signal.paths == ("app.py",)

    def test_closed_channel_is_fatal(self, watcher: FileWatcher, repo: Path, channel: NotificationChannel) -> None:
        channel.close()
        (repo / "notes.txt").write_text("todo\n", encoding="utf-8")
        with pytest.raises(SchedulerFatal):
            watcher.check()


class TestThread:
    """Test: the polling thread."""

    def test_thread_posts_changes(self, repo: Path, channel: NotificationChannel) -> None:
        watcher = FileWatcher(repo, repo / ".git", channel, interval=0.05)
        watcher.start()
        try:
            assert watcher.thread is not None and watcher.thread.is_alive()
            (repo / "notes.txt").write_text("todo\n", encoding="utf-8")
            received: list[object] = []
            assert wait_until(lambda: bool(received.extend(channel.drain()) or received))
            assert isinstance(received[0], RepoChanged)
        finally:
            watcher.stop()
        assert not watcher.thread.is_alive()

    def test_fatal_channel_stops_thread_and_reports(self, repo: Path, channel: NotificationChannel) -> None:
        failures: list[BaseException] = []
        watcher = FileWatcher(repo, repo / ".git", channel, interval=0.05, on_fatal=failures.append)
        watcher.start()
        try:
            channel.close()
            (repo / "notes.txt").write_text("todo\n", encoding="utf-8")
            assert wait_until(lambda: bool(failures))
            assert isinstance(failures[0], SchedulerFatal)
            assert wait_until(lambda: not watcher.thread.is_alive())
        finally:
            watcher.stop()

    def test_interval_has_a_floor(self, repo: Path, channel: NotificationChannel) -> None:
        assert FileWatcher(repo, repo / ".git", channel, interval=0).interval == 0.05
