# tests/conftest.py
"""Pytest configuration with shared fixtures for the gitpane tests.

Curses is never initialised during the tests: the functions that need a
real terminal are replaced by no-ops, windows are `StubWindow` grids or
`MagicMock`s, and the repository is a `FakeBackend`.
"""

from __future__ import annotations

import curses
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from gitpane.core.AsyncEngine import AsyncEngine
from gitpane.core.Gitpane import Gitpane
from gitpane.core.NotificationChannel import NotificationChannel
from gitpane.integrations.Clipboard import Clipboard

from tests.stubs import FakeBackend, StubApp, StubWindow, make_config


# --- Terminal functions that require initscr() ---
@pytest.fixture(autouse=True)
def mock_curses_functions(monkeypatch: pytest.MonkeyPatch) -> None:
    """Replaces the curses calls that only work on an initialised screen."""
    monkeypatch.setattr(curses, "doupdate", lambda: None)
    monkeypatch.setattr(curses, "curs_set", lambda visibility: None)
    monkeypatch.setattr(curses, "has_colors", lambda: False)
    monkeypatch.setattr(curses, "start_color", lambda: None)
    monkeypatch.setattr(curses, "use_default_colors", lambda: None)


# --- Base fixtures for curses and configuration ---
@pytest.fixture
def mock_stdscr() -> MagicMock:
    """A mocked `stdscr` with terminal size set to (24, 80)."""
    stdscr = MagicMock()
    stdscr.getmaxyx.return_value = (24, 80)
    return stdscr


@pytest.fixture
def stub_window() -> StubWindow:
    return StubWindow(24, 80)


@pytest.fixture
def test_config() -> dict[str, Any]:
    return make_config()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def stub_app(test_config: dict[str, Any]) -> StubApp:
    return StubApp(test_config)


# --- Engine and application fixtures ---
@pytest.fixture
def engine(fake_backend: FakeBackend, test_config: dict[str, Any]) -> Generator[AsyncEngine, None, None]:
    """A started engine with two workers over the fake backend."""
    channel = NotificationChannel()
    instance = AsyncEngine(fake_backend, channel, test_config, max_workers=2)
    instance.start()
    yield instance
    # Let gated calls finish so worker threads exit.
    for gate in list(fake_backend.gates.values()):
        gate.set()
    instance.stop()


@pytest.fixture
def app(
    stub_window: StubWindow, fake_backend: FakeBackend, test_config: dict[str, Any]
) -> Generator[Gitpane, None, None]:
    """A started `Gitpane` over the fake backend; the watcher is disabled."""
    instance = Gitpane(
        stub_window,
        test_config,
        backend=fake_backend,
        clipboard=Clipboard(use_system=False),
        max_workers=2,
    )
    instance.start()
    yield instance
    for gate in list(fake_backend.gates.values()):
        gate.set()
    instance.shutdown()
