# tests/ui/test_keybinder.py
"""Unit tests for the `KeyBinder` class.
========================================

Covers decoding of key specification strings, the merge of user bindings
over the defaults, `is_action`/`lookup`/`describe`, and reading keys from a
mocked window: plain keys, escape sequences, Alt chords and UTF-8 input.
"""

import curses
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from gitpane.ui.KeyBinder import KeyBinder

from tests.stubs import make_config


def window_with_keys(*keys: int) -> MagicMock:
    """A mock window whose `getch` returns ``keys`` then ERR forever."""
    window = MagicMock()
    queue = list(keys)
    window.getch.side_effect = lambda: queue.pop(0) if queue else curses.ERR
    return window


@pytest.fixture
def binder() -> KeyBinder:
    return KeyBinder(make_config())


class TestDecodeKeystring:
    """Test: key specification strings become key codes."""

    @pytest.mark.parametrize(
        "spec, expected",
        [
            ("q", ord("q")),
            ("Q", ord("q")),
            ("?", ord("?")),
            ("enter", curses.KEY_ENTER),
            ("esc", 27),
            ("space", 32),
            ("tab", 9),
            ("pageup", curses.KEY_PPAGE),
            ("f5", curses.KEY_F5),
            ("ctrl+c", 3),
            ("ctrl+v", 22),
            ("ctrl+/", 31),
            ("shift+g", ord("G")),
            ("alt+p", "alt-p"),
            ("alt-p", "alt-p"),
            ("ctrl+alt+x", "alt-ctrl+x"),
            (353, 353),
        ],
    )
    def test_decode(self, binder: KeyBinder, spec: Any, expected: Any) -> None:
        assert binder._decode_keystring(spec) == expected

    @pytest.mark.parametrize("spec", ["", "   ", "bogus", "hyper+x"])
    def test_invalid_specs_raise(self, binder: KeyBinder, spec: str) -> None:
        with pytest.raises(ValueError):
            binder._decode_keystring(spec)

    def test_wrong_type_raises(self, binder: KeyBinder) -> None:
        with pytest.raises(ValueError):
            binder._decode_keystring(1.5)  # type: ignore[arg-type]


class TestBindings:
    """Test: defaults, user overrides and queries."""

    def test_enter_has_terminal_aliases(self, binder: KeyBinder) -> None:
        for code in (curses.KEY_ENTER, 10, 13):
            assert binder.is_action(code, "enter")

    def test_same_key_for_different_actions(self, binder: KeyBinder) -> None:
        assert binder.is_action(ord("p"), "pull")
        assert binder.is_action(ord("p"), "stash_pop")

    def test_is_action_rejects_none_and_unknown(self, binder: KeyBinder) -> None:
        assert not binder.is_action(None, "quit")
        assert not binder.is_action(ord("q"), "no_such_action")

    def test_user_binding_replaces_default(self) -> None:
        binder = KeyBinder(make_config(keybindings={"quit": "ctrl+q|x"}))
        assert binder.is_action(17, "quit")
        assert binder.is_action(ord("x"), "quit")
        assert not binder.is_action(ord("q"), "quit")
        assert binder.describe("quit") == "ctrl+q / x"

    def test_empty_binding_disables_action(self) -> None:
        binder = KeyBinder(make_config(keybindings={"fetch": ""}))
        assert "fetch" not in binder.keybindings
        assert binder.describe("fetch") == ""

    def test_invalid_item_is_skipped(self) -> None:
        binder = KeyBinder(make_config(keybindings={"fetch": ["bogus", "f"]}))
        assert binder.keybindings["fetch"] == [ord("f")]

    def test_lookup(self, binder: KeyBinder) -> None:
        assert binder.lookup("ctrl+c") == "quit"
        assert binder.lookup("f1") == "help"
        assert binder.lookup("f12") is None
        assert binder.lookup("non-existent_key") is None

    def test_describe(self, binder: KeyBinder) -> None:
        assert binder.describe("quit") == "q / ctrl+c"

    def test_works_without_config(self) -> None:
        binder = KeyBinder()
        assert binder.is_action(ord("q"), "quit")


class TestGetKeyInput:
    """Test: reading raw keys from a window."""

    def test_plain_key(self, binder: KeyBinder) -> None:
        assert binder.get_key_input(window_with_keys(ord("j"))) == ord("j")

    def test_timeout_returns_err(self, binder: KeyBinder) -> None:
        assert binder.get_key_input(window_with_keys()) == curses.ERR

    def test_lone_escape(self, binder: KeyBinder) -> None:
        assert binder.get_key_input(window_with_keys(27)) == 27

    def test_alt_chord(self, binder: KeyBinder) -> None:
        key = binder.get_key_input(window_with_keys(27, ord("P")))
        assert key == "alt-p"
        assert binder.is_action(key, "force_push")

    @pytest.mark.parametrize(
        "sequence, expected",
        [
            ("[A", curses.KEY_UP),
            ("OB", curses.KEY_DOWN),
            ("[5~", curses.KEY_PPAGE),
            ("[Z", getattr(curses, "KEY_BTAB", 353)),
            ("[15~", curses.KEY_F5),
        ],
    )
    def test_escape_sequences(self, binder: KeyBinder, sequence: str, expected: int) -> None:
        window = window_with_keys(27, *(ord(c) for c in sequence))
        assert binder.get_key_input(window) == expected

    def test_unknown_sequence_is_escape(self, binder: KeyBinder) -> None:
        window = window_with_keys(27, *(ord(c) for c in "[99~"))
        assert binder.get_key_input(window) == 27

    def test_utf8_character(self, binder: KeyBinder) -> None:
        window = window_with_keys(*"é".encode("utf-8"))
        assert binder.get_key_input(window) == "é"

    def test_invalid_utf8_is_dropped(self, binder: KeyBinder) -> None:
        assert binder.get_key_input(window_with_keys(0xC3, ord("a"))) == curses.ERR

    def test_curses_error_returns_err(self, binder: KeyBinder) -> None:
        window = MagicMock()
        window.getch.side_effect = curses.error("no input")
        assert binder.get_key_input(window) == curses.ERR

    def test_reads_from_stdscr_by_default(self) -> None:
        stdscr = window_with_keys(ord("r"))
        binder = KeyBinder(make_config(), stdscr=stdscr)
        assert binder.get_key_input() == ord("r")

    def test_keys_are_traced(self, binder: KeyBinder) -> None:
        with patch("gitpane.ui.KeyBinder.KEY_LOGGER") as key_logger:
            binder.get_key_input(window_with_keys(ord("j")))
        key_logger.debug.assert_called_once_with("key %r", ord("j"))
