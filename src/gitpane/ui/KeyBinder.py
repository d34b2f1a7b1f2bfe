# gitpane/ui/KeyBinder.py
"""KeyBinder.py
==================
Description:
-----------------------
Keyboard input for gitpane. `KeyBinder` reads raw keys from curses
(decoding ESC/Alt/CSI sequences and UTF-8 byte runs), turns key
specification strings from the ``[keybindings]`` configuration into key
codes, and answers whether a key is bound to a named action.

Bindings are per action, not per key: the same key may be bound to
different actions in different panels ("p" pulls in the status panel and
pops a stash in the stash list). Components ask `is_action(key, action)`
for the actions they understand; the focus router decides who asks first.

Key specifications:
    - single characters: ``"q"``, ``"?"``, ``"1"``
    - named keys: ``"enter"``, ``"esc"``, ``"pageup"``, ``"f5"``, ``"space"``
    - modifiers: ``"ctrl+c"``, ``"shift+g"``, ``"shift+tab"``
    - Alt chords, kept as logical strings: ``"alt-p"`` or ``"alt+p"``
    - raw integer key codes
"""

import curses
import logging
import re
from typing import Any, Optional

from gitpane.utils.logging_config import KEY_LOGGER
from gitpane.utils.utils import DEFAULT_CONFIG


KeyCode = int | str

# Keys that terminals report in more than one way.
KEY_ALIASES: dict[int, tuple[int, ...]] = {
    curses.KEY_ENTER: (10, 13),
    curses.KEY_BACKSPACE: (8, 127),
}

NAMED_KEYS: dict[str, int] = {
    "left": curses.KEY_LEFT,
    "right": curses.KEY_RIGHT,
    "up": curses.KEY_UP,
    "down": curses.KEY_DOWN,
    "home": curses.KEY_HOME,
    "end": getattr(curses, "KEY_END", curses.KEY_LL),
    "pageup": curses.KEY_PPAGE,
    "pgup": curses.KEY_PPAGE,
    "pagedown": curses.KEY_NPAGE,
    "pgdn": curses.KEY_NPAGE,
    "delete": curses.KEY_DC,
    "del": curses.KEY_DC,
    "backspace": curses.KEY_BACKSPACE,
    "insert": curses.KEY_IC,
    "tab": 9,
    "enter": curses.KEY_ENTER,
    "return": curses.KEY_ENTER,
    "space": ord(" "),
    "esc": 27,
    "escape": 27,
    "shift+tab": getattr(curses, "KEY_BTAB", 353),
    "shift+left": curses.KEY_SLEFT,
    "shift+right": curses.KEY_SRIGHT,
    "shift+up": getattr(curses, "KEY_SR", 337),
    "shift+down": getattr(curses, "KEY_SF", 336),
    "/": ord("/"),
    "?": ord("?"),
    "\\": ord("\\"),
}
NAMED_KEYS.update({f"f{i}": getattr(curses, f"KEY_F{i}", 264 + i) for i in range(1, 13)})

# Ctrl chords whose code is not simply letter - 'a' + 1.
CTRL_SPECIAL: dict[str, int] = {"/": 31, "\\": 28, "[": 27, "]": 29}


# ==================== KeyBinder Class ====================
class KeyBinder:
    """Class KeyBinder
    ====================
    Reads keys from curses and maps them to named actions.

    Attributes:
        config (dict): Application configuration; ``[keybindings]`` is read once.
        stdscr: The curses window keys are read from.
        keybindings (dict): Action name -> list of decoded key codes.
        specs (dict): Action name -> the key specification strings as written,
            used for help text.
    """

    # Keys do NOT include the leading ESC; get_key_input() reads after it.
    ESCAPE_SEQUENCE_MAP: dict[str, str] = {
        "[A": "up", "[B": "down", "[C": "right", "[D": "left",
        "OA": "up", "OB": "down", "OC": "right", "OD": "left",
        "[1;2A": "shift+up", "[1;2B": "shift+down",
        "[1;2C": "shift+right", "[1;2D": "shift+left",
        "[1;3A": "alt+up", "[1;3B": "alt+down",
        "[1;3C": "alt+right", "[1;3D": "alt+left",
        "[H": "home", "[F": "end", "OH": "home", "OF": "end",
        "[1~": "home", "[4~": "end",
        "[2~": "insert", "[3~": "delete", "[5~": "pageup", "[6~": "pagedown",
        "[Z": "shift+tab",
        "OP": "f1", "OQ": "f2", "OR": "f3", "OS": "f4",
        "[11~": "f1", "[12~": "f2", "[13~": "f3", "[14~": "f4",
        "[15~": "f5", "[17~": "f6", "[18~": "f7", "[19~": "f8",
        "[20~": "f9", "[21~": "f10", "[23~": "f11", "[24~": "f12",
    }

    def __init__(self, config: Optional[dict[str, Any]] = None, stdscr: Any = None) -> None:
        self.config = config or {}
        self.stdscr = stdscr
        self.specs: dict[str, list[KeyCode]] = {}
        self.keybindings = self._load_keybindings()

    # ---------------------- bindings ----------------------
    def _load_keybindings(self) -> dict[str, list[KeyCode]]:
        """Merges ``[keybindings]`` over the defaults and decodes every spec.

        A value may be a list, a single spec, or ``"a|b"``. An empty value
        disables the action. Specs that fail to decode are logged and skipped.
        """
        defaults: dict[str, Any] = DEFAULT_CONFIG["keybindings"]
        user: dict[str, Any] = self.config.get("keybindings", {}) or {}
        parsed: dict[str, list[KeyCode]] = {}

        for action in dict.fromkeys([*defaults, *user]):
            value = user.get(action, defaults.get(action))
            if not value and value != 0:
                logging.debug("Keybinding for action %r is disabled or empty.", action)
                continue
            if isinstance(value, list):
                items = value
            elif isinstance(value, str) and "|" in value:
                items = [s.strip() for s in value.split("|")]
            else:
                items = [value]

            codes: list[KeyCode] = []
            for item in items:
                try:
                    code = self._decode_keystring(item)
                except ValueError as e:
                    logging.error(
                        "Error parsing keybinding item %r for action %r: %s. Ignored.",
                        item, action, e,
                    )
                    continue
                for variant in (code, *KEY_ALIASES.get(code, ())):  # type: ignore[arg-type]
                    if variant not in codes:
                        codes.append(variant)

            if codes:
                parsed[action] = codes
                self.specs[action] = list(items)
            else:
                logging.warning("No valid key codes for action %r. It will not be bound.", action)

        logging.debug("Loaded keybindings: %s", parsed)
        return parsed

    def _decode_keystring(self, key_input: KeyCode) -> KeyCode:
        """Decodes a key specification into a curses key code or an ``alt-`` string.

        Raises:
            ValueError: the specification is empty, has an unknown base key
                or an unsupported modifier.
        """
        if isinstance(key_input, int):
            return key_input
        if not isinstance(key_input, str):
            raise ValueError(f"Invalid key_input type: {type(key_input)}. Expected str or int.")

        s = key_input.strip().lower()
        if not s:
            raise ValueError("Key string cannot be empty.")

        # "alt+x" and "alt-x" both become the logical "alt-x".
        parts = s.split("+")
        if "alt" in parts:
            others = sorted(m for m in parts[:-1] if m != "alt")
            return "alt-" + "".join(m + "+" for m in others) + parts[-1]
        if s.startswith("alt-"):
            return s

        if s in NAMED_KEYS:
            return NAMED_KEYS[s]

        base = parts[-1]
        modifiers = set(parts[:-1])
        if base in NAMED_KEYS:
            code = NAMED_KEYS[base]
        elif len(base) == 1:
            code = ord(base)
        else:
            raise ValueError(f"Unknown base key '{base}' in '{key_input}'")

        if "ctrl" in modifiers:
            modifiers.discard("ctrl")
            if len(base) == 1 and "a" <= base <= "z":
                code = ord(base) - ord("a") + 1
            elif base in CTRL_SPECIAL:
                code = CTRL_SPECIAL[base]

        if "shift" in modifiers:
            modifiers.discard("shift")
            if len(base) == 1 and "a" <= base <= "z":
                code = ord(base.upper())

        if modifiers:
            raise ValueError(f"Unknown or unhandled modifiers {sorted(modifiers)} in '{key_input}'")
        return code

    def is_action(self, key: Optional[KeyCode], action: str) -> bool:
        """True if ``key`` is bound to ``action``."""
        if key is None:
            return False
        return key in self.keybindings.get(action, ())

    def lookup(self, key_spec: KeyCode) -> Optional[str]:
        """First action bound to ``key_spec``, or None."""
        try:
            decoded = self._decode_keystring(key_spec)
        except ValueError:
            return None
        for action, codes in self.keybindings.items():
            if decoded in codes:
                return action
        return None

    def describe(self, action: str) -> str:
        """Human-readable keys for ``action``, e.g. ``"q / ctrl+c"``."""
        return " / ".join(str(spec) for spec in self.specs.get(action, ()))

    # ---------------------- input ----------------------
    def get_key_input(self, window: Any = None) -> KeyCode:
        """Reads a single key or key sequence from the terminal.

        Returns:
            - a curses key code (int) for known keys and ASCII,
            - a one-character string for non-ASCII text input,
            - ``"alt-<char>"`` for Alt/Meta chords,
            - 27 for a lone ESC,
            - ``curses.ERR`` when no key arrived before the window timeout.
        """
        target = window or self.stdscr
        try:
            ch = target.getch()
            if ch == curses.ERR:
                return curses.ERR
            if ch == 27:
                key: KeyCode = self._read_escape(target)
            elif 0xC0 <= ch <= 0xF7:
                key = self._read_utf8(target, ch)
            else:
                key = ch
        except curses.error:
            return curses.ERR
        except Exception:
            logging.exception("get_key_input: unexpected error")
            return curses.ERR

        KEY_LOGGER.debug("key %r", key)
        return key

    def _drain_pending(self, target: Any) -> list[int]:
        pending: list[int] = []
        target.nodelay(True)
        try:
            while True:
                nx = target.getch()
                if nx == curses.ERR:
                    break
                pending.append(nx)
        finally:
            target.nodelay(False)
        return pending

    def _read_escape(self, target: Any) -> KeyCode:
        seq = "".join(
            chr(c) if 0 <= c <= 255 else f"<{c}>" for c in self._drain_pending(target)
        )
        if not seq:
            return 27
        if seq[0] == "\x1b":
            seq = seq[1:]

        if len(seq) == 1 and seq.isprintable():
            return f"alt-{seq.lower()}"

        mapped = self.ESCAPE_SEQUENCE_MAP.get(seq)
        if not mapped:
            cleaned = "".join(re.findall(r"[\[O0-9;~A-Za-z]", seq))
            mapped = self.ESCAPE_SEQUENCE_MAP.get(cleaned)
        if mapped:
            return self._decode_keystring(mapped)

        logging.warning("get_key_input: unknown escape sequence: ESC + %r", seq)
        return 27

    def _read_utf8(self, target: Any, first: int) -> KeyCode:
        """Assembles a multi-byte UTF-8 character delivered byte by byte."""
        if first >= 0xF0:
            needed = 3
        elif first >= 0xE0:
            needed = 2
        else:
            needed = 1
        data = bytearray([first])
        target.nodelay(True)
        try:
            for _ in range(needed):
                nx = target.getch()
                if nx == curses.ERR or not 0x80 <= nx <= 0xBF:
                    break
                data.append(nx)
        finally:
            target.nodelay(False)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            logging.debug("get_key_input: dropping invalid UTF-8 bytes %r", bytes(data))
            return curses.ERR
