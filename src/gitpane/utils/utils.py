"""
gitpane.utils.utils.py
======================

This module provides a collection of core utility functions for gitpane.

Key functionalities include:
- Automatic User Configuration: creates `~/.config/gitpane` with a `.env`
  template on first run.
- Robust Configuration Loading: a built-in default configuration, recursively
  merged with user settings from `~/.config/gitpane/config.toml`.
- Safe Subprocess Execution: `safe_run` for quick commands and
  `run_cancellable` for backend calls that must stop when their job is
  cancelled.
- Text helpers: display-width aware clipping and encoding detection for
  file contents that are not UTF-8.

The application is always runnable: a missing or broken user configuration
falls back to the embedded defaults.
"""

import copy
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import chardet
import toml
from wcwidth import wcwidth

if TYPE_CHECKING:
    from gitpane.core.Jobs import CancelToken

logger = logging.getLogger("gitpane")

# --- Constants ---
CONFIG_DIR = Path.home() / ".config" / "gitpane"
CANCEL_POLL_INTERVAL = 0.05

ENV_TEMPLATE = """# Environment for gitpane.
# GITPANE_KEYTRACE=1 writes every key press to keytrace.log.
# Any GIT_* variable set here is passed through to git.
GITPANE_KEYTRACE=
"""

# Hardcoded defaults. They serve as the ultimate fallback so the application
# can always start.
DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {"workers": 0},
    "ui": {
        "tick_ms": 100,
        "diff_context": 3,
        "log_page_size": 200,
        "message_timeout": 4.0,
    },
    "watcher": {"enabled": True, "interval": 1.0},
    "logging": {
        "file_level": "DEBUG",
        "console_level": "WARNING",
        "log_to_console": False,
        "separate_error_log": False,
        "log_dir": "",
    },
    "colors": {
        "default": "white",
        "title": "cyan",
        "selected": "reverse",
        "added": "green",
        "removed": "red",
        "modified": "yellow",
        "untracked": "magenta",
        "hunk": "cyan",
        "hash": "yellow",
        "error": "red",
        "dim": "dim",
        "keyword": "blue",
        "string": "green",
        "comment": "dim",
        "number": "magenta",
        "function": "cyan",
    },
    "keybindings": {
        "quit": ["q", "ctrl+c"],
        "help": ["?", "f1"],
        "refresh": ["r", "f5"],
        "next_tab": ["tab"],
        "prev_tab": ["shift+tab"],
        "tab_status": ["1"],
        "tab_log": ["2"],
        "tab_stashes": ["3"],
        "tab_branches": ["4"],
        "focus_left": ["left", "h"],
        "focus_right": ["right", "l"],
        "move_up": ["up", "k"],
        "move_down": ["down", "j"],
        "page_up": ["pageup"],
        "page_down": ["pagedown"],
        "home": ["home", "g"],
        "end": ["end", "shift+g"],
        "enter": ["enter"],
        "close": ["esc"],
        "stage_toggle": ["space", "enter"],
        "stage_all": ["a"],
        "commit": ["c"],
        "push": ["shift+p"],
        "force_push": ["alt-p"],
        "pull": ["p"],
        "fetch": ["f"],
        "stash_save": ["s"],
        "stash_apply": ["a"],
        "stash_pop": ["p"],
        "stash_drop": ["d"],
        "blame": ["shift+b"],
        "copy": ["y"],
        "filter": ["/"],
        "checkout": ["enter"],
        "rename_branch": ["shift+r"],
        "rebase": ["b"],
        "toggle_verify": ["ctrl+v"],
        "confirm": ["y", "enter"],
    },
}


# --- Helper Functions ---

def ensure_user_config_exists() -> None:
    """Checks for user config files in `~/.config/gitpane` and creates them if missing."""
    try:
        user_env_path = CONFIG_DIR / ".env"
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        if not user_env_path.exists():
            user_env_path.write_text(ENV_TEMPLATE, encoding="utf-8")
            logger.info(f"Created user .env template at: {user_env_path}")
    except Exception as e:
        logger.critical(f"Could not create user configuration files: {e}", exc_info=True)


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads and merges configurations, ensuring the application can always run.
    """
    final_config = copy.deepcopy(DEFAULT_CONFIG)
    logger.debug("Loaded embedded default configuration.")

    if config_path is None:
        ensure_user_config_exists()
        config_path = CONFIG_DIR / "config.toml"

    if config_path.is_file():
        try:
            user_config = toml.load(config_path)
            final_config = deep_merge(final_config, user_config)
            logger.info(f"Successfully loaded and merged user config from {config_path}")
        except Exception as e:
            logger.error(f"Could not parse user config '{config_path}': {e}. Using defaults.")

    return final_config


def safe_run(cmd: List[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """
    Executes a command safely, capturing output and handling common exceptions.
    """
    try:
        return subprocess.run(
            cmd, capture_output=True, text=True, check=False,
            encoding="utf-8", errors="replace", **kwargs,
        )
    except FileNotFoundError as e:
        logger.error(f"Command not found: {cmd[0]!r}", exc_info=True)
        return subprocess.CompletedProcess(cmd, 127, stdout="", stderr=str(e))
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -9, stdout=e.stdout or "", stderr=e.stderr or "")
    except Exception as e:
        logger.exception(f"An unexpected error occurred while running command: {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, -1, stdout="", stderr=str(e))


def run_cancellable(
    cmd: List[str],
    cancel_token: Optional["CancelToken"] = None,
    cwd: Optional[os.PathLike | str] = None,
    env: Optional[Dict[str, str]] = None,
    poll_interval: float = CANCEL_POLL_INTERVAL,
) -> subprocess.CompletedProcess:
    """
    Runs ``cmd`` to completion unless ``cancel_token`` fires first.

    Output is returned as raw bytes. On cancellation the child process is
    killed and reaped before ``JobCancelled`` is raised, so an abandoned call
    holds its process for at most one ``poll_interval``.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    started = time.monotonic()
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    try:
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.debug(f"Killing cancelled command: {' '.join(cmd)}")
                    proc.kill()
                    proc.communicate()
                    cancel_token.raise_if_cancelled()
    except BaseException:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()
        raise

    logger.debug(
        f"Command {' '.join(cmd[:3])}... exited {proc.returncode} "
        f"in {time.monotonic() - started:.3f}s"
    )
    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


def decode_output(data: bytes) -> str:
    """
    Decodes command output: UTF-8 first, then whatever chardet guesses.
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    guess = chardet.detect(data)
    encoding = guess.get("encoding") or "latin-1"
    logger.debug(f"Decoding non-UTF-8 output as {encoding} (confidence {guess.get('confidence')})")
    return data.decode(encoding, errors="replace")


def deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Recursively merges the `override` dictionary into the `base` dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def display_width(text: str) -> int:
    """Number of terminal cells ``text`` occupies."""
    width = 0
    for ch in text:
        w = wcwidth(ch)
        width += w if w > 0 else 0
    return width


def clip_to_width(text: str, max_width: int) -> str:
    """
    Clips a string to a maximum visual width, respecting wide characters.
    """
    if max_width <= 0:
        return ""
    out: List[str] = []
    used = 0
    for ch in text:
        if ch == "\t":
            ch = " "
        w = wcwidth(ch)
        if w < 0:
            continue
        if used + w > max_width:
            break
        out.append(ch)
        used += w
    return "".join(out)


COLOR_NAMES = {
    "black": 0, "red": 1, "green": 2, "yellow": 3,
    "blue": 4, "magenta": 5, "cyan": 6, "white": 7,
}
ATTRIBUTE_NAMES = ("bold", "dim", "reverse", "underline")
WHITE_FG_IDX = 15


def hex_to_xterm(hex_color: str) -> int:
    """
    Converts a hexadecimal color string to the nearest xterm-256 color index.
    """
    hex_color = hex_color.lstrip("#")
    if len(hex_color) != 6:
        return WHITE_FG_IDX
    try:
        r, g, b = (int(hex_color[i:i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        return WHITE_FG_IDX

    if r == g == b:
        if r < 8:
            return 16
        if r > 248:
            return 231
        return round(((r - 8) / 247) * 24) + 232

    return int(
        16
        + (36 * round(r / 255 * 5))
        + (6 * round(g / 255 * 5))
        + round(b / 255 * 5)
    )


def parse_color_spec(spec: str) -> tuple[Optional[str], List[str]]:
    """
    Splits a ``[colors]`` value such as ``"bold green"`` or ``"#A5D6FF"`` into
    its colour (a basic name, a ``#rrggbb`` string, or None) and attribute
    names. Unknown words are logged and ignored.
    """
    color: Optional[str] = None
    attributes: List[str] = []
    for word in str(spec).lower().split():
        if word in ATTRIBUTE_NAMES:
            attributes.append(word)
        elif word in COLOR_NAMES or (word.startswith("#") and len(word) == 7):
            color = word
        else:
            logger.warning(f"Unknown colour word {word!r} in {spec!r}; ignored.")
    return color, attributes
