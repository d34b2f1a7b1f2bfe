#!/usr/bin/env python3
# /gitpane/main.py
"""
gitpane Main Entry Point
========================

This script is the primary entry point for launching gitpane. It performs:
1) Environment Loading: reads ~/.config/gitpane/.env early, so GIT_* settings
   are visible to every git process the backend starts.
2) Path Setup: ensures the gitpane package is importable from a source checkout.
3) Configuration & Logging: loads config and initializes logging ASAP.
4) Repository Discovery: resolves the repository from argv[1] or the current
   directory before the terminal is taken over.
5) Curses Wrapper: safely initializes/tears down curses to avoid terminal corruption.
6) Application Run: instantiates Gitpane and starts its main loop.
"""

from __future__ import annotations

import curses
import locale
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# --- Step 1: Load Environment Variables from the User's Config Directory ---
try:
    user_config_dir = Path.home() / ".config" / "gitpane"
    load_dotenv(dotenv_path=user_config_dir / ".env")
except OSError as e:
    print(f"Warning: could not read ~/.config/gitpane/.env: {e}", file=sys.stderr)

# --- Step 2: Set up the Python Path ---
project_root = os.path.dirname(os.path.abspath(__file__))
src_dir = os.path.join(project_root, "src")
if os.path.isdir(src_dir) and src_dir not in sys.path:
    sys.path.insert(0, src_dir)

# --- Step 3: Immediate Logging and Configuration Setup ---
try:
    from gitpane.utils.logging_config import setup_logging
    from gitpane.utils.utils import load_config

    config: dict[str, Any] = load_config()
    setup_logging(config)
    logger = logging.getLogger("gitpane")
except Exception as e:
    print(f"FATAL: Could not initialize configuration or logging system: {e}", file=sys.stderr)
    import traceback
    traceback.print_exc()
    sys.exit(1)

# --- Step 4: Import the Core Application ---
try:
    from gitpane.core.Errors import BackendError, SchedulerFatal
    from gitpane.core.Gitpane import Gitpane
    from gitpane.integrations.GitBridge import GitBridge
    from gitpane.integrations.SyntaxHighlighter import SyntaxHighlighter
except ImportError as e:
    logger.critical("Failed to import a critical application component: %s", e, exc_info=True)
    sys.exit(1)


def _resolve_repo_path(argv: list[str]) -> Path:
    """The directory named by argv[1], or the current directory."""
    if len(argv) > 1 and argv[1].strip():
        return Path(argv[1].strip()).expanduser()
    return Path.cwd()


# --- Step 5: Curses Application Runner ---
def main_app_runner(stdscr: curses.window, config: dict[str, Any], backend: GitBridge) -> None:
    """
    Target for `curses.wrapper`. Initializes terminal responsiveness and runs gitpane.

    Args:
        stdscr: Curses standard screen window provided by wrapper.
        config: Application configuration dict.
        backend: The repository backend, already discovered.
    """
    # Keep Alt/ESC combos responsive.
    try:
        curses.set_escdelay(25)
    except AttributeError:
        os.environ.setdefault("ESCDELAY", "25")

    app = Gitpane(stdscr, config=config, backend=backend)

    # Ignore terminal suspension (Ctrl+Z), typical for full-screen TUIs.
    if hasattr(signal, "SIGTSTP"):
        try:
            signal.signal(signal.SIGTSTP, signal.SIG_IGN)
        except (OSError, ValueError):
            logger.debug("Could not ignore SIGTSTP in this environment.")

    app.run()


def start() -> None:
    """
    Initializes locale, discovers the repository and runs the curses
    application via wrapper.
    """
    logger.info("gitpane starting up...")

    # Locale is important for proper character width/encoding behavior in curses.
    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error:
        logger.warning("Could not set system locale. Character rendering may be affected.")

    repo_path = _resolve_repo_path(sys.argv)
    try:
        backend = GitBridge.discover(repo_path, highlighter=SyntaxHighlighter())
    except BackendError as e:
        logger.error("Repository discovery failed: %s", e)
        print(f"gitpane: {e.summary()}", file=sys.stderr)
        sys.exit(2)

    try:
        curses.wrapper(main_app_runner, config, backend)
        logger.info("gitpane shut down gracefully.")
    except SchedulerFatal as e:
        logger.critical("gitpane stopped after a scheduler failure: %s", e)
        print(f"gitpane: internal failure: {e} (see the log for details)", file=sys.stderr)
        sys.exit(1)
    except Exception:
        logger.critical("Unhandled exception at the top level.", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    start()
