# gitpane/utils/logging_config.py
"""gitpane.utils.logging_config
==============================

Logging configuration for gitpane. It defines the global logger objects and a
single setup function, `setup_logging`, which configures application-wide
handlers and log levels from the ``[logging]`` section of the configuration.

Features:
    - Rotating file logging for general application events (gitpane.log).
    - Optional console logging to stderr with configurable log level.
    - Optional separate error log file (error.log) for ERROR and CRITICAL events.
    - Optional key event tracing (keytrace.log) enabled via the GITPANE_KEYTRACE
      environment variable.
    - Log files live in ``[logging] log_dir`` (default ``~/.config/gitpane/logs``),
      never in the repository being viewed, so they do not show up in status.
      If the directory cannot be created the system temp directory is used.
    - Safe reconfiguration: clears existing handlers to avoid duplicate logs.
    - Never raises; problems are reported to stderr.

Globals:
    logger: Main application logger ("gitpane").
    KEY_LOGGER: Logger for raw key-press trace events ("gitpane.keyevents").
"""

import logging
import logging.handlers
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional


# ======================== Global loggers ========================
logger = logging.getLogger("gitpane")
KEY_LOGGER = logging.getLogger("gitpane.keyevents")

DEFAULT_LOG_DIR = Path.home() / ".config" / "gitpane" / "logs"
FILE_FORMAT = "%(asctime)s - %(levelname)-8s - %(threadName)-18s - %(message)s (%(filename)s:%(lineno)d)"


def _resolve_log_dir(configured: Optional[str]) -> Path:
    """Returns a writable log directory, falling back to the temp directory."""
    log_dir = Path(configured).expanduser() if configured else DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
    except OSError as e_mkdir:
        fallback = Path(tempfile.gettempdir())
        print(
            f"Error creating log directory '{log_dir}': {e_mkdir}. Logging to '{fallback}'.",
            file=sys.stderr,
        )
        return fallback


def _rotating_handler(
    path: Path, level: int, max_bytes: int, backups: int, formatter: logging.Formatter
) -> Optional[logging.Handler]:
    try:
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
        )
    except Exception as e_fh:
        print(f"Error setting up file logger for '{path}': {e_fh}.", file=sys.stderr)
        return None
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(config: Optional[dict[str, Any]] = None) -> None:
    """Configures application-wide logging handlers and log levels.

    Up to four independent handlers are installed:

    1. File handler: rotating ``gitpane.log`` from ``file_level`` upward.
    2. Console handler: optional stderr output at ``console_level``. Off by
       default because curses owns the terminal.
    3. Error-file handler: optional rotating ``error.log`` (ERROR and up).
    4. Key-event handler: rotating ``keytrace.log`` on the
       ``gitpane.keyevents`` logger when ``GITPANE_KEYTRACE`` is
       ``1/true/yes``.

    Args:
        config (dict | None): Application configuration. Only ``["logging"]``
            is consulted: ``file_level``, ``console_level``,
            ``log_to_console``, ``separate_error_log``, ``log_dir``.
    """
    if config is None:
        config = {}
    logging_config = config.get("logging", {})
    log_dir = _resolve_log_dir(logging_config.get("log_dir"))

    log_file_level = getattr(
        logging, str(logging_config.get("file_level", "DEBUG")).upper(), logging.DEBUG
    )
    file_formatter = logging.Formatter(FILE_FORMAT)
    file_handler = _rotating_handler(
        log_dir / "gitpane.log", log_file_level, 2 * 1024 * 1024, 5, file_formatter
    )

    console_handler = None
    if logging_config.get("log_to_console", False):
        console_log_level = getattr(
            logging, str(logging_config.get("console_level", "WARNING")).upper(), logging.WARNING
        )
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(levelname)-8s - %(name)-12s - %(message)s")
        )
        console_handler.setLevel(console_log_level)

    error_file_handler = None
    if logging_config.get("separate_error_log", False):
        error_file_handler = _rotating_handler(
            log_dir / "error.log", logging.ERROR, 1024 * 1024, 3, file_formatter
        )

    root_logger = logging.getLogger()
    root_logger.handlers = []
    for handler in (file_handler, console_handler, error_file_handler):
        if handler is not None:
            root_logger.addHandler(handler)
    root_logger.setLevel(log_file_level)

    # Key Event Logger
    KEY_LOGGER.propagate = False
    KEY_LOGGER.setLevel(logging.DEBUG)
    KEY_LOGGER.handlers = []
    KEY_LOGGER.disabled = False

    if os.environ.get("GITPANE_KEYTRACE", "").lower() in {"1", "true", "yes"}:
        key_trace_handler = _rotating_handler(
            log_dir / "keytrace.log",
            logging.DEBUG,
            1024 * 1024,
            3,
            logging.Formatter("%(asctime)s - %(message)s"),
        )
        if key_trace_handler is not None:
            KEY_LOGGER.addHandler(key_trace_handler)
            logging.info("Key event tracing enabled, logging to '%s'.", log_dir / "keytrace.log")
        else:
            KEY_LOGGER.disabled = True
    else:
        KEY_LOGGER.addHandler(logging.NullHandler())
        KEY_LOGGER.disabled = True
        logging.debug("Key event tracing is disabled.")

    logging.info(
        "Logging setup complete. Root logger level: %s.",
        logging.getLevelName(root_logger.level),
    )
    if file_handler:
        logging.info(
            f"File logging to '{log_dir / 'gitpane.log'}' at level: "
            f"{logging.getLevelName(file_handler.level)}."
        )
    if console_handler:
        logging.info(
            f"Console logging to stderr at level: {logging.getLevelName(console_handler.level)}."
        )
    if error_file_handler:
        logging.info("Error logging to 'error.log' at level: ERROR.")
