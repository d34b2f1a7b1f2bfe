# gitpane/integrations/Clipboard.py
"""Clipboard.py
========================
Copy support for paths and commit ids. Uses the system clipboard through
`pyperclip` and keeps an in-process buffer when no clipboard utility is
installed.
"""

import logging

import pyperclip


class Clipboard:
    """System clipboard with an internal fallback buffer."""

    def __init__(self, use_system: bool = True) -> None:
        self.internal: str = ""
        self.system_available = use_system and self._check_availability()

    @staticmethod
    def _check_availability() -> bool:
        try:
            pyperclip.copy("")
            logging.debug("pyperclip and system clipboard utilities appear to be available.")
            return True
        except pyperclip.PyperclipException as e:
            logging.warning(
                f"System clipboard unavailable via pyperclip: {e}. "
                f"Falling back to internal clipboard."
            )
            return False
        except Exception as e:
            logging.warning(
                f"An unexpected error occurred while checking system clipboard availability: {e}.",
                exc_info=True,
            )
            return False

    def copy(self, text: str) -> str:
        """Copies ``text`` and returns a short description of where it went."""
        self.internal = text
        if self.system_available:
            try:
                pyperclip.copy(text)
                return "system clipboard"
            except pyperclip.PyperclipException as e:
                logging.warning(f"pyperclip copy failed, keeping internal copy: {e}")
                self.system_available = False
        return "internal clipboard"

