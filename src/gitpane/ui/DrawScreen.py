# gitpane/ui/DrawScreen.py
"""DrawScreen.py
========================
DrawScreen is the class that renders a gitpane frame with curses.

It is responsible for:
- initialising colour pairs from the ``[colors]`` configuration,
- the tab bar on the first row,
- handing the body area to the focus router,
- the status bar on the last row (branch, job activity, transient messages),
- the "window too small" guard,
- double-buffered output through ``noutrefresh`` and ``doupdate``.

Drawing never blocks: everything shown is read from the application state
that the render loop already holds.
"""

import curses
import logging
from typing import TYPE_CHECKING, Any

from gitpane.core.Jobs import JobKind
from gitpane.utils.utils import COLOR_NAMES, clip_to_width, display_width, hex_to_xterm, parse_color_spec

from .components import Region
from .FocusRouter import TAB_ORDER


if TYPE_CHECKING:
    from gitpane.core.Gitpane import Gitpane

ATTRIBUTES = {
    "bold": curses.A_BOLD,
    "dim": curses.A_DIM,
    "reverse": curses.A_REVERSE,
    "underline": curses.A_UNDERLINE,
}

SPINNER = "|/-\\"


## ================= class DrawScreen ==============================
class DrawScreen:
    """DrawScreen Class
    =========================
    Renders the tab bar, the selected tab, overlays and the status bar.

    Attributes:
        MIN_WINDOW_WIDTH (int): Narrowest terminal that is drawn normally.
        MIN_WINDOW_HEIGHT (int): Shortest terminal that is drawn normally.
        app (Gitpane): Reference to the running application.
        stdscr (curses.window): The main curses window object.
        frames (int): Frames drawn so far; drives the activity spinner.
    """

    MIN_WINDOW_WIDTH = 40
    MIN_WINDOW_HEIGHT = 8

    def __init__(self, app: "Gitpane") -> None:
        self.app = app
        self.stdscr = app.stdscr
        self.frames = 0

    # ---------------- colours ----------------
    def init_colors(self) -> dict[str, int]:
        """Builds the name -> curses attribute map from ``[colors]``.

        Degrades to plain attributes on terminals without colour support and
        when colour pairs run out.
        """
        specs: dict[str, Any] = self.app.config.get("colors", {})
        colors: dict[str, int] = {}

        has_colors = curses.has_colors()
        if has_colors:
            curses.start_color()
            try:
                curses.use_default_colors()
            except curses.error:
                logging.debug("use_default_colors() unsupported; keeping terminal defaults.")
        can_use_256_colors = has_colors and curses.COLORS >= 256
        pair_id_counter = 1

        for name, spec in specs.items():
            color, attributes = parse_color_spec(spec)
            attr = curses.A_NORMAL
            for word in attributes:
                attr |= ATTRIBUTES[word]

            if color is None or not has_colors:
                colors[name] = attr
                continue
            if color.startswith("#"):
                if not can_use_256_colors:
                    logging.debug(f"Colour {color} for '{name}' needs 256 colours; using default.")
                    colors[name] = attr
                    continue
                fg = hex_to_xterm(color)
            else:
                fg = COLOR_NAMES[color]

            if pair_id_counter >= curses.COLOR_PAIRS:
                logging.warning(f"Ran out of color pairs. Cannot initialize '{name}'.")
                colors[name] = attr
                continue
            try:
                curses.init_pair(pair_id_counter, fg, -1)
                colors[name] = curses.color_pair(pair_id_counter) | attr
                pair_id_counter += 1
            except curses.error as e:
                logging.warning("init_pair failed for '%s' (%s); using attributes only.", name, e)
                colors[name] = attr

        logging.info("Initialised %d colours (%d pairs).", len(colors), pair_id_counter - 1)
        return colors

    # ---------------- frame ----------------
    def draw(self) -> None:
        """Draws one full frame and pushes it to the terminal."""
        try:
            height, width = self.stdscr.getmaxyx()
            self.stdscr.erase()
            if height < self.MIN_WINDOW_HEIGHT or width < self.MIN_WINDOW_WIDTH:
                self._show_small_window_error(height, width)
            else:
                screen = Region(self.stdscr, 0, 0, height, width)
                self._draw_tab_bar(screen)
                body = screen.sub(1, 0, height - 2, width)
                self.app.router.draw(body, screen)
                self._draw_status_bar(screen)
            self.frames += 1
            self.stdscr.noutrefresh()
            curses.doupdate()
        except curses.error as e:
            logging.error(f"Curses error in DrawScreen.draw(): {e}", exc_info=True)
        except Exception:
            logging.exception("Unexpected error in DrawScreen.draw()")

    def _show_small_window_error(self, height: int, width: int) -> None:
        """Displays a message that the window is too small."""
        msg = (
            f"Window too small ({width}x{height}). "
            f"Minimum is {self.MIN_WINDOW_WIDTH}x{self.MIN_WINDOW_HEIGHT}."
        )
        screen = Region(self.stdscr, 0, 0, height, width)
        start_col = max(0, (width - display_width(msg)) // 2)
        screen.addstr(height // 2, start_col, msg)

    def _draw_tab_bar(self, screen: Region) -> None:
        colors = self.app.colors
        router = self.app.router
        col = 0
        for number, tab in enumerate(TAB_ORDER, start=1):
            if tab not in router.layout:
                continue
            label = f" {number} {tab.value} "
            attr = colors.get("selected", curses.A_REVERSE) if tab is router.tab else colors.get("dim", 0)
            col += screen.addstr(0, col, label, attr)
            col += screen.addstr(0, col, " ")
        repo = f" {self.app.state.repo_path} "
        repo_col = max(col, screen.width - display_width(repo))
        screen.addstr(0, repo_col, repo, colors.get("title", 0))

    def _draw_status_bar(self, screen: Region) -> None:
        """Single-line status bar: branch on the left, message or job activity in the middle, help hint on the right."""
        colors = self.app.colors
        y = screen.height - 1
        c_norm = colors.get("selected", curses.A_REVERSE)
        screen.clear_row(y, c_norm)

        snapshot = self.app.state.current(JobKind.STATUS)
        left = f" {snapshot.branch} " if snapshot is not None and snapshot.branch else " "

        right = f" {self.app.keybinder.describe('help') or '?'} help "
        message, is_error = self.app.current_message()
        if not message:
            active = self.app.engine.active_jobs()
            if active:
                spin = SPINNER[self.frames % len(SPINNER)]
                message = f"{spin} " + ", ".join(sorted({handle.kind.label for handle in active}))
        space = screen.width - display_width(left) - display_width(right)
        message = clip_to_width(message, max(0, space - 1))

        screen.addstr(y, 0, left, c_norm | curses.A_BOLD)
        screen.addstr(
            y,
            display_width(left) + 1,
            message,
            colors.get("error", c_norm) | curses.A_REVERSE if is_error else c_norm,
        )
        screen.addstr(y, max(0, screen.width - display_width(right)), right, c_norm)
