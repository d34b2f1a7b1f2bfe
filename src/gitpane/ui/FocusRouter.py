# gitpane/ui/FocusRouter.py
"""FocusRouter.py
========================
This module defines the FocusRouter class, which decides which component
receives each key press and in which order components are drawn.

The router keeps a focus stack. Its bottom entry is the base layer: the
panels of the selected tab, one of which holds focus. Overlays (popups) are
pushed on top of it. A key is offered to the overlays from the top down,
then to the focused base component, and finally to the global bindings
(quit, help, tab switching, refresh). The first component that returns
``EventResult.CONSUMED`` ends dispatch. Overlays that hid themselves while
handling a key are removed from the stack after dispatch; the base layer is
never removed.
"""

import enum
import logging
from typing import TYPE_CHECKING, Iterable, Optional

from gitpane.core.Errors import SchedulerFatal

from .components import BaseComponent, EventResult, KeyEvent, Region


if TYPE_CHECKING:
    from gitpane.core.Gitpane import Gitpane


class Tab(enum.Enum):
    STATUS = "Status"
    LOG = "Log"
    STASHES = "Stashes"
    BRANCHES = "Branches"


TAB_ORDER: tuple[Tab, ...] = (Tab.STATUS, Tab.LOG, Tab.STASHES, Tab.BRANCHES)
TAB_ACTIONS: dict[str, Tab] = {
    "tab_status": Tab.STATUS,
    "tab_log": Tab.LOG,
    "tab_stashes": Tab.STASHES,
    "tab_branches": Tab.BRANCHES,
}


class BaseLayer:
    """Marker for the bottom of the focus stack."""

    def __repr__(self) -> str:
        return "<base layer>"


BASE_LAYER = BaseLayer()


## ================= FocusRouter Class ===============================
class FocusRouter:
    """FocusRouter Class
    ==========================
    Routes key events through the focus stack and lays out the visible
    components.

    Attributes:
        app (Gitpane): Back-reference to the running application.
        layout (dict[Tab, list[tuple[BaseComponent, float]]]): The base
            components of each tab with their share of the screen width.
        tab (Tab): The selected tab.
        overlays (list[BaseComponent]): Overlays above the base layer,
            bottom first.

    Methods:
        push(overlay) / pop() / close(overlay) / top() / depth():
            Focus stack operations. The base layer cannot be popped.
        select_tab(tab): Shows the tab's components and reloads their data.
        dispatch(event) -> EventResult: Offers a key to the stack.
        draw(body, screen): Draws the base layer, then overlays bottom-up.
    """

    def __init__(
        self,
        app: "Gitpane",
        layout: dict[Tab, list[tuple[BaseComponent, float]]],
    ) -> None:
        self.app = app
        self.layout = layout
        self.tab: Tab = TAB_ORDER[0]
        self.overlays: list[BaseComponent] = []
        self._focus_index: dict[Tab, int] = {tab: 0 for tab in layout}
        logging.info("FocusRouter initialised with tabs: %s", [t.value for t in layout])

    # ---------------- focus stack ----------------
    @property
    def stack(self) -> tuple[object, ...]:
        return (BASE_LAYER, *self.overlays)

    def depth(self) -> int:
        return 1 + len(self.overlays)

    def top(self) -> Optional[BaseComponent]:
        """The topmost overlay, or None when only the base layer is present."""
        return self.overlays[-1] if self.overlays else None

    def is_overlay_active(self) -> bool:
        return bool(self.overlays)

    def push(self, overlay: BaseComponent) -> None:
        """Shows ``overlay`` above everything else; re-pushing moves it to the top."""
        if overlay in self.overlays:
            self.overlays.remove(overlay)
        try:
            overlay.show()
        except Exception:
            logging.exception("Failed to show overlay %s", overlay.__class__.__name__)
            return
        if overlay.wants_focus_on_show():
            for other in self.overlays:
                other.focused = False
            overlay.focused = True
        self.overlays.append(overlay)
        logging.info(f"Overlay '{overlay.__class__.__name__}' pushed; depth {self.depth()}.")

    def pop(self) -> Optional[BaseComponent]:
        """Removes and hides the top overlay. Never removes the base layer."""
        if not self.overlays:
            return None
        overlay = self.overlays.pop()
        self._hide(overlay)
        self._refocus_top()
        logging.info("Overlay '%s' popped; depth %d.", overlay.__class__.__name__, self.depth())
        return overlay

    def close(self, overlay: BaseComponent) -> None:
        if overlay in self.overlays:
            self.overlays.remove(overlay)
            self._hide(overlay)
            self._refocus_top()

    def _hide(self, overlay: BaseComponent) -> None:
        if not overlay.is_visible():
            return
        try:
            overlay.hide()
        except Exception:
            logging.exception("Exception while closing overlay")

    def _prune(self) -> None:
        before = len(self.overlays)
        self.overlays = [o for o in self.overlays if o.is_visible()]
        if len(self.overlays) != before:
            self._refocus_top()

    def _refocus_top(self) -> None:
        if self.overlays:
            self.overlays[-1].focused = True
        else:
            self._apply_base_focus()

    # ---------------- base layer ----------------
    def components(self, tab: Optional[Tab] = None) -> list[BaseComponent]:
        return [c for c, _ in self.layout.get(tab or self.tab, ())]

    def visible_components(self) -> list[BaseComponent]:
        return [c for c in self.components() if c.is_visible()]

    def focused(self) -> Optional[BaseComponent]:
        comps = self.components()
        if not comps:
            return None
        return comps[self._focus_index.get(self.tab, 0) % len(comps)]

    def _apply_base_focus(self) -> None:
        target = self.focused()
        for component in self.components():
            component.focused = component is target

    def focus_component(self, component: BaseComponent) -> None:
        comps = self.components()
        if component in comps:
            self._focus_index[self.tab] = comps.index(component)
            self._apply_base_focus()

    def cycle_focus(self, step: int) -> None:
        comps = self.components()
        if len(comps) < 2:
            return
        self._focus_index[self.tab] = (self._focus_index.get(self.tab, 0) + step) % len(comps)
        self._apply_base_focus()

    def select_tab(self, tab: Tab) -> None:
        """Switches the base layer to ``tab`` and reloads its components."""
        if tab not in self.layout:
            logging.warning("Unknown tab requested: %s", tab)
            return
        for component in self.components():
            if component not in self.components(tab):
                component.hide()
        self.tab = tab
        comps = self.components(tab)
        for component in comps:
            component.show()
        current = self.focused()
        if current is not None and not current.wants_focus_on_show():
            wanting = [i for i, c in enumerate(comps) if c.wants_focus_on_show()]
            if wanting:
                self._focus_index[tab] = wanting[0]
        self._apply_base_focus()
        logging.info(f"Selected tab '{tab.value}'.")
        for component in self.components(tab):
            try:
                component.on_navigate()
            except SchedulerFatal:
                raise
            except Exception:
                logging.exception("on_navigate crashed for %s", component.__class__.__name__)

    def step_tab(self, step: int) -> None:
        order = [t for t in TAB_ORDER if t in self.layout]
        index = order.index(self.tab) if self.tab in order else 0
        self.select_tab(order[(index + step) % len(order)])

    # ---------------- dispatch ----------------
    def dispatch(self, event: KeyEvent) -> EventResult:
        """Offers ``event`` to overlays top-down, the focused panel, then globals."""
        result = EventResult.PASS_THROUGH
        try:
            for overlay in reversed(list(self.overlays)):
                if not overlay.is_visible():
                    continue
                result = overlay.handle_event(event)
                if result is EventResult.CONSUMED:
                    break
            else:
                focused = self.focused()
                if focused is not None:
                    result = focused.handle_event(event)
        except SchedulerFatal:
            raise
        except Exception:
            logging.exception("Component key-handler crashed")
            result = EventResult.CONSUMED
        finally:
            self._prune()

        if result is EventResult.PASS_THROUGH:
            result = self._handle_global(event)
        return result

    def _handle_global(self, event: KeyEvent) -> EventResult:
        binder = self.app.keybinder
        key = event.key
        if binder.is_action(key, "quit"):
            self.app.quit()
        elif binder.is_action(key, "help"):
            self.push(self.app.help_popup)
        elif binder.is_action(key, "refresh"):
            self.app.refresh_visible()
        elif binder.is_action(key, "next_tab"):
            self.step_tab(1)
        elif binder.is_action(key, "prev_tab"):
            self.step_tab(-1)
        elif binder.is_action(key, "focus_left"):
            self.cycle_focus(-1)
        elif binder.is_action(key, "focus_right"):
            self.cycle_focus(1)
        else:
            for action, tab in TAB_ACTIONS.items():
                if binder.is_action(key, action):
                    if tab is not self.tab:
                        self.select_tab(tab)
                    return EventResult.CONSUMED
            return EventResult.PASS_THROUGH
        return EventResult.CONSUMED

    # ---------------- drawing ----------------
    def _split(self, body: Region) -> Iterable[tuple[BaseComponent, Region]]:
        entries = self.layout.get(self.tab, [])
        col = 0
        for index, (component, share) in enumerate(entries):
            if index == len(entries) - 1:
                width = body.width - col
            else:
                width = int(body.width * share)
            yield component, body.sub(0, col, body.height, width)
            col += width

    def draw(self, body: Region, screen: Region) -> None:
        """Draws the selected tab into ``body`` and overlays over ``screen``."""
        for component, region in self._split(body):
            try:
                component.draw(region)
            except Exception:
                logging.exception("Component draw() crashed")
        for overlay in self.overlays:
            if not overlay.is_visible():
                continue
            try:
                overlay.draw(screen)
            except Exception:
                logging.exception("Overlay draw() crashed")
