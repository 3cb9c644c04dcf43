"""Ownership of the single live browser, its context and per-tab pages."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import LimitsConfig, LiveConfig
from ..errors import LiveActionError
from ..models import ConsoleEntry, DialogEvent, DialogPlan, LivePageMeta
from .base import LiveBrowser, LiveContext, LiveDriver, LivePage

LOGGER = logging.getLogger(__name__)


@dataclass
class LiveTabState:
    page: LivePage
    console: deque[ConsoleEntry]
    dialogs: deque[DialogEvent]
    dialog_plan: Optional[DialogPlan] = None
    meta: LivePageMeta = field(default_factory=LivePageMeta)


class LiveSessionManager:
    """Lazily launches one browser + context and maps tab ids to pages."""

    def __init__(
        self,
        driver: Optional[LiveDriver],
        *,
        config: Optional[LiveConfig] = None,
        limits: Optional[LimitsConfig] = None,
    ) -> None:
        self._driver = driver
        self._config = config or LiveConfig()
        self._limits = limits or LimitsConfig()
        self._lock = threading.Lock()
        self._browser: Optional[LiveBrowser] = None
        self._context: Optional[LiveContext] = None
        self._tabs: dict[str, LiveTabState] = {}
        self._launch_error: Optional[str] = None

    @property
    def timeout_error(self) -> type[BaseException]:
        return self._driver.timeout_error if self._driver else TimeoutError

    @property
    def driver_error(self) -> type[BaseException]:
        return self._driver.driver_error if self._driver else RuntimeError

    @property
    def launch_error(self) -> Optional[str]:
        return self._launch_error

    @property
    def running(self) -> bool:
        return self._context is not None

    @property
    def page_count(self) -> int:
        return sum(1 for tab_id in list(self._tabs) if self.has_page(tab_id))

    def is_available(self) -> bool:
        if self._driver is None or self._launch_error is not None:
            return False
        return self._driver.is_available()

    def _ensure_context(self) -> LiveContext:
        with self._lock:
            if self._context is not None:
                return self._context
            driver = self._driver
            if driver is None or not self.is_available():
                raise LiveActionError(
                    "live engine unavailable"
                    + (f": {self._launch_error}" if self._launch_error else ".")
                )
            LOGGER.info("Launching live browser")
            try:
                self._browser = driver.launch()
                self._context = self._browser.new_context(
                    viewport={
                        "width": self._config.viewport_width,
                        "height": self._config.viewport_height,
                    },
                    user_agent=self._config.user_agent,
                )
            except Exception as exc:
                self._launch_error = str(exc) or exc.__class__.__name__
                LOGGER.warning("Live browser launch failed: %s", self._launch_error)
                self._teardown_browser()
                raise LiveActionError(f"live browser launch failed: {self._launch_error}") from exc
            return self._context

    def open_page(self, tab_id: str) -> LivePage:
        """Create a fresh page for ``tab_id``, replacing any previous one."""

        context = self._ensure_context()
        self.close(tab_id)
        page = context.new_page()
        self.attach(tab_id, page)
        return page

    def attach(self, tab_id: str, page: LivePage) -> None:
        existing = self._tabs.get(tab_id)
        if existing is not None and existing.page is page:
            return
        state = LiveTabState(
            page=page,
            console=deque(maxlen=self._limits.console_max_entries),
            dialogs=deque(maxlen=self._limits.dialog_max_events),
        )
        self._tabs[tab_id] = state
        page.on("console", lambda message: self._on_console(state, message))
        page.on("pageerror", lambda error: self._on_page_error(state, error))
        page.on("dialog", lambda dialog: self._on_dialog(state, dialog))
        page.on("close", lambda _page: self._on_close(tab_id, page))

    def get(self, tab_id: str) -> Optional[LivePage]:
        state = self._tabs.get(tab_id)
        if state is None:
            return None
        if state.page.is_closed():
            self._tabs.pop(tab_id, None)
            return None
        return state.page

    def has_page(self, tab_id: str) -> bool:
        return self.get(tab_id) is not None

    def require(self, tab_id: str) -> LivePage:
        page = self.get(tab_id)
        if page is None:
            raise LiveActionError(f"tab {tab_id} has no live page.")
        return page

    def close(self, tab_id: str) -> None:
        state = self._tabs.pop(tab_id, None)
        if state is None:
            return
        try:
            if not state.page.is_closed():
                state.page.close()
        except Exception:
            LOGGER.debug("Ignoring error while closing live page for %s", tab_id, exc_info=True)

    def reset(self) -> None:
        for tab_id in list(self._tabs):
            self.close(tab_id)
        with self._lock:
            self._teardown_browser()
            self._launch_error = None

    def _teardown_browser(self) -> None:
        if self._context is not None:
            try:
                self._context.close()
            except Exception:
                LOGGER.debug("Ignoring error while closing live context", exc_info=True)
        if self._browser is not None:
            try:
                self._browser.close()
            except Exception:
                LOGGER.debug("Ignoring error while closing live browser", exc_info=True)
        if self._driver is not None and (self._browser is not None or self._context is not None):
            try:
                self._driver.stop()
            except Exception:
                LOGGER.debug("Ignoring error while stopping live driver", exc_info=True)
        self._context = None
        self._browser = None

    def console_entries(self, tab_id: str) -> list[ConsoleEntry]:
        state = self._tabs.get(tab_id)
        return list(state.console) if state else []

    def clear_console(self, tab_id: str) -> None:
        state = self._tabs.get(tab_id)
        if state:
            state.console.clear()

    def dialog_events(self, tab_id: str) -> list[DialogEvent]:
        state = self._tabs.get(tab_id)
        return list(state.dialogs) if state else []

    def clear_dialogs(self, tab_id: str) -> None:
        state = self._tabs.get(tab_id)
        if state:
            state.dialogs.clear()

    def dialog_plan(self, tab_id: str) -> Optional[DialogPlan]:
        state = self._tabs.get(tab_id)
        return state.dialog_plan if state else None

    def arm_dialog(self, tab_id: str, plan: Optional[DialogPlan]) -> None:
        state = self._tabs.get(tab_id)
        if state is None:
            raise LiveActionError(f"tab {tab_id} has no live page.")
        state.dialog_plan = plan

    def record_response(self, tab_id: str, response: Any) -> None:
        state = self._tabs.get(tab_id)
        if state is None or response is None:
            return
        state.meta = LivePageMeta(
            status=int(response.status),
            ok=bool(response.ok),
            content_type=response.header_value("content-type") or "",
        )

    def page_meta(self, tab_id: str) -> LivePageMeta:
        state = self._tabs.get(tab_id)
        return state.meta if state else LivePageMeta()

    def _on_console(self, state: LiveTabState, message: Any) -> None:
        location = getattr(message, "location", None) or {}
        where = ""
        if location.get("url"):
            where = f"{location['url']}:{location.get('lineNumber', 0)}"
        state.console.append(
            ConsoleEntry(type=str(message.type), text=str(message.text), location=where)
        )

    def _on_page_error(self, state: LiveTabState, error: Any) -> None:
        state.console.append(
            ConsoleEntry(type="pageerror", text=str(getattr(error, "message", error)))
        )

    def _on_dialog(self, state: LiveTabState, dialog: Any) -> None:
        plan = state.dialog_plan
        default_value = getattr(dialog, "default_value", "") or ""
        outcome = "auto-dismiss"
        try:
            if plan is None:
                dialog.dismiss()
            elif plan.mode == "accept":
                outcome = "accept"
                prompt = plan.prompt_text if plan.prompt_text is not None else default_value
                if dialog.type == "prompt":
                    dialog.accept(prompt)
                else:
                    dialog.accept()
            else:
                outcome = "dismiss"
                dialog.dismiss()
        except Exception as exc:
            LOGGER.warning("Dialog handler failed: %s", exc)
            outcome = f"error:{exc}"
        if plan is not None and plan.once:
            state.dialog_plan = None
        state.dialogs.append(
            DialogEvent(
                type=str(dialog.type),
                message=str(dialog.message),
                default_value=default_value,
                handled=outcome,
            )
        )

    def _on_close(self, tab_id: str, page: LivePage) -> None:
        state = self._tabs.get(tab_id)
        if state is not None and state.page is page:
            LOGGER.debug("Live page for %s closed itself", tab_id)
            self._tabs.pop(tab_id, None)
