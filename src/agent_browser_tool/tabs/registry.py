"""In-process registry of open tabs and their navigation history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import TabNotFoundError
from ..fetch.cookies import CookieJar
from ..fetch.html_parser import normalize_http_url, title_from_url
from ..models import Form, Snapshot

LOGGER = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Tab:
    id: str
    url: str
    title: str
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    history: list[str] = field(default_factory=list)
    history_index: int = 0
    last_snapshot: Optional[Snapshot] = None
    last_html: str = ""
    forms: list[Form] = field(default_factory=list)
    form_values: dict[int, dict[str, str]] = field(default_factory=dict)
    cookies: CookieJar = field(default_factory=CookieJar)
    next_ref: int = 1

    def touch(self) -> None:
        self.updated_at = _now()

    def clear_page_state(self) -> None:
        self.last_snapshot = None
        self.last_html = ""
        self.forms = []
        self.form_values = {}
        self.touch()


@dataclass
class StepResult:
    moved: bool
    url: str
    reason: Optional[str] = None


class TabRegistry:
    """Ordered tabs, an active-tab pointer and a monotonic id counter."""

    def __init__(self) -> None:
        self.created_at = _now()
        self._counter = 0
        self._tabs: list[Tab] = []
        self.active_tab_id: Optional[str] = None

    @property
    def tabs(self) -> list[Tab]:
        return list(self._tabs)

    def reset(self) -> None:
        self.created_at = _now()
        self._counter = 0
        self._tabs.clear()
        self.active_tab_id = None

    def _new_tab(self, url: str) -> Tab:
        normalized = normalize_http_url(url)
        self._counter += 1
        tab = Tab(
            id=f"tab-{self._counter}",
            url=normalized,
            title=title_from_url(normalized),
            history=[normalized],
        )
        self._tabs.append(tab)
        return tab

    def create_tab(self, url: str) -> Tab:
        tab = self._new_tab(url)
        self.active_tab_id = tab.id
        LOGGER.debug("Created tab %s for %s", tab.id, tab.url)
        return tab

    def create_background_tab(self, url: str) -> Tab:
        tab = self._new_tab(url)
        LOGGER.debug("Created background tab %s for %s", tab.id, tab.url)
        return tab

    def find(self, tab_id: Optional[str]) -> Optional[Tab]:
        if not tab_id:
            return None
        for tab in self._tabs:
            if tab.id == tab_id:
                return tab
        return None

    def resolve(self, tab_id: Optional[str] = None) -> Tab:
        if tab_id:
            tab = self.find(tab_id)
            if tab is None:
                raise TabNotFoundError(f"tab not found: {tab_id}")
            return tab
        tab = self.find(self.active_tab_id)
        if tab is None:
            raise TabNotFoundError("no active tab.")
        return tab

    def set_active(self, tab: Tab) -> None:
        self.active_tab_id = tab.id
        tab.touch()

    def navigate(self, tab: Tab, url: str) -> str:
        """Point ``tab`` at ``url``, dropping forward history and page state."""

        normalized = normalize_http_url(url)
        del tab.history[tab.history_index + 1 :]
        tab.history.append(normalized)
        tab.history_index = len(tab.history) - 1
        tab.url = normalized
        tab.title = title_from_url(normalized)
        tab.clear_page_state()
        return normalized

    def record_redirect(self, tab: Tab, final_url: str) -> None:
        """Replace the current history entry after a redirect or in-page navigation."""

        if not tab.history:
            tab.history.append(final_url)
            tab.history_index = 0
        else:
            tab.history[tab.history_index] = final_url
        tab.url = final_url

    def append_history(self, tab: Tab, url: str) -> None:
        if tab.history and tab.history[tab.history_index] == url:
            tab.url = url
            return
        del tab.history[tab.history_index + 1 :]
        tab.history.append(url)
        tab.history_index = len(tab.history) - 1
        tab.url = url

    def step(self, tab: Tab, delta: int) -> StepResult:
        target = tab.history_index + delta
        if target < 0:
            return StepResult(moved=False, url=tab.url, reason="no previous history entry.")
        if target >= len(tab.history):
            return StepResult(moved=False, url=tab.url, reason="no next history entry.")
        tab.history_index = target
        tab.url = tab.history[target]
        tab.clear_page_state()
        return StepResult(moved=True, url=tab.url)

    def close(self, tab: Tab) -> None:
        self._tabs = [entry for entry in self._tabs if entry.id != tab.id]
        if self.active_tab_id == tab.id:
            self.active_tab_id = self._tabs[-1].id if self._tabs else None

    def summary(self, tab: Tab) -> dict[str, Any]:
        return {
            "id": tab.id,
            "url": tab.url,
            "title": tab.title,
            "active": tab.id == self.active_tab_id,
            "historyIndex": tab.history_index,
            "historyLength": len(tab.history),
            "hasSnapshot": tab.last_snapshot is not None,
            "cookieCount": len(tab.cookies),
            "createdAt": tab.created_at.isoformat(),
            "updatedAt": tab.updated_at.isoformat(),
        }
