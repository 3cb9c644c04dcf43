import pytest

from agent_browser_tool.errors import InvalidRequestError, TabNotFoundError
from agent_browser_tool.tabs.registry import TabRegistry


def test_create_tab_activates_but_background_tab_does_not() -> None:
    registry = TabRegistry()
    first = registry.create_tab("https://example.com")
    popup = registry.create_background_tab("https://example.com/popup")

    assert first.id == "tab-1"
    assert popup.id == "tab-2"
    assert registry.active_tab_id == "tab-1"
    assert first.history == ["https://example.com/"]


def test_navigate_truncates_forward_history() -> None:
    registry = TabRegistry()
    tab = registry.create_tab("https://example.com/1")
    registry.navigate(tab, "https://example.com/2")
    registry.navigate(tab, "https://example.com/3")
    registry.step(tab, -1)
    registry.step(tab, -1)

    registry.navigate(tab, "https://example.com/4")

    assert tab.history == ["https://example.com/1", "https://example.com/4"]
    assert tab.history_index == 1
    assert tab.url == "https://example.com/4"


def test_navigate_rejects_non_http_urls() -> None:
    registry = TabRegistry()
    tab = registry.create_tab("https://example.com/")

    with pytest.raises(InvalidRequestError):
        registry.navigate(tab, "file:///etc/passwd")
    assert tab.history == ["https://example.com/"]


def test_step_at_bounds_reports_reason() -> None:
    registry = TabRegistry()
    tab = registry.create_tab("https://example.com/")

    back = registry.step(tab, -1)
    forward = registry.step(tab, 1)

    assert back.moved is False and back.reason == "no previous history entry."
    assert forward.moved is False and forward.reason == "no next history entry."
    assert tab.history_index == 0


def test_close_promotes_most_recent_remaining_tab() -> None:
    registry = TabRegistry()
    first = registry.create_tab("https://example.com/1")
    second = registry.create_tab("https://example.com/2")
    third = registry.create_tab("https://example.com/3")
    registry.set_active(first)

    registry.close(second)
    assert registry.active_tab_id == "tab-1"

    registry.close(first)
    assert registry.active_tab_id == third.id

    registry.close(third)
    assert registry.active_tab_id is None
    with pytest.raises(TabNotFoundError):
        registry.resolve()


def test_reset_restarts_ids() -> None:
    registry = TabRegistry()
    registry.create_tab("https://example.com/")
    registry.reset()

    assert registry.tabs == []
    assert registry.create_tab("https://example.com/").id == "tab-1"
