from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from agent_browser_tool.config import ToolConfig
from agent_browser_tool.errors import InvalidRequestError, LiveActionError
from agent_browser_tool.tool.live_actions import EVALUATE_SCRIPT, SCROLL_SCRIPT
from agent_browser_tool.tool.service import BrowserTool

from browser_fakes import FakeConsoleMessage, FakeDialog, FakeDriver, FakePage, Site

FORM_PAGE = """
<html><head><title>Search form</title></head><body>
<form action="/search" method="get">
  <input name="q">
  <select name="size"><option value="s">Small</option><option value="m">Medium</option></select>
  <button type="submit">Go</button>
</form>
</body></html>
"""


def _open_popup(url: str) -> Callable[[FakePage], None]:
    def callback(page: FakePage) -> None:
        popup = page.context.new_page()
        popup.navigate_in_page(url)
        page.pending_popup = popup

    return callback


def _page(tool: BrowserTool, tab_id: str = "tab-1") -> FakePage:
    page = tool.live.get(tab_id)
    assert isinstance(page, FakePage)
    return page


def test_open_prefers_live_engine_when_available(live_tool: BrowserTool) -> None:
    opened = live_tool.execute("c1", {"action": "open", "url": "https://x/a"})

    assert opened["engine"] == "live"
    assert opened["tab"]["engine"] == "live"
    assert opened["snapshot"]["title"] == "A"
    assert opened["snapshot"]["refs"][0]["name"] == "Go to B"

    status = live_tool.execute("c2", {"action": "status"})
    assert status["engine"] == "live"
    assert status["liveRunning"] is True
    assert status["liveTabCount"] == 1
    assert "liveUnavailableReason" not in status


def test_live_click_on_markup_link_navigates_and_back_steps_history(live_tool: BrowserTool) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})

    clicked = live_tool.execute("c2", {"action": "click", "ref": "e1"})

    assert clicked["engine"] == "live"
    assert clicked["clicked"] == {"url": "https://x/b", "ref": "e1"}
    assert clicked["snapshot"]["title"] == "B"
    assert clicked["tab"]["historyLength"] == 2

    back = live_tool.execute("c3", {"action": "back"})
    assert back["moved"] is True
    assert back["snapshot"]["title"] == "A"
    assert back["tab"]["historyIndex"] == 0

    again = live_tool.execute("c4", {"action": "back"})
    assert again["moved"] is False
    assert again["reason"] == "no previous history entry."


def test_failed_live_navigation_falls_back_to_fetch(live_tool: BrowserTool, driver: FakeDriver) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    driver.failing_urls.add("https://x/b")

    result = live_tool.execute("c2", {"action": "navigate", "url": "https://x/b"})

    assert result["engine"] == "fetch"
    assert result["fallbackFrom"] == "live"
    assert "Timeout" in result["fallbackReason"]
    assert result["snapshot"]["title"] == "B"
    assert result["tab"]["engine"] == "fetch"
    assert not live_tool.live.has_page("tab-1")


def test_failed_live_navigation_without_fallback_raises(live_tool: BrowserTool, driver: FakeDriver) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    driver.failing_urls.add("https://x/b")

    with pytest.raises(LiveActionError, match="navigate failed"):
        live_tool.execute(
            "c2",
            {"action": "navigate", "url": "https://x/b", "allowEngineFallback": False},
        )


def test_launch_failure_marks_live_unavailable(make_tool: Callable[..., BrowserTool], site: Site) -> None:
    tool = make_tool(driver=FakeDriver(site, launch_error="no display"))

    opened = tool.execute("c1", {"action": "open", "url": "https://x/a"})

    assert opened["engine"] == "fetch"
    assert opened["fallbackFrom"] == "live"
    assert opened["fallbackReason"] == "live browser launch failed: no display"

    status = tool.execute("c2", {"action": "status"})
    assert status["liveAvailable"] is False
    assert status["liveUnavailableReason"] == "live browser launch failed: no display"


@pytest.mark.parametrize("focus_popup", [True, False])
def test_popup_opens_background_tab(live_tool: BrowserTool, site: Site, focus_popup: bool) -> None:
    site.probes["https://x/a"] = [
        {"tag": "a", "name": "Open B", "href": "https://x/b", "selector": "#open"},
    ]
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    _page(live_tool).on_click["#open"] = _open_popup("https://x/b")

    result = live_tool.execute("c2", {"action": "click", "ref": "e1", "focusPopup": focus_popup})

    assert result["clicked"]["selector"] == "#open"
    assert result["openedTab"]["id"] == "tab-2"
    assert result["openedTab"]["engine"] == "live"
    assert live_tool.live.has_page("tab-2")
    if focus_popup:
        assert result["activeTabId"] == "tab-2"
        assert result["snapshot"]["title"] == "B"
        assert result["openedSnapshot"] is None
    else:
        assert result["activeTabId"] == "tab-1"
        assert result["snapshot"]["title"] == "A"
        assert result["openedSnapshot"]["title"] == "B"


def test_in_page_navigation_after_click_is_recorded(live_tool: BrowserTool, site: Site) -> None:
    site.probes["https://x/a"] = [
        {"tag": "button", "name": "Next", "selector": "#next"},
    ]
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    _page(live_tool).on_click["#next"] = lambda page: page.navigate_in_page("https://x/b")

    clicked = live_tool.execute("c2", {"action": "click", "ref": "e1", "doubleClick": True})

    assert clicked["clicked"]["kind"] == "button"
    assert clicked["clicked"]["clickCount"] == 2
    assert clicked["openedTab"] is None
    assert clicked["tab"]["url"] == "https://x/b"
    assert clicked["snapshot"]["title"] == "B"

    back = live_tool.execute("c3", {"action": "back"})
    assert back["tab"]["url"] == "https://x/a"
    assert back["snapshot"]["title"] == "A"


def test_dialog_plans_and_events(live_tool: BrowserTool) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    page = _page(live_tool)

    armed = live_tool.execute("c2", {"action": "dialog", "accept": True, "promptText": "yes"})
    assert armed["armed"] == {"mode": "accept", "once": True, "promptText": "yes"}
    assert armed["armedActive"] is True
    assert armed["tab"]["dialogArmed"] is True

    prompt = FakeDialog("prompt", "Name?", "anon")
    page.emit("dialog", prompt)
    page.emit("dialog", FakeDialog("confirm", "Sure?"))
    page.emit("dialog", FakeDialog("alert", "Late", fail=True))

    assert prompt.outcome == ("accept", "yes")
    events = live_tool.execute("c3", {"action": "dialog", "clear": True})
    assert events["armed"] is None
    assert events["armedActive"] is False
    assert [(event["type"], event["handled"]) for event in events["events"]] == [
        ("prompt", "accept"),
        ("confirm", "auto-dismiss"),
        ("alert", "error:dialog already handled"),
    ]
    assert events["events"][0]["defaultValue"] == "anon"

    assert live_tool.execute("c4", {"action": "dialog"})["events"] == []


def test_persistent_dismiss_plan(live_tool: BrowserTool) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    page = _page(live_tool)
    live_tool.execute("c2", {"action": "dialog", "accept": False, "once": False})

    first, second = FakeDialog("confirm", "One?"), FakeDialog("confirm", "Two?")
    page.emit("dialog", first)
    page.emit("dialog", second)

    assert first.outcome == ("dismiss", None)
    assert second.outcome == ("dismiss", None)
    assert live_tool.live.dialog_plan("tab-1") is not None


def test_console_buffer_is_bounded(
    make_tool: Callable[..., BrowserTool],
    driver: FakeDriver,
    tmp_path: Path,
) -> None:
    tool_config = ToolConfig.model_validate(
        {"artifacts_dir": str(tmp_path), "limits": {"console_max_entries": 3}}
    )
    tool = make_tool(driver=driver, tool_config=tool_config)
    tool.execute("c1", {"action": "open", "url": "https://x/a"})
    page = _page(tool)
    for text in ("one", "two", "three", "four"):
        page.emit("console", FakeConsoleMessage("log", text))
    page.emit("pageerror", ValueError("boom"))

    result = tool.execute("c2", {"action": "console", "limit": 2})

    assert result["total"] == 3
    assert result["count"] == 2
    assert [(entry["type"], entry["text"]) for entry in result["messages"]] == [
        ("log", "four"),
        ("pageerror", "boom"),
    ]
    assert result["messages"][0]["location"] == "https://x/app.js:3"

    tool.execute("c3", {"action": "console", "clear": True})
    tabs = tool.execute("c4", {"action": "tabs"})
    assert tabs["tabs"][0]["consoleCount"] == 0


def test_element_actions_use_selectors_and_refs(live_tool: BrowserTool, site: Site) -> None:
    site.page("https://x/form", FORM_PAGE)
    live_tool.execute("c1", {"action": "open", "url": "https://x/form"})
    page = _page(live_tool)

    hovered = live_tool.execute("c2", {"action": "hover", "selector": "#menu"})
    assert hovered["selector"] == "#menu"
    assert hovered["snapshot"] is None

    live_tool.execute("c3", {"action": "press", "key": "Escape"})
    pressed = live_tool.execute("c4", {"action": "press", "key": "Enter", "ref": "e2"})
    assert pressed["ref"] == "e2"

    selected = live_tool.execute("c5", {"action": "select", "fieldName": "size", "value": "m"})
    assert selected["selected"] == ["m"]

    field = 'form >> nth=0 >> [name="q"] >> nth=0'
    size = 'form >> nth=0 >> [name="size"] >> nth=0'
    assert page.actions[1:] == [
        ("hover", "#menu"),
        ("keyboard", "Escape"),
        ("press", field, "Enter"),
        ("select", size, ["m"]),
    ]
    forms = live_tool.execute("c6", {"action": "forms"})
    assert forms["formValues"]["1"] == {"q": "", "size": "m"}


def test_select_rejects_non_select_field(live_tool: BrowserTool, site: Site) -> None:
    site.page("https://x/form", FORM_PAGE)
    live_tool.execute("c1", {"action": "open", "url": "https://x/form"})

    with pytest.raises(InvalidRequestError, match="not a select field"):
        live_tool.execute("c2", {"action": "select", "fieldName": "q", "value": "m"})


def test_blank_ref_is_rejected(live_tool: BrowserTool, site: Site) -> None:
    site.page("https://x/form", FORM_PAGE)
    live_tool.execute("c1", {"action": "open", "url": "https://x/form"})

    with pytest.raises(InvalidRequestError, match="hover requires selector or ref"):
        live_tool.execute("c2", {"action": "hover", "ref": "   "})


def test_evaluate_scroll_and_resize(live_tool: BrowserTool) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    page = _page(live_tool)
    page.evaluate_result = 2

    evaluated = live_tool.execute("c2", {"action": "evaluate", "expression": "1 + 1"})
    scrolled = live_tool.execute("c3", {"action": "scroll", "deltaY": 400, "snapshotAfter": True})
    resized = live_tool.execute("c4", {"action": "resize", "width": 100, "height": 700})

    assert evaluated["result"] == 2
    assert ("evaluate", EVALUATE_SCRIPT, "1 + 1") in page.actions
    assert scrolled["deltaY"] == 400
    assert scrolled["snapshot"]["title"] == "A"
    scroll_call = next(action for action in page.actions if action[1] == SCROLL_SCRIPT)
    assert scroll_call[2]["deltaY"] == 400
    assert (resized["width"], resized["height"]) == (320, 700)
    assert page.viewport == {"width": 320, "height": 700}


def test_pdf_and_screenshot_artifacts(live_tool: BrowserTool, config: ToolConfig) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})

    pdf = live_tool.execute("c2", {"action": "pdf"})["pdf"]
    shot = live_tool.execute("c3", {"action": "screenshot", "width": 800, "height": 600})

    assert Path(pdf["path"]).parent == Path(config.artifacts_dir)
    assert pdf["mimeType"] == "application/pdf"
    assert pdf["bytes"] == Path(pdf["path"]).stat().st_size
    assert pdf["format"] == "A4"
    assert "snapshot" not in shot
    assert shot["engine"] == "live"
    assert shot["screenshot"]["mimeType"] == "image/png"
    assert shot["screenshot"]["url"] == "https://x/a"
    assert Path(shot["screenshot"]["path"]).is_file()
    assert _page(live_tool).viewport == {"width": 800, "height": 600}


def test_upload_checks_files_exist(live_tool: BrowserTool, site: Site, tmp_path: Path) -> None:
    site.page("https://x/form", FORM_PAGE)
    live_tool.execute("c1", {"action": "open", "url": "https://x/form"})
    document = tmp_path / "cv.txt"
    document.write_text("hello")

    with pytest.raises(InvalidRequestError, match="upload file not found"):
        live_tool.execute("c2", {"action": "upload", "ref": "e2", "path": str(tmp_path / "nope.txt")})

    uploaded = live_tool.execute("c3", {"action": "upload", "ref": "e2", "path": str(document)})
    assert uploaded["uploaded"] == [str(document)]
    assert uploaded["snapshot"]["title"] == "Search form"


def test_live_fill_and_submit(live_tool: BrowserTool, site: Site) -> None:
    site.page("https://x/form", FORM_PAGE)
    live_tool.execute("c1", {"action": "open", "url": "https://x/form"})
    page = _page(live_tool)
    page.on_submit = lambda current, args: current.navigate_in_page("https://x/search?q=cats&size=s")

    filled = live_tool.execute("c2", {"action": "fill", "fieldName": "q", "value": "cats"})
    submitted = live_tool.execute("c3", {"action": "submit"})

    assert filled["applied"] is True
    assert ("fill", 'form >> nth=0 >> [name="q"] >> nth=0', "cats") in page.actions
    assert ("submit", {"formIndex": 1, "values": {"q": "cats"}}) in page.actions
    assert submitted["submitMethod"] == "requestSubmit"
    assert submitted["method"] == "get"
    assert submitted["tab"]["url"] == "https://x/search?q=cats&size=s"
    assert submitted["tab"]["historyLength"] == 2


def test_wait_for_selector_on_live_page(live_tool: BrowserTool) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})

    result = live_tool.execute("c2", {"action": "wait", "waitForSelector": "#ready", "state": "bogus"})

    assert result["waitedFor"] == "selector"
    assert ("wait_for", "#ready", "visible") in _page(live_tool).actions


def test_close_and_reset_tear_down_pages(live_tool: BrowserTool, driver: FakeDriver) -> None:
    live_tool.execute("c1", {"action": "open", "url": "https://x/a"})
    live_tool.execute("c2", {"action": "open", "url": "https://x/b"})
    first = _page(live_tool, "tab-1")

    closed = live_tool.execute("c3", {"action": "close", "tabId": "tab-1"})

    assert first.closed is True
    assert closed["activeTabId"] == "tab-2"
    assert [tab["id"] for tab in closed["tabs"]] == ["tab-2"]

    live_tool.execute("c4", {"action": "reset"})
    assert driver.stopped == 1
    assert driver.context.closed is True
    assert driver.browsers[-1].closed is True
    assert live_tool.execute("c5", {"action": "status"})["liveRunning"] is False
