from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from agent_browser_tool.browser.live_session import LiveSessionManager
from agent_browser_tool.config import ToolConfig
from agent_browser_tool.fetch.client import PageFetcher
from agent_browser_tool.launcher import LaunchResult
from agent_browser_tool.search import DuckDuckGoSearch
from agent_browser_tool.tool.service import BrowserTool

from browser_fakes import FakeDriver, Site

PAGE_A = """
<html><head><title>A</title></head>
<body><h1>Page A</h1><p>Start here.</p><a href="https://x/b">Go to B</a></body></html>
"""
PAGE_B = """
<html><head><title>B</title></head><body><h1>Page B</h1><p>Second page.</p></body></html>
"""


@pytest.fixture
def site() -> Site:
    site = Site()
    site.page("https://x/a", PAGE_A)
    site.page("https://x/b", PAGE_B)
    return site


@pytest.fixture
def config(tmp_path: Path) -> ToolConfig:
    return ToolConfig.model_validate({"artifacts_dir": str(tmp_path / "artifacts")})


@pytest.fixture
def launches() -> list[tuple[str, int]]:
    return []


@pytest.fixture
def make_tool(site: Site, config: ToolConfig, launches: list[tuple[str, int]]) -> Callable[..., BrowserTool]:
    def factory(
        *,
        driver: Optional[FakeDriver] = None,
        credentials: Optional[Callable[[str], Any]] = None,
        tool_config: Optional[ToolConfig] = None,
    ) -> BrowserTool:
        active = tool_config or config

        def launcher(url: str, timeout_ms: int) -> LaunchResult:
            launches.append((url, timeout_ms))
            return LaunchResult(launched=True, command="xdg-open")

        return BrowserTool(
            active,
            fetcher=PageFetcher(active.fetch, client=site.client()),
            live=LiveSessionManager(driver, config=active.live, limits=active.limits),
            credentials=credentials,
            launcher=launcher,
            search=DuckDuckGoSearch(client=site.client()),
        )

    return factory


@pytest.fixture
def tool(make_tool: Callable[..., BrowserTool]) -> BrowserTool:
    """A tool whose live engine has no driver, so every call runs on fetch."""

    return make_tool()


@pytest.fixture
def driver(site: Site) -> FakeDriver:
    return FakeDriver(site)


@pytest.fixture
def live_tool(make_tool: Callable[..., BrowserTool], driver: FakeDriver) -> BrowserTool:
    return make_tool(driver=driver)
