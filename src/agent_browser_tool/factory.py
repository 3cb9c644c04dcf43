"""Factories for constructing components from configuration."""

from __future__ import annotations

from typing import Optional

from .auth.credentials import CredentialLookup, YamlCredentialStore
from .browser.base import LiveDriver
from .browser.live_session import LiveSessionManager
from .browser.playwright_driver import PlaywrightDriver
from .config import LiveConfig, ToolConfig
from .fetch.client import PageFetcher
from .launcher import FirefoxScreenshotter
from .search import DuckDuckGoSearch
from .tool.service import BrowserTool


def build_driver(config: LiveConfig) -> Optional[LiveDriver]:
    if not config.enabled:
        return None
    return PlaywrightDriver(config)


def build_live(config: ToolConfig) -> LiveSessionManager:
    return LiveSessionManager(build_driver(config.live), config=config.live, limits=config.limits)


def build_credentials(config: ToolConfig) -> Optional[CredentialLookup]:
    if config.credentials_path is None:
        return None
    return YamlCredentialStore(config.credentials_path)


def build_tool(config: Optional[ToolConfig] = None) -> BrowserTool:
    config = config or ToolConfig()
    return BrowserTool(
        config,
        fetcher=PageFetcher(config.fetch),
        live=build_live(config),
        credentials=build_credentials(config),
        search=DuckDuckGoSearch(user_agent=config.fetch.user_agent),
        screenshotter=FirefoxScreenshotter(output_dir=config.artifacts_dir),
    )
