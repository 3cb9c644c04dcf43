"""Playwright-powered live driver implementation."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.sync_api import Error, TimeoutError as PlaywrightTimeoutError, sync_playwright

from ..config import LiveConfig
from .base import LiveBrowser, LiveDriver

LOGGER = logging.getLogger(__name__)


class PlaywrightDriver(LiveDriver):
    """Live driver backed by Playwright's synchronous Chromium API."""

    timeout_error = PlaywrightTimeoutError
    driver_error = Error

    def __init__(self, config: Optional[LiveConfig] = None) -> None:
        self._config = config or LiveConfig()
        self._playwright = None

    def is_available(self) -> bool:
        return self._config.enabled

    def launch(self) -> LiveBrowser:
        LOGGER.debug("Starting Playwright for the live engine")
        self._playwright = sync_playwright().start()
        try:
            return self._playwright.chromium.launch(
                headless=self._config.headless,
                args=list(self._config.launch_args),
            )
        except Error:
            self.stop()
            raise

    def stop(self) -> None:
        if self._playwright is None:
            return
        LOGGER.debug("Stopping Playwright")
        try:
            self._playwright.stop()
        finally:
            self._playwright = None
