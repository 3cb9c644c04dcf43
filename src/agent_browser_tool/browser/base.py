"""Capability interface for the headless browser used by the live engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Protocol


class LiveLocator(Protocol):
    def click(self, *, timeout: float, click_count: int = 1, button: str = "left") -> None: ...

    def fill(self, value: str, *, timeout: float) -> None: ...

    def hover(self, *, timeout: float) -> None: ...

    def press(self, key: str, *, timeout: float) -> None: ...

    def select_option(self, values: list[str], *, timeout: float) -> list[str]: ...

    def drag_to(self, target: "LiveLocator", *, timeout: float) -> None: ...

    def set_input_files(self, files: list[str], *, timeout: float) -> None: ...

    def scroll_into_view_if_needed(self, *, timeout: float) -> None: ...

    def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    def count(self) -> int: ...

    def wait_for(self, *, state: str, timeout: float) -> None: ...

    def nth(self, index: int) -> "LiveLocator": ...

    @property
    def first(self) -> "LiveLocator": ...


class LiveResponse(Protocol):
    status: int
    ok: bool

    @property
    def url(self) -> str: ...

    def header_value(self, name: str) -> Optional[str]: ...


class LivePage(Protocol):
    """Subset of the Playwright ``Page`` API used by the tool."""

    @property
    def url(self) -> str: ...

    @property
    def context(self) -> "LiveContext": ...

    @property
    def main_frame(self) -> Any: ...

    keyboard: Any
    mouse: Any

    def goto(self, url: str, *, timeout: float, wait_until: str) -> Optional[LiveResponse]: ...

    def reload(self, *, timeout: float, wait_until: str) -> Optional[LiveResponse]: ...

    def go_back(self, *, timeout: float, wait_until: str) -> Optional[LiveResponse]: ...

    def go_forward(self, *, timeout: float, wait_until: str) -> Optional[LiveResponse]: ...

    def title(self) -> str: ...

    def content(self) -> str: ...

    def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    def locator(self, selector: str) -> LiveLocator: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def expect_popup(self, *, timeout: float) -> Any: ...

    def wait_for_url(self, url: Any, *, timeout: float) -> None: ...

    def wait_for_load_state(self, state: str = "load", *, timeout: float) -> None: ...

    def wait_for_selector(self, selector: str, *, timeout: float, state: str = "visible") -> Any: ...

    def wait_for_timeout(self, timeout: float) -> None: ...

    def wait_for_function(self, expression: str, *, arg: Any = None, timeout: float) -> Any: ...

    def set_viewport_size(self, viewport_size: dict[str, int]) -> None: ...

    def screenshot(self, *, path: str, type: str, timeout: float, full_page: bool) -> bytes: ...

    def pdf(self, *, path: str, format: str, print_background: bool) -> bytes: ...

    def is_closed(self) -> bool: ...

    def close(self) -> None: ...


class LiveContext(Protocol):
    def new_page(self) -> LivePage: ...

    def cookies(self, urls: Optional[list[str]] = None) -> list[dict[str, Any]]: ...

    def close(self) -> None: ...


class LiveBrowser(Protocol):
    def new_context(self, **kwargs: Any) -> LiveContext: ...

    def close(self) -> None: ...


class LiveDriver(ABC):
    """Launches the browser the live engine runs on."""

    #: Exception type raised by driver operations that time out.
    timeout_error: type[BaseException] = TimeoutError
    #: Base exception type raised by failing driver operations.
    driver_error: type[BaseException] = RuntimeError

    @abstractmethod
    def is_available(self) -> bool:
        """Return whether a browser can be launched in this environment."""

    @abstractmethod
    def launch(self) -> LiveBrowser:
        """Start the driver and launch a browser."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the driver after the browser has been closed."""
