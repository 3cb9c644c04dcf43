"""HTTP service exposing the browser tool to remote agents."""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from fastapi import Body, FastAPI, HTTPException

from .config import ToolConfig, load_config
from .errors import (
    BrowserToolError,
    EngineUnavailableError,
    InvalidRequestError,
    NotFoundError,
)
from .factory import build_tool
from .tool.service import BrowserTool

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Agent Browser Tool")


class ToolState:
    """Owns the tool instance and the single worker thread that drives it.

    Playwright's sync API is bound to the thread that started it, so every
    call is funnelled through one worker.
    """

    def __init__(
        self,
        factory: Callable[[ToolConfig], BrowserTool] = build_tool,
        config: Optional[ToolConfig] = None,
    ) -> None:
        self._factory = factory
        self._config = config
        self._tool: Optional[BrowserTool] = None
        self._lock = threading.Lock()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="browser-tool")

    def _get_tool(self) -> BrowserTool:
        with self._lock:
            if self._tool is None:
                self._tool = self._factory(self._config or load_config())
            return self._tool

    def execute(self, call_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        future = self._worker.submit(lambda: self._get_tool().execute(call_id, params))
        return future.result()

    def shutdown(self) -> None:
        if self._tool is not None:
            self._worker.submit(self._tool.close).result()
        self._worker.shutdown(wait=True)


state = ToolState()


def _status_code(exc: BrowserToolError) -> int:
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, EngineUnavailableError):
        return 409
    return 502


@app.get("/health")
def get_health() -> Dict[str, Any]:
    status = state.execute("health", {"action": "status"})
    return {
        "status": "ok",
        "liveAvailable": status["liveAvailable"],
        "liveRunning": status["liveRunning"],
        "tabCount": status["tabCount"],
    }


@app.post("/execute")
def execute_action(
    params: Dict[str, Any] = Body(...),
    call_id: Optional[str] = None,
) -> Dict[str, Any]:
    call_id = call_id or f"http-{uuid.uuid4().hex[:12]}"
    try:
        return state.execute(call_id, params)
    except BrowserToolError as exc:
        LOGGER.info("Call %s failed: %s", call_id, exc)
        raise HTTPException(status_code=_status_code(exc), detail=str(exc)) from exc
