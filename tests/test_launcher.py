from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from agent_browser_tool import launcher
from agent_browser_tool.auth.credentials import YamlCredentialStore
from agent_browser_tool.config import ToolConfig
from agent_browser_tool.errors import BrowserToolError
from agent_browser_tool.factory import build_tool
from agent_browser_tool.launcher import FirefoxScreenshotter, open_in_system_browser


def test_open_in_system_browser_spawns_opener(monkeypatch: pytest.MonkeyPatch) -> None:
    spawned: list[list[str]] = []

    def fake_popen(command: list[str], **kwargs: Any) -> None:
        spawned.append(command)
        assert kwargs["start_new_session"] is True

    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setattr(launcher.subprocess, "Popen", fake_popen)

    result = open_in_system_browser("https://example.org/")

    assert result.launched is True
    assert result.command == "xdg-open"
    assert spawned == [["xdg-open", "https://example.org/"]]


def test_open_in_system_browser_reports_missing_opener(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_popen(command: list[str], **kwargs: Any) -> None:
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(sys, "platform", "darwin")
    monkeypatch.setattr(launcher.subprocess, "Popen", fake_popen)

    result = open_in_system_browser("https://example.org/")

    assert result.launched is False
    assert result.command == "open"


def test_firefox_screenshot_capture(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        seen.append(args)
        Path(args[args.index("--screenshot") + 1]).write_bytes(b"\x89PNG")
        return subprocess.CompletedProcess(args, 0, stderr=b"")

    monkeypatch.setattr(launcher.subprocess, "run", fake_run)
    screenshotter = FirefoxScreenshotter(output_dir=tmp_path / "shots")

    path = screenshotter.capture("https://example.org/", width=800, height=600, timeout_ms=5000)

    assert path.parent == tmp_path / "shots"
    assert path.read_bytes() == b"\x89PNG"
    assert "--window-size=800,600" in seen[0]
    assert seen[0][-1] == "https://example.org/"


def test_firefox_screenshot_failure(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(args, 1, stderr=b"warming up\nError: no display\n")

    monkeypatch.setattr(launcher.subprocess, "run", fake_run)

    with pytest.raises(BrowserToolError, match=r"exit 1\)\. warming up Error: no display"):
        FirefoxScreenshotter(output_dir=tmp_path).capture(
            "https://example.org/", width=800, height=600, timeout_ms=5000
        )


def test_fetch_screenshot_uses_firefox(make_tool, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    tool = make_tool()
    captured: list[tuple[str, int, int]] = []

    def fake_capture(url: str, *, width: int, height: int, timeout_ms: int) -> Path:
        captured.append((url, width, height))
        target = tmp_path / "shot.png"
        target.write_bytes(b"\x89PNG")
        return target

    monkeypatch.setattr(tool.screenshotter, "available", lambda: True)
    monkeypatch.setattr(tool.screenshotter, "capture", fake_capture)

    result = tool.execute("c1", {"action": "screenshot", "url": "https://example.org/"})

    assert result["engine"] == "fetch"
    assert result["screenshot"]["bytes"] == 4
    assert captured == [("https://example.org/", 1440, 900)]


def test_fetch_screenshot_without_firefox(make_tool, monkeypatch: pytest.MonkeyPatch) -> None:
    tool = make_tool()
    monkeypatch.setattr(tool.screenshotter, "available", lambda: False)

    with pytest.raises(BrowserToolError, match="firefox"):
        tool.execute("c1", {"action": "screenshot", "url": "https://example.org/"})


def test_build_tool_respects_configuration(tmp_path: Path) -> None:
    config = ToolConfig.model_validate(
        {
            "live": {"enabled": False},
            "credentials_path": str(tmp_path / "credentials.yaml"),
            "artifacts_dir": str(tmp_path),
        }
    )

    tool = build_tool(config)
    try:
        status = tool.execute("c1", {"action": "status"})
    finally:
        tool.close()

    assert status["liveAvailable"] is False
    assert status["liveUnavailableReason"] == "live engine disabled by configuration"
    assert isinstance(tool.credentials, YamlCredentialStore)
