"""Opening URLs in the user's own browser and headless Firefox captures."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .errors import BrowserToolError

LOGGER = logging.getLogger(__name__)


@dataclass
class LaunchResult:
    launched: bool
    command: str


ExternalLauncher = Callable[[str, int], LaunchResult]


def _launch_command(url: str) -> Optional[list[str]]:
    if sys.platform == "darwin":
        return ["open", url]
    if sys.platform == "win32":
        return ["cmd", "/c", "start", "", url]
    if sys.platform.startswith("linux"):
        return ["xdg-open", url]
    return None


def open_in_system_browser(url: str, timeout_ms: int = 20_000) -> LaunchResult:
    """Spawn the platform opener detached from this process."""

    command = _launch_command(url)
    if command is None:
        return LaunchResult(launched=False, command="")
    try:
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        LOGGER.warning("Could not launch %s: %s", command[0], exc)
        return LaunchResult(launched=False, command=command[0])
    return LaunchResult(launched=True, command=command[0])


class FirefoxScreenshotter:
    """Capture a URL with ``firefox --headless --screenshot``."""

    def __init__(self, executable: str = "firefox", output_dir: Optional[Path] = None) -> None:
        self._executable = executable
        self._output_dir = output_dir or Path(tempfile.gettempdir())

    def available(self) -> bool:
        return shutil.which(self._executable) is not None

    def capture(self, url: str, *, width: int, height: int, timeout_ms: int) -> Path:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        target = self._output_dir / f"browser-shot-{uuid.uuid4().hex[:12]}.png"
        with tempfile.TemporaryDirectory(prefix="browser-firefox-profile-") as profile:
            args = [
                self._executable,
                "--no-remote",
                "--profile",
                profile,
                "--headless",
                "--screenshot",
                str(target),
                f"--window-size={width},{height}",
                url,
            ]
            LOGGER.debug("Running %s", " ".join(args))
            try:
                completed = subprocess.run(
                    args,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=timeout_ms / 1000,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                raise BrowserToolError("firefox screenshot timed out.") from exc
            except OSError as exc:
                raise BrowserToolError(f"firefox screenshot failed: {exc}") from exc
        if completed.returncode != 0:
            details = completed.stderr.decode("utf-8", errors="replace").strip().splitlines()[-2:]
            suffix = f" {' '.join(details)}" if details else ""
            raise BrowserToolError(f"firefox screenshot failed (exit {completed.returncode}).{suffix}")
        if not target.exists():
            raise BrowserToolError("firefox screenshot produced no file.")
        return target
