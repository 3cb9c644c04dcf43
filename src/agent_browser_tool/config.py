"""Configuration models for the agent browser tool."""

from __future__ import annotations

import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "agent-browser-tool/1.0 Safari/537.36"
)
LIVE_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "agent-browser-tool-live/1.0 Safari/537.36"
)


class FetchConfig(BaseModel):
    """Settings for the HTTP fetch engine."""

    user_agent: str = DEFAULT_USER_AGENT
    accept: str = "text/html,application/xhtml+xml,text/plain;q=0.9,*/*;q=0.8"


class LiveConfig(BaseModel):
    """Settings for the headless browser engine."""

    enabled: bool = True
    headless: bool = True
    viewport_width: int = 1440
    viewport_height: int = 900
    user_agent: str = LIVE_USER_AGENT
    launch_args: list[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-dev-shm-usage"],
    )


class LimitsConfig(BaseModel):
    """Defaults applied when a request omits a value, plus buffer caps."""

    timeout_ms: int = 20_000
    max_bytes: int = 300_000
    max_chars: int = 12_000
    max_links: int = 40
    screenshot_width: int = 1440
    screenshot_height: int = 900
    wait_ms: int = 1200
    popup_wait_ms: int = 1200
    search_count: int = 8
    snapshot_retries: int = Field(
        default=1,
        description="Extra fetch attempts made when a snapshot capture fails.",
    )
    console_max_entries: int = 400
    dialog_max_events: int = 80


class ToolConfig(BaseSettings):
    """Top-level configuration for the browser tool."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_BROWSER_TOOL_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    live: LiveConfig = Field(default_factory=LiveConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    allow_engine_fallback: bool = Field(
        default=True,
        description="Retry failed or unavailable live-engine work on the fetch engine.",
    )
    default_url: str = "https://duckduckgo.com/"
    artifacts_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    credentials_path: Optional[Path] = None


def load_config(
    path: Path | None = None,
    *,
    env_file: Path | None = None,
    **overrides: object,
) -> ToolConfig:
    """Build the tool configuration.

    ``AGENT_BROWSER_TOOL_*`` variables (and ``env_file``) provide the base
    values. Keys from the YAML file at ``path`` replace them, and keyword
    ``overrides`` such as ``limits={"timeout_ms": 9000}`` replace both. Nested
    sections are merged key by key, so overriding one limit keeps the others.
    """

    layered: dict[str, Any] = {}
    if path:
        import yaml

        loaded = yaml.safe_load(path.read_text()) or {}
        if not isinstance(loaded, Mapping):
            raise ValueError(f"{path} must contain a mapping of configuration keys")
        _merge_into(layered, loaded)
    _merge_into(layered, overrides)

    settings_kwargs: dict[str, object] = {}
    if env_file is not None:
        settings_kwargs["_env_file"] = env_file
    from_env = ToolConfig(**settings_kwargs)
    if not layered:
        return from_env
    merged = from_env.model_dump(mode="python")
    _merge_into(merged, layered)
    return ToolConfig.model_validate(merged)


def _merge_into(target: dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Merge ``updates`` into ``target``, descending into nested sections."""

    for key, value in updates.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            section = dict(current)
            _merge_into(section, value)
            target[key] = section
        else:
            target[key] = value
