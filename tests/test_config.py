from pathlib import Path

import pytest

from agent_browser_tool.config import load_config


def test_load_config_reads_env_file(tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "AGENT_BROWSER_TOOL_LIVE__HEADLESS=false",
                "AGENT_BROWSER_TOOL_LIMITS__TIMEOUT_MS=5000",
                "AGENT_BROWSER_TOOL_ALLOW_ENGINE_FALLBACK=false",
                f"AGENT_BROWSER_TOOL_CREDENTIALS_PATH={tmp_path / 'credentials.yaml'}",
            ]
        )
    )

    config = load_config(env_file=env_path)

    assert config.live.headless is False
    assert config.live.enabled is True
    assert config.limits.timeout_ms == 5000
    assert config.limits.max_chars == 12_000
    assert config.allow_engine_fallback is False
    assert config.credentials_path == tmp_path / "credentials.yaml"


def test_load_config_prioritises_overrides(tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "AGENT_BROWSER_TOOL_LIVE__ENABLED=false",
                "AGENT_BROWSER_TOOL_LIMITS__TIMEOUT_MS=5000",
                "AGENT_BROWSER_TOOL_DEFAULT_URL=https://env.example/",
            ]
        )
    )

    config_path = tmp_path / "tool.yaml"
    config_path.write_text(
        "\n".join(
            [
                "default_url: https://file.example/",
                "limits:",
                "  max_chars: 4000",
                "  timeout_ms: 8000",
            ]
        )
    )

    config = load_config(config_path, env_file=env_path, limits={"timeout_ms": 9000})

    assert config.default_url == "https://file.example/"
    assert config.limits.max_chars == 4000
    assert config.limits.timeout_ms == 9000
    assert config.live.enabled is False


def test_load_config_rejects_non_mapping_file(tmp_path: Path) -> None:
    config_path = tmp_path / "tool.yaml"
    config_path.write_text("- live\n- fetch\n")

    with pytest.raises(ValueError, match="mapping of configuration keys"):
        load_config(config_path)
