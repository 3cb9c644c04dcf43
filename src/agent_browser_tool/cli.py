"""Command line interface for agent-browser-tool."""

from __future__ import annotations

import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from rich.console import Console

from .config import ToolConfig, load_config
from .errors import BrowserToolError
from .factory import build_tool

app = typer.Typer(help="Agent Browser Tool entry point")

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to YAML configuration."),
]
EnvFileOption = Annotated[
    Optional[Path],
    typer.Option("--env-file", help="Path to an .env file with default configuration values."),
]
HeadlessOption = Annotated[
    Optional[bool],
    typer.Option("--headless/--headed", help="Run the live browser headless (or headed)."),
]
LiveOption = Annotated[
    Optional[bool],
    typer.Option("--live/--no-live", help="Enable or disable the live engine."),
]
FallbackOption = Annotated[
    Optional[bool],
    typer.Option("--fallback/--no-fallback", help="Allow falling back from live to fetch."),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging before executing any command."""

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def version() -> None:
    """Print the package version."""

    try:
        typer.echo(get_version("agent-browser-tool"))
    except PackageNotFoundError:  # pragma: no cover - when running from source tree
        typer.echo("0.0.0")


def _load(
    config_path: Optional[Path],
    env_file: Optional[Path],
    headless: Optional[bool],
    live: Optional[bool],
    fallback: Optional[bool],
) -> ToolConfig:
    overrides: dict[str, Any] = {}
    if headless is not None or live is not None:
        overrides.setdefault("live", {})
        if headless is not None:
            overrides["live"]["headless"] = headless
        if live is not None:
            overrides["live"]["enabled"] = live
    if fallback is not None:
        overrides["allow_engine_fallback"] = fallback
    return load_config(config_path, env_file=env_file, **overrides)


def _read_params(raw: str) -> dict[str, Any]:
    text = sys.stdin.read() if raw == "-" else raw
    try:
        params = json.loads(text)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"params must be a JSON object: {exc}") from exc
    if not isinstance(params, dict):
        raise typer.BadParameter("params must be a JSON object")
    return params


@app.command("exec")
def exec_action(
    params: Annotated[
        str,
        typer.Argument(help='Action parameters as JSON, e.g. \'{"action": "open", "url": "..."}\'. Use - for stdin.'),
    ],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    call_id: Annotated[
        str,
        typer.Option("--call-id", help="Identifier recorded with the call."),
    ] = "cli",
    headless: HeadlessOption = None,
    live: LiveOption = None,
    fallback: FallbackOption = None,
) -> None:
    """Run a single browser action and print its result."""

    request = _read_params(params)
    config = _load(config_path, env_file, headless, live, fallback)
    tool = build_tool(config)
    try:
        result = tool.execute(call_id, request)
    except BrowserToolError as exc:
        err_console.print(f"{request.get('action', 'action')} failed: {exc}", style="bold red")
        raise typer.Exit(code=1) from exc
    finally:
        tool.close()
    console.print_json(data=result)


@app.command()
def script(
    path: Annotated[
        Path,
        typer.Argument(help="YAML or JSON file holding a list of actions.", exists=True, dir_okay=False),
    ],
    config_path: ConfigOption = None,
    env_file: EnvFileOption = None,
    continue_on_error: Annotated[
        bool,
        typer.Option("--continue-on-error", help="Keep going after a failed action."),
    ] = False,
    headless: HeadlessOption = None,
    live: LiveOption = None,
    fallback: FallbackOption = None,
) -> None:
    """Run a sequence of actions against one browser session."""

    steps = yaml.safe_load(path.read_text()) or []
    if not isinstance(steps, list) or not all(isinstance(step, dict) for step in steps):
        raise typer.BadParameter("script must be a list of action objects")

    config = _load(config_path, env_file, headless, live, fallback)
    tool = build_tool(config)
    failures = 0
    try:
        for index, step in enumerate(steps, start=1):
            action = step.get("action", "?")
            console.print(f"[{index}/{len(steps)}] {action}", style="bold cyan")
            try:
                result = tool.execute(f"script-{index}", step)
            except BrowserToolError as exc:
                failures += 1
                err_console.print(f"{action} failed: {exc}", style="bold red")
                if not continue_on_error:
                    break
                continue
            console.print_json(data=result)
    finally:
        tool.close()
    if failures:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to listen on.")] = 8765,
) -> None:
    """Serve the browser tool over HTTP."""

    import uvicorn

    from .server import app as server_app

    uvicorn.run(server_app, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover - manual execution
    app()
