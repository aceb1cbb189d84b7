"""``jobhub serve`` — start the HTTP service.

Builds the hub configuration from options, ``API_TOKEN`` /
``SOCKET_ADDRESS`` / ``PROJECTS_DIR`` or ``JOBHUB_*`` variables, then
serves the API with uvicorn until interrupted.  Exits non-zero when the
configuration is invalid or the address cannot be bound.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
import uvicorn
from pydantic import ValidationError
from rich.markup import escape

from jobhub.api.app import create_app
from jobhub.cli.console import configure_logging, err_console
from jobhub.config import HubConfig, parse_socket_address
from jobhub.core.errors import ConfigurationError
from jobhub.core.hub import JobHub


def build_config(
    api_token: str | None,
    socket_address: str | None,
    projects_dir: Path | None,
    log_level: str | None = None,
) -> HubConfig:
    """Merge command-line values over the environment-driven defaults.

    Raises
    ------
    ConfigurationError
        If the socket address is malformed or a setting fails validation.
    """
    overrides: dict[str, Any] = {}
    if api_token:
        overrides["api_token"] = api_token
    if socket_address:
        try:
            overrides["host"], overrides["port"] = parse_socket_address(socket_address)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
    if projects_dir is not None:
        overrides["projects_dir"] = projects_dir
    if log_level:
        overrides["log_level"] = log_level
    try:
        return HubConfig(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def serve_cmd(
    api_token: str = typer.Option(
        None,
        "--api-token",
        envvar="API_TOKEN",
        help="Bearer token every /api request must carry.",
        show_default=False,
    ),
    socket_address: str = typer.Option(
        None,
        "--socket-address",
        envvar="SOCKET_ADDRESS",
        help="Listen address as host:port (default 127.0.0.1:3000).",
        show_default=False,
    ),
    projects_dir: Path = typer.Option(
        None,
        "--projects-dir",
        envvar="PROJECTS_DIR",
        help="Root directory holding one subdirectory per project.",
        show_default=False,
    ),
    log_level: str = typer.Option(None, "--log-level", help="Logging level."),
) -> None:
    """Start the job hub HTTP service."""
    try:
        config = build_config(api_token, socket_address, projects_dir, log_level)
        configure_logging(config.log_level)
        hub = JobHub(config)
    except ConfigurationError as exc:
        err_console.print(f"[bold red]Startup failed:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=1)

    err_console.print(
        f"[bold green]Job hub[/bold green] serving {len(hub.projects)} project(s) "
        f"from {hub.projects.root} on http://{config.socket_address}"
    )

    try:
        uvicorn.run(
            create_app(hub),
            host=config.host,
            port=config.port,
            log_config=None,
            log_level=config.log_level.lower(),
        )
    except SystemExit as exc:
        # uvicorn exits with status 1 when the address cannot be bound.
        if exc.code:
            err_console.print(f"[bold red]Could not serve on {config.socket_address}[/bold red]")
            raise typer.Exit(code=1)
        raise
    finally:
        hub.shutdown()
