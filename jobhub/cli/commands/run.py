"""``jobhub run`` — run one project's pipeline in the foreground.

Goes through the same Scheduler and ProcessSupervisor as the service,
streams the captured output to the terminal while the run is live, and
exits with the pipeline's exit code.  Ctrl-C cancels the run.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.panel import Panel

from jobhub.cli.console import configure_logging, console, err_console
from jobhub.config import HubConfig
from jobhub.core.errors import ConfigurationError, HubError
from jobhub.core.hub import JobHub
from jobhub.models.runs import Run, RunState, StreamName

POLL_INTERVAL_SECONDS = 0.1


def parse_params(values: list[str]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into run params.

    Values that parse as JSON keep their JSON type; anything else is a
    plain string.
    """
    params: dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


def _print_output(hub: JobHub, run_id: str, since: int) -> int:
    for chunk in hub.read_output(run_id, since=since):
        style = "red" if chunk.stream == StreamName.STDERR else None
        console.print(chunk.data, end="", style=style, markup=False, highlight=False, soft_wrap=True)
        since = chunk.seq + 1
    return since


def _exit_code(run: Run) -> int:
    if run.state == RunState.SUCCEEDED:
        return 0
    if run.exit_code is not None and run.exit_code > 0:
        return run.exit_code
    return 1


def run_cmd(
    project_id: str = typer.Argument(..., help="Project to run."),
    projects_dir: Path = typer.Option(
        Path("projects"),
        "--projects-dir",
        envvar="PROJECTS_DIR",
        help="Root directory holding one subdirectory per project.",
    ),
    param: list[str] = typer.Option(
        [], "--param", "-p", help="Run parameter as key=value (repeatable)."
    ),
    timeout: float = typer.Option(
        None, "--timeout", help="Wall-clock limit in seconds (0 disables).", show_default=False
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
) -> None:
    """Run a project's pipeline and stream its output."""
    params = parse_params(param)

    overrides: dict[str, Any] = {"projects_dir": projects_dir, "log_level": log_level}
    if timeout is not None:
        overrides["run_timeout_seconds"] = timeout

    try:
        config = HubConfig(**overrides)
    except ValidationError as exc:
        message = escape(f"Invalid configuration: {exc}")
        err_console.print(f"[bold red]Error:[/bold red] {message}")
        raise typer.Exit(code=1)
    configure_logging(config.log_level)

    try:
        hub = JobHub(config, require_token=False)
    except ConfigurationError as exc:
        err_console.print(f"[bold red]Error:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=1)

    with hub:
        try:
            run_id = hub.submit(project_id, params)
        except HubError as exc:
            err_console.print(f"[bold red]Error:[/bold red] {escape(exc.message)}")
            raise typer.Exit(code=1)

        since = 0
        try:
            while True:
                since = _print_output(hub, run_id, since)
                run = hub.get_run(run_id)
                if run.is_terminal:
                    break
                time.sleep(POLL_INTERVAL_SECONDS)
        except KeyboardInterrupt:
            err_console.print("[yellow]Interrupted; cancelling run...[/yellow]")
            try:
                hub.cancel(run_id)
            except HubError as exc:
                # The run finished or never started; report its real outcome.
                err_console.print(f"[dim]{escape(exc.message)}[/dim]")
            run = hub.wait(run_id)
            _print_output(hub, run_id, since)

    colour = "green" if run.state == RunState.SUCCEEDED else "red"
    lines = [
        f"[bold]Run ID:[/bold]    {run.run_id}",
        f"[bold]State:[/bold]     [{colour}]{run.state.value}[/{colour}]",
        f"[bold]Exit code:[/bold] {run.exit_code if run.exit_code is not None else '-'}",
    ]
    if run.detail:
        lines.append(f"[bold]Detail:[/bold]    {run.detail}")
    if run.output_truncated:
        lines.append("[yellow]Output was truncated.[/yellow]")
    err_console.print(Panel("\n".join(lines), title=f"[bold]{project_id}[/bold]", border_style=colour))

    raise typer.Exit(code=_exit_code(run))
