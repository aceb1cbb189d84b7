"""``jobhub projects`` — list the projects found under a projects root."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from jobhub.cli.console import console, err_console
from jobhub.core.errors import ConfigurationError
from jobhub.core.project_store import ProjectStore


def projects_cmd(
    projects_dir: Path = typer.Option(
        Path("projects"),
        "--projects-dir",
        envvar="PROJECTS_DIR",
        help="Root directory holding one subdirectory per project.",
    ),
) -> None:
    """Discover and list projects with their pipeline settings."""
    try:
        store = ProjectStore(projects_dir)
    except ConfigurationError as exc:
        err_console.print(f"[bold red]Error:[/bold red] {escape(exc.message)}")
        raise typer.Exit(code=1)

    store.discover()
    projects = [store.get(summary.project_id) for summary in store.list()]
    if not projects:
        console.print(f"[dim]No projects under {store.root}.[/dim]")
        return

    table = Table(title=f"Projects in {store.root}")
    table.add_column("Project", style="cyan")
    table.add_column("Entry point")
    table.add_column("Limit", justify="right")
    table.add_column("Timeout", justify="right")

    for project in projects:
        entrypoint = " ".join(project.entrypoint) if project.entrypoint else "[dim]default[/dim]"
        limit = str(project.max_concurrent_runs) if project.max_concurrent_runs else "[dim]default[/dim]"
        timeout = (
            f"{project.timeout_seconds:g}s"
            if project.timeout_seconds is not None
            else "[dim]default[/dim]"
        )
        table.add_row(project.project_id, entrypoint, limit, timeout)

    console.print(table)
