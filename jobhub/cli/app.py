"""Main Typer application — imports and registers all CLI commands.

Entry point: ``jobhub`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from jobhub.cli.commands.projects import projects_cmd
from jobhub.cli.commands.run import run_cmd
from jobhub.cli.commands.serve import serve_cmd

app = typer.Typer(
    name="jobhub",
    help="Job hub: run per-project pipelines on demand over HTTP.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="serve", help="Start the HTTP service.")(serve_cmd)
app.command(name="projects", help="List projects under a projects root.")(projects_cmd)
app.command(name="run", help="Run one project's pipeline in the foreground.")(run_cmd)


@app.command(name="version", help="Print the job hub version.")
def version_cmd() -> None:
    from jobhub import __version__

    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
