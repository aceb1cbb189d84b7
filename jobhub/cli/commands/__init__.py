"""Subcommands registered on the ``jobhub`` Typer app."""
