"""Job hub CLI — Typer-based command-line interface.

Provides the ``jobhub`` command with subcommands for serving the HTTP
API, listing projects, and running a single pipeline in the foreground.

All output uses Rich for formatted terminal display.
"""
