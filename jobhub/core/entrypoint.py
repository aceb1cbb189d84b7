"""Pre-spawn checks on a pipeline entry point.

An interpreter-style entry point (``["python3", "main.py"]``) starts
fine even when the script is missing: the interpreter exists, reports the
missing file and exits non-zero.  ``find_entrypoint_problem`` catches that
case, and a missing program, before any process is created, so the run
fails with ``spawn_failure`` instead of ever being ``running``.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path


def _looks_like_script(arg: str) -> bool:
    return (
        not arg.startswith("-")
        and not any(ch.isspace() for ch in arg)
        and bool(Path(arg).suffix)
    )


def find_entrypoint_problem(
    argv: list[str], cwd: Path, search_path: str | None = None
) -> str | None:
    """Return why ``argv`` cannot start a pipeline in ``cwd``, or ``None``.

    - ``argv[0]`` must be an existing file when it contains a path
      separator (relative paths resolve against ``cwd``), otherwise it
      must be found on ``search_path``.
    - When ``argv[1]`` looks like a script file name (no leading ``-``,
      no whitespace, a file suffix) it must exist, resolved against
      ``cwd``.
    """
    if not argv:
        return "No pipeline entry point configured"

    program = argv[0]
    if os.sep in program or (os.altsep and os.altsep in program):
        if not (cwd / program).is_file():
            return f"Entry point not found: {program}"
    elif shutil.which(program, path=search_path) is None:
        return f"Entry point not found on PATH: {program}"

    if len(argv) > 1 and _looks_like_script(argv[1]) and not (cwd / argv[1]).is_file():
        return f"Entry point not found: {argv[1]}"
    return None
