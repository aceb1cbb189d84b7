"""Tests for the pre-spawn entry point checks."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from jobhub.core.entrypoint import find_entrypoint_problem


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    (tmp_path / "main.py").write_text("print('hi')\n", encoding="utf-8")
    return tmp_path


class TestFindEntrypointProblem:
    def test_interpreter_and_existing_script(self, project_dir):
        assert find_entrypoint_problem([sys.executable, "main.py"], project_dir) is None

    def test_missing_script(self, tmp_path):
        problem = find_entrypoint_problem([sys.executable, "main.py"], tmp_path)
        assert problem == "Entry point not found: main.py"

    def test_empty_argv(self, project_dir):
        assert find_entrypoint_problem([], project_dir) == "No pipeline entry point configured"

    def test_relative_program_resolves_against_project(self, project_dir):
        assert find_entrypoint_problem(["./main.py"], project_dir) is None
        problem = find_entrypoint_problem(["./run.sh"], project_dir)
        assert problem == "Entry point not found: ./run.sh"

    def test_program_looked_up_on_search_path(self, project_dir):
        bin_dir = Path(sys.executable).parent
        name = Path(sys.executable).name
        assert find_entrypoint_problem([name, "main.py"], project_dir, str(bin_dir)) is None
        problem = find_entrypoint_problem([name, "main.py"], project_dir, os.devnull)
        assert problem == f"Entry point not found on PATH: {name}"

    @pytest.mark.parametrize(
        "args",
        [
            ["-m", "etl.cli"],
            ["-c", "import etl; etl.run()"],
            ["--full"],
            ["nightly"],
        ],
    )
    def test_non_script_arguments_are_not_checked(self, tmp_path, args):
        assert find_entrypoint_problem([sys.executable, *args], tmp_path) is None
