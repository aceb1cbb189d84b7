"""Adversarial tests — project paths escaping the projects root."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from jobhub.core.errors import InvalidPathError, InvalidProjectIdError

posix_only = pytest.mark.skipif(os.name != "posix", reason="symlink and chmod semantics")


class TestPathTraversal:
    @pytest.mark.parametrize("path", ["..", "../..", "../outside", "a/../../outside", "/"])
    def test_paths_outside_root_rejected(self, store, tmp_path: Path, path):
        (tmp_path / "outside").mkdir(exist_ok=True)
        with pytest.raises(InvalidPathError):
            store.register("evil", path)
        assert "evil" not in store

    def test_absolute_path_outside_root_rejected(self, store, tmp_path: Path):
        outside = tmp_path / "outside"
        outside.mkdir()
        with pytest.raises(InvalidPathError):
            store.register("evil", outside)

    def test_dotdot_that_stays_inside_is_allowed(self, store, make_project):
        make_project("real")
        (store.root / "other").mkdir()
        project = store.register("ok", "other/../real")
        assert project.path == (store.root / "real").resolve()

    @posix_only
    def test_symlink_escaping_root_rejected(self, store, tmp_path: Path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (store.root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(InvalidPathError):
            store.register("link")

    @posix_only
    def test_symlink_inside_root_allowed(self, store, make_project):
        make_project("real")
        (store.root / "alias").symlink_to(store.root / "real", target_is_directory=True)
        assert store.register("alias").path == (store.root / "real").resolve()

    @posix_only
    def test_discover_skips_escaping_symlink(self, store, make_project, tmp_path: Path):
        make_project("good")
        outside = tmp_path / "outside"
        outside.mkdir()
        (store.root / "escape").symlink_to(outside, target_is_directory=True)
        assert store.discover() == ["good"]

    @pytest.mark.parametrize("project_id", ["../x", "x/y", "..", ".", "", "-rf", "a\x00b"])
    def test_hostile_ids_rejected(self, store, project_id):
        with pytest.raises(InvalidProjectIdError):
            store.register(project_id)

    def test_root_itself_is_not_a_project(self, store):
        with pytest.raises(InvalidPathError):
            store.register("root", str(store.root))
