"""Project registry scoped to a single projects root directory.

Design:
- Registration is serialized under a write lock; lookups read the
  mapping without locking (a registered ``Project`` is frozen and entries
  are only ever replaced whole).
- Every project path must resolve (symlinks included) to a directory
  strictly inside the projects root.
- An optional ``jobhub.toml`` manifest in the project directory supplies
  pipeline defaults; explicit registration arguments win.
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError

from jobhub.core.errors import (
    AlreadyExistsError,
    ConfigurationError,
    HubError,
    InvalidManifestError,
    InvalidPathError,
    InvalidProjectIdError,
    ProjectNotFoundError,
)
from jobhub.models.projects import (
    MANIFEST_FILENAME,
    PROJECT_ID_PATTERN,
    PipelineManifest,
    Project,
    ProjectSummary,
)

logger = logging.getLogger(__name__)


class ProjectListing:
    """Lazy, finite, restartable view over the registered projects.

    Each iteration walks a snapshot taken when that iteration starts, so
    concurrent registrations never break an in-flight iteration and a
    second ``for`` loop sees the current registry.
    """

    def __init__(self, store: ProjectStore, *, include_archived: bool = False) -> None:
        self._store = store
        self._include_archived = include_archived

    def __iter__(self) -> Iterator[ProjectSummary]:
        for project in self._store._snapshot():
            if project.archived and not self._include_archived:
                continue
            yield ProjectSummary(
                project_id=project.project_id,
                path=project.path,
                archived=project.archived,
            )


class ProjectStore:
    """Maps project identifiers to directories under ``root``.

    Parameters
    ----------
    root:
        The projects directory.  Must exist and be a directory.

    Raises
    ------
    ConfigurationError
        If ``root`` is not an existing directory.
    """

    def __init__(self, root: Path) -> None:
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(f"Projects root is not a directory: {root}")
        self._root = root.resolve()
        self._projects: dict[str, Project] = {}
        self._write_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        project_id: str,
        path: Path | str | None = None,
        *,
        entrypoint: list[str] | None = None,
        max_concurrent_runs: int | None = None,
        timeout_seconds: float | None = None,
        env: dict[str, str] | None = None,
    ) -> Project:
        """Register a project directory under ``project_id``.

        ``path`` may be absolute or relative to the projects root; when
        omitted it defaults to ``<root>/<project_id>``.

        Raises
        ------
        InvalidProjectIdError
            If the id does not match ``PROJECT_ID_PATTERN``.
        InvalidPathError
            If the path escapes the root or is not a readable directory.
        InvalidManifestError
            If ``jobhub.toml`` exists but is malformed.
        AlreadyExistsError
            If the id is already registered.
        """
        if not PROJECT_ID_PATTERN.match(project_id):
            raise InvalidProjectIdError(f"Invalid project id: {project_id!r}")

        resolved = self._resolve_path(project_id if path is None else path)
        manifest = self._load_manifest(resolved)

        project = Project(
            project_id=project_id,
            path=resolved,
            entrypoint=entrypoint or manifest.entrypoint,
            max_concurrent_runs=max_concurrent_runs or manifest.max_concurrent_runs,
            timeout_seconds=(
                timeout_seconds if timeout_seconds is not None else manifest.timeout_seconds
            ),
            env={**manifest.env, **(env or {})},
        )

        with self._write_lock:
            if project_id in self._projects:
                raise AlreadyExistsError(f"Project already exists: {project_id}")
            self._projects[project_id] = project

        logger.info("Registered project %s at %s", project_id, resolved)
        return project

    def archive(self, project_id: str) -> Project:
        """Mark a project archived.  Archived projects accept no new runs."""
        with self._write_lock:
            project = self._projects.get(project_id)
            if project is None or project.archived:
                raise ProjectNotFoundError(project_id)
            archived = project.model_copy(update={"archived": True})
            self._projects[project_id] = archived

        logger.info("Archived project %s", project_id)
        return archived

    def discover(self) -> list[str]:
        """Register every unregistered subdirectory of the root.

        Directories whose names are not valid project ids, hidden
        directories, and directories that fail validation are skipped
        with a warning.  Returns the ids that were newly registered.
        """
        registered: list[str] = []
        for child in sorted(self._root.iterdir()):
            name = child.name
            if name.startswith(".") or not child.is_dir():
                continue
            if name in self._projects:
                continue
            if not PROJECT_ID_PATTERN.match(name):
                logger.warning("Skipping directory with invalid project id: %s", name)
                continue
            try:
                self.register(name)
            except AlreadyExistsError:
                continue
            except HubError as exc:
                logger.warning("Skipping project %s: %s", name, exc.message)
                continue
            registered.append(name)
        if registered:
            logger.info("Discovered %d project(s): %s", len(registered), ", ".join(registered))
        return registered

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, project_id: str) -> Project:
        """Return the project, archived or not.

        Raises
        ------
        ProjectNotFoundError
            If the id was never registered.
        """
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def get_active(self, project_id: str) -> Project:
        """Return the project if it is registered and not archived."""
        project = self.get(project_id)
        if project.archived:
            raise ProjectNotFoundError(project_id)
        return project

    def list(self, *, include_archived: bool = False) -> ProjectListing:
        """Return a restartable listing of project summaries."""
        return ProjectListing(self, include_archived=include_archived)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> list[Project]:
        return list(self._projects.values())

    def _resolve_path(self, path: Path | str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        resolved = candidate.resolve()

        if resolved == self._root or not resolved.is_relative_to(self._root):
            raise InvalidPathError(
                f"Project path must be a directory inside {self._root}: {path}"
            )
        if not resolved.is_dir():
            raise InvalidPathError(f"Project path is not a directory: {path}")
        if not os.access(resolved, os.R_OK | os.X_OK):
            raise InvalidPathError(f"Project path is not readable: {path}")
        return resolved

    @staticmethod
    def _load_manifest(project_dir: Path) -> PipelineManifest:
        manifest_path = project_dir / MANIFEST_FILENAME
        if not manifest_path.is_file():
            return PipelineManifest()
        try:
            with manifest_path.open("rb") as fh:
                data = tomllib.load(fh)
            return PipelineManifest.model_validate(data.get("pipeline", {}))
        except (tomllib.TOMLDecodeError, ValidationError, OSError) as exc:
            raise InvalidManifestError(
                f"Invalid {MANIFEST_FILENAME} in {project_dir.name}: {exc}"
            ) from exc
