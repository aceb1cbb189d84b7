"""Project models and the optional per-project manifest."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")

# File inside a project directory that may declare pipeline settings.
MANIFEST_FILENAME = "jobhub.toml"


class PipelineManifest(BaseModel):
    """The ``[pipeline]`` table of a project's ``jobhub.toml``.

    Every field is optional; unset fields fall back to the hub config.

    Example::

        [pipeline]
        entrypoint = ["python3", "etl.py", "--full"]
        max_concurrent_runs = 2
        timeout_seconds = 1800

        [pipeline.env]
        ETL_PROFILE = "nightly"
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    entrypoint: list[str] | None = None
    max_concurrent_runs: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = None
    env: dict[str, str] = Field(default_factory=dict)


class Project(BaseModel):
    """A registered project: identifier, root directory, pipeline entry point."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    path: Path
    entrypoint: list[str] | None = None
    max_concurrent_runs: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = None
    env: dict[str, str] = Field(default_factory=dict)
    registered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    archived: bool = False


class ProjectSummary(BaseModel):
    """Lightweight listing row for a project."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    path: Path
    archived: bool = False
