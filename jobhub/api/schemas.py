"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobhub.core.scheduler import ProjectStatus
from jobhub.models.projects import Project
from jobhub.models.runs import OutputChunk, RunState


class RegisterProjectRequest(BaseModel):
    """Body of ``POST /api/projects``.

    ``path`` is relative to the projects root (or absolute inside it) and
    defaults to ``<root>/<project_id>``.
    """

    model_config = ConfigDict(extra="forbid")

    project_id: str
    path: str | None = None
    entrypoint: list[str] | None = Field(default=None, min_length=1)
    max_concurrent_runs: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = None
    env: dict[str, str] = Field(default_factory=dict)


class SubmitRunRequest(BaseModel):
    """Body of ``POST /api/projects/{project_id}/runs``."""

    params: dict[str, Any] = Field(default_factory=dict)


class IdResponse(BaseModel):
    id: str


class DiscoverResponse(BaseModel):
    registered: list[str]


class ProjectDetail(BaseModel):
    project: Project
    status: ProjectStatus


class OutputResponse(BaseModel):
    """Captured output of a run from ``since`` onwards.

    Clients poll again with ``since=next_seq`` to receive only new chunks.
    """

    run_id: str
    state: RunState
    chunks: list[OutputChunk]
    next_seq: int
    truncated: bool


class ErrorResponse(BaseModel):
    error: str
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
