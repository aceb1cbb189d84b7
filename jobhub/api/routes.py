"""``/api`` routes — projects, runs, output and cancellation.

Handlers are plain ``def`` functions: FastAPI runs them in its worker
threadpool, so the short blocking calls into the core (registry locks,
``Popen``) never stall the event loop.  No handler waits for a pipeline
to finish.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from jobhub.api.auth import get_hub, require_bearer
from jobhub.api.schemas import (
    DiscoverResponse,
    ErrorResponse,
    IdResponse,
    OutputResponse,
    ProjectDetail,
    RegisterProjectRequest,
    SubmitRunRequest,
)
from jobhub.core.hub import JobHub
from jobhub.models.projects import Project, ProjectSummary
from jobhub.models.runs import Run

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    dependencies=[Depends(require_bearer)],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
        404: {"model": ErrorResponse, "description": "Unknown project or run"},
    },
)

Hub = Annotated[JobHub, Depends(get_hub)]


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/projects", response_model=list[ProjectSummary], tags=["Projects"])
def list_projects(hub: Hub, include_archived: bool = False) -> list[ProjectSummary]:
    return list(hub.projects.list(include_archived=include_archived))


@router.post(
    "/projects",
    response_model=Project,
    status_code=status.HTTP_201_CREATED,
    tags=["Projects"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid project id, path or manifest"},
        409: {"model": ErrorResponse, "description": "Project id already registered"},
    },
)
def register_project(body: RegisterProjectRequest, hub: Hub) -> Project:
    return hub.projects.register(
        body.project_id,
        body.path,
        entrypoint=body.entrypoint,
        max_concurrent_runs=body.max_concurrent_runs,
        timeout_seconds=body.timeout_seconds,
        env=body.env,
    )


@router.post("/projects/discover", response_model=DiscoverResponse, tags=["Projects"])
def discover_projects(hub: Hub) -> DiscoverResponse:
    """Register every new directory found under the projects root."""
    return DiscoverResponse(registered=hub.discover())


@router.get("/projects/{project_id}", response_model=ProjectDetail, tags=["Projects"])
def get_project(project_id: str, hub: Hub) -> ProjectDetail:
    return ProjectDetail(
        project=hub.projects.get(project_id),
        status=hub.scheduler.project_status(project_id),
    )


@router.delete("/projects/{project_id}", response_model=Project, tags=["Projects"])
def archive_project(project_id: str, hub: Hub) -> Project:
    """Archive a project.  Runs already admitted are not affected."""
    return hub.projects.archive(project_id)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@router.post(
    "/projects/{project_id}/runs",
    response_model=IdResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Runs"],
    responses={429: {"model": ErrorResponse, "description": "Project at its concurrency limit"}},
)
def submit_run(
    project_id: str, hub: Hub, body: SubmitRunRequest | None = None
) -> IdResponse:
    """Start a pipeline run.  Returns as soon as the run is admitted."""
    params = body.params if body is not None else {}
    return IdResponse(id=hub.submit(project_id, params))


@router.get("/projects/{project_id}/runs", response_model=list[Run], tags=["Runs"])
def list_project_runs(project_id: str, hub: Hub) -> list[Run]:
    hub.projects.get(project_id)
    return hub.registry.list_by_project(project_id)


@router.get("/runs/{run_id}", response_model=Run, tags=["Runs"])
def get_run(run_id: str, hub: Hub) -> Run:
    return hub.get_run(run_id)


@router.get("/runs/{run_id}/output", response_model=OutputResponse, tags=["Runs"])
def get_run_output(
    run_id: str,
    hub: Hub,
    since: Annotated[int, Query(ge=0)] = 0,
) -> OutputResponse:
    """Return captured output chunks with ``seq >= since``."""
    run = hub.get_run(run_id)
    chunks = hub.read_output(run_id, since=since)
    return OutputResponse(
        run_id=run_id,
        state=run.state,
        chunks=chunks,
        next_seq=chunks[-1].seq + 1 if chunks else since,
        truncated=run.output_truncated,
    )


@router.put(
    "/runs/{run_id}/cancel",
    response_model=IdResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Runs"],
    responses={409: {"model": ErrorResponse, "description": "Run is not running"}},
)
def cancel_run(run_id: str, hub: Hub) -> IdResponse:
    """Request cancellation.  Poll the run until it reports ``cancelled``."""
    hub.cancel(run_id)
    logger.info("Cancellation requested for run %s", run_id)
    return IdResponse(id=run_id)
