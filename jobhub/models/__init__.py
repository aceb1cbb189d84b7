"""Job hub data models — all Pydantic v2, all frozen (immutable)."""

from jobhub.models.projects import (
    MANIFEST_FILENAME,
    PROJECT_ID_PATTERN,
    PipelineManifest,
    Project,
    ProjectSummary,
)
from jobhub.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    FailureReason,
    OutputChunk,
    Run,
    RunState,
    StreamName,
)

__all__ = [
    # projects
    "MANIFEST_FILENAME",
    "PROJECT_ID_PATTERN",
    "PipelineManifest",
    "Project",
    "ProjectSummary",
    # runs
    "RunState",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "FailureReason",
    "StreamName",
    "Run",
    "OutputChunk",
]
