"""Run state machine models — monotonic lifecycle, append-only output."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunState(str, Enum):
    """Lifecycle state of a single pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


# Valid state transitions — enforced structurally by RunRegistry.
# PENDING -> FAILED exists only for spawn failures; a run never reaches
# SUCCEEDED or CANCELLED without passing through RUNNING.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.RUNNING, RunState.FAILED},
    RunState.RUNNING: {RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED},
    RunState.SUCCEEDED: set(),  # terminal
    RunState.FAILED: set(),  # terminal
    RunState.CANCELLED: set(),  # terminal
}

TERMINAL_STATES: frozenset[RunState] = frozenset(
    {RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED}
)


class FailureReason(str, Enum):
    """Why a run ended in FAILED."""

    SPAWN_FAILURE = "spawn_failure"
    RUNTIME_FAILURE = "runtime_failure"
    TIMEOUT = "timeout"
    SUPERVISION_ERROR = "supervision_error"


class StreamName(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Run(BaseModel):
    """Immutable snapshot of a run record.

    The registry replaces the snapshot on every change (``model_copy``),
    so a ``Run`` handed to a caller never changes underneath it.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=new_run_id)
    project_id: str
    state: RunState = RunState.PENDING
    params: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    pid: int | None = None
    failure: FailureReason | None = None
    detail: str | None = None
    output_bytes: int = 0
    output_truncated: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class OutputChunk(BaseModel):
    """One piece of captured pipeline output.

    ``seq`` is assigned by the registry and strictly increases per run,
    so ordering within each stream is the order of ``seq``.
    """

    model_config = ConfigDict(frozen=True)

    seq: int
    stream: StreamName
    data: str
    received_at: datetime = Field(default_factory=_utcnow)
