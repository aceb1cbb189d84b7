"""In-memory run registry — the source of truth for run status and output.

Design:
- One ``Run`` snapshot per run id, replaced (never mutated) on change.
- A per-run lock makes every transition and append atomic for that run;
  the table lock only guards insertion, removal and iteration of the map,
  so unrelated runs never contend on each other's updates.
- Transitions are validated against ``VALID_TRANSITIONS``; terminal
  states have no outgoing edges.
- Output is append-only and sequence-numbered per run, bounded by
  ``max_output_bytes``: the first chunk that does not fit and every chunk
  after it are dropped, and the run is flagged ``output_truncated``.
- Subscribers block in ``wait_for_output`` on a per-run condition that
  every append and transition notifies.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from jobhub.core.errors import (
    InvalidTransitionError,
    OutputClosedError,
    RunNotFoundError,
)
from jobhub.models.runs import (
    VALID_TRANSITIONS,
    FailureReason,
    OutputChunk,
    Run,
    RunState,
    StreamName,
)

logger = logging.getLogger(__name__)


@dataclass
class _RunSlot:
    run: Run
    lock: threading.Lock = field(default_factory=threading.Lock)
    output: list[OutputChunk] = field(default_factory=list)
    # Shares ``lock``; notified on every append and transition.
    changed: threading.Condition = field(init=False)

    def __post_init__(self) -> None:
        self.changed = threading.Condition(self.lock)


class RunRegistry:
    """Thread-safe table of runs keyed by run id.

    Parameters
    ----------
    max_output_bytes:
        Per-run cap on captured output, measured in UTF-8 bytes.
        ``0`` disables capture entirely (every chunk is counted as
        dropped).
    """

    def __init__(self, max_output_bytes: int = 4 * 1024 * 1024) -> None:
        self._max_output_bytes = max_output_bytes
        self._slots: dict[str, _RunSlot] = {}
        self._table_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Creation and transitions
    # ------------------------------------------------------------------

    def create(self, project_id: str, params: dict[str, Any] | None = None) -> str:
        """Allocate a new run in PENDING and return its id."""
        run = Run(project_id=project_id, params=dict(params or {}))
        with self._table_lock:
            while run.run_id in self._slots:
                run = Run(project_id=project_id, params=dict(params or {}))
            self._slots[run.run_id] = _RunSlot(run=run)
        logger.debug("Created run %s for project %s", run.run_id, project_id)
        return run.run_id

    def transition(
        self,
        run_id: str,
        new_state: RunState,
        *,
        exit_code: int | None = None,
        pid: int | None = None,
        failure: FailureReason | None = None,
        detail: str | None = None,
    ) -> Run:
        """Move a run to ``new_state`` and return the new snapshot.

        Timestamps are stamped here: ``started_at`` on entering RUNNING,
        ``finished_at`` on entering any terminal state.

        Raises
        ------
        RunNotFoundError
            If the run id is unknown.
        InvalidTransitionError
            If the transition is not in ``VALID_TRANSITIONS``.
        """
        slot = self._slot(run_id)
        with slot.lock:
            current = slot.run.state
            allowed = VALID_TRANSITIONS.get(current, set())
            if new_state not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {run_id} from {current.value} to {new_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )

            now = datetime.now(timezone.utc)
            update: dict[str, Any] = {"state": new_state}
            if new_state == RunState.RUNNING:
                update["started_at"] = now
            if new_state.is_terminal:
                update["finished_at"] = now
            if exit_code is not None:
                update["exit_code"] = exit_code
            if pid is not None:
                update["pid"] = pid
            if failure is not None:
                update["failure"] = failure
            if detail is not None:
                update["detail"] = detail

            slot.run = slot.run.model_copy(update=update)
            run = slot.run
            slot.changed.notify_all()

        logger.info("Run %s: %s -> %s", run_id, current.value, new_state.value)
        return run

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def append_output(self, run_id: str, stream: StreamName, data: str) -> OutputChunk | None:
        """Append a chunk of output to a non-terminal run.

        Returns the stored chunk, or ``None`` if the chunk was dropped
        because the run already hit its output bound.

        Raises
        ------
        RunNotFoundError
            If the run id is unknown.
        OutputClosedError
            If the run is already terminal.
        """
        slot = self._slot(run_id)
        size = len(data.encode("utf-8"))
        with slot.lock:
            if slot.run.is_terminal:
                raise OutputClosedError(
                    f"Run {run_id} is {slot.run.state.value}; output is closed"
                )
            if slot.run.output_truncated or (
                slot.run.output_bytes + size > self._max_output_bytes
            ):
                if not slot.run.output_truncated:
                    slot.run = slot.run.model_copy(update={"output_truncated": True})
                    logger.warning(
                        "Run %s exceeded %d bytes of output; dropping further chunks",
                        run_id,
                        self._max_output_bytes,
                    )
                return None

            chunk = OutputChunk(seq=len(slot.output), stream=stream, data=data)
            slot.output.append(chunk)
            slot.run = slot.run.model_copy(
                update={"output_bytes": slot.run.output_bytes + size}
            )
            slot.changed.notify_all()
        return chunk

    def read_output(self, run_id: str, since: int = 0) -> list[OutputChunk]:
        """Return captured chunks with ``seq >= since``, in order."""
        slot = self._slot(run_id)
        with slot.lock:
            return list(slot.output[max(since, 0):])

    def wait_for_output(
        self, run_id: str, since: int = 0, timeout: float | None = None
    ) -> tuple[list[OutputChunk], Run]:
        """Block until the run has chunks with ``seq >= since`` or is terminal.

        Returns the available chunks (possibly none, on timeout) together
        with the run snapshot taken under the same lock, so a terminal
        snapshot with no chunks means the output is complete.
        """
        since = max(since, 0)
        slot = self._slot(run_id)
        with slot.changed:
            slot.changed.wait_for(
                lambda: len(slot.output) > since or slot.run.is_terminal, timeout=timeout
            )
            return list(slot.output[since:]), slot.run

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, run_id: str) -> Run:
        """Return the current snapshot of a run."""
        return self._slot(run_id).run

    def list_by_project(self, project_id: str) -> list[Run]:
        """Return all runs of a project, oldest first."""
        with self._table_lock:
            slots = list(self._slots.values())
        return [s.run for s in slots if s.run.project_id == project_id]

    def list_all(self) -> list[Run]:
        with self._table_lock:
            slots = list(self._slots.values())
        return [s.run for s in slots]

    def count_by_state(self, project_id: str) -> dict[RunState, int]:
        """Return how many runs of a project are in each state."""
        counts = {state: 0 for state in RunState}
        for run in self.list_by_project(project_id):
            counts[run.state] += 1
        return counts

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_finished(self, older_than: timedelta, *, now: datetime | None = None) -> list[str]:
        """Drop terminal runs that finished more than ``older_than`` ago.

        Non-terminal runs are never removed.  Returns the purged ids.
        """
        cutoff = (now or datetime.now(timezone.utc)) - older_than
        purged: list[str] = []
        with self._table_lock:
            for run_id, slot in list(self._slots.items()):
                run = slot.run
                if run.is_terminal and run.finished_at is not None and run.finished_at <= cutoff:
                    del self._slots[run_id]
                    purged.append(run_id)
        if purged:
            logger.debug("Purged %d finished run(s)", len(purged))
        return purged

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _slot(self, run_id: str) -> _RunSlot:
        slot = self._slots.get(run_id)
        if slot is None:
            raise RunNotFoundError(run_id)
        return slot
