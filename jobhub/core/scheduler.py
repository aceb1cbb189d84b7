"""Admission control and run dispatch.

Each project owns a ``_ProjectSlot``: an active-run counter, a bounded
FIFO of queued run ids and a re-entrant lock.  Admission decisions and
slot releases for a project happen under that project's lock only, so
unrelated projects never serialize on each other.

The same lock is handed to the ProcessSupervisor as its exit guard: a
run's terminal transition and the release of its slot are one atomic
step as seen by ``submit``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from jobhub.config import HubConfig
from jobhub.core.errors import NotRunningError, ThrottledError
from jobhub.core.project_store import ProjectStore
from jobhub.core.run_registry import RunRegistry
from jobhub.core.supervisor import ProcessSupervisor
from jobhub.models.projects import Project
from jobhub.models.runs import FailureReason, Run, RunState

logger = logging.getLogger(__name__)

_QUEUE_POLL_SECONDS = 0.05


class ProjectStatus(BaseModel):
    """Scheduler view of one project: ``idle`` or ``busy`` plus counters."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    state: Literal["idle", "busy"]
    active_runs: int
    limit: int
    queued_runs: int


@dataclass
class _ProjectSlot:
    lock: threading.RLock = field(default_factory=threading.RLock)
    active: int = 0
    queue: deque[str] = field(default_factory=deque)
    draining: bool = False


class Scheduler:
    """Accepts run requests and enforces the per-project concurrency limit.

    Parameters
    ----------
    config:
        Hub configuration (default limit, admission policy, queue depth).
    projects:
        The ProjectStore used to resolve project ids.
    registry:
        The RunRegistry where admitted runs are created.
    """

    def __init__(
        self,
        config: HubConfig,
        projects: ProjectStore,
        registry: RunRegistry,
    ) -> None:
        self._config = config
        self._projects = projects
        self._registry = registry
        self._slots: dict[str, _ProjectSlot] = {}
        self._slots_lock = threading.Lock()
        self._closed = False
        self.supervisor = ProcessSupervisor(
            config,
            registry,
            on_exit=self._on_run_exit,
            exit_guard=self._project_lock,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, project_id: str, params: dict[str, Any] | None = None) -> str:
        """Admit (or queue) a run for a project and return its id.

        Returns without waiting for the pipeline.  With the ``reject``
        policy a project at its limit answers ``ThrottledError``; with
        ``queue`` the run is created PENDING and started in FIFO order
        when a slot frees, until ``max_queue_depth`` is reached.

        Raises
        ------
        ProjectNotFoundError
            If the project is unknown or archived.
        ThrottledError
            If the project cannot take another run right now.
        """
        project = self._projects.get_active(project_id)
        slot = self._slot(project_id)
        limit = self.limit_for(project)

        with slot.lock:
            if self._closed:
                raise ThrottledError("Hub is shutting down; no new runs are accepted")
            if slot.active < limit and not slot.queue:
                run_id = self._registry.create(project_id, params)
                slot.active += 1
                # Spawned under the slot lock so shutdown cannot miss it.
                self.supervisor.spawn(run_id, project)
                return run_id
            if (
                self._config.admission_policy == "queue"
                and len(slot.queue) < self._config.max_queue_depth
            ):
                run_id = self._registry.create(project_id, params)
                slot.queue.append(run_id)
            else:
                logger.info(
                    "Throttled submission for project %s (%d/%d active)",
                    project_id,
                    slot.active,
                    limit,
                )
                raise ThrottledError(
                    f"Project {project_id} is at its concurrency limit ({limit})"
                )

        logger.info("Queued run %s for project %s", run_id, project_id)
        return run_id

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, run_id: str) -> Run:
        """Request cancellation of a RUNNING run.

        Returns immediately; the run becomes CANCELLED once its process
        has exited.

        Raises
        ------
        RunNotFoundError
            If the run id is unknown.
        NotRunningError
            If the run is pending, terminal, or its process already exited.
        """
        run = self._registry.get(run_id)
        if run.state != RunState.RUNNING:
            raise NotRunningError(f"Run {run_id} is {run.state.value}, not running")
        if not self.supervisor.terminate(run_id):
            raise NotRunningError(f"Run {run_id} has no live process")
        return self._registry.get(run_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def limit_for(self, project: Project) -> int:
        return project.max_concurrent_runs or self._config.max_concurrent_runs_per_project

    def project_status(self, project_id: str) -> ProjectStatus:
        project = self._projects.get(project_id)
        slot = self._slot(project_id)
        with slot.lock:
            active = slot.active
            queued = len(slot.queue)
        return ProjectStatus(
            project_id=project_id,
            state="busy" if active else "idle",
            active_runs=active,
            limit=self.limit_for(project),
            queued_runs=queued,
        )

    def wait(self, run_id: str, timeout: float | None = None) -> Run:
        """Block until a run is terminal (or ``timeout`` elapses).

        Queued runs are polled until the supervisor picks them up.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            run = self.supervisor.wait(run_id, timeout=remaining)
            if run.is_terminal:
                return run
            if deadline is not None and time.monotonic() >= deadline:
                return run
            if not self.supervisor.is_supervising(run_id):
                time.sleep(_QUEUE_POLL_SECONDS)

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop admitting runs, drop queued runs and stop live ones.

        Every slot lock is taken after ``_closed`` is set, so a submission
        that was admitted just before has registered its process with the
        supervisor by the time the supervisor is shut down.
        """
        with self._slots_lock:
            self._closed = True
            slots = list(self._slots.values())
        for slot in slots:
            with slot.lock:
                dropped = list(slot.queue)
                slot.queue.clear()
            for run_id in dropped:
                self._registry.transition(
                    run_id,
                    RunState.FAILED,
                    failure=FailureReason.SPAWN_FAILURE,
                    detail="Hub shut down before the run was started",
                )
        self.supervisor.shutdown(timeout=timeout)

    # ------------------------------------------------------------------
    # Slot bookkeeping
    # ------------------------------------------------------------------

    def _slot(self, project_id: str) -> _ProjectSlot:
        slot = self._slots.get(project_id)
        if slot is None:
            with self._slots_lock:
                slot = self._slots.setdefault(project_id, _ProjectSlot())
        return slot

    def _project_lock(self, project_id: str) -> threading.RLock:
        return self._slot(project_id).lock

    def _on_run_exit(self, run: Run) -> None:
        """Release the run's slot and start queued runs that now fit.

        Called by the supervisor while it holds this project's lock.
        A queued run whose spawn fails re-enters here synchronously; the
        ``draining`` flag keeps that re-entry from recursing.
        """
        slot = self._slot(run.project_id)
        with slot.lock:
            slot.active = max(slot.active - 1, 0)
            if slot.draining or self._closed:
                return
            project = self._projects.get(run.project_id)
            limit = self.limit_for(project)
            slot.draining = True
            try:
                while slot.queue and slot.active < limit:
                    next_run_id = slot.queue.popleft()
                    slot.active += 1
                    logger.info("Dequeued run %s for project %s", next_run_id, run.project_id)
                    self.supervisor.spawn(next_run_id, project)
            finally:
                slot.draining = False
