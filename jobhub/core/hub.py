"""Job hub — the composition root for the execution core.

``JobHub`` wires the ProjectStore, RunRegistry, Scheduler and (through the
Scheduler) the ProcessSupervisor from a single ``HubConfig``, runs the
retention reaper and owns shutdown.  The API layer and the CLI talk to
the core only through a ``JobHub``.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any

from jobhub.config import HubConfig
from jobhub.core.project_store import ProjectStore
from jobhub.core.run_registry import RunRegistry
from jobhub.core.scheduler import Scheduler
from jobhub.core.startup_guard import enforce_hub_constraints
from jobhub.models.runs import OutputChunk, Run

logger = logging.getLogger(__name__)


class JobHub:
    """Central coordinator for projects and pipeline runs.

    Parameters
    ----------
    config:
        The hub configuration.  Validated by the startup guard.
    require_token:
        Whether an API token must be configured.  Only the foreground
        ``jobhub run`` command, which opens no listener, turns this off.
    """

    def __init__(self, config: HubConfig, *, require_token: bool = True) -> None:
        enforce_hub_constraints(config, require_token=require_token)

        self.config = config
        self.projects = ProjectStore(config.projects_dir)
        self.registry = RunRegistry(max_output_bytes=config.max_output_bytes)
        self.scheduler = Scheduler(config, self.projects, self.registry)

        self._stop = threading.Event()
        self._reaper: threading.Thread | None = None

        if config.auto_discover:
            self.discover()

        logger.info(
            "Job hub ready (projects_dir=%s, projects=%d, limit=%d, policy=%s)",
            self.projects.root,
            len(self.projects),
            config.max_concurrent_runs_per_project,
            config.admission_policy,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the retention reaper thread (idempotent)."""
        if self._reaper is not None and self._reaper.is_alive():
            return
        self._stop.clear()
        self._reaper = threading.Thread(
            target=self._reap_loop, name="jobhub-reaper", daemon=True
        )
        self._reaper.start()

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop the reaper, stop admitting runs and terminate live runs."""
        logger.info("Shutting down job hub")
        self._stop.set()
        if self._reaper is not None:
            self._reaper.join(timeout=self.config.reaper_interval_seconds)
            self._reaper = None
        self.scheduler.shutdown(timeout=timeout)

    def reap(self) -> list[str]:
        """Purge terminal runs older than the retention period."""
        return self.registry.purge_finished(
            timedelta(seconds=self.config.retention_seconds)
        )

    def _reap_loop(self) -> None:
        while not self._stop.wait(timeout=self.config.reaper_interval_seconds):
            self.reap()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def discover(self) -> list[str]:
        """Register new project directories and flag unstartable ones.

        A discovered project whose entry point cannot start is still
        registered (its runs end ``spawn_failure``) but logged as a warning.
        """
        registered = self.projects.discover()
        for project_id in registered:
            problem = self.scheduler.supervisor.check_entrypoint(self.projects.get(project_id))
            if problem is not None:
                logger.warning("Project %s cannot start runs: %s", project_id, problem)
        return registered

    def submit(self, project_id: str, params: dict[str, Any] | None = None) -> str:
        return self.scheduler.submit(project_id, params)

    def cancel(self, run_id: str) -> Run:
        return self.scheduler.cancel(run_id)

    def get_run(self, run_id: str) -> Run:
        return self.registry.get(run_id)

    def read_output(self, run_id: str, since: int = 0) -> list[OutputChunk]:
        return self.registry.read_output(run_id, since=since)

    def wait_for_output(
        self, run_id: str, since: int = 0, timeout: float | None = None
    ) -> tuple[list[OutputChunk], Run]:
        return self.registry.wait_for_output(run_id, since=since, timeout=timeout)

    def wait(self, run_id: str, timeout: float | None = None) -> Run:
        return self.scheduler.wait(run_id, timeout=timeout)

    def __enter__(self) -> JobHub:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
