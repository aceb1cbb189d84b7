"""Pipeline process supervision — spawn, drain, reap, terminate.

Each spawned run is owned by a ``_Supervised`` handle with three threads:

- two drain threads (stdout, stderr) that read the pipes in chunks and
  append decoded text to the RunRegistry, tagged with the stream;
- one waiter thread that blocks on process exit, lets the drains finish,
  decides the terminal state and releases the handle exactly once.

Termination (explicit cancel or wall-clock timeout) runs on its own
thread: SIGTERM to the process group, wait the grace period, SIGKILL,
wait a bounded time.  The terminal transition is always made by the
waiter, after the process has actually exited.

Spawn failures (a missing program or script, an OS error from ``Popen``)
are recorded on the run as ``spawn_failure`` and never raised to the
caller.
"""

from __future__ import annotations

import codecs
import contextlib
import json
import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import IO, Any

from jobhub.config import HubConfig
from jobhub.core.entrypoint import find_entrypoint_problem
from jobhub.core.errors import OutputClosedError, RunNotFoundError
from jobhub.core.run_registry import RunRegistry
from jobhub.models.projects import Project
from jobhub.models.runs import FailureReason, Run, RunState, StreamName

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"

# Hub credentials never reach pipeline processes.
_SCRUBBED_ENV_VARS = frozenset({"JOBHUB_API_TOKEN", "API_TOKEN"})

ExitCallback = Callable[[Run], None]
ExitGuard = Callable[[str], AbstractContextManager[Any]]


def _no_guard(project_id: str) -> AbstractContextManager[Any]:
    return contextlib.nullcontext()


@dataclass
class _Supervised:
    run_id: str
    project_id: str
    process: subprocess.Popen[bytes]
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Set once by the first stop request: "cancel" or "timeout".
    stop_reason: str | None = None
    # Set by the waiter as soon as the process has been reaped.
    exited: threading.Event = field(default_factory=threading.Event)
    # Set by the waiter after the terminal transition; unwinds the drains.
    finished: threading.Event = field(default_factory=threading.Event)
    threads: list[threading.Thread] = field(default_factory=list)
    timer: threading.Timer | None = None


class ProcessSupervisor:
    """Owns the lifecycle of pipeline subprocesses.

    Parameters
    ----------
    config:
        Hub configuration (entry point default, pipeline env, timeouts,
        grace periods, read chunk size).
    registry:
        The RunRegistry receiving state changes and output.
    on_exit:
        Called exactly once per run handed to ``spawn``, right after its
        terminal transition.
    exit_guard:
        Factory returning a context manager held around the terminal
        transition and ``on_exit``.  The Scheduler passes its per-project
        lock here so that releasing a concurrency slot and the run
        becoming terminal are observed together.
    """

    def __init__(
        self,
        config: HubConfig,
        registry: RunRegistry,
        *,
        on_exit: ExitCallback | None = None,
        exit_guard: ExitGuard | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._on_exit = on_exit
        self._exit_guard = exit_guard or _no_guard
        self._handles: dict[str, _Supervised] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def build_argv(self, project: Project) -> list[str]:
        return list(project.entrypoint or self._config.default_entrypoint)

    def build_env(self, project: Project, run: Run) -> dict[str, str]:
        """Environment for a pipeline process.

        Inherited process env (minus hub credentials), then the configured
        ``pipeline_env``, then the project's own env, then run metadata.
        """
        env = {k: v for k, v in os.environ.items() if k not in _SCRUBBED_ENV_VARS}
        env.update(self._config.pipeline_env)
        env.update(project.env)
        env.update(
            {
                "PYTHONUNBUFFERED": "1",
                "JOBHUB_RUN_ID": run.run_id,
                "JOBHUB_PROJECT_ID": project.project_id,
                "JOBHUB_PARAMS": json.dumps(run.params, sort_keys=True, default=str),
            }
        )
        return env

    def check_entrypoint(self, project: Project) -> str | None:
        """Return why the project's entry point cannot start, or ``None``."""
        search_path = project.env.get(
            "PATH", self._config.pipeline_env.get("PATH", os.environ.get("PATH"))
        )
        return find_entrypoint_problem(self.build_argv(project), project.path, search_path)

    def timeout_for(self, project: Project) -> float | None:
        if project.timeout_seconds is not None:
            return project.timeout_seconds if project.timeout_seconds > 0 else None
        return self._config.run_timeout_seconds

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    def spawn(self, run_id: str, project: Project) -> Run:
        """Start the pipeline for a PENDING run.

        Returns the run snapshot right after the spawn attempt: RUNNING on
        success, FAILED (``spawn_failure``) otherwise.
        """
        run = self._registry.get(run_id)
        argv = self.build_argv(project)
        env = self.build_env(project, run)

        problem = self.check_entrypoint(project)
        if problem is not None:
            logger.error(
                "Cannot start run %s for project %s: %s", run_id, project.project_id, problem
            )
            return self._fail_spawn(run, problem)

        try:
            process = subprocess.Popen(
                argv,
                cwd=project.path,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            logger.error("Failed to spawn run %s (%s): %s", run_id, argv, exc)
            return self._fail_spawn(run, f"{type(exc).__name__}: {exc}")

        handle = _Supervised(run_id=run_id, project_id=project.project_id, process=process)
        with self._lock:
            self._handles[run_id] = handle

        running = self._registry.transition(run_id, RunState.RUNNING, pid=process.pid)
        logger.info(
            "Spawned run %s for project %s (pid=%d): %s",
            run_id,
            project.project_id,
            process.pid,
            " ".join(argv),
        )

        handle.threads = [
            threading.Thread(
                target=self._drain,
                args=(handle, process.stdout, StreamName.STDOUT),
                name=f"jobhub-{run_id}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._drain,
                args=(handle, process.stderr, StreamName.STDERR),
                name=f"jobhub-{run_id}-stderr",
                daemon=True,
            ),
        ]
        for thread in handle.threads:
            thread.start()

        timeout = self.timeout_for(project)
        if timeout is not None:
            handle.timer = threading.Timer(timeout, self._request_stop, args=(handle, "timeout"))
            handle.timer.daemon = True
            handle.timer.start()

        threading.Thread(
            target=self._wait,
            args=(handle,),
            name=f"jobhub-{run_id}-waiter",
            daemon=True,
        ).start()
        return running

    def _fail_spawn(self, run: Run, detail: str) -> Run:
        with self._exit_guard(run.project_id):
            failed = self._registry.transition(
                run.run_id,
                RunState.FAILED,
                failure=FailureReason.SPAWN_FAILURE,
                detail=detail,
            )
            self._notify_exit(failed)
        return failed

    # ------------------------------------------------------------------
    # Output draining
    # ------------------------------------------------------------------

    def _drain(self, handle: _Supervised, pipe: IO[bytes] | None, stream: StreamName) -> None:
        if pipe is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunk_size = self._config.read_chunk_size
        try:
            while not handle.finished.is_set():
                data = pipe.read1(chunk_size)  # type: ignore[attr-defined]
                if not data:
                    break
                self._append(handle, stream, decoder.decode(data))
            self._append(handle, stream, decoder.decode(b"", final=True))
        except (OutputClosedError, RunNotFoundError):
            logger.debug("Run %s closed before %s was drained", handle.run_id, stream.value)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read %s of run %s: %s", stream.value, handle.run_id, exc)
        finally:
            with contextlib.suppress(OSError):
                pipe.close()
        logger.debug("Finished reading %s of run %s", stream.value, handle.run_id)

    def _append(self, handle: _Supervised, stream: StreamName, text: str) -> None:
        if not text:
            return
        if stream == StreamName.STDERR:
            logger.debug("[%s stderr] %s", handle.run_id, text.rstrip())
        self._registry.append_output(handle.run_id, stream, text)

    # ------------------------------------------------------------------
    # Exit handling
    # ------------------------------------------------------------------

    def _wait(self, handle: _Supervised) -> None:
        exit_code: int | None = None
        error: str | None = None
        try:
            exit_code = handle.process.wait()
        except OSError as exc:
            logger.error("Failed to wait for run %s: %s", handle.run_id, exc)
            error = f"{type(exc).__name__}: {exc}"
        finally:
            handle.exited.set()
            if handle.timer is not None:
                handle.timer.cancel()

        # Grandchildren may keep a pipe open after the leader exits.
        for thread in handle.threads:
            thread.join(timeout=self._config.kill_wait_seconds)

        with handle.lock:
            stop_reason = handle.stop_reason

        state, failure, detail = self._outcome(exit_code, stop_reason, error)
        try:
            with self._exit_guard(handle.project_id):
                run = self._registry.transition(
                    handle.run_id,
                    state,
                    exit_code=exit_code,
                    failure=failure,
                    detail=detail,
                )
                self._notify_exit(run)
        finally:
            handle.finished.set()
            with self._lock:
                self._handles.pop(handle.run_id, None)

    def _outcome(
        self, exit_code: int | None, stop_reason: str | None, error: str | None
    ) -> tuple[RunState, FailureReason | None, str | None]:
        if error is not None:
            return RunState.FAILED, FailureReason.SUPERVISION_ERROR, error
        if stop_reason == "timeout":
            return RunState.FAILED, FailureReason.TIMEOUT, "Run exceeded its wall-clock limit"
        if stop_reason == "cancel":
            return RunState.CANCELLED, None, "Cancelled on request"
        if exit_code == 0:
            return RunState.SUCCEEDED, None, None
        if exit_code is not None and exit_code < 0:
            detail = f"Pipeline terminated by signal {-exit_code}"
        else:
            detail = f"Pipeline exited with code {exit_code}"
        return RunState.FAILED, FailureReason.RUNTIME_FAILURE, detail

    def _notify_exit(self, run: Run) -> None:
        if self._on_exit is None:
            return
        try:
            self._on_exit(run)
        except Exception:
            logger.exception("on_exit callback failed for run %s", run.run_id)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def terminate(self, run_id: str) -> bool:
        """Request termination of a running pipeline and return immediately.

        Returns ``False`` if the run has no live process (never spawned,
        already exited, or already finalized).  The run becomes CANCELLED
        only once the process has exited; callers poll for it.
        """
        with self._lock:
            handle = self._handles.get(run_id)
        if handle is None:
            return False
        return self._request_stop(handle, "cancel")

    def _request_stop(self, handle: _Supervised, reason: str) -> bool:
        with handle.lock:
            if handle.exited.is_set() or handle.process.poll() is not None:
                return False
            if handle.stop_reason is not None:
                # Already terminating; a second request changes nothing.
                return True
            handle.stop_reason = reason

        logger.info("Stopping run %s (%s)", handle.run_id, reason)
        threading.Thread(
            target=self._terminate_process,
            args=(handle,),
            name=f"jobhub-{handle.run_id}-terminate",
            daemon=True,
        ).start()
        return True

    def _terminate_process(self, handle: _Supervised) -> None:
        grace = self._config.termination_grace_seconds
        self._send_signal(handle, signal.SIGTERM)
        if handle.exited.wait(timeout=grace):
            logger.info("Run %s terminated gracefully", handle.run_id)
            return

        logger.warning(
            "Run %s did not exit %.1fs after SIGTERM; sending SIGKILL", handle.run_id, grace
        )
        self._send_signal(handle, getattr(signal, "SIGKILL", signal.SIGTERM))
        if not handle.exited.wait(timeout=self._config.kill_wait_seconds):
            logger.error("Run %s still alive after SIGKILL", handle.run_id)

    @staticmethod
    def _send_signal(handle: _Supervised, sig: signal.Signals) -> None:
        if handle.exited.is_set():
            return
        pid = handle.process.pid
        try:
            if _POSIX:
                # start_new_session made the child a group leader: pgid == pid.
                os.killpg(pid, sig)
            elif sig == signal.SIGTERM:
                handle.process.terminate()
            else:
                handle.process.kill()
        except ProcessLookupError:
            logger.debug("Run %s (pid=%d) already gone", handle.run_id, pid)
        except PermissionError as exc:
            logger.error("Not permitted to signal run %s (pid=%d): %s", handle.run_id, pid, exc)

    # ------------------------------------------------------------------
    # Queries and shutdown
    # ------------------------------------------------------------------

    def is_supervising(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._handles

    def active_run_ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def wait(self, run_id: str, timeout: float | None = None) -> Run:
        """Block until a supervised run is finalized, then return it.

        Returns the current snapshot immediately if the run is not (or no
        longer) supervised.  On timeout returns the still-running snapshot.
        """
        with self._lock:
            handle = self._handles.get(run_id)
        if handle is not None:
            handle.finished.wait(timeout=timeout)
        return self._registry.get(run_id)

    def shutdown(self, timeout: float | None = None) -> None:
        """Terminate every live run and wait for their waiters to finish."""
        with self._lock:
            handles = list(self._handles.values())
        if not handles:
            return

        logger.info("Shutting down supervisor: stopping %d run(s)", len(handles))
        for handle in handles:
            self._request_stop(handle, "cancel")

        limit = timeout
        if limit is None:
            limit = self._config.termination_grace_seconds + self._config.kill_wait_seconds + 1.0
        for handle in handles:
            if not handle.finished.wait(timeout=limit):
                logger.error("Run %s did not finish during shutdown", handle.run_id)
