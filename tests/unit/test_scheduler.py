"""Tests for the Scheduler — admission control, queueing, cancellation."""

from __future__ import annotations

import pytest

from jobhub.core.errors import (
    NotRunningError,
    ProjectNotFoundError,
    RunNotFoundError,
    ThrottledError,
)
from jobhub.models.runs import FailureReason, RunState


@pytest.fixture
def project(make_project, store, scripts):
    """Register ``p1`` running the sleep script."""
    make_project("p1", script=scripts.sleep)
    return store.register("p1")


class TestRejectPolicy:
    def test_second_quick_submission_is_throttled(self, make_scheduler, registry, project):
        scheduler = make_scheduler()
        first = scheduler.submit("p1")
        assert registry.get(first).state == RunState.RUNNING
        with pytest.raises(ThrottledError):
            scheduler.submit("p1")
        # A rejected submission leaves no run behind.
        assert [r.run_id for r in registry.list_by_project("p1")] == [first]

    def test_slot_frees_after_completion(self, make_scheduler, make_project, store, registry):
        make_project("p1", script="print('quick')\n")
        store.register("p1")
        scheduler = make_scheduler()
        first = scheduler.submit("p1")
        assert scheduler.wait(first, timeout=10).state == RunState.SUCCEEDED
        second = scheduler.submit("p1")
        assert scheduler.wait(second, timeout=10).state == RunState.SUCCEEDED

    def test_slot_frees_after_cancel(self, make_scheduler, registry, project):
        scheduler = make_scheduler()
        first = scheduler.submit("p1")
        scheduler.cancel(first)
        assert scheduler.wait(first, timeout=10).state == RunState.CANCELLED
        third = scheduler.submit("p1")
        assert registry.get(third).state == RunState.RUNNING

    def test_projects_are_independent(self, make_scheduler, make_project, store, scripts, project):
        make_project("p2", script=scripts.sleep)
        store.register("p2")
        scheduler = make_scheduler()
        scheduler.submit("p1")
        scheduler.submit("p2")
        assert scheduler.project_status("p1").state == "busy"
        assert scheduler.project_status("p2").state == "busy"

    def test_project_limit_overrides_config(
        self, make_scheduler, make_project, store, registry, scripts
    ):
        make_project("p1", script=scripts.sleep)
        store.register("p1", max_concurrent_runs=2)
        scheduler = make_scheduler()
        scheduler.submit("p1")
        scheduler.submit("p1")
        with pytest.raises(ThrottledError):
            scheduler.submit("p1")
        status = scheduler.project_status("p1")
        assert status.active_runs == 2
        assert status.limit == 2

    def test_spawn_failure_releases_slot(self, make_scheduler, make_project, store, registry):
        make_project("p1")
        store.register("p1", entrypoint=["./missing-binary"])
        scheduler = make_scheduler()
        run_id = scheduler.submit("p1")
        run = registry.get(run_id)
        assert run.state == RunState.FAILED
        assert run.failure == FailureReason.SPAWN_FAILURE
        assert scheduler.project_status("p1").active_runs == 0
        scheduler.submit("p1")

    def test_unknown_project(self, make_scheduler):
        with pytest.raises(ProjectNotFoundError):
            make_scheduler().submit("nope")

    def test_archived_project_rejected(self, make_scheduler, store, project):
        store.archive("p1")
        with pytest.raises(ProjectNotFoundError):
            make_scheduler().submit("p1")

    def test_params_reach_the_run(self, make_scheduler, registry, project):
        run_id = make_scheduler().submit("p1", {"day": "2024-01-01"})
        assert registry.get(run_id).params == {"day": "2024-01-01"}


class TestQueuePolicy:
    def test_queued_runs_start_in_order(self, make_scheduler, make_project, store, registry):
        make_project("p1", script="import time\ntime.sleep(0.3)\n")
        store.register("p1")
        scheduler = make_scheduler(admission_policy="queue", max_queue_depth=4)
        ids = [scheduler.submit("p1") for _ in range(3)]

        assert registry.get(ids[0]).state == RunState.RUNNING
        assert registry.get(ids[1]).state == RunState.PENDING
        assert scheduler.project_status("p1").queued_runs == 2

        runs = [scheduler.wait(run_id, timeout=20) for run_id in ids]
        assert [r.state for r in runs] == [RunState.SUCCEEDED] * 3
        # FIFO: each run started after the previous one finished.
        for earlier, later in zip(runs, runs[1:]):
            assert later.started_at >= earlier.finished_at

    def test_full_queue_is_throttled(self, make_scheduler, registry, project):
        scheduler = make_scheduler(admission_policy="queue", max_queue_depth=1)
        scheduler.submit("p1")
        scheduler.submit("p1")
        with pytest.raises(ThrottledError):
            scheduler.submit("p1")
        assert len(registry.list_by_project("p1")) == 2

    def test_cancel_queued_run_is_not_running(self, make_scheduler, project):
        scheduler = make_scheduler(admission_policy="queue")
        scheduler.submit("p1")
        queued = scheduler.submit("p1")
        with pytest.raises(NotRunningError):
            scheduler.cancel(queued)

    def test_shutdown_fails_queued_runs(self, make_scheduler, registry, project):
        scheduler = make_scheduler(admission_policy="queue")
        running = scheduler.submit("p1")
        queued = scheduler.submit("p1")
        scheduler.shutdown(timeout=10)
        assert registry.get(running).state == RunState.CANCELLED
        assert registry.get(queued).state == RunState.FAILED
        with pytest.raises(ThrottledError):
            scheduler.submit("p1")


class TestCancel:
    def test_cancel_returns_immediately_then_cancelled(self, make_scheduler, registry, project):
        scheduler = make_scheduler()
        run_id = scheduler.submit("p1")
        snapshot = scheduler.cancel(run_id)
        assert snapshot.state in (RunState.RUNNING, RunState.CANCELLED)
        assert scheduler.wait(run_id, timeout=10).state == RunState.CANCELLED

    def test_cancel_terminal_run(self, make_scheduler, make_project, store):
        make_project("p1", script="print('x')\n")
        store.register("p1")
        scheduler = make_scheduler()
        run_id = scheduler.submit("p1")
        scheduler.wait(run_id, timeout=10)
        with pytest.raises(NotRunningError):
            scheduler.cancel(run_id)

    def test_cancel_unknown_run(self, make_scheduler):
        with pytest.raises(RunNotFoundError):
            make_scheduler().cancel("run-missing")

    def test_cancelled_state_is_final(self, make_scheduler, registry, project):
        scheduler = make_scheduler()
        run_id = scheduler.submit("p1")
        scheduler.cancel(run_id)
        scheduler.wait(run_id, timeout=10)
        with pytest.raises(NotRunningError):
            scheduler.cancel(run_id)
        assert registry.get(run_id).state == RunState.CANCELLED
