"""Shared test fixtures for the job hub."""

from __future__ import annotations

import sys
import textwrap
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from jobhub.api.app import create_app
from jobhub.config import HubConfig
from jobhub.core.hub import JobHub
from jobhub.core.project_store import ProjectStore
from jobhub.core.run_registry import RunRegistry
from jobhub.core.scheduler import Scheduler

TEST_TOKEN = "test-token-0123456789"


# ---------------------------------------------------------------------------
# Pipeline scripts — run with the test interpreter as ``main.py``
# ---------------------------------------------------------------------------

HELLO_SCRIPT = """
import sys
print("hello from pipeline")
print("warning on stderr", file=sys.stderr)
"""

SLEEP_SCRIPT = """
import time
print("started", flush=True)
time.sleep(30)
"""

EXIT_3_SCRIPT = """
import sys
print("about to fail", flush=True)
sys.exit(3)
"""

IGNORE_SIGTERM_SCRIPT = """
import signal
import time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(60)
"""

ENV_SCRIPT = """
import json
import os
print(json.dumps({
    "params": json.loads(os.environ["JOBHUB_PARAMS"]),
    "run_id": os.environ["JOBHUB_RUN_ID"],
    "project_id": os.environ["JOBHUB_PROJECT_ID"],
    "api_token": os.environ.get("API_TOKEN", "absent"),
    "hub_token": os.environ.get("JOBHUB_API_TOKEN", "absent"),
    "cwd": os.getcwd(),
}))
"""


@pytest.fixture
def projects_root(tmp_path: Path) -> Path:
    """Provide an empty projects root directory."""
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def make_project(projects_root: Path) -> Callable[..., Path]:
    """Factory fixture: create a project directory with a ``main.py``."""

    def _factory(
        name: str = "p1",
        script: str = HELLO_SCRIPT,
        manifest: str | None = None,
    ) -> Path:
        project_dir = projects_root / name
        project_dir.mkdir()
        (project_dir / "main.py").write_text(textwrap.dedent(script), encoding="utf-8")
        if manifest is not None:
            (project_dir / "jobhub.toml").write_text(textwrap.dedent(manifest), encoding="utf-8")
        return project_dir

    return _factory


@pytest.fixture
def make_config(projects_root: Path) -> Callable[..., HubConfig]:
    """Factory fixture: a HubConfig with short grace periods for tests."""

    def _factory(**overrides: Any) -> HubConfig:
        defaults: dict[str, Any] = {
            "api_token": TEST_TOKEN,
            "projects_dir": projects_root,
            "default_entrypoint": [sys.executable, "main.py"],
            "run_timeout_seconds": None,
            "termination_grace_seconds": 1.0,
            "kill_wait_seconds": 2.0,
            "reaper_interval_seconds": 60.0,
            "pipeline_env": {},
            "_env_file": None,
        }
        defaults.update(overrides)
        return HubConfig(**defaults)

    return _factory


@pytest.fixture
def config(make_config: Callable[..., HubConfig]) -> HubConfig:
    return make_config()


@pytest.fixture
def registry() -> RunRegistry:
    """Provide a fresh in-memory RunRegistry."""
    return RunRegistry()


@pytest.fixture
def store(projects_root: Path) -> ProjectStore:
    """Provide a ProjectStore over the temp projects root."""
    return ProjectStore(projects_root)


@pytest.fixture
def make_scheduler(
    make_config: Callable[..., HubConfig],
    store: ProjectStore,
    registry: RunRegistry,
) -> Iterator[Callable[..., Scheduler]]:
    """Factory fixture: a Scheduler over ``store`` and ``registry``."""
    created: list[Scheduler] = []

    def _factory(**overrides: Any) -> Scheduler:
        scheduler = Scheduler(make_config(**overrides), store, registry)
        created.append(scheduler)
        return scheduler

    yield _factory
    for scheduler in created:
        scheduler.shutdown(timeout=5)


@pytest.fixture
def make_hub(make_config: Callable[..., HubConfig]) -> Iterator[Callable[..., JobHub]]:
    """Factory fixture: a JobHub built after the test created its projects."""
    created: list[JobHub] = []

    def _factory(**overrides: Any) -> JobHub:
        hub = JobHub(make_config(**overrides))
        created.append(hub)
        return hub

    yield _factory
    for hub in created:
        hub.shutdown(timeout=5)


@pytest.fixture
def make_client(make_hub: Callable[..., JobHub]) -> Iterator[Callable[..., TestClient]]:
    """Factory fixture: a TestClient (lifespan entered) over a fresh hub."""
    clients: list[TestClient] = []

    def _factory(**overrides: Any) -> TestClient:
        client = TestClient(create_app(make_hub(**overrides)))
        client.__enter__()
        clients.append(client)
        return client

    yield _factory
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll ``predicate`` until it returns a truthy value or time runs out."""

    def _wait(predicate: Callable[[], Any], timeout: float = 10.0, interval: float = 0.05) -> Any:
        deadline = time.monotonic() + timeout
        while True:
            result = predicate()
            if result:
                return result
            if time.monotonic() >= deadline:
                raise AssertionError(f"Condition not met within {timeout}s")
            time.sleep(interval)

    return _wait


@pytest.fixture
def scripts() -> SimpleNamespace:
    """The canned pipeline scripts, by short name."""
    return SimpleNamespace(
        hello=HELLO_SCRIPT,
        sleep=SLEEP_SCRIPT,
        exit_3=EXIT_3_SCRIPT,
        ignore_sigterm=IGNORE_SIGTERM_SCRIPT,
        env=ENV_SCRIPT,
    )
