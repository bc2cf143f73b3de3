from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Generator, Sequence

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Settings and the engine are built at import time (via get_settings()).
# Point the queue store at an in-memory SQLite database before anything imports it.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from inhouse.config import Settings
from inhouse.naming import TAG_LABEL
from inhouse.runtime.base import InstanceSpec


@pytest.fixture
def settings() -> Generator[Settings, None, None]:
    """Return a fresh Settings instance for each test.

    Tests can freely mutate fields on this object without affecting others.
    """

    yield Settings(
        _env_file=None,
        database_url="sqlite+pysqlite:///:memory:",
        db_host="mongo",
        sitewatcher_host="sitewatcher",
        service_net=None,
        service_dns=None,
        builder_container_id=None,
        github_secret="s3cret",
    )


@pytest.fixture
def queue_db() -> Generator[None, None, None]:
    """Create the build queue table for a test and drop it afterwards."""

    from inhouse.db.base import Base, engine
    import inhouse.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class FakeRuntime:
    """In-memory container runtime that records every call."""

    def __init__(self) -> None:
        self.containers: dict[str, dict[str, Any]] = {}
        self.build_results: list[str | Exception] = []
        self.builds: list[tuple[str, str]] = []
        self.started: list[InstanceSpec] = []
        self.killed: list[str] = []
        self.links: list[str] = []
        self.inspect_calls = 0
        self.start_running = True

    def add_instance(self, container_id: str, name: str, tag: str, *, running: bool = True) -> None:
        self.containers[container_id] = {"name": name, "tag": tag, "running": running}

    def build_image(self, repo_url: str, image_name: str) -> str:
        self.builds.append((repo_url, image_name))
        result = self.build_results.pop(0) if self.build_results else "Successfully built"
        if isinstance(result, Exception):
            raise result
        return result

    def start_instance(self, spec: InstanceSpec) -> str:
        container_id = f"id-{spec.name}"
        self.started.append(spec)
        self.add_instance(
            container_id,
            spec.name,
            spec.labels.get(TAG_LABEL, ""),
            running=self.start_running,
        )
        return container_id

    def list_instances(self, tag: str) -> list[str]:
        return [cid for cid, info in self.containers.items() if info["tag"] == tag]

    def is_running(self, name: str) -> bool:
        return any(info["name"] == name and info["running"] for info in self.containers.values())

    def kill_instances(self, container_ids: Sequence[str]) -> list[str]:
        removed: list[str] = []
        for ref in container_ids:
            for cid, info in list(self.containers.items()):
                if ref in (cid, info["name"]):
                    del self.containers[cid]
                    removed.append(ref)
        self.killed.extend(removed)
        return removed

    def inspect_links(self, container_id: str) -> list[str]:
        self.inspect_calls += 1
        return list(self.links)

    def running_names(self) -> set[str]:
        return {info["name"] for info in self.containers.values() if info["running"]}


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()
