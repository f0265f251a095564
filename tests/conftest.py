"""Shared fixtures: in-memory repositories, test services and an engine factory."""

from __future__ import annotations

import pytest

from procflow.config import EngineConfig
from procflow.engine import WorkflowEngine
from procflow.loader import parse_definition
from procflow.persistence import create_inmemory_repositories
from procflow.services import ServiceRegistry


class Recorder:
    """Records every call so tests can assert visiting order."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def record(self, name: str, **extra):
        self.calls.append(name)
        return {"recorded": name, **extra}


class Flaky:
    """Fails ``failures`` times before succeeding."""

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.attempts = 0

    async def run(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError(f"attempt {self.attempts} failed")
        return {"success": True, "attempts": self.attempts}


class Broken:
    def explode(self):
        raise RuntimeError("boom")


@pytest.fixture
def repos():
    return create_inmemory_repositories()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def flaky() -> Flaky:
    return Flaky()


@pytest.fixture
def services(recorder, flaky) -> ServiceRegistry:
    registry = ServiceRegistry()
    registry.register("recorder", recorder)
    registry.register("flaky", flaky)
    registry.register("broken", Broken())
    return registry


@pytest.fixture
def make_engine(repos, services):
    def _make(**kwargs) -> WorkflowEngine:
        kwargs.setdefault("services", services)
        kwargs.setdefault("config", EngineConfig(subworkflow_wait_timeout_seconds=2))
        return WorkflowEngine.from_repositories(repos, **kwargs)

    return _make


@pytest.fixture
def deploy(repos):
    async def _deploy(data: dict):
        definition = parse_definition(data)
        await repos.definitions.create(definition)
        return definition

    return _deploy
