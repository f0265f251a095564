import asyncio
from pathlib import Path

import pytest
from typer.testing import CliRunner

import procflow.cli as cli
import procflow.persistence as persistence
from procflow.cli import app
from procflow.contracts import WorkflowStatus
from procflow.persistence import create_inmemory_repositories
from procflow.services import REGISTRY
from procflow.tasks import InMemoryTaskSystem

FIXTURE = Path(__file__).resolve().parents[1] / "fixtures" / "approval.yaml"

runner = CliRunner()


@pytest.fixture
def repos(tmp_path, monkeypatch):
    monkeypatch.setenv("PROCFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("PROCFLOW_TASK_SYSTEM", raising=False)
    repos = create_inmemory_repositories()
    monkeypatch.setattr(persistence, "_repositories_instance", repos)
    return repos


def _invoke(*args):
    result = runner.invoke(app, list(args))
    assert (
        result.exit_code == 0
    ), f"Command {args} failed with exit code {result.exit_code}. Output: {result.output}"
    return result.stdout


def _load(repos):
    _invoke("definition", "load", str(FIXTURE))


def _only_instance(repos, status=None):
    instances = asyncio.run(repos.instances.list_instances())
    if status is not None:
        instances = [i for i in instances if i.status == status]
    assert len(instances) == 1, f"Expected one instance, got {instances}"
    return instances[0]


def test_definition_commands(repos):
    output = _invoke("definition", "load", str(FIXTURE))
    assert "Loaded definition approval (version 1)" in output

    duplicate = runner.invoke(app, ["definition", "load", str(FIXTURE)])
    assert duplicate.exit_code == 1, f"Expected exit code 1, got {duplicate.exit_code}"
    assert "already exists" in duplicate.stdout

    assert "Updated definition approval" in _invoke("definition", "load", str(FIXTURE), "--replace")
    assert "approval\t1\tPurchase approval" in _invoke("definition", "list")
    assert "initialStepId: route" in _invoke("definition", "show", "approval")
    assert '"initialStepId": "route"' in _invoke("definition", "show", "approval", "--json")

    missing = runner.invoke(app, ["definition", "show", "missing-id"])
    assert missing.exit_code == 1, f"Expected exit code 1, got {missing.exit_code}"
    assert "Definition not found" in missing.stdout


def test_definition_load_rejects_bad_files(repos, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("id: broken\nsteps: []\ninitialStepId: a\n")

    result = runner.invoke(app, ["definition", "load", str(bad)])
    assert result.exit_code == 1, f"Expected exit code 1, got {result.exit_code}"
    assert "at least one step" in result.stdout

    result = runner.invoke(app, ["definition", "load", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_interaction_round_trip(repos):
    _load(repos)

    output = _invoke("instance", "start", "approval", "--vars", '{"amount": 150}')
    instance = _only_instance(repos)
    assert f"Started instance {instance.id}: waiting" in output

    pending = _invoke("step", "pending", "--user", "alice")
    step = asyncio.run(repos.steps.get_by_assigned_user("alice"))[0]
    assert step.id in pending, f"Step {step.id} not listed: {pending}"
    assert "review" in _invoke("step", "pending")

    output = _invoke("step", "complete", step.id, "--data", '{"approved": true}', "--user", "alice")
    assert f"Completed step {step.id}" in output

    shown = _invoke("instance", "show", instance.id)
    assert f"Instance {instance.id}: completed" in shown
    assert "- review [interaction]: completed" in shown
    assert "- done [scheduled]: skipped" in shown
    assert "No pending steps" in _invoke("step", "pending", "--user", "alice")


def test_small_amount_completes_immediately(repos):
    _load(repos)

    output = _invoke("instance", "start", "approval", "--vars", '{"amount": 5}', "--created-by", "bob")

    instance = _only_instance(repos)
    assert f"Started instance {instance.id}: completed" in output
    assert instance.created_by == "bob"


def test_instance_lifecycle_commands(repos):
    _load(repos)
    _invoke("instance", "start", "approval", "--vars", '{"amount": 500}')
    instance = _only_instance(repos)

    assert instance.id in _invoke("instance", "list", "--status", "waiting")
    assert "No instances found" in _invoke("instance", "list", "--status", "completed")

    assert f"Suspended instance {instance.id}" in _invoke("instance", "suspend", instance.id)
    assert f"Resumed instance {instance.id}: waiting" in _invoke("instance", "resume", instance.id)

    output = _invoke("instance", "cancel", instance.id, "--reason", "duplicate request")
    assert f"Cancelled instance {instance.id}" in output
    shown = _invoke("instance", "show", instance.id)
    assert "Cancel reason: duplicate request" in shown
    assert _only_instance(repos).status == WorkflowStatus.CANCELLED

    again = runner.invoke(app, ["instance", "cancel", instance.id])
    assert again.exit_code == 1, f"Expected exit code 1, got {again.exit_code}"
    assert "already cancelled" in again.stdout


def test_start_errors(repos):
    _load(repos)

    result = runner.invoke(app, ["instance", "start", "approval", "--vars", "{not json"])
    assert result.exit_code == 1
    assert "Invalid JSON for --vars" in result.stdout

    result = runner.invoke(app, ["instance", "start", "approval", "--vars", "[1, 2]"])
    assert result.exit_code == 1
    assert "--vars must be a JSON object" in result.stdout

    result = runner.invoke(app, ["instance", "start", "unknown"])
    assert result.exit_code == 1
    assert "Workflow definition 'unknown' not found" in result.stdout

    result = runner.invoke(app, ["instance", "show", "missing-id"])
    assert result.exit_code == 1
    assert "Workflow instance 'missing-id' not found" in result.stdout


def test_sweep_once(repos):
    assert "Processed 0 due step(s)" in _invoke("sweep")


def test_services_option_imports_modules(repos, tmp_path, monkeypatch):
    module = tmp_path / "procflow_cli_test_services.py"
    module.write_text(
        "from procflow import register_service\n\n"
        "class Greeter:\n"
        "    def greet(self, name):\n"
        "        return {'greeting': f'hello {name}'}\n\n"
        "register_service('greeter', Greeter())\n"
    )
    monkeypatch.syspath_prepend(str(tmp_path))

    try:
        _invoke("--services", "procflow_cli_test_services", "definition", "list")
        assert "greeter" in REGISTRY.names()
    finally:
        REGISTRY.unregister("greeter")


class ClosableTaskSystem(InMemoryTaskSystem):
    def __init__(self) -> None:
        super().__init__()
        self.closed_clients = 0

    async def aclose(self) -> None:
        self.closed_clients += 1


def test_engine_commands_close_task_system(repos, monkeypatch):
    _load(repos)
    created = []

    def fake_get_task_system(config=None):
        task_system = ClosableTaskSystem()
        created.append(task_system)
        return task_system

    monkeypatch.setattr(cli, "get_task_system", fake_get_task_system)

    _invoke("instance", "start", "approval", "--vars", '{"amount": 150}')
    instance = _only_instance(repos)
    _invoke("instance", "show", instance.id)
    _invoke("instance", "cancel", instance.id)

    assert len(created) == 3
    assert [t.closed_clients for t in created] == [1, 1, 1]
    assert len(created[0].tasks) == 1, "Interaction step should have created a task"
