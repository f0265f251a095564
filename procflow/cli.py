"""Command line interface for procflow."""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from procflow import WorkflowEngine, get_repositories, get_task_system, load_config
from procflow.config import ProcflowConfig
from procflow.contracts import WorkflowStatus
from procflow.exceptions import ProcflowError
from procflow.loader import dump_definition, load_definition
from procflow.sweeper import ScheduledStepSweeper

app = typer.Typer(help="CLI for procflow workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for managing workflow instances")
step_app = typer.Typer(help="Commands for interaction steps")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")
app.add_typer(step_app, name="step")


@app.callback()
def main(
    services: Optional[str] = typer.Option(
        None,
        "--services",
        help="Comma-separated modules to import; they register services on import",
    ),
) -> None:
    """procflow CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    for module in filter(None, (m.strip() for m in (services or "").split(","))):
        importlib.import_module(module)


def _engine(config: Optional[ProcflowConfig] = None) -> WorkflowEngine:
    config = config or load_config()
    return WorkflowEngine.from_repositories(
        get_repositories(),
        task_system=get_task_system(config=config),
        config=config.engine,
    )


def _parse_json(value: Optional[str], option: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON for {option}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


async def _closing(engine: WorkflowEngine, coro: Any) -> Any:
    try:
        return await coro
    finally:
        if engine.task_system is not None:
            await engine.task_system.aclose()


def _run(coro: Any, engine: Optional[WorkflowEngine] = None) -> Any:
    """Run ``coro``; with ``engine`` given, close its task system afterwards."""
    if engine is not None:
        coro = _closing(engine, coro)
    try:
        return asyncio.run(coro)
    except ProcflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Definitions
@definition_app.command("load")
def definition_load(
    path: Path,
    replace: bool = typer.Option(False, "--replace", help="Overwrite an existing definition"),
) -> None:
    """
    Validate a YAML or JSON definition file and store it.

    Example:
        procflow definition load ./workflows/approval.yaml
        procflow definition load ./workflows/approval.yaml --replace
    """
    try:
        definition = load_definition(path)
    except (FileNotFoundError, ProcflowError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    repos = get_repositories()

    async def _store() -> str:
        existing = await repos.definitions.get_by_id(definition.id)
        if existing is not None:
            if not replace:
                typer.secho(
                    f"Definition '{definition.id}' already exists (use --replace)",
                    fg=typer.colors.RED,
                )
                raise typer.Exit(code=1)
            await repos.definitions.update(definition)
            return "Updated"
        await repos.definitions.create(definition)
        return "Loaded"

    action = _run(_store())
    typer.echo(f"{action} definition {definition.id} (version {definition.version})")


@definition_app.command("list")
def definition_list() -> None:
    """List stored workflow definitions."""
    repos = get_repositories()
    definitions = _run(repos.definitions.list_definitions())
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        typer.echo(f"{d.id}\t{d.version}\t{d.name or ''}")


@definition_app.command("show")
def definition_show(
    definition_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of YAML"),
) -> None:
    """Print a stored definition."""
    repos = get_repositories()
    definition = _run(repos.definitions.get_by_id(definition_id))
    if definition is None:
        typer.echo("Definition not found")
        raise typer.Exit(code=1)
    typer.echo(dump_definition(definition, "json" if as_json else "yaml"))


# ----------------------------------------------------------------------
# Instances
@instance_app.command("start")
def instance_start(
    definition_id: str,
    variables: Optional[str] = typer.Option(None, "--vars", help="JSON object of variables"),
    correlation_id: Optional[str] = typer.Option(None, "--correlation-id"),
    created_by: Optional[str] = typer.Option(None, "--created-by"),
) -> None:
    """
    Start a workflow instance and run it to its first stop.

    Example:
        procflow instance start approval --vars '{"amount": 150}'
    """
    data = _parse_json(variables, "--vars")
    engine = _engine()

    async def _start():
        instance_id = await engine.start_instance(
            definition_id, data, correlation_id=correlation_id, created_by=created_by
        )
        return await engine.get_instance(instance_id)

    instance = _run(_start(), engine)
    typer.echo(f"Started instance {instance.id}: {instance.status.value}")


@instance_app.command("list")
def instance_list(
    status: Optional[WorkflowStatus] = typer.Option(None, "--status", help="Filter by status"),
) -> None:
    """List workflow instances with their status and current step."""
    repos = get_repositories()
    if status is not None:
        instances = _run(repos.instances.get_by_status(status))
    else:
        instances = _run(repos.instances.list_instances())
    if not instances:
        typer.echo("No instances found")
        return
    for i in instances:
        typer.echo(f"{i.id}\t{i.definition_id}\t{i.status.value}\t{i.current_step_id or ''}")


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """
    Show an instance, its variables and its step history.

    Example:
        procflow instance show 3f2b...
        # Output: Instance 3f2b...: waiting
        #         Variables: {"amount": 150}
        #         - review [interaction]: waiting_for_input (step 91ac...)
    """
    engine = _engine()
    instance = _run(engine.get_instance(instance_id), engine)
    typer.echo(f"Instance {instance.id}: {instance.status.value}")
    typer.echo(f"Definition: {instance.definition_id}")
    if instance.variables:
        typer.echo(f"Variables: {json.dumps(instance.variables, default=str)}")
    if instance.error_message:
        typer.echo(f"Error: {instance.error_message}")
    if instance.cancel_reason:
        typer.echo(f"Cancel reason: {instance.cancel_reason}")
    for step in instance.step_history:
        line = f"- {step.step_definition_id} [{step.kind.value}]: {step.status.value} (step {step.id})"
        if step.due_at:
            line += f" due {step.due_at.isoformat()}"
        if step.error_message:
            line += f" error: {step.error_message}"
        typer.echo(line)


@instance_app.command("cancel")
def instance_cancel(
    instance_id: str, reason: Optional[str] = typer.Option(None, "--reason")
) -> None:
    """Cancel a workflow instance."""
    engine = _engine()
    _run(engine.cancel_instance(instance_id, reason), engine)
    typer.echo(f"Cancelled instance {instance_id}")


@instance_app.command("suspend")
def instance_suspend(instance_id: str) -> None:
    """Suspend a running or waiting instance."""
    engine = _engine()
    _run(engine.suspend_instance(instance_id), engine)
    typer.echo(f"Suspended instance {instance_id}")


@instance_app.command("resume")
def instance_resume(instance_id: str) -> None:
    """Resume a suspended instance at its current step."""
    engine = _engine()

    async def _resume():
        await engine.resume_instance(instance_id)
        return await engine.get_instance(instance_id)

    instance = _run(_resume(), engine)
    typer.echo(f"Resumed instance {instance_id}: {instance.status.value}")


# ----------------------------------------------------------------------
# Steps
@step_app.command("complete")
def step_complete(
    step_instance_id: str,
    data: Optional[str] = typer.Option(None, "--data", help="JSON object of output data"),
    user: Optional[str] = typer.Option(None, "--user", help="Completing user"),
) -> None:
    """
    Complete an interaction step that is waiting for input.

    Example:
        procflow step complete 91ac... --data '{"approved": true}' --user alice
    """
    output = _parse_json(data, "--data")
    engine = _engine()
    _run(engine.complete_interaction_step(step_instance_id, output, completed_by=user), engine)
    typer.echo(f"Completed step {step_instance_id}")


@step_app.command("pending")
def step_pending(
    user: Optional[str] = typer.Option(None, "--user", help="Only steps assigned to this user"),
) -> None:
    """List steps that are pending or waiting for input."""
    engine = _engine()
    if user:
        steps = _run(engine.get_pending_interaction_steps(user), engine)
    else:
        steps = _run(engine.steps.get_pending(), engine)
    if not steps:
        typer.echo("No pending steps")
        return
    for s in steps:
        typer.echo(
            f"{s.id}\t{s.workflow_instance_id}\t{s.step_definition_id}\t"
            f"{s.status.value}\t{s.assigned_to or ''}"
        )


# ----------------------------------------------------------------------
# Worker
@app.command("sweep")
def sweep(
    loop: bool = typer.Option(False, "--loop", help="Keep sweeping instead of a single pass"),
    interval: Optional[float] = typer.Option(None, help="Seconds between sweeps"),
    lifespan: Optional[float] = typer.Option(None, help="Stop looping after this many seconds"),
) -> None:
    """
    Continue scheduled steps and business retries that are due.

    Example:
        procflow sweep
        procflow sweep --loop --interval 5 --lifespan 300
    """
    config = load_config()
    engine = _engine(config)
    sweeper = ScheduledStepSweeper(
        engine, interval=interval or config.engine.sweep_interval_seconds
    )
    if not loop:
        processed = _run(sweeper.run_once(), engine)
        typer.echo(f"Processed {processed} due step(s)")
        return
    typer.echo(f"Sweeping every {sweeper.interval}s")
    _run(sweeper.start(lifespan=lifespan), engine)
    typer.echo(f"Stopped after {sweeper.passes} pass(es)")
