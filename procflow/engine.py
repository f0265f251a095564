"""Workflow execution engine."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .config import EngineConfig
from .constants import EXTERNAL_TASK_ID_KEY
from .contracts import (
    StepDefinition,
    StepExecutionResult,
    StepKind,
    StepStatus,
    WorkflowDefinition,
    WorkflowStatus,
)
from .exceptions import (
    DefinitionNotFound,
    ExecutorNotFound,
    ExpressionError,
    InstanceNotFound,
    InvalidState,
    StepNotFound,
)
from .executors import StepExecutor, build_default_executors
from .expressions import ExpressionEvaluator, SafeExpressionEvaluator
from .persistence.models import StepInstance, WorkflowInstance
from .persistence.repository import (
    DefinitionRepository,
    InstanceRepository,
    RepositorySet,
    StepInstanceRepository,
)
from .routing import resolve_next_step
from .services import REGISTRY
from .services.registry import ServiceInvoker
from .tasks.base import ExternalTaskSystem
from .utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Step statuses that park an instance until something external happens.
_PARKED_STEP_STATUSES = (
    StepStatus.WAITING_FOR_INPUT,
    StepStatus.SCHEDULED,
    StepStatus.PENDING,
)


class WorkflowEngine:
    """Drive workflow instances from their initial step to a terminal state.

    Each call runs synchronously through non-suspending steps until the
    instance completes, fails, or parks on an interaction, a future
    scheduled time or a pending retry. Parked instances are continued by
    ``complete_interaction_step`` and ``process_due_scheduled_steps``.
    """

    def __init__(
        self,
        definitions: DefinitionRepository,
        instances: InstanceRepository,
        steps: StepInstanceRepository,
        executors: Optional[Iterable[StepExecutor]] = None,
        *,
        services: Optional[ServiceInvoker] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        task_system: Optional[ExternalTaskSystem] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.definitions = definitions
        self.instances = instances
        self.steps = steps
        self.config = config or EngineConfig()
        self.services = services if services is not None else REGISTRY
        self.evaluator = evaluator or SafeExpressionEvaluator(
            strict=self.config.strict_conditions
        )
        self.task_system = task_system
        self.executors: List[StepExecutor] = (
            list(executors) if executors is not None else build_default_executors(self)
        )
        self._waiters: Dict[str, List[asyncio.Future]] = defaultdict(list)

    @classmethod
    def from_repositories(cls, repositories: RepositorySet, **kwargs: Any) -> "WorkflowEngine":
        return cls(
            repositories.definitions, repositories.instances, repositories.steps, **kwargs
        )

    # ------------------------------------------------------------------
    # Public API
    async def start_instance(
        self,
        definition_id: str,
        variables: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> str:
        """Create an instance of ``definition_id`` and run it to its first stop."""
        definition = await self._load_definition(definition_id)
        merged = copy.deepcopy(definition.variables)
        merged.update(variables or {})
        instance = WorkflowInstance(
            definition_id=definition.id,
            current_step_id=definition.initial_step_id,
            variables=merged,
            correlation_id=correlation_id,
            created_by=created_by,
        )
        instance_id = await self.instances.create(instance)

        instance.status = WorkflowStatus.RUNNING
        instance.started_at = utcnow()
        await self.instances.update(instance)
        logger.info(f"Started workflow instance {instance_id} of '{definition.id}'")

        await self._run_from(instance_id, definition.initial_step_id)
        return instance_id

    async def complete_interaction_step(
        self,
        step_instance_id: str,
        output_data: Optional[Dict[str, Any]] = None,
        completed_by: Optional[str] = None,
    ) -> None:
        """Record user input for a waiting interaction step and continue."""
        step_instance = await self.steps.get_by_id(step_instance_id)
        if step_instance is None:
            raise StepNotFound(step_instance_id)
        if step_instance.status != StepStatus.WAITING_FOR_INPUT:
            raise InvalidState(
                f"Step instance '{step_instance_id}' is not waiting for input",
                step_instance.status.value,
            )
        instance = await self._load_instance(step_instance.workflow_instance_id)
        if not instance.is_active:
            raise InvalidState(
                f"Workflow instance '{instance.id}' is {instance.status.value}",
                instance.status.value,
            )
        definition = await self._load_definition(instance.definition_id)

        data = dict(output_data or {})
        task_id = step_instance.output_data.get(EXTERNAL_TASK_ID_KEY)
        if task_id and self.task_system is not None:
            try:
                await self.task_system.close_task(str(task_id), data)
            except Exception as exc:
                logger.warning(f"Failed to close external task {task_id}: {exc}")

        step_instance.output_data.update(data)
        step_instance.status = StepStatus.COMPLETED
        step_instance.completed_at = utcnow()
        step_instance.completed_by = completed_by
        instance.variables.update(data)
        instance.status = WorkflowStatus.RUNNING
        logger.info(f"Interaction step {step_instance_id} completed by {completed_by}")

        next_step_id = await self._finish_step(
            instance,
            definition.get_step(step_instance.step_definition_id),
            step_instance,
            StepExecutionResult.completed(data),
        )
        if next_step_id:
            await self._run_from(instance.id, next_step_id)

    async def process_due_scheduled_steps(self, now: Optional[datetime] = None) -> int:
        """Continue scheduled steps and business retries that are due.

        Returns the number of step instances processed.
        """
        now = ensure_utc(now) if now else utcnow()
        processed = 0

        for step_instance in await self.steps.get_scheduled(now):
            context = await self._load_parked_context(step_instance)
            if context is None:
                continue
            instance, definition, step = context
            step_instance.status = StepStatus.COMPLETED
            step_instance.completed_at = utcnow()
            instance.status = WorkflowStatus.RUNNING
            processed += 1
            logger.info(f"Scheduled step {step_instance.id} is due; continuing {instance.id}")
            next_step_id = await self._finish_step(
                instance, step, step_instance, StepExecutionResult.completed()
            )
            if next_step_id:
                await self._run_from(instance.id, next_step_id)

        for step_instance in await self.steps.get_due_retries(now):
            context = await self._load_parked_context(step_instance)
            if context is None:
                continue
            instance, definition, step = context
            step_instance.due_at = None
            instance.status = WorkflowStatus.RUNNING
            await self.instances.update(instance)
            processed += 1
            logger.info(
                f"Retrying step {step_instance.id} (attempt {step_instance.retry_count})"
            )
            next_step_id = await self._dispatch(instance, step, step_instance)
            if next_step_id:
                await self._run_from(instance.id, next_step_id)

        return processed

    async def cancel_instance(self, instance_id: str, reason: Optional[str] = None) -> None:
        """Cancel an instance. Child sub-workflows are left running."""
        instance = await self._load_instance(instance_id)
        if instance.status.is_terminal:
            raise InvalidState(
                f"Workflow instance '{instance_id}' is already {instance.status.value}",
                instance.status.value,
            )
        instance.status = WorkflowStatus.CANCELLED
        instance.completed_at = utcnow()
        instance.cancel_reason = reason
        await self.instances.update(instance)
        logger.info(f"Cancelled workflow instance {instance_id}: {reason}")
        await self._release_parked_steps(instance_id, reason or "Workflow cancelled")
        self._notify_terminal(instance)

    async def suspend_instance(self, instance_id: str) -> None:
        instance = await self._load_instance(instance_id)
        if not instance.is_active:
            raise InvalidState(
                f"Workflow instance '{instance_id}' cannot be suspended while "
                f"{instance.status.value}",
                instance.status.value,
            )
        instance.status = WorkflowStatus.SUSPENDED
        await self.instances.update(instance)
        logger.info(f"Suspended workflow instance {instance_id}")

    async def resume_instance(self, instance_id: str) -> None:
        """Resume a suspended instance by re-entering its current step."""
        instance = await self._load_instance(instance_id)
        if instance.status != WorkflowStatus.SUSPENDED:
            raise InvalidState(
                f"Workflow instance '{instance_id}' is not suspended",
                instance.status.value,
            )
        instance.status = WorkflowStatus.RUNNING
        await self.instances.update(instance)
        await self._release_parked_steps(
            instance_id, "Superseded on resume", _PARKED_STEP_STATUSES + (StepStatus.RUNNING,)
        )
        logger.info(f"Resumed workflow instance {instance_id} at '{instance.current_step_id}'")
        if instance.current_step_id:
            await self._run_from(instance_id, instance.current_step_id)

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Return the instance with its step history in execution order."""
        instance = await self._load_instance(instance_id)
        instance.step_history = await self.steps.get_by_workflow_instance_id(instance_id)
        return instance

    async def get_pending_interaction_steps(self, user_id: str) -> List[StepInstance]:
        return await self.steps.get_by_assigned_user(user_id)

    async def wait_for_completion(self, instance_id: str, timeout: float) -> WorkflowInstance:
        """Wait until ``instance_id`` is terminal.

        Completion on this engine wakes the waiter directly; the repository
        is re-read every ``completion_poll_interval_seconds`` to catch
        instances finished elsewhere. Raises ``asyncio.TimeoutError`` when it
        is still running after ``timeout`` seconds.
        """
        instance = await self._load_instance(instance_id)
        if instance.status.is_terminal:
            return instance
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._waiters[instance_id].append(future)
        deadline = loop.time() + timeout
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                poll = min(self.config.completion_poll_interval_seconds, remaining)
                done, _ = await asyncio.wait({future}, timeout=poll)
                if done:
                    return future.result()
                instance = await self._load_instance(instance_id)
                if instance.status.is_terminal:
                    return instance
        finally:
            waiters = self._waiters.get(instance_id)
            if waiters is not None:
                if future in waiters:
                    waiters.remove(future)
                if not waiters:
                    del self._waiters[instance_id]

    # ------------------------------------------------------------------
    # Execution
    async def _run_from(self, instance_id: str, step_id: Optional[str]) -> None:
        while step_id:
            step_id = await self._advance(instance_id, step_id)

    async def _advance(self, instance_id: str, step_id: str) -> Optional[str]:
        """Execute ``step_id`` on a fresh step instance; return the next step id."""
        instance = await self._load_instance(instance_id)
        if instance.status != WorkflowStatus.RUNNING:
            logger.info(
                f"Instance {instance_id} is {instance.status.value}; not advancing to '{step_id}'"
            )
            return None
        definition = await self._load_definition(instance.definition_id)
        step = definition.get_step(step_id)
        if step is None:
            logger.warning(f"Step '{step_id}' not found in '{definition.id}'; completing {instance_id}")
            await self._complete(instance)
            return None

        step_instance = StepInstance(
            workflow_instance_id=instance.id,
            step_definition_id=step.id,
            step_name=step.name,
            kind=step.kind,
            input_data=copy.deepcopy(instance.variables),
        )
        await self.steps.create(step_instance)
        instance.current_step_id = step.id
        await self.instances.update(instance)
        return await self._dispatch(instance, step, step_instance)

    def _executor_for(self, kind: StepKind) -> StepExecutor:
        for executor in self.executors:
            if executor.can_execute(kind):
                return executor
        raise ExecutorNotFound(kind.value)

    async def _dispatch(
        self, instance: WorkflowInstance, step: StepDefinition, step_instance: StepInstance
    ) -> Optional[str]:
        """Run the executor for ``step_instance`` and apply its result."""
        try:
            executor = self._executor_for(step.kind)
        except ExecutorNotFound:
            logger.error(f"No executor for step '{step.id}' of kind '{step.kind.value}'")
            raise

        step_instance.status = StepStatus.RUNNING
        step_instance.started_at = utcnow()
        await self.steps.update(step_instance)

        try:
            result = await executor.execute(step_instance, step, instance)
        except Exception as exc:
            logger.exception(f"Executor for step {step_instance.id} raised")
            result = StepExecutionResult.failed(str(exc) or type(exc).__name__)

        # A resume while the executor ran supersedes this step instance.
        stored = await self.steps.get_by_id(step_instance.id)
        if stored is None or stored.status != StepStatus.RUNNING:
            logger.info(f"Step {step_instance.id} was superseded; not advancing {instance.id}")
            return None

        # Another call may have cancelled or suspended the instance meanwhile.
        current = await self._load_instance(instance.id)
        current.variables.update(result.output_data)
        step_instance.status = result.status
        step_instance.output_data.update(result.output_data)
        step_instance.error_message = result.error_message
        if result.status in (StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED, StepStatus.TIMEOUT):
            step_instance.completed_at = utcnow()

        if current.status != WorkflowStatus.RUNNING:
            await self.steps.update(step_instance)
            await self.instances.update(current)
            return None

        if result.is_suspended:
            await self.steps.update(step_instance)
            current.status = WorkflowStatus.WAITING
            await self.instances.update(current)
            logger.info(
                f"Instance {current.id} waiting on step {step_instance.id} ({result.status.value})"
            )
            return None

        if result.success:
            return await self._finish_step(current, step, step_instance, result)

        await self.steps.update(step_instance)
        await self._fail(
            current, result.error_message or f"Step '{step.id}' failed ({result.status.value})"
        )
        return None

    async def _finish_step(
        self,
        instance: WorkflowInstance,
        step: Optional[StepDefinition],
        step_instance: StepInstance,
        result: StepExecutionResult,
    ) -> Optional[str]:
        """Resolve the transition after a successful step and persist both records.

        Completes the instance when there is nothing to go to.
        """
        next_step_id = None
        if step is not None:
            try:
                next_step_id = resolve_next_step(result, step, instance.variables, self.evaluator)
            except ExpressionError as exc:
                await self.steps.update(step_instance)
                await self._fail(instance, str(exc))
                return None
        step_instance.transition_taken = next_step_id
        await self.steps.update(step_instance)
        await self.instances.update(instance)
        if next_step_id is None:
            await self._complete(instance)
        return next_step_id

    async def _complete(self, instance: WorkflowInstance) -> None:
        instance.status = WorkflowStatus.COMPLETED
        instance.completed_at = utcnow()
        await self.instances.update(instance)
        logger.info(f"Workflow instance {instance.id} completed")
        self._notify_terminal(instance)

    async def _fail(self, instance: WorkflowInstance, message: str) -> None:
        instance.status = WorkflowStatus.FAILED
        instance.completed_at = utcnow()
        instance.error_message = message
        await self.instances.update(instance)
        logger.error(f"Workflow instance {instance.id} failed: {message}")
        self._notify_terminal(instance)

    def _notify_terminal(self, instance: WorkflowInstance) -> None:
        for future in self._waiters.pop(instance.id, []):
            if not future.done():
                future.set_result(instance.model_copy(deep=True))

    # ------------------------------------------------------------------
    # Helpers
    async def _load_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.instances.get_by_id(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    async def _load_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.definitions.get_by_id(definition_id)
        if definition is None:
            raise DefinitionNotFound(definition_id)
        return definition

    async def _load_parked_context(self, step_instance: StepInstance):
        """Return ``(instance, definition, step)`` for a due step, or ``None`` to skip it."""
        instance = await self.instances.get_by_id(step_instance.workflow_instance_id)
        if instance is None or not instance.is_active:
            return None
        definition = await self.definitions.get_by_id(instance.definition_id)
        step = definition.get_step(step_instance.step_definition_id) if definition else None
        if step is None:
            logger.warning(
                f"Step definition '{step_instance.step_definition_id}' for step "
                f"{step_instance.id} no longer exists; skipping"
            )
            return None
        return instance, definition, step

    async def _release_parked_steps(
        self, instance_id: str, reason: str, statuses=_PARKED_STEP_STATUSES
    ) -> None:
        """Mark parked steps skipped and cancel their external tasks."""
        for step_instance in await self.steps.get_by_workflow_instance_id(instance_id):
            if step_instance.status not in statuses:
                continue
            task_id = step_instance.output_data.get(EXTERNAL_TASK_ID_KEY)
            if (
                task_id
                and self.task_system is not None
                and step_instance.status == StepStatus.WAITING_FOR_INPUT
            ):
                try:
                    await self.task_system.cancel_task(str(task_id), reason)
                except Exception as exc:
                    logger.warning(f"Failed to cancel external task {task_id}: {exc}")
            step_instance.status = StepStatus.SKIPPED
            step_instance.due_at = None
            step_instance.completed_at = utcnow()
            step_instance.error_message = reason
            await self.steps.update(step_instance)
