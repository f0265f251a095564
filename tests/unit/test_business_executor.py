from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from procflow.contracts import StepDefinition, StepKind, StepStatus
from procflow.executors import BusinessStepExecutor
from procflow.executors.business import map_outputs
from procflow.persistence.models import StepInstance, WorkflowInstance
from procflow.services import ServiceRegistry

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class Receipt(BaseModel):
    receipt_id: str
    total: float


class Payments:
    def charge(self, amount, currency="EUR"):
        return {"success": True, "receipt": {"id": "R-1", "amount": amount}, "currency": currency}

    def invoice(self, amount):
        return Receipt(receipt_id="INV-9", total=amount)

    def decline(self, amount):
        raise RuntimeError("card declined")


@pytest.fixture
def executor():
    registry = ServiceRegistry()
    registry.register("payments", Payments())
    return BusinessStepExecutor(registry, default_retry_delay=30, clock=lambda: NOW)


def _context(configuration, variables=None, retry_count=0):
    step = StepDefinition.model_validate(
        {"id": "pay", "type": "business", "configuration": configuration}
    )
    instance = WorkflowInstance(id="wf-1", definition_id="d", variables=variables or {})
    step_instance = StepInstance(
        id="si-1",
        workflow_instance_id="wf-1",
        step_definition_id="pay",
        kind=StepKind.BUSINESS,
        retry_count=retry_count,
    )
    return step_instance, step, instance


@pytest.mark.asyncio
async def test_invokes_service_with_bound_inputs_and_maps_outputs(executor):
    step_instance, step, instance = _context(
        {
            "serviceName": "payments",
            "methodName": "charge",
            "inputMapping": {"amount": "$orderTotal", "currency": "USD"},
            "outputMapping": {"success": "paid", "receipt.id": "receiptId", "missing": "nope"},
        },
        {"orderTotal": 99},
    )

    result = await executor.execute(step_instance, step, instance)

    assert result.status == StepStatus.COMPLETED
    assert result.output_data == {"paid": True, "receiptId": "R-1"}


@pytest.mark.asyncio
async def test_maps_fields_from_model_results(executor):
    step_instance, step, instance = _context(
        {
            "serviceName": "payments",
            "methodName": "invoice",
            "inputMapping": {"amount": "$total"},
            "outputMapping": {"receipt_id": "invoiceId", "receiptId": "alias", "total": "invoiced"},
        },
        {"total": 12.5},
    )

    result = await executor.execute(step_instance, step, instance)

    assert result.output_data == {"invoiceId": "INV-9", "invoiced": 12.5}


@pytest.mark.asyncio
async def test_failure_schedules_retry_with_backoff(executor):
    configuration = {
        "serviceName": "payments",
        "methodName": "decline",
        "inputMapping": {"amount": 5},
        "retryCount": 3,
        "retryDelaySeconds": 10,
        "retryBackoffMultiplier": 2,
    }
    step_instance, step, instance = _context(configuration)

    result = await executor.execute(step_instance, step, instance)

    assert result.status == StepStatus.PENDING
    assert result.is_suspended
    assert result.error_message == "card declined"
    assert step_instance.retry_count == 1
    assert step_instance.due_at == NOW + timedelta(seconds=10)

    await executor.execute(step_instance, step, instance)
    assert step_instance.retry_count == 2
    assert step_instance.due_at == NOW + timedelta(seconds=20)


@pytest.mark.asyncio
async def test_retry_uses_default_delay(executor):
    step_instance, step, instance = _context(
        {"serviceName": "payments", "methodName": "decline", "inputMapping": {"amount": 1}, "retryCount": 1}
    )

    await executor.execute(step_instance, step, instance)

    assert step_instance.due_at == NOW + timedelta(seconds=30)


@pytest.mark.asyncio
async def test_exhausted_retries_route_to_error_step(executor):
    step_instance, step, instance = _context(
        {
            "serviceName": "payments",
            "methodName": "decline",
            "inputMapping": {"amount": 1},
            "retryCount": 1,
            "errorNextStepId": "manual-review",
        },
        retry_count=1,
    )

    result = await executor.execute(step_instance, step, instance)

    assert result.success
    assert result.next_step_id == "manual-review"
    assert result.error_message == "card declined"


@pytest.mark.asyncio
async def test_failure_without_retry_or_route_fails(executor):
    step_instance, step, instance = _context(
        {"serviceName": "payments", "methodName": "decline"}
    )

    result = await executor.execute(step_instance, step, instance)

    assert result.status == StepStatus.FAILED
    assert "Missing required parameter 'amount'" in result.error_message


def test_map_outputs_ignores_empty_results():
    assert map_outputs(None, {"a": "b"}) == {}
    assert map_outputs({"a": 1}, {}) == {}
