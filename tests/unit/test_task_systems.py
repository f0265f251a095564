import json
from datetime import datetime, timezone

import httpx
import pytest

from procflow.tasks import ExternalTaskInfo, InMemoryTaskSystem
from procflow.tasks.http import HttpTaskSystem


def _info(**kwargs):
    data = {
        "workflow_instance_id": "wf-1",
        "step_instance_id": "si-1",
        "title": "Manager review",
        "assigned_users": ["alice"],
    }
    data.update(kwargs)
    return ExternalTaskInfo(**data)


@pytest.mark.asyncio
async def test_inmemory_task_lifecycle():
    tasks = InMemoryTaskSystem()

    first = await tasks.create_task(_info())
    second = await tasks.create_task(_info(step_instance_id="si-2"))
    assert first.startswith("TASK-") and first != second

    await tasks.update_task(first, {"priority": "urgent"})
    assert tasks.tasks[first].priority == "urgent"

    await tasks.close_task(first, {"approved": True})
    await tasks.cancel_task(second, "workflow cancelled")

    assert tasks.tasks == {}
    assert tasks.closed == {first: {"approved": True}}
    assert tasks.cancelled == {second: "workflow cancelled"}


class Recorder:
    def __init__(self, status_code=200):
        self.requests = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(self.status_code, json={"taskId": 42})
        return httpx.Response(self.status_code)


@pytest.mark.asyncio
async def test_http_task_system_calls_rest_endpoints():
    recorder = Recorder()
    tasks = HttpTaskSystem(
        "https://tasks.example.com/", api_key="secret", transport=httpx.MockTransport(recorder)
    )
    due = datetime(2024, 6, 1, 13, 0, tzinfo=timezone.utc)

    task_id = await tasks.create_task(_info(priority=None, due_date=due, metadata={"stepId": "review"}))
    await tasks.update_task(task_id, {"priority": "high"})
    await tasks.close_task(task_id, {"approved": True})
    await tasks.cancel_task(task_id, "obsolete")
    await tasks.aclose()

    assert task_id == "42"
    calls = [(r.method, r.url.path) for r in recorder.requests]
    assert calls == [
        ("POST", "/api/tasks"),
        ("PATCH", "/api/tasks/42"),
        ("PUT", "/api/tasks/42/close"),
        ("PUT", "/api/tasks/42/cancel"),
    ]
    assert all(r.headers["Authorization"] == "Bearer secret" for r in recorder.requests)

    created = json.loads(recorder.requests[0].content)
    assert created["title"] == "Manager review"
    assert created["priority"] == "normal"
    assert created["dueDate"] == due.isoformat()
    assert created["assignedUsers"] == ["alice"]
    assert created["metadata"]["stepInstanceId"] == "si-1"
    assert created["metadata"]["stepId"] == "review"

    closed = json.loads(recorder.requests[2].content)
    assert closed["status"] == "completed"
    assert closed["completionData"] == {"approved": True}
    cancelled = json.loads(recorder.requests[3].content)
    assert cancelled["reason"] == "obsolete"


@pytest.mark.asyncio
async def test_http_task_system_raises_on_error_status():
    tasks = HttpTaskSystem("https://tasks.example.com", transport=httpx.MockTransport(Recorder(500)))

    with pytest.raises(httpx.HTTPStatusError):
        await tasks.create_task(_info())
    await tasks.aclose()
