"""
Webhook endpoints for external triggers (email replies, calendar pushes, CRM events).

Deliveries are idempotent through the correlation key: a redelivered event
returns the task created by the first delivery instead of starting another.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from copilot.agent.engine import TaskEngine
from copilot.api.deps import get_engine
from copilot.api.endpoints.tasks import TaskResponse
from copilot.core.errors import TaskBusy, TaskNotFound, TaskNotResumable
from copilot.core.logging import logger
from copilot.db.models import Task, TaskStatus

router = APIRouter()


class TaskTriggerRequest(BaseModel):
    user_id: str
    kind: str
    input: Dict[str, Any] = {}
    correlation_key: str = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "7d9f0c7e-8d0a-4c1e-9d59-1f6f0b1b9c11",
                "kind": "send_email",
                "input": {"to": ["sara@example.com"], "subject": "Follow up", "body": "<p>Hi Sara</p>"},
                "correlation_key": "evt-42",
            }
        }


class TaskResumeRequest(BaseModel):
    user_id: str
    task_id: Optional[int] = None
    correlation_key: Optional[str] = None
    event: Dict[str, Any]

    @model_validator(mode="after")
    def check_target(self) -> "TaskResumeRequest":
        if self.task_id is None and not self.correlation_key:
            raise ValueError("task_id or correlation_key is required")
        if not self.event.get("type"):
            raise ValueError("event.type is required")
        return self


class TaskTriggerResponse(BaseModel):
    created: bool
    task: TaskResponse


async def _run(engine: TaskEngine, task: Task) -> Task:
    """Advance an engine-driven task; a step already in flight is left alone."""
    try:
        return await engine.run(task.id)
    except TaskBusy:
        logger.info(f"Task {task.id} is already running; not starting it again")
        return await engine.get_task(task.id)


@router.post("/tasks", response_model=TaskTriggerResponse)
async def trigger_task(request: TaskTriggerRequest, engine: TaskEngine = Depends(get_engine)):
    """Create (or find) the task for an external event and run it."""
    logger.info(f"Webhook for {request.kind} with correlation key {request.correlation_key}")
    try:
        task, created = await engine.create_task(
            request.user_id, request.kind, request.input, request.correlation_key
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    task = await _run(engine, task)
    return TaskTriggerResponse(created=created, task=TaskResponse.from_task(task))


@router.post("/tasks/resume", response_model=TaskResponse)
async def resume_task(request: TaskResumeRequest, engine: TaskEngine = Depends(get_engine)):
    """Deliver the event a waiting task is paused on."""
    try:
        if request.task_id is not None:
            await engine.get_task(request.task_id, request.user_id)
            task = await engine.resume(request.task_id, request.event)
        else:
            task = await engine.resume_by_key(request.user_id, request.correlation_key, request.event)
    except TaskNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    except (TaskNotResumable, TaskBusy) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if task.status == TaskStatus.RUNNING:
        task = await _run(engine, task)
    return TaskResponse.from_task(task)
