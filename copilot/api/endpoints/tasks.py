"""
Task endpoints for the Advisor Copilot API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from copilot.agent.engine import TaskEngine
from copilot.agent.orchestrator import Orchestrator, get_orchestrator
from copilot.api.deps import User, get_current_user, get_engine
from copilot.core.errors import InvalidTaskTransition, TaskNotFound
from copilot.core.logging import logger
from copilot.db.models import Task, TaskError, TaskStatus

router = APIRouter()


class TaskResponse(BaseModel):
    """Task response model."""
    task_id: int
    kind: str
    status: TaskStatus
    input: Dict[str, Any] = {}
    state: Dict[str, Any] = {}
    result: Optional[Dict[str, Any]] = None
    error: Optional[TaskError] = None
    correlation_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            task_id=task.id,
            kind=task.kind,
            status=task.status,
            input=task.input,
            state=task.state,
            result=task.result,
            error=task.error,
            correlation_key=task.correlation_key,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskListResponse(BaseModel):
    """Task list response model."""
    tasks: List[TaskResponse]


@router.get("/", response_model=TaskListResponse)
async def list_user_tasks(
    limit: int = 50,
    user: User = Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    """List recent tasks for a user."""
    logger.info(f"Listing tasks for user {user.id}")
    tasks_list = await engine.list_tasks(user.id, limit=limit)
    return TaskListResponse(tasks=[TaskResponse.from_task(t) for t in tasks_list])


@router.get("/by-status/{task_status}", response_model=TaskListResponse)
async def get_tasks_by_status(
    task_status: str,
    limit: int = 50,
    user: User = Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    """Get tasks by status."""
    logger.info(f"Fetching tasks for user {user.id} with status: {task_status}")

    try:
        wanted = TaskStatus(task_status)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status value: {task_status}",
        )

    tasks_list = await engine.list_tasks(user.id, status=[wanted], limit=limit)
    return TaskListResponse(tasks=[TaskResponse.from_task(t) for t in tasks_list])


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task_status(
    task_id: int,
    user: User = Depends(get_current_user),
    engine: TaskEngine = Depends(get_engine),
):
    """Get the status of a task."""
    try:
        task = await engine.get_task(task_id, user.id)
    except TaskNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return TaskResponse.from_task(task)


@router.post("/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: int,
    user: User = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Cancel a queued, running or waiting task."""
    logger.info(f"Cancelling task {task_id} for user {user.id}")
    try:
        task = await orchestrator.cancel_task(user.id, task_id)
    except TaskNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    except InvalidTaskTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TaskResponse.from_task(task)
