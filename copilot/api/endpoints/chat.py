"""
Chat endpoint: one conversational turn per request.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from copilot.agent.orchestrator import Orchestrator, get_orchestrator
from copilot.api.deps import User, get_current_user
from copilot.core.logging import logger

router = APIRouter()


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    thread_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "message": "Schedule a meeting with sara@example.com next week",
            }
        }


class ToolCallSummary(BaseModel):
    tool_name: str
    tool_args: Optional[Any] = None
    tool_result: Optional[Dict[str, Any]] = None
    task_id: Optional[int] = None


class ChatResponse(BaseModel):
    response: str
    thread_id: str
    conversation_id: str
    message_id: int
    task_id: Optional[int] = None
    tool_calls: List[ToolCallSummary] = []
    budget_exhausted: bool = False


@router.post("/", response_model=ChatResponse)
async def process_chat(
    request: ChatRequest,
    user: User = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Process a chat message using the AI agent.
    """
    logger.info(f"Processing chat message from user {user.id}: {request.message[:50]}...")

    result = await orchestrator.process_message(user.id, request.message, request.thread_id)

    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to process message: {result.reason}",
        )

    return ChatResponse(
        response=result.message.content,
        thread_id=result.thread_id,
        conversation_id=f"thread:{result.thread_id}",
        message_id=result.message.id,
        task_id=result.task_id,
        tool_calls=[
            ToolCallSummary(
                tool_name=m.tool_name,
                tool_args=m.tool_args,
                tool_result=m.tool_result,
                task_id=m.task_id,
            )
            for m in result.tool_messages
        ],
        budget_exhausted=result.budget_exhausted,
    )
