"""
Tool-related endpoints for the Advisor Copilot API.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from copilot.api.deps import User, get_current_user
from copilot.tools.registry import available_tools, schema_for

router = APIRouter()


class ToolDescription(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any]
    workflows: List[str] = []


class ToolListResponse(BaseModel):
    tools: List[ToolDescription]


def _describe(schema) -> ToolDescription:
    return ToolDescription(**schema.to_function(), workflows=list(schema.workflows))


@router.get("/", response_model=ToolListResponse)
async def list_tools(user: User = Depends(get_current_user)):
    """List the tools the assistant can call."""
    return ToolListResponse(tools=[_describe(s) for s in available_tools()])


@router.get("/{tool_name}", response_model=ToolDescription)
async def get_tool(tool_name: str, user: User = Depends(get_current_user)):
    schema = schema_for(tool_name)
    if schema is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown tool: {tool_name}")
    return _describe(schema)
