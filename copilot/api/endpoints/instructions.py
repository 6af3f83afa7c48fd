"""
Standing instruction endpoints.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from copilot.api.deps import User, get_current_user, get_instruction_repository
from copilot.core.logging import logger
from copilot.db.models import Instruction
from copilot.db.repository import InstructionRepository

router = APIRouter()


class InstructionCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    enabled: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Meeting length",
                "content": "Default to 30 minute meetings unless asked otherwise",
            }
        }


class InstructionUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    enabled: Optional[bool] = None


class InstructionListResponse(BaseModel):
    instructions: List[Instruction]


@router.get("/", response_model=InstructionListResponse)
async def list_instructions(
    enabled_only: bool = False,
    user: User = Depends(get_current_user),
    instructions: InstructionRepository = Depends(get_instruction_repository),
):
    rows = await instructions.list_for_user(user.id, enabled_only=enabled_only)
    return InstructionListResponse(instructions=rows)


@router.post("/", response_model=Instruction, status_code=status.HTTP_201_CREATED)
async def create_instruction(
    request: InstructionCreateRequest,
    user: User = Depends(get_current_user),
    instructions: InstructionRepository = Depends(get_instruction_repository),
):
    logger.info(f"Creating instruction '{request.title}' for user {user.id}")
    return await instructions.insert(Instruction(user_id=user.id, **request.model_dump()))


@router.patch("/{instruction_id}", response_model=Instruction)
async def update_instruction(
    instruction_id: int,
    request: InstructionUpdateRequest,
    user: User = Depends(get_current_user),
    instructions: InstructionRepository = Depends(get_instruction_repository),
):
    """Edit or toggle an instruction."""
    instruction = await instructions.get(user.id, instruction_id)
    if instruction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Instruction not found")

    updated = instruction.model_copy(update=request.model_dump(exclude_unset=True, exclude_none=True))
    logger.info(f"Updating instruction {instruction_id} for user {user.id}")
    return await instructions.update(updated)
