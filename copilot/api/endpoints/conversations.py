"""
Conversation endpoints: derived views over the message log.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from copilot.agent.conversations import ConversationStore
from copilot.api.deps import User, get_conversation_store, get_current_user
from copilot.core.errors import ConversationNotFound, InvalidConversationId
from copilot.db.models import Conversation, Message

router = APIRouter()


class ConversationListResponse(BaseModel):
    conversations: List[Conversation]
    # Pass as `before` to fetch the next page
    next_before: Optional[datetime] = None


class MessageListResponse(BaseModel):
    conversation_id: str
    messages: List[Message]


@router.get("/", response_model=ConversationListResponse)
async def list_conversations(
    limit: Optional[int] = Query(None, ge=1, le=100),
    before: Optional[datetime] = None,
    user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    """List the user's conversations, most recent first."""
    conversations = await store.list_conversations(user.id, limit=limit, before=before)
    page_size = limit or store.page_size
    next_before = conversations[-1].last_message_at if len(conversations) == page_size else None
    return ConversationListResponse(
        conversations=conversations,
        next_before=next_before,
    )


@router.get("/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    try:
        conversation = await store.get_conversation(user.id, conversation_id)
    except InvalidConversationId as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ConversationNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def get_conversation_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Messages of one conversation, oldest first."""
    try:
        messages = await store.messages_for(user.id, conversation_id, limit=limit)
    except InvalidConversationId as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ConversationNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return MessageListResponse(conversation_id=conversation_id, messages=messages)
