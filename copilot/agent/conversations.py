"""
Conversation store.

Messages are the only stored records; conversations are derived views that
group them by thread, then by task, and otherwise leave them as singletons.
"""
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from copilot.core.errors import ConversationNotFound, InvalidConversationId
from copilot.core.logging import logger
from copilot.db.models import Conversation, ConversationScope, Message, MessageRole
from copilot.db.repository import MessageRepository


TITLE_MAX_LENGTH = 80
PREVIEW_MAX_LENGTH = 140
TOOL_PREVIEW_MAX_LENGTH = 120
DEFAULT_TITLE = "New conversation"

# Keys in tool payloads that name the people involved
PARTICIPANT_KEYS = ("email", "to", "attendees", "name", "contact_name", "from")

_WHITESPACE = re.compile(r"\s+")


def collapse(text: str, max_length: int) -> str:
    """Collapse whitespace and cut to `max_length`, ending in "..." when cut."""
    text = _WHITESPACE.sub(" ", text or "").strip()
    if len(text) <= max_length:
        return text
    return text[: max_length - 3].rstrip() + "..."


def conversation_id_for(message: Message) -> Tuple[ConversationScope, str]:
    if message.thread_id:
        return ConversationScope.THREAD, f"thread:{message.thread_id}"
    if message.task_id is not None:
        return ConversationScope.TASK, f"task:{message.task_id}"
    return ConversationScope.ORPHAN, f"message:{message.id}"


def parse_conversation_id(conversation_id: str) -> Tuple[ConversationScope, Any]:
    """Split `thread:<id>`, `task:<id>` or `message:<id>` into scope and key."""
    prefix, sep, value = (conversation_id or "").partition(":")
    if not sep or not value:
        raise InvalidConversationId(f"Invalid conversation id: {conversation_id!r}")

    if prefix == "thread":
        return ConversationScope.THREAD, value
    if prefix in ("task", "message"):
        try:
            number = int(value)
        except ValueError:
            raise InvalidConversationId(f"Invalid conversation id: {conversation_id!r}")
        scope = ConversationScope.TASK if prefix == "task" else ConversationScope.ORPHAN
        return scope, number

    raise InvalidConversationId(f"Invalid conversation id: {conversation_id!r}")


def preview_for(message: Message) -> str:
    if message.role == MessageRole.TOOL:
        result = message.tool_result or {}
        text = result.get("summary") or result.get("status") or f"{message.tool_name} completed"
        return collapse(str(text), TOOL_PREVIEW_MAX_LENGTH)
    return collapse(message.content or "", PREVIEW_MAX_LENGTH)


def _participants_in(payload: Any, found: "OrderedDict[str, None]") -> None:
    if not isinstance(payload, dict):
        return
    for key in PARTICIPANT_KEYS:
        value = payload.get(key)
        values = value if isinstance(value, list) else [value]
        for item in values:
            if isinstance(item, str) and item.strip():
                found.setdefault(item.strip(), None)
    for nested in ("contact", "event"):
        if isinstance(payload.get(nested), dict):
            _participants_in(payload[nested], found)


def summarize(conversation_id: str, scope: ConversationScope, messages: List[Message]) -> Conversation:
    """Build the Conversation view of an ordered, non-empty message group."""
    first_user = next((m for m in messages if m.role == MessageRole.USER and m.content), None)
    last = messages[-1]

    if first_user is not None:
        title = collapse(first_user.content, TITLE_MAX_LENGTH)
    elif scope == ConversationScope.TASK:
        title = f"Task #{messages[0].task_id}"
    else:
        title = collapse(preview_for(messages[0]), TITLE_MAX_LENGTH) or DEFAULT_TITLE

    participants: "OrderedDict[str, None]" = OrderedDict()
    for message in messages:
        if message.role == MessageRole.TOOL:
            _participants_in(message.tool_args, participants)
            _participants_in(message.tool_result, participants)

    return Conversation(
        id=conversation_id,
        scope=scope,
        thread_id=messages[0].thread_id if scope == ConversationScope.THREAD else None,
        task_id=next((m.task_id for m in messages if m.task_id is not None), None),
        title=title,
        preview=preview_for(last),
        last_message_at=last.created_at,
        last_role=last.role,
        messages_count=len(messages),
        participants=list(participants),
    )


def group_messages(messages: Iterable[Message]) -> "OrderedDict[str, Tuple[ConversationScope, List[Message]]]":
    """Group messages (already in ascending order) into conversations."""
    groups: "OrderedDict[str, Tuple[ConversationScope, List[Message]]]" = OrderedDict()
    for message in messages:
        scope, conversation_id = conversation_id_for(message)
        groups.setdefault(conversation_id, (scope, []))[1].append(message)
    return groups


class ConversationStore:
    """Append-only message log with derived conversation views."""

    def __init__(self, messages: MessageRepository, page_size: int = 30):
        self.messages = messages
        self.page_size = page_size

    async def append(self, message: Message) -> Message:
        return await self.messages.insert(message)

    async def list_conversations(
        self, user_id: str, limit: Optional[int] = None, before: Optional[datetime] = None
    ) -> List[Conversation]:
        """
        List the user's conversations, most recently active first.

        Args:
            user_id: Owner of the conversations
            limit: Page size (defaults to the store's page size)
            before: Only conversations whose last message is older than this

        Returns:
            Conversation summaries ordered by (last_message_at, id) descending
        """
        limit = limit or self.page_size
        groups = group_messages(await self.messages.list_for_user(user_id))

        ranked = []
        for conversation_id, (scope, group) in groups.items():
            if before is not None and group[-1].created_at >= before:
                continue
            ranked.append((group[-1].created_at, group[-1].id, conversation_id, scope, group))

        ranked.sort(key=lambda r: (r[0], r[1]), reverse=True)
        return [summarize(cid, scope, group) for _, _, cid, scope, group in ranked[:limit]]

    async def _load(self, user_id: str, conversation_id: str, limit: Optional[int]) -> Tuple[ConversationScope, List[Message]]:
        scope, key = parse_conversation_id(conversation_id)

        if scope == ConversationScope.THREAD:
            rows = await self.messages.list_by_thread(user_id, key, limit=limit, latest=True)
        elif scope == ConversationScope.TASK:
            rows = [m for m in await self.messages.list_by_task(user_id, key) if not m.thread_id]
            if limit is not None:
                rows = rows[-limit:]
        else:
            message = await self.messages.get(user_id, key)
            rows = [message] if message and not message.thread_id and message.task_id is None else []

        if not rows:
            logger.info(f"Conversation {conversation_id} not found for user {user_id}")
            raise ConversationNotFound(conversation_id)
        return scope, rows

    async def messages_for(self, user_id: str, conversation_id: str, limit: Optional[int] = 50) -> List[Message]:
        """Messages of one conversation in ascending (created_at, id) order."""
        _, rows = await self._load(user_id, conversation_id, limit)
        return rows

    async def get_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        scope, rows = await self._load(user_id, conversation_id, None)
        return summarize(conversation_id, scope, rows)

    async def recent_thread_messages(self, user_id: str, thread_id: str, limit: int) -> List[Message]:
        return await self.messages.list_by_thread(user_id, thread_id, limit=limit, latest=True)
