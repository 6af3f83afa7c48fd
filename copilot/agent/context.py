"""
Context assembly for one conversational turn.
"""
import re
from typing import List, Optional

from copilot.agent.conversations import ConversationStore
from copilot.agent.schemas import ModelContext
from copilot.core.config import TurnPolicy
from copilot.core.logging import logger
from copilot.db.models import Instruction, Task, TaskStatus
from copilot.db.repository import InstructionRepository, TaskRepository
from copilot.services.retrieval import Retriever, Snippet
from copilot.tools.rag_tools import build_filters


BASE_SYSTEM_PROMPT = """You are an AI agent for financial advisors. You can read/write Gmail, manage Google Calendar, and work with HubSpot contacts and notes.

Your capabilities include:
- Searching emails, calendar events and contacts
- Sending emails with proper threading
- Proposing meeting times and creating calendar events
- Finding and creating contacts in HubSpot and adding notes to them
- Managing multi-step workflows

Guidelines:
- Ask for clarification only when necessary
- Keep responses concise and actionable
- Cite sources when using information from search results
- Use tools to accomplish tasks rather than describing what you would do
- When a tool reports invalid arguments, fix them and call the tool again"""

# Checked in order; first match wins
SEARCH_TYPE_KEYWORDS = [
    ("scheduling", ("schedule", "meeting", "appointment", "calendar")),
    ("person", ("contact", "person", "who", "email")),
    ("temporal", ("when", "date", "time", "yesterday", "today", "tomorrow")),
    ("contact", ("note", "information", "details")),
]

SNIPPET_PREVIEW_LENGTH = 300


def infer_search_type(text: str) -> str:
    """Guess the retrieval search type from the user's message."""
    lowered = (text or "").lower()
    for search_type, keywords in SEARCH_TYPE_KEYWORDS:
        if any(re.search(rf"\b{keyword}\b", lowered) for keyword in keywords):
            return search_type
    return "general"


def render_instructions(instructions: List[Instruction]) -> str:
    return "\n".join(f"- {i.title}: {i.content}" for i in instructions)


def render_tasks(tasks: List[Task]) -> str:
    lines = []
    for task in tasks:
        line = f"- Task #{task.id} ({task.kind}) is {task.status.value}"
        if task.status == TaskStatus.WAITING and task.state.get("next_wait"):
            line += f", waiting for {task.state['next_wait']}"
        lines.append(line)
    return "\n".join(lines)


def render_snippets(snippets: List[Snippet]) -> str:
    return "\n".join(
        f"[{s.source}:{s.source_id}] {s.text[:SNIPPET_PREVIEW_LENGTH]}" for s in snippets
    )


def build_system_prompt(
    instructions: List[Instruction],
    active_tasks: List[Task],
    snippets: List[Snippet],
) -> str:
    sections = [BASE_SYSTEM_PROMPT]
    if instructions:
        sections.append("Additional Instructions:\n" + render_instructions(instructions))
    if active_tasks:
        sections.append("Active Tasks:\n" + render_tasks(active_tasks))
    if snippets:
        sections.append("Relevant Information:\n" + render_snippets(snippets))
    return "\n\n".join(sections)


class ContextBuilder:
    """Gathers history, instructions, active tasks and retrieved facts for a turn."""

    def __init__(
        self,
        conversations: ConversationStore,
        instructions: InstructionRepository,
        tasks: TaskRepository,
        retriever: Optional[Retriever] = None,
        policy: Optional[TurnPolicy] = None,
    ):
        self.conversations = conversations
        self.instructions = instructions
        self.tasks = tasks
        self.retriever = retriever
        self.policy = policy or TurnPolicy()

    async def _retrieve(self, user_id: str, text: str) -> List[Snippet]:
        if not (self.policy.rag_enabled and self.retriever and text.strip()):
            return []

        search_type = infer_search_type(text)
        filters = build_filters({"search_type": search_type, "max_results": self.policy.rag_max_results})
        try:
            return await self.retriever.search(user_id, text, filters)
        except Exception as e:
            # Retrieval only enriches the prompt; a failure must not fail the turn
            logger.exception(f"RAG context search failed: {e}")
            return []

    async def build(self, user_id: str, thread_id: str, text: str) -> ModelContext:
        history = await self.conversations.recent_thread_messages(
            user_id, thread_id, self.policy.context_window
        )
        instructions = await self.instructions.list_for_user(user_id, enabled_only=True)
        active_tasks = await self.tasks.list_for_user(
            user_id, statuses=[TaskStatus.RUNNING, TaskStatus.WAITING], limit=10
        )
        snippets = await self._retrieve(user_id, text)

        logger.debug(
            f"Context for thread {thread_id}: {len(history)} messages, {len(instructions)} instructions, "
            f"{len(active_tasks)} active tasks, {len(snippets)} snippets"
        )

        return ModelContext(
            system_prompt=build_system_prompt(instructions, active_tasks, snippets),
            history=history,
            snippets=snippets,
        )
