"""
LLM service: adapts a LangChain chat model to the orchestrator's
language-model contract.
"""
import json
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, List

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from copilot.agent.schemas import FinalAnswer, ModelContext, ModelReply, ToolCallRequest
from copilot.core.config import settings
from copilot.core.errors import LanguageModelError
from copilot.core.logging import logger
from copilot.db.models import Message, MessageRole
from copilot.tools.registry import ToolSchema


class LanguageModel(ABC):
    """Decides the next action of a turn: a final answer or one tool call."""

    @abstractmethod
    async def complete(self, context: ModelContext, tools: List[ToolSchema]) -> ModelReply:
        """Raise LanguageModelError when no reply can be produced."""


@lru_cache()
def get_llm() -> BaseChatModel:
    """
    Create and return a Google Gemini chat model.
    Uses lru_cache to ensure only one client is created.
    """
    logger.info("Creating Google Gemini LLM client")
    return ChatGoogleGenerativeAI(
        model=settings.LLM_MODEL,
        google_api_key=settings.GOOGLE_API_KEY,
        temperature=settings.LLM_TEMPERATURE,
        top_p=0.95,
        top_k=40,
        max_output_tokens=2048,
    )


def _render_history_message(message: Message) -> BaseMessage:
    if message.role == MessageRole.USER:
        return HumanMessage(content=message.content)
    if message.role == MessageRole.TOOL:
        payload = json.dumps(message.tool_result, default=str)
        return AIMessage(content=f"[{message.tool_name}] {payload}")
    # Assistant replies and system notes both read as assistant turns
    return AIMessage(content=message.content or "")


def to_langchain_messages(context: ModelContext) -> List[BaseMessage]:
    """Render a ModelContext as a LangChain message list."""
    messages: List[BaseMessage] = [SystemMessage(content=context.system_prompt)]
    messages.extend(_render_history_message(m) for m in context.history)

    for index, exchange in enumerate(context.exchanges):
        call_id = exchange.call.call_id or f"call_{index}"
        args = exchange.call.args if isinstance(exchange.call.args, dict) else {}
        messages.append(AIMessage(
            content="",
            tool_calls=[{"name": exchange.call.name, "args": args, "id": call_id}],
        ))
        messages.append(ToolMessage(content=json.dumps(exchange.result, default=str), tool_call_id=call_id))

    return messages


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class LangChainLanguageModel(LanguageModel):
    """Language model backed by a LangChain chat model with tool binding."""

    def __init__(self, chat_model: BaseChatModel = None):
        self._chat_model = chat_model

    @property
    def chat_model(self) -> BaseChatModel:
        return self._chat_model or get_llm()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((httpx.TransportError, ConnectionError, TimeoutError)),
        reraise=True,
    )
    async def _invoke(self, model, messages: List[BaseMessage]) -> AIMessage:
        return await model.ainvoke(messages)

    async def complete(self, context: ModelContext, tools: List[ToolSchema]) -> ModelReply:
        model = self.chat_model
        if tools:
            model = model.bind_tools([tool.to_function() for tool in tools])

        try:
            response = await self._invoke(model, to_langchain_messages(context))
        except Exception as e:
            logger.exception(f"Error calling language model: {e}")
            raise LanguageModelError(str(e) or type(e).__name__) from e

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            if len(tool_calls) > 1:
                logger.info(f"Model proposed {len(tool_calls)} tool calls; executing the first")
            call = tool_calls[0]
            return ToolCallRequest(name=call["name"], args=call.get("args") or {}, call_id=call.get("id"))

        return FinalAnswer(content=_text_of(response.content))
