import pytest
from unittest.mock import patch, MagicMock, AsyncMock

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from copilot.agent.schemas import FinalAnswer, ModelContext, ToolCallRequest, ToolExchange
from copilot.core.errors import LanguageModelError
from copilot.db.models import Message, MessageRole
from copilot.services.llm import LangChainLanguageModel, get_llm, to_langchain_messages
from copilot.tools.registry import available_tools


@pytest.fixture
def mock_chat_google_generative_ai():
    """Mock for ChatGoogleGenerativeAI."""
    get_llm.cache_clear()
    with patch("copilot.services.llm.ChatGoogleGenerativeAI") as mock:
        mock_instance = MagicMock()
        mock.return_value = mock_instance
        yield mock
    get_llm.cache_clear()


def fake_chat_model(response=None, error=None):
    """A chat model whose bound copy returns `response` (or raises `error`)."""
    bound = MagicMock()
    bound.ainvoke = AsyncMock(return_value=response, side_effect=error)
    chat_model = MagicMock()
    chat_model.bind_tools.return_value = bound
    return chat_model, bound


def test_get_llm(mock_chat_google_generative_ai):
    """Test getting LLM client."""
    # Call the function
    llm = get_llm()

    # Verify the ChatGoogleGenerativeAI was created with correct parameters
    mock_chat_google_generative_ai.assert_called_once()
    call_kwargs = mock_chat_google_generative_ai.call_args.kwargs

    assert call_kwargs["model"] == "gemini-1.5-flash"
    assert "google_api_key" in call_kwargs
    assert call_kwargs["temperature"] == 0.2

    # Verify we got back the mock instance
    assert llm == mock_chat_google_generative_ai.return_value


def test_context_is_rendered_as_langchain_messages():
    context = ModelContext(
        system_prompt="You are helpful.",
        history=[
            Message(user_id="u", role=MessageRole.USER, content="Email Ann"),
            Message(
                user_id="u",
                role=MessageRole.TOOL,
                tool_name="search_rag",
                tool_args={"query": "Ann"},
                tool_result={"count": 0},
            ),
            Message(user_id="u", role=MessageRole.ASSISTANT, content="On it."),
        ],
        exchanges=[
            ToolExchange(
                call=ToolCallRequest(name="search_rag", args={"query": "Ann"}),
                result={"count": 1},
            )
        ],
    )

    messages = to_langchain_messages(context)

    assert [type(m) for m in messages] == [
        SystemMessage, HumanMessage, AIMessage, AIMessage, AIMessage, ToolMessage,
    ]
    assert messages[2].content == '[search_rag] {"count": 0}'
    assert messages[4].tool_calls[0]["name"] == "search_rag"
    assert messages[4].tool_calls[0]["id"] == "call_0"
    assert messages[5].tool_call_id == "call_0"
    assert messages[5].content == '{"count": 1}'


@pytest.mark.asyncio
async def test_tool_call_response_becomes_a_request():
    response = AIMessage(
        content="",
        tool_calls=[
            {"name": "search_rag", "args": {"query": "Ann"}, "id": "c-1"},
            {"name": "hubspot_add_note", "args": {"contact_id": 1, "text": "x"}, "id": "c-2"},
        ],
    )
    chat_model, bound = fake_chat_model(response)

    reply = await LangChainLanguageModel(chat_model).complete(ModelContext(system_prompt="s"), available_tools())

    assert reply == ToolCallRequest(name="search_rag", args={"query": "Ann"}, call_id="c-1")
    declared = chat_model.bind_tools.call_args.args[0]
    assert {d["name"] for d in declared} == {t.name for t in available_tools()}
    bound.ainvoke.assert_awaited_once()


@pytest.mark.asyncio
async def test_text_response_becomes_a_final_answer():
    chat_model, _ = fake_chat_model(AIMessage(content="All set."))

    reply = await LangChainLanguageModel(chat_model).complete(ModelContext(system_prompt="s"), available_tools())

    assert reply == FinalAnswer(content="All set.")


@pytest.mark.asyncio
async def test_model_errors_are_wrapped():
    chat_model, _ = fake_chat_model(error=ValueError("quota exceeded"))

    with pytest.raises(LanguageModelError):
        await LangChainLanguageModel(chat_model).complete(ModelContext(system_prompt="s"), available_tools())
