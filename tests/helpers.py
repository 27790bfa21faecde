"""Mock builders and assertions shared by the test modules."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage, ToolMessage


def make_mock_llm(*responses):
    """Mock chat model whose ``ainvoke`` returns/raises ``responses`` in order.

    A single non-exception response is returned on every call.
    """
    llm = MagicMock()
    if len(responses) == 1 and not isinstance(responses[0], BaseException):
        llm.ainvoke = AsyncMock(return_value=responses[0])
    else:
        llm.ainvoke = AsyncMock(side_effect=list(responses))
    return llm


def tool_call_message(*calls: tuple[str, dict, str], content: str = "") -> AIMessage:
    """AIMessage proposing ``(name, args, id)`` tool calls."""
    return AIMessage(
        content=content,
        tool_calls=[{"name": n, "args": a, "id": i} for n, a, i in calls],
    )


def assert_tool_calls_answered(messages) -> None:
    """Every tool call in the log has exactly one matching tool result."""
    call_ids = [
        tc["id"]
        for m in messages
        if isinstance(m, AIMessage)
        for tc in m.tool_calls
    ]
    result_ids = [m.tool_call_id for m in messages if isinstance(m, ToolMessage)]
    assert sorted(call_ids) == sorted(result_ids)
