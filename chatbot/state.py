"""Graph state: the conversation log plus the per-turn fields.

``messages`` is the append-only conversation log.  Its reducer is plain
concatenation: unlike LangGraph's ``add_messages`` it never replaces a
message that happens to share an id, and never reorders anything.

Every other field is a scalar channel — a node that returns the key
replaces the value, a node that omits it leaves it unchanged.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from langchain_core.messages import AIMessage, AnyMessage, BaseMessage, ToolCall, ToolMessage
from typing_extensions import TypedDict


class Intent(StrEnum):
    """Coarse purpose of a user message.

    ``UNKNOWN`` only exists as the value before classification runs; the
    classifier never produces it.
    """

    GREETING = "greeting"
    FAREWELL = "farewell"
    QUESTION = "question"
    UNKNOWN = "unknown"


def append_messages(
    left: list[AnyMessage], right: list[AnyMessage] | AnyMessage,
) -> list[AnyMessage]:
    """Reducer for the conversation log: concatenate, nothing else."""
    if isinstance(right, BaseMessage):
        right = [right]
    return list(left) + list(right)


class TurnState(TypedDict):
    """The persisted, per-session fields that sit alongside the log."""

    intent: Intent
    exchange_count: int
    needs_approval: bool
    pending_tool_calls: list[ToolCall]
    approval_prompt: str


class ChatState(TurnState):
    """The state that flows through the graph.

    ``tool_rounds`` counts ``execute_tools`` passes in the current turn and
    bounds the agent loop.  ``classification_degraded`` is set when intent
    classification had to fall back to keywords.  Neither is persisted.
    """

    messages: Annotated[list[AnyMessage], append_messages]
    tool_rounds: int
    classification_degraded: bool


TURN_STATE_KEYS = tuple(TurnState.__annotations__)


def initial_turn_state() -> TurnState:
    """Turn state of a session that has never been seen before."""
    return {
        "intent": Intent.UNKNOWN,
        "exchange_count": 0,
        "needs_approval": False,
        "pending_tool_calls": [],
        "approval_prompt": "",
    }


def extract_turn_state(state: ChatState) -> TurnState:
    """Pick the persisted fields out of a full graph state."""
    defaults = initial_turn_state()
    return {key: state.get(key, defaults[key]) for key in TURN_STATE_KEYS}


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def last_tool_calls(state: ChatState) -> list[ToolCall]:
    """Tool calls carried by the last message, if it is an assistant message."""
    if not state["messages"]:
        return []
    last = state["messages"][-1]
    if isinstance(last, AIMessage) and last.tool_calls:
        return list(last.tool_calls)
    return []


def placeholder_result(call: ToolCall, reason: str) -> ToolMessage:
    """Tool result standing in for a call that was never executed."""
    return ToolMessage(
        content=reason,
        tool_call_id=call["id"],
        name=call["name"],
        artifact={"executed": False},
    )


def is_placeholder(message: BaseMessage) -> bool:
    return (
        isinstance(message, ToolMessage)
        and isinstance(message.artifact, dict)
        and message.artifact.get("executed") is False
    )
