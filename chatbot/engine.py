"""Turn orchestration: session load → graph run → session save.

``ChatEngine`` is the single entry point used by the HTTP API and the CLI.
It owns the ordering guarantees the graph itself cannot give:

* turns for one session run one at a time, under the store's session lock
  (held from load to save, so it also covers other engines and, with
  Redis, other processes); turns for different sessions run in parallel;
* a turn is committed to the session store only after the graph finished,
  so a failed turn leaves the stored session untouched and is safe to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, ToolMessage

from chatbot import config
from chatbot.agent import create_chatbot_graph
from chatbot.errors import ChatbotError, SessionStoreError
from chatbot.services.session_store import SessionSnapshot, SessionStore, create_session_store
from chatbot.state import (
    ChatState,
    Intent,
    TurnState,
    extract_turn_state,
    initial_turn_state,
    is_placeholder,
    message_text,
)

logger = logging.getLogger(__name__)

# (answer, validate, execute) per tool round, plus classify, the last answer
# and limit_reached, plus slack
_STEPS_PER_ROUND = 3
_STEP_OVERHEAD = 5


@dataclass
class TurnResult:
    """What the caller gets back for one user message."""

    response_text: str
    intent: str
    exchange_count: int
    tools_used: list[str] = field(default_factory=list)
    tool_call_details: list[dict[str, Any]] = field(default_factory=list)
    needs_approval: bool = False
    approval_prompt: str | None = None
    classification_degraded: bool = False


def _tool_usage(messages: list[AnyMessage]) -> tuple[list[str], list[dict[str, Any]]]:
    """Tool names (deduplicated, first-seen order) and the arguments of every executed call.

    Calls answered only by a placeholder result never ran and are left out.
    """
    executed = {
        msg.tool_call_id
        for msg in messages
        if isinstance(msg, ToolMessage) and not is_placeholder(msg)
    }
    names: list[str] = []
    details: list[dict[str, Any]] = []
    for msg in messages:
        if not isinstance(msg, AIMessage):
            continue
        for tc in msg.tool_calls:
            if tc["id"] not in executed:
                continue
            if tc["name"] not in names:
                names.append(tc["name"])
            details.append({"name": tc["name"], "args": tc["args"]})
    return names, details


def build_turn_result(final: ChatState, turn_start: int) -> TurnResult:
    """Summarise a finished graph run.  ``turn_start`` is the log length before the turn."""
    intent = final.get("intent", Intent.UNKNOWN)
    exchange_count = final.get("exchange_count", 0)
    degraded = final.get("classification_degraded", False)

    if final.get("needs_approval"):
        return TurnResult(
            response_text=final["approval_prompt"],
            intent=str(intent),
            exchange_count=exchange_count,
            needs_approval=True,
            approval_prompt=final["approval_prompt"],
            classification_degraded=degraded,
        )

    tools_used, details = _tool_usage(final["messages"][turn_start:])
    return TurnResult(
        response_text=message_text(final["messages"][-1]),
        intent=str(intent),
        exchange_count=exchange_count,
        tools_used=tools_used,
        tool_call_details=details,
        classification_degraded=degraded,
    )


class ChatEngine:
    """Runs chatbot turns against a session store."""

    def __init__(self, store: SessionStore, graph=None) -> None:
        self._store = store
        self._graph = graph if graph is not None else create_chatbot_graph()

    @property
    def store(self) -> SessionStore:
        return self._store

    async def _load(self, session_id: str) -> SessionSnapshot | None:
        try:
            return await self._store.load(session_id)
        except SessionStoreError:
            raise
        except Exception as exc:
            raise SessionStoreError(
                f"Could not load session: {exc}", session_id=session_id,
            ) from exc

    async def _save(self, session_id: str, final: ChatState) -> None:
        try:
            await self._store.save(session_id, final["messages"], extract_turn_state(final))
        except SessionStoreError:
            raise
        except Exception as exc:
            raise SessionStoreError(
                f"Could not save session: {exc}", session_id=session_id,
            ) from exc

    async def run_turn(self, session_id: str, text: str) -> TurnResult:
        """Process one user message for ``session_id``.

        Raises ``ChatbotError`` (``AnswerGenerationError``,
        ``SessionStoreError``, ...) when the turn fails; nothing is
        persisted in that case.
        """
        async with self._store.lock(session_id):
            snapshot = await self._load(session_id)
            history = snapshot.messages if snapshot else []
            prior = snapshot.turn_state if snapshot else initial_turn_state()
            logger.debug(
                "Turn start for session %s (%d prior message(s))", session_id, len(history),
            )

            turn_input: ChatState = {
                "messages": [*history, HumanMessage(content=text)],
                "intent": Intent.UNKNOWN,
                "exchange_count": prior["exchange_count"],
                "needs_approval": False,
                "pending_tool_calls": [],
                "approval_prompt": "",
                "tool_rounds": 0,
                "classification_degraded": False,
            }
            recursion_limit = config.MAX_TOOL_ROUNDS * _STEPS_PER_ROUND + _STEP_OVERHEAD
            try:
                final = await self._graph.ainvoke(
                    turn_input, config={"recursion_limit": recursion_limit},
                )
            except ChatbotError:
                raise
            except Exception as exc:
                raise ChatbotError(f"Turn failed: {exc}") from exc

            await self._save(session_id, final)

        result = build_turn_result(final, turn_start=len(history))
        logger.info(
            "Session %s: intent=%s exchanges=%d tools=%s approval=%s",
            session_id, result.intent, result.exchange_count,
            result.tools_used, result.needs_approval,
        )
        return result

    async def get_history(self, session_id: str) -> tuple[list[AnyMessage], TurnState]:
        """Stored log and turn state; empty for an unknown session."""
        snapshot = await self._load(session_id)
        if snapshot is None:
            return [], initial_turn_state()
        return snapshot.messages, snapshot.turn_state

    async def reset(self, session_id: str) -> None:
        """Forget everything stored for ``session_id``."""
        async with self._store.lock(session_id):
            try:
                await self._store.delete(session_id)
            except SessionStoreError:
                raise
            except Exception as exc:
                raise SessionStoreError(
                    f"Could not delete session: {exc}", session_id=session_id,
                ) from exc
        logger.info("Session %s cleared", session_id)


def create_chat_engine() -> ChatEngine:
    """Engine wired to the configured session store and the default tools."""
    return ChatEngine(create_session_store())
