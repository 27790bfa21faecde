"""FastAPI route definitions for the chatbot API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from langchain_core.messages import AIMessage, HumanMessage

from chatbot.api.schemas import (
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    DeleteResponse,
    HealthResponse,
    HistoryMessage,
    ToolCallDetail,
)
from chatbot.engine import ChatEngine
from chatbot.errors import ChatbotError
from chatbot.state import message_text

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_engine(request: Request) -> ChatEngine:
    """Retrieve the chat engine from app state (set up in the lifespan)."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=503,
            detail="The chatbot is still starting up. Please try again in a moment.",
        )
    return engine


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Run one chatbot turn for the given session.

    When the chatbot needs the user to clarify a tool call (e.g. which
    "Paris"), ``needs_approval`` is true and ``response`` holds the
    clarification question.
    """
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await engine.run_turn(request.session_id, request.message)
    except ChatbotError as e:
        # Full detail stays in the server log; the client gets a generic message
        logger.exception("[%s] Turn failed for session %s", request_id, request.session_id)
        raise HTTPException(
            status_code=500,
            detail="Failed to process message. Please try again.",
        ) from e

    return ChatResponse(
        response=result.response_text,
        session_id=request.session_id,
        intent=result.intent,
        exchange_count=result.exchange_count,
        tools_used=result.tools_used,
        tool_call_details=[ToolCallDetail(**d) for d in result.tool_call_details],
        needs_approval=result.needs_approval,
        approval_prompt=result.approval_prompt,
        classification_degraded=result.classification_degraded,
    )


@router.get("/conversation/{session_id}", response_model=ConversationResponse)
async def get_conversation(session_id: str, http_request: Request):
    """Return the stored conversation; tool traffic is left out."""
    engine = _get_engine(http_request)
    try:
        messages, turn_state = await engine.get_history(session_id)
    except ChatbotError as e:
        logger.exception("Could not load conversation %s", session_id)
        raise HTTPException(status_code=500, detail="Failed to load conversation.") from e

    history: list[HistoryMessage] = []
    for msg in messages:
        if isinstance(msg, HumanMessage):
            history.append(HistoryMessage(role="user", content=message_text(msg)))
        elif isinstance(msg, AIMessage):
            text = message_text(msg)
            if text:
                history.append(HistoryMessage(role="assistant", content=text))

    return ConversationResponse(
        session_id=session_id,
        messages=history,
        exchange_count=turn_state["exchange_count"],
    )


@router.delete("/conversation/{session_id}", response_model=DeleteResponse)
async def clear_conversation(session_id: str, http_request: Request):
    engine = _get_engine(http_request)
    try:
        await engine.reset(session_id)
    except ChatbotError as e:
        logger.exception("Could not clear conversation %s", session_id)
        raise HTTPException(status_code=500, detail="Failed to clear conversation.") from e
    return DeleteResponse()
