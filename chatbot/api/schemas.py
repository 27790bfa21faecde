"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique session identifier for conversation continuity",
    )


class ToolCallDetail(BaseModel):
    name: str
    args: dict[str, Any]


class ChatResponse(BaseModel):
    """Response for one chat turn."""

    response: str = Field(..., description="The assistant's reply, or the clarification question")
    session_id: str
    intent: str
    exchange_count: int
    tools_used: list[str] = Field(default_factory=list)
    tool_call_details: list[ToolCallDetail] = Field(default_factory=list)
    needs_approval: bool = False
    approval_prompt: str | None = None
    classification_degraded: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ConversationResponse(BaseModel):
    """Stored conversation for a session (user and assistant text only)."""

    session_id: str
    messages: list[HistoryMessage] = Field(default_factory=list)
    exchange_count: int = 0


class DeleteResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "langgraph-chatbot"
