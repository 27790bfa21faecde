"""Exception hierarchy for the chatbot core.

Only two failures abort a turn: the answer model call
(``AnswerGenerationError``) and the session store (``SessionStoreError``).
Tool failures are caught by the executor and turned into error tool
results, so the model can react to them on its next call.
"""

from __future__ import annotations


class ChatbotError(Exception):
    """Base class for every error raised by the chatbot core."""


class AnswerGenerationError(ChatbotError):
    """Raised when the question-answering model call fails or times out."""


class SessionStoreError(ChatbotError):
    """Raised when a session cannot be loaded, saved or deleted."""

    def __init__(self, message: str, session_id: str | None = None):
        self.session_id = session_id
        super().__init__(message)


class ToolError(ChatbotError):
    """Raised when a tool invocation fails."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotFoundError(ToolError):
    """Raised when the model asks for a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f'Tool "{tool_name}" not found')
