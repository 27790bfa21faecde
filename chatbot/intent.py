"""Intent classification helpers.

The ``classify_intent`` graph node (see ``chatbot/agent.py``) asks a cheap
model for a one-word label.  This module holds the pieces that do not need
the model: turning its reply into an ``Intent`` and the keyword fallback
used whenever the model is unavailable.
"""

from __future__ import annotations

import re

from chatbot.state import Intent

_GREETING_RE = re.compile(r"\b(hi|hello|hey|greetings)\b")
_FAREWELL_RE = re.compile(r"\b(bye|goodbye|see you|farewell)\b")


class MalformedClassificationError(ValueError):
    """The classifier model replied with something that is not a label."""


def parse_intent(reply: object) -> Intent:
    """Map the classifier model's reply onto an intent.

    Any non-empty text that names no known label maps to ``QUESTION``, the
    path that always produces an answer.  Empty or non-text replies raise
    ``MalformedClassificationError`` so the caller can fall back to
    keywords.
    """
    if not isinstance(reply, str) or not reply.strip():
        raise MalformedClassificationError(f"Unusable classifier reply: {reply!r}")

    label = reply.strip().lower()
    if "greeting" in label:
        return Intent.GREETING
    if "farewell" in label:
        return Intent.FAREWELL
    return Intent.QUESTION


def keyword_intent(text: str) -> Intent:
    """Deterministic fallback classification."""
    lowered = text.lower()
    if _GREETING_RE.search(lowered):
        return Intent.GREETING
    if _FAREWELL_RE.search(lowered):
        return Intent.FAREWELL
    return Intent.QUESTION
