"""Human-in-the-loop gate for proposed tool calls.

Runs once per assistant message that carries tool calls, before any of
them execute.  The only policy today is place-name ambiguity: a
``get_weather`` call whose location is a single word ("Paris",
"Springfield") is shown to a judge model, and if the judge says the name
is ambiguous the turn stops and the user is asked which place they meant.

The judge failing never blocks a turn: on any error the call is treated
as unambiguous.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from langchain_core.messages import HumanMessage, ToolCall

from chatbot.prompts import AMBIGUITY_PROMPT, APPROVAL_PROMPT
from chatbot.services.metrics import metrics
from chatbot.state import message_text

logger = logging.getLogger(__name__)

LOCATION_TOOL = "get_weather"
MAX_EXAMPLES = 3


@dataclass
class ValidationResult:
    """Outcome of validating one batch of tool calls."""

    approved: bool
    approval_prompt: str = ""
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    blocked_call_id: str | None = None
    location: str | None = None


def is_single_word_location(location: object) -> bool:
    """True for locations without a qualifier, e.g. "Paris" but not "Paris, TX"."""
    return isinstance(location, str) and bool(location.strip()) and not (
        "," in location or " " in location.strip()
    )


def parse_judge_reply(reply: str) -> list[str] | None:
    """Parse the judge's verdict.

    Returns ``None`` when the location is clear, otherwise the list of
    candidate places (possibly empty when the judge gave none).
    """
    answer = reply.strip()
    if "AMBIGUOUS" not in answer.upper():
        return None

    _, sep, rest = answer.partition(":")
    if not sep:
        return []
    return [part.strip() for part in rest.split(";") if part.strip()]


def format_examples(location: str, candidates: list[str]) -> str:
    if not candidates:
        return f'"{location}, [State/Country]"'
    return " or ".join(f'"{c}"' for c in candidates[:MAX_EXAMPLES])


class ToolCallValidator:
    """Decides whether a batch of tool calls can run without asking the user."""

    def __init__(self, judge_llm, timeout_seconds: float):
        self._judge = judge_llm
        self._timeout = timeout_seconds

    async def _judge_location(self, location: str) -> list[str] | None:
        prompt = AMBIGUITY_PROMPT.format(location=location)
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._judge.ainvoke([HumanMessage(content=prompt)]),
                timeout=self._timeout,
            )
            verdict = parse_judge_reply(message_text(response))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_call(
                "llm", "judge_location", elapsed, error_type=type(exc).__name__,
            )
            logger.warning(
                "Ambiguity judge failed for %r, treating it as clear: %s", location, exc,
            )
            return None

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_call("llm", "judge_location", elapsed)
        logger.debug("Judge verdict for %r: %s (%.0fms)", location, verdict, elapsed)
        return verdict

    async def validate(self, tool_calls: list[ToolCall]) -> ValidationResult:
        """Approve the batch, or block it with a clarification prompt."""
        for call in tool_calls:
            if call["name"] != LOCATION_TOOL:
                continue
            location = call["args"].get("location")
            if not is_single_word_location(location):
                continue

            candidates = await self._judge_location(location)
            if candidates is None:
                continue

            logger.info("Ambiguous location %r, asking the user to clarify", location)
            return ValidationResult(
                approved=False,
                approval_prompt=APPROVAL_PROMPT.format(
                    location=location,
                    examples=format_examples(location, candidates),
                ),
                pending_tool_calls=list(tool_calls),
                blocked_call_id=call["id"],
                location=location,
            )

        return ValidationResult(approved=True)
