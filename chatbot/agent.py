"""LangGraph state machine for one chatbot turn.

Architecture:
  The graph is a fixed ``StateGraph`` with seven nodes:

    1. **classify_intent**  — cheap model call that labels the latest user
                              message ``greeting``, ``farewell`` or
                              ``question`` (keyword fallback on failure)
    2. **greeting**         — fixed reply, no model call
    3. **farewell**         — fixed reply, no model call
    4. **answer_question**  — tool-bound model call over the full log
    5. **validate_tools**   — human-in-the-loop gate for the proposed calls
    6. **execute_tools**    — runs the proposed calls concurrently
    7. **limit_reached**    — stops a turn that keeps asking for tools

  Routing:
    classify_intent → greeting → END
                    → farewell → END
                    → answer_question → (no tool calls?) → END
                                      → (round cap hit?) → limit_reached → END
                                      → validate_tools → (blocked?) → END
                                                       → execute_tools → answer_question (loop)

  Persistence:
    The graph is compiled without a checkpointer.  ``chatbot.engine``
    loads a session before the turn, invokes the graph once, and saves the
    merged state only when the whole turn succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.graph import END, StateGraph

from chatbot import config
from chatbot.errors import AnswerGenerationError
from chatbot.executor import ToolExecutor
from chatbot.intent import keyword_intent, parse_intent
from chatbot.prompts import (
    EMPTY_MESSAGE_PLACEHOLDER,
    FAREWELL_REPLY,
    GREETING_REPLY,
    INTENT_PROMPT,
    LIMIT_REACHED_REPLY,
    get_system_prompt,
)
from chatbot.services.metrics import metrics
from chatbot.state import ChatState, Intent, last_tool_calls, message_text, placeholder_result
from chatbot.tools.calculator import calculator
from chatbot.tools.search import web_search
from chatbot.tools.weather import get_weather
from chatbot.validation import ToolCallValidator

logger = logging.getLogger(__name__)


# ── All tools the agent can use ──────────────────────────────────────

ALL_TOOLS: list[BaseTool] = [calculator, get_weather, web_search]


# ── LLM builders ────────────────────────────────────────────────────


def _build_classifier_llm() -> ChatAnthropic:
    """Build a lightweight LLM for intent classification (no tools)."""
    return ChatAnthropic(
        model=config.CLASSIFIER_MODEL_NAME,
        api_key=config.ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=50,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_judge_llm() -> ChatAnthropic:
    """Build the LLM that judges whether a place name is ambiguous."""
    return ChatAnthropic(
        model=config.JUDGE_MODEL_NAME,
        api_key=config.ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=150,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )


def _build_answer_llm(tools: Sequence[BaseTool]):
    """Build the answering LLM with the tool schemas bound."""
    llm = ChatAnthropic(
        model=config.MODEL_NAME,
        api_key=config.ANTHROPIC_API_KEY,
        temperature=config.ANSWER_TEMPERATURE,
        max_tokens=1024,
        timeout=config.LLM_TIMEOUT_SECONDS,
    )
    return llm.bind_tools(list(tools))


def _latest_user_text(messages: list[AnyMessage]) -> str:
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            return message_text(msg)
    return ""


def _placeholder_results(tool_calls, reason: str, skip_id: str | None = None) -> list[ToolMessage]:
    """One stub tool result per call that will not run.

    Every tool call the model issued must be answered by exactly one tool
    result in the log, or the next model call is rejected.
    """
    return [placeholder_result(tc, reason) for tc in tool_calls if tc["id"] != skip_id]


def _model_messages(messages: list[AnyMessage]) -> list[AnyMessage]:
    """The log as the answer model sees it.

    The API rejects blank user text, so a blank user message is replaced by
    a placeholder in the request.  The log itself keeps what the user sent.
    """
    return [
        HumanMessage(content=EMPTY_MESSAGE_PLACEHOLDER)
        if isinstance(msg, HumanMessage) and not message_text(msg).strip()
        else msg
        for msg in messages
    ]


# ── Node: classify_intent ────────────────────────────────────────────


def _make_classify_node():
    """Create the node that classifies the latest user message.

    Writes ``intent`` (and the ``classification_degraded`` flag) without
    adding anything to the conversation log.
    """
    classifier_llm = _build_classifier_llm()

    async def classify_intent(state: ChatState) -> dict:
        text = _latest_user_text(state["messages"])
        if not text.strip():
            logger.debug("Blank user message, defaulting to question")
            return {"intent": Intent.QUESTION, "classification_degraded": False}

        prompt = INTENT_PROMPT.format(message=text)
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                classifier_llm.ainvoke([HumanMessage(content=prompt)]),
                timeout=config.LLM_TIMEOUT_SECONDS,
            )
            intent = parse_intent(message_text(response))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_call(
                "llm", "classify_intent", elapsed, error_type=type(exc).__name__,
            )
            metrics.record_event("ClassificationDegraded")
            intent = keyword_intent(text)
            logger.warning(
                "Intent classifier failed (%s), keyword fallback chose %s", exc, intent,
            )
            return {"intent": intent, "classification_degraded": True}

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_call("llm", "classify_intent", elapsed)
        logger.debug("Classified as %s (%.0fms)", intent, elapsed)
        return {"intent": intent, "classification_degraded": False}

    return classify_intent


# ── Nodes: greeting / farewell ──────────────────────────────────────


def greeting_node(state: ChatState) -> dict:
    return {
        "messages": [AIMessage(content=GREETING_REPLY)],
        "exchange_count": state.get("exchange_count", 0) + 1,
    }


def farewell_node(state: ChatState) -> dict:
    return {
        "messages": [AIMessage(content=FAREWELL_REPLY)],
        "exchange_count": state.get("exchange_count", 0) + 1,
    }


# ── Node: answer_question (tool-bound LLM) ──────────────────────────


def _make_answer_node(tools: Sequence[BaseTool]):
    """Create the question-answering node.

    The LLM + tool bindings are captured in the closure so that repeated
    node invocations (answer -> tools -> answer -> ...) share one client.
    Every invocation counts as one exchange.  Failures are not recoverable
    and abort the turn.
    """
    llm_with_tools = _build_answer_llm(tools)

    async def answer_question(state: ChatState) -> dict:
        logger.debug(
            "answer_question invoked with %d message(s)", len(state["messages"]),
        )
        system = SystemMessage(content=get_system_prompt())
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                llm_with_tools.ainvoke([system] + _model_messages(state["messages"])),
                timeout=config.LLM_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_call(
                "llm", "answer_question", elapsed, error_type=type(exc).__name__,
            )
            raise AnswerGenerationError(f"Answer generation failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_call("llm", "answer_question", elapsed)
        logger.debug(
            "answer_question responded in %.0fms with %d tool call(s)",
            elapsed, len(getattr(response, "tool_calls", None) or []),
        )
        return {
            "messages": [response],
            "exchange_count": state.get("exchange_count", 0) + 1,
        }

    return answer_question


# ── Node: validate_tools (HITL gate) ────────────────────────────────


def _make_validate_node():
    """Create the node that may stop the turn to ask for clarification.

    When it blocks, every pending call gets a stub tool result and the
    clarification question is appended as the assistant's reply; the turn
    then ends.  The user's next message starts a fresh turn.
    """
    validator = ToolCallValidator(_build_judge_llm(), config.LLM_TIMEOUT_SECONDS)

    async def validate_tools(state: ChatState) -> dict:
        tool_calls = last_tool_calls(state)
        result = await validator.validate(tool_calls)
        if result.approved:
            logger.debug("All %d tool call(s) approved", len(tool_calls))
            return {"needs_approval": False}

        metrics.record_event("ApprovalRequested")
        blocked = next(tc for tc in result.pending_tool_calls if tc["id"] == result.blocked_call_id)
        stubs = [
            placeholder_result(
                blocked,
                f'[Requesting clarification] The location "{result.location}" '
                "is ambiguous. Asking user to specify.",
            )
        ]
        stubs += _placeholder_results(
            result.pending_tool_calls,
            "[Not executed] Waiting for the user to clarify the request.",
            skip_id=result.blocked_call_id,
        )
        return {
            "messages": stubs + [AIMessage(content=result.approval_prompt)],
            "needs_approval": True,
            "pending_tool_calls": result.pending_tool_calls,
            "approval_prompt": result.approval_prompt,
        }

    return validate_tools


# ── Node: execute_tools ─────────────────────────────────────────────


def _make_execute_node(tools: Sequence[BaseTool]):
    executor = ToolExecutor(tools, timeout_seconds=config.TOOL_TIMEOUT_SECONDS)

    async def execute_tools(state: ChatState) -> dict:
        results = await executor.execute(last_tool_calls(state))
        return {
            "messages": results,
            "needs_approval": False,
            "pending_tool_calls": [],
            "approval_prompt": "",
            "tool_rounds": state.get("tool_rounds", 0) + 1,
        }

    return execute_tools


# ── Node: limit_reached ─────────────────────────────────────────────


def limit_reached_node(state: ChatState) -> dict:
    """Close a turn that hit ``MAX_TOOL_ROUNDS`` with a degraded reply."""
    logger.warning(
        "Tool round limit (%d) reached, ending the turn", config.MAX_TOOL_ROUNDS,
    )
    metrics.record_event("ToolRoundLimit")
    stubs = _placeholder_results(
        last_tool_calls(state),
        "[Not executed] Tool round limit reached for this turn.",
    )
    reply = AIMessage(content=LIMIT_REACHED_REPLY.format(limit=config.MAX_TOOL_ROUNDS))
    return {"messages": stubs + [reply]}


# ── Conditional edges ────────────────────────────────────────────────

_INTENT_ROUTES = {
    Intent.GREETING: "greeting",
    Intent.FAREWELL: "farewell",
    Intent.QUESTION: "answer_question",
    Intent.UNKNOWN: "answer_question",
}


def route_by_intent(state: ChatState) -> str:
    """Route to the handler for the classified intent; unknown → question."""
    try:
        intent = Intent(state.get("intent", Intent.UNKNOWN))
    except ValueError:
        return "answer_question"
    return _INTENT_ROUTES[intent]


def route_after_answer(state: ChatState) -> str:
    """Validate proposed tool calls, stop at the round cap, or finish."""
    if not last_tool_calls(state):
        return END
    if state.get("tool_rounds", 0) >= config.MAX_TOOL_ROUNDS:
        return "limit_reached"
    return "validate_tools"


def route_after_validation(state: ChatState) -> str:
    if state.get("needs_approval"):
        return END
    return "execute_tools"


# ── Graph assembly ───────────────────────────────────────────────────


def create_chatbot_graph(tools: Sequence[BaseTool] | None = None):
    """Build and compile the chatbot graph.

    ``tools`` defaults to ``ALL_TOOLS``.  Returns a compiled graph that can
    be invoked with a full ``ChatState``:
        await graph.ainvoke({"messages": [...], "exchange_count": 0, ...})
    """
    tools = list(ALL_TOOLS if tools is None else tools)
    graph = StateGraph(ChatState)

    graph.add_node("classify_intent", _make_classify_node())
    graph.add_node("greeting", greeting_node)
    graph.add_node("farewell", farewell_node)
    graph.add_node("answer_question", _make_answer_node(tools))
    graph.add_node("validate_tools", _make_validate_node())
    graph.add_node("execute_tools", _make_execute_node(tools))
    graph.add_node("limit_reached", limit_reached_node)

    graph.set_entry_point("classify_intent")

    graph.add_conditional_edges(
        "classify_intent",
        route_by_intent,
        {
            "greeting": "greeting",
            "farewell": "farewell",
            "answer_question": "answer_question",
        },
    )
    graph.add_edge("greeting", END)
    graph.add_edge("farewell", END)

    graph.add_conditional_edges(
        "answer_question",
        route_after_answer,
        {
            "validate_tools": "validate_tools",
            "limit_reached": "limit_reached",
            END: END,
        },
    )
    graph.add_conditional_edges(
        "validate_tools",
        route_after_validation,
        {"execute_tools": "execute_tools", END: END},
    )
    graph.add_edge("execute_tools", "answer_question")
    graph.add_edge("limit_reached", END)

    compiled = graph.compile()
    logger.debug(
        "Chatbot graph compiled — answer: %s, classifier: %s, judge: %s, tools: %d",
        config.MODEL_NAME, config.CLASSIFIER_MODEL_NAME, config.JUDGE_MODEL_NAME, len(tools),
    )
    return compiled
