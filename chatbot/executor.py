"""Concurrent tool execution.

All tool calls proposed in one assistant message are launched together
and joined with ``asyncio.gather``: the step takes as long as the slowest
call, not the sum of them.  Each call is isolated — an unknown tool name,
a tool that raises, or a tool that exceeds its timeout turns into an
``Error: ...`` tool result for that call only.

There is no retry here; a tool that wants retries does them itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence

from langchain_core.messages import ToolCall, ToolMessage
from langchain_core.tools import BaseTool

from chatbot.errors import ToolError, ToolNotFoundError
from chatbot.services.metrics import metrics

logger = logging.getLogger(__name__)


def _render(result: object) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


class ToolExecutor:
    """Runs tool calls by name against a fixed set of tools."""

    def __init__(self, tools: Sequence[BaseTool], timeout_seconds: float):
        self._tools = {t.name: t for t in tools}
        self._timeout = timeout_seconds

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def invoke(self, name: str, args: dict) -> str:
        """Invoke one tool, raising ``ToolError`` on any failure."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        try:
            result = await asyncio.wait_for(tool.ainvoke(args), timeout=self._timeout)
        except TimeoutError as exc:
            raise ToolError(name, f"Tool \"{name}\" timed out after {self._timeout:g}s") from exc
        except Exception as exc:
            raise ToolError(name, str(exc) or type(exc).__name__) from exc
        return _render(result)

    async def _run_one(self, call: ToolCall) -> ToolMessage:
        name = call["name"]
        logger.debug("Starting tool %s with args %s", name, call["args"])
        t0 = time.perf_counter()
        try:
            content = await self.invoke(name, call["args"])
        except ToolError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            cause = exc.__cause__ or exc
            metrics.record_call("tool", name, elapsed, error_type=type(cause).__name__)
            logger.warning("Tool %s failed: %s", name, exc)
            return ToolMessage(
                content=f"Error: {exc}",
                tool_call_id=call["id"],
                name=name,
                status="error",
            )

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_call("tool", name, elapsed)
        logger.debug("Tool %s completed in %.0fms", name, elapsed)
        return ToolMessage(content=content, tool_call_id=call["id"], name=name)

    async def execute(self, tool_calls: Sequence[ToolCall]) -> list[ToolMessage]:
        """Run every call concurrently; one result per call, in call order."""
        if not tool_calls:
            return []

        logger.debug("Executing %d tool(s) in parallel", len(tool_calls))
        t0 = time.perf_counter()
        results = await asyncio.gather(*(self._run_one(call) for call in tool_calls))
        logger.debug(
            "All %d tool(s) settled in %.0fms",
            len(tool_calls), (time.perf_counter() - t0) * 1000,
        )
        return list(results)
