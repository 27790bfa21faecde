"""Tests for the human-in-the-loop tool call gate."""

from __future__ import annotations

import asyncio
import re
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage

from chatbot.prompts import AMBIGUITY_PROMPT
from chatbot.validation import (
    ToolCallValidator,
    format_examples,
    is_single_word_location,
    parse_judge_reply,
)
from tests.helpers import make_mock_llm


def _weather(location, call_id="w1"):
    return {"name": "get_weather", "args": {"location": location}, "id": call_id}


class TestSingleWordLocation:
    @pytest.mark.parametrize("location", ["Paris", "Springfield", "  Portland  "])
    def test_single_words(self, location):
        assert is_single_word_location(location)

    @pytest.mark.parametrize(
        "location", ["Paris, France", "New York", "Paris,TX", "", "   ", None, 42],
    )
    def test_not_single_words(self, location):
        assert not is_single_word_location(location)


class TestParseJudgeReply:
    def test_clear(self):
        assert parse_judge_reply("CLEAR") is None

    def test_ambiguous_with_candidates(self):
        reply = "AMBIGUOUS: Paris, France; Paris, Texas; Paris, Tennessee"
        assert parse_judge_reply(reply) == ["Paris, France", "Paris, Texas", "Paris, Tennessee"]

    def test_ambiguous_without_candidates(self):
        assert parse_judge_reply("AMBIGUOUS") == []

    def test_case_insensitive(self):
        assert parse_judge_reply("ambiguous: A; B") == ["A", "B"]

    def test_anything_else_is_clear(self):
        assert parse_judge_reply("I'm not sure what you mean") is None

    def test_prompt_example_parses_into_candidates(self):
        example = re.search(r'Example: "(.+)"', AMBIGUITY_PROMPT).group(1)
        assert parse_judge_reply(example) == ["Paris, France", "Paris, Texas", "Paris, Tennessee"]
        assert '"AMBIGUOUS: <location1>; <location2>; ..."' in AMBIGUITY_PROMPT


class TestFormatExamples:
    def test_uses_at_most_three_candidates(self):
        result = format_examples("Springfield", ["A", "B", "C", "D"])
        assert result == '"A" or "B" or "C"'

    def test_generic_example_without_candidates(self):
        assert format_examples("Paris", []) == '"Paris, [State/Country]"'


class TestToolCallValidator:
    @pytest.mark.asyncio
    async def test_ambiguous_location_blocks(self):
        judge = make_mock_llm(AIMessage(content="AMBIGUOUS: Paris, France; Paris, Texas"))
        validator = ToolCallValidator(judge, timeout_seconds=1.0)
        calls = [_weather("Paris")]

        result = await validator.validate(calls)

        assert result.approved is False
        assert result.blocked_call_id == "w1"
        assert result.location == "Paris"
        assert result.pending_tool_calls == calls
        assert result.approval_prompt.startswith('I found that "Paris" could refer to multiple cities.')
        assert '"Paris, France" or "Paris, Texas"' in result.approval_prompt

    @pytest.mark.asyncio
    async def test_clear_location_passes(self):
        validator = ToolCallValidator(make_mock_llm(AIMessage(content="CLEAR")), 1.0)
        result = await validator.validate([_weather("Chicago")])
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_qualified_location_skips_judge(self):
        judge = make_mock_llm(AIMessage(content="AMBIGUOUS"))
        validator = ToolCallValidator(judge, 1.0)
        result = await validator.validate([_weather("Paris, Texas")])
        assert result.approved is True
        judge.ainvoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_tools_pass_through(self):
        judge = make_mock_llm(AIMessage(content="AMBIGUOUS"))
        validator = ToolCallValidator(judge, 1.0)
        calls = [
            {"name": "calculator", "args": {"operation": "add", "a": 1, "b": 2}, "id": "c1"},
            {"name": "web_search", "args": {"query": "Paris"}, "id": "s1"},
        ]
        result = await validator.validate(calls)
        assert result.approved is True
        judge.ainvoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_judge_error_fails_open(self):
        validator = ToolCallValidator(make_mock_llm(RuntimeError("503")), 1.0)
        result = await validator.validate([_weather("Springfield")])
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_judge_timeout_fails_open(self):
        async def hang(_messages):
            await asyncio.sleep(1)

        judge = MagicMock()
        judge.ainvoke = AsyncMock(side_effect=hang)
        validator = ToolCallValidator(judge, timeout_seconds=0.05)
        result = await validator.validate([_weather("Springfield")])
        assert result.approved is True

    @pytest.mark.asyncio
    async def test_first_ambiguous_call_is_reported(self):
        judge = make_mock_llm(AIMessage(content="CLEAR"), AIMessage(content="AMBIGUOUS: X; Y"))
        validator = ToolCallValidator(judge, 1.0)
        calls = [_weather("Denver", "w1"), _weather("Springfield", "w2")]

        result = await validator.validate(calls)

        assert result.approved is False
        assert result.blocked_call_id == "w2"
        assert result.pending_tool_calls == calls
