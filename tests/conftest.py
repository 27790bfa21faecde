"""Shared test fixtures for the chatbot test suite."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from langchain_core.messages import AIMessage

from tests.helpers import make_mock_llm


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ["SESSION_STORE"] = "memory"


@pytest.fixture
def build_graph():
    """Factory: compile the chatbot graph around mock LLMs."""
    from chatbot.agent import create_chatbot_graph

    def _build(classifier=None, answer=None, judge=None, tools=None):
        classifier = classifier or make_mock_llm(AIMessage(content="question"))
        answer = answer or make_mock_llm(AIMessage(content="OK"))
        judge = judge or make_mock_llm(AIMessage(content="CLEAR"))
        with patch("chatbot.agent._build_classifier_llm", return_value=classifier), \
             patch("chatbot.agent._build_answer_llm", return_value=answer), \
             patch("chatbot.agent._build_judge_llm", return_value=judge):
            return create_chatbot_graph(tools)

    return _build


@pytest.fixture
def make_engine(build_graph):
    """Factory: ``ChatEngine`` over an in-memory store and mock LLMs."""
    from chatbot.engine import ChatEngine
    from chatbot.services.session_store import MemorySessionStore

    def _make(store=None, **llms):
        return ChatEngine(store or MemorySessionStore(), graph=build_graph(**llms))

    return _make
