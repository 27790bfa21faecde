"""LangGraph Chatbot — intent-routed assistant with parallel tool calling.

Architecture Overview
=====================

Each user message runs one pass of a fixed **LangGraph** state machine:

1. **classify_intent** — a cheap Claude call labels the message as a
   greeting, a farewell or a question.  If the call fails, a keyword
   matcher takes over and the turn is flagged as degraded.

2. **greeting / farewell** — fixed replies, no model call.

3. **answer_question** — Claude with the calculator, weather and web
   search tools bound, given the full conversation.  It either answers or
   asks for one or more tool calls.

4. **validate_tools** — a human-in-the-loop gate.  A weather request for a
   bare, ambiguous place name ("Paris") stops the turn and asks the user
   which one they meant.

5. **execute_tools** — runs all requested tool calls concurrently and
   loops back to ``answer_question`` with the results.

Key Design Decisions
--------------------
- **Append-only log**: conversation messages are only ever concatenated;
  tool results are correlated to their calls by ``tool_call_id``.
- **Bounded loop**: ``MAX_TOOL_ROUNDS`` caps answer ⇄ tools round trips per
  turn; hitting it ends the turn with an apology instead of looping.
- **All-or-nothing turns**: ``ChatEngine`` loads the session, runs the
  graph, and saves only if the whole turn succeeded.  Turns for one session
  are serialised with a per-session lock.
- **Pluggable persistence**: in-memory (LRU + TTL) or Redis session store.
- **Dual Interface**: FastAPI server (production) + CLI chat loop.

Package Structure
-----------------
- ``chatbot/agent.py`` — LangGraph StateGraph definition and nodes
- ``chatbot/engine.py`` — turn orchestration over a session store
- ``chatbot/state.py`` — graph state, reducers, intents
- ``chatbot/intent.py`` — classifier reply parsing + keyword fallback
- ``chatbot/validation.py`` — ambiguity gate for tool calls
- ``chatbot/executor.py`` — concurrent tool execution
- ``chatbot/config.py`` — centralized configuration from environment variables
- ``chatbot/prompts.py`` — prompts and fixed replies
- ``chatbot/server.py`` — FastAPI application
- ``chatbot/main.py`` — CLI chat interface
- ``chatbot/services/`` — session stores, metrics
- ``chatbot/tools/`` — LangChain tools (calculator, weather, search)
- ``chatbot/api/`` — FastAPI routes and Pydantic schemas
"""
