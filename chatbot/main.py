"""CLI entry point for the LangGraph chatbot.

A terminal chat loop for testing and development.  For production, use
the FastAPI server (chatbot/server.py).

Usage:
    python -m chatbot.main            # normal mode (quiet)
    python -m chatbot.main --debug    # debug mode (shows node and tool logs)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from dotenv import load_dotenv

from chatbot.engine import ChatEngine, TurnResult
from chatbot.errors import ChatbotError
from chatbot.services.session_store import MemorySessionStore

logger = logging.getLogger(__name__)

RULE = "─" * 70

HELP_TEXT = """Available commands:
  /help     Show this help menu
  /clear    Start a new conversation
  /history  View this conversation's history
  /stats    Show conversation statistics
  /exit     Exit the chatbot
Or just type your message to chat!
"""


@dataclass
class HistoryEntry:
    timestamp: datetime
    role: str
    content: str
    intent: str | None = None


@dataclass
class CliSession:
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    entries: list[HistoryEntry] = field(default_factory=list)
    exchange_count: int = 0

    def record(self, user_text: str, result: TurnResult) -> None:
        self.entries.append(HistoryEntry(datetime.now(), "user", user_text))
        self.entries.append(
            HistoryEntry(datetime.now(), "assistant", result.response_text, result.intent)
        )
        self.exchange_count = result.exchange_count


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("chatbot").setLevel(logging.DEBUG if debug else logging.WARNING)


def format_history(session: CliSession) -> str:
    if not session.entries:
        return "  No conversation history yet."
    lines = []
    for entry in session.entries:
        who = "You" if entry.role == "user" else "Bot"
        content = entry.content if len(entry.content) <= 100 else entry.content[:100] + "..."
        intent = f" [{entry.intent}]" if entry.intent else ""
        lines.append(f"  {entry.timestamp:%H:%M:%S}  {who}:{intent} {content}")
    return "\n".join(lines)


def format_stats(session: CliSession) -> str:
    user_count = sum(1 for e in session.entries if e.role == "user")
    bot_count = sum(1 for e in session.entries if e.role == "assistant")
    intents = Counter(e.intent for e in session.entries if e.intent)

    lines = [
        f"  Total exchanges:  {session.exchange_count}",
        f"  Your messages:    {user_count}",
        f"  Bot responses:    {bot_count}",
    ]
    if intents:
        lines.append("  Intent breakdown:")
        lines += [f"    • {intent}: {count}" for intent, count in intents.items()]
    return "\n".join(lines)


def format_result(result: TurnResult) -> str:
    lines = [f"\nBot: {result.response_text}"]
    if result.needs_approval:
        lines.append("\n(Waiting for your clarification.)")
    footer = f"Intent: {result.intent} | Exchanges: {result.exchange_count}"
    if result.tools_used:
        footer += f" | Tools: {', '.join(result.tools_used)}"
    if result.classification_degraded:
        footer += " | classifier fallback"
    lines += [f"\n{footer}", RULE]
    return "\n".join(lines)


async def chat_loop(engine: ChatEngine) -> None:
    session = CliSession()
    logger.info("Started new session: %s", session.session_id)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.startswith("/"):
            command = user_input.lower()
            if command == "/exit":
                print("\nGoodbye! Thanks for chatting!\n")
                break
            if command == "/help":
                print(HELP_TEXT)
            elif command == "/clear":
                await engine.reset(session.session_id)
                session = CliSession()
                print(f"\n>> New session started: {session.session_id[:8]}...\n")
            elif command == "/history":
                print(f"\n{RULE}\n{format_history(session)}\n{RULE}\n")
            elif command == "/stats":
                print(f"\n{RULE}\n{format_stats(session)}\n{RULE}\n")
            else:
                print(f"\nUnknown command: {command}. Type /help to see available commands.\n")
            continue

        try:
            result = await engine.run_turn(session.session_id, user_input)
        except ChatbotError as e:
            logger.exception("Error processing message")
            print(f"\nBot: I'm sorry, something went wrong: {e}")
            print("     Please try again or type /clear to start a fresh session.\n")
            continue

        session.record(user_input, result)
        print(format_result(result))


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="LangGraph chatbot CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including node routing and tool calls",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  LangGraph Chatbot - CLI Chat")
    print("=" * 60)
    print(HELP_TEXT)
    print("=" * 60 + "\n")

    engine = ChatEngine(MemorySessionStore())
    try:
        asyncio.run(chat_loop(engine))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
