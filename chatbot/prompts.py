"""Prompts and fixed replies used by the graph nodes."""

from datetime import UTC, datetime

GREETING_REPLY = (
    "Hello! I'm a chatbot built with LangGraph. I can help answer your "
    "questions. What would you like to know?"
)

FAREWELL_REPLY = (
    "Goodbye! It was nice chatting with you. Feel free to come back anytime!"
)

LIMIT_REACHED_REPLY = (
    "I'm sorry, I wasn't able to complete that request: it needed more "
    "tool calls than I'm allowed to make in a single turn ({limit}). "
    "Could you try rephrasing or breaking it into smaller questions?"
)

# Sent to the answer model in place of a blank user message
EMPTY_MESSAGE_PLACEHOLDER = "(empty message)"

INTENT_PROMPT = """Classify the user's intent into exactly ONE of these categories:
- "greeting": User is saying hello, hi, hey, good morning, etc.
- "farewell": User is saying goodbye, bye, see you, take care, etc.
- "question": User is asking a question, requesting information, or giving a command

User message: "{message}"

Respond with ONLY the category name (greeting, farewell, or question), nothing else."""

AMBIGUITY_PROMPT = """Is "{location}" an ambiguous location name that could refer to multiple cities in different places?

Examples:
- "Paris" is AMBIGUOUS - could mean Paris, France or Paris, Texas
- "Springfield" is AMBIGUOUS - exists in many US states (Illinois, Massachusetts, Missouri, etc.)
- "Seattle" is CLEAR - primarily refers to Seattle, Washington
- "Tokyo" is CLEAR - clearly refers to Tokyo, Japan

Format your response as follows:
- If CLEAR: respond with just "CLEAR"
- If AMBIGUOUS: respond with "AMBIGUOUS: <location1>; <location2>; ..."
  Example: "AMBIGUOUS: Paris, France; Paris, Texas; Paris, Tennessee\""""

APPROVAL_PROMPT = (
    'I found that "{location}" could refer to multiple cities. To get '
    "accurate weather data, could you please specify which {location} you "
    "mean? For example: {examples}"
)

SYSTEM_PROMPT_TEMPLATE = """You are a friendly, concise assistant built with LangGraph.

## Current Date & Time
Today is **{current_date}** ({current_day_of_week}). The current time is **{current_time} UTC**.

## Tools
You can call these tools, several at once when a question needs more than one:
- `calculator` — basic arithmetic (add, subtract, multiply, divide). Use it instead of doing maths in your head.
- `get_weather` — current weather for a US city. Pass the most specific location you know
  (e.g. "Paris, Texas" rather than "Paris").
- `web_search` — up-to-date information from the web.

## Guidelines
- Answer directly when no tool is needed.
- When a tool returns an error, explain the problem briefly and suggest what the user can do.
- Never invent tool results.
- Keep responses short unless the user asks for detail.
"""


def get_system_prompt() -> str:
    """Build the system prompt with the current date injected."""
    now = datetime.now(UTC)
    return SYSTEM_PROMPT_TEMPLATE.format(
        current_date=now.strftime("%d %B %Y"),
        current_day_of_week=now.strftime("%A"),
        current_time=now.strftime("%H:%M"),
    )
