"""Web search tool backed by the Tavily search API.

Requires ``TAVILY_API_KEY``.  Without it the tool still answers, telling
the model (and through it the user) how to enable search.
"""

from __future__ import annotations

import logging

import httpx
from langchain_core.tools import tool

from chatbot import config

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0
MAX_RESULTS = 5
SHOWN_RESULTS = 3


def _format_results(query: str, data: dict) -> str:
    lines = [f'Search results for "{query}":', ""]

    if data.get("answer"):
        lines += [f"Summary: {data['answer']}", ""]

    results = data.get("results") or []
    if not results:
        lines.append("No results found.")
        return "\n".join(lines)

    lines.append("Top Results:")
    for index, item in enumerate(results[:SHOWN_RESULTS], start=1):
        lines.append("")
        lines.append(f"{index}. {item.get('title', '')}")
        lines.append(f"   {item.get('content', '')}")
        lines.append(f"   Source: {item.get('url', '')}")
    return "\n".join(lines)


@tool
async def web_search(query: str) -> str:
    """Search the web for current information about any topic using the Tavily search API.

    Provides an AI-generated summary and the top results.

    Args:
        query: The search query (e.g. 'latest news about AI', 'how to bake bread').
    """
    if not config.TAVILY_API_KEY:
        return (
            "Search tool requires a Tavily API key. Please add TAVILY_API_KEY "
            "to your .env file. Get a free API key at https://tavily.com"
        )

    try:
        async with httpx.AsyncClient(
            base_url=config.TAVILY_BASE_URL, timeout=REQUEST_TIMEOUT_SECONDS,
        ) as client:
            response = await client.post(
                "/search",
                json={
                    "api_key": config.TAVILY_API_KEY,
                    "query": query,
                    "search_depth": "basic",
                    "include_answer": True,
                    "max_results": MAX_RESULTS,
                },
            )
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException:
        return "Search API request timed out. Please try again."
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 401:
            return (
                "Search API authentication failed. "
                "Please check your TAVILY_API_KEY in .env file."
            )
        logger.error("Tavily search failed for %r: %s", query, exc)
        return f"Failed to perform web search: {exc}"
    except httpx.HTTPError as exc:
        logger.error("Tavily search failed for %r: %s", query, exc)
        return f"Failed to perform web search: {exc}"

    return _format_results(query, data)
