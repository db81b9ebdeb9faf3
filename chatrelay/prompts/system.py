"""System prompt builder."""

from __future__ import annotations

from datetime import date, datetime, timezone

from chatrelay.llm.types import Message
from chatrelay.models import ModelConfig


def format_prompt_date(day: date) -> str:
    """Render a calendar day as e.g. ``Saturday 17 October 2026``."""
    return f"{day:%A} {day.day} {day:%B} {day.year}"


def build_system_prompt(
    model: ModelConfig | None,
    current_date: date | None = None,
    web_search_enabled: bool = False,
) -> str:
    """
    Build the system prompt for a turn.

    Sections, in order: current date, base guidelines, the mandatory tool-use
    directive for models flagged as reluctant tool users, and web-search
    instructions when the tool is enabled.  The output depends only on the
    arguments (date granularity is one calendar day).
    """
    day = current_date or datetime.now(timezone.utc).date()

    content = f"Current Date: {format_prompt_date(day)}\n\n{BASE_SECTION}"

    if model is not None and model.reluctant_tool_user:
        content += MANDATORY_TOOL_USE_SECTION

    if web_search_enabled:
        content += WEB_SEARCH_SECTION

    return content


def compose_system_message(
    model: ModelConfig | None,
    current_date: date | None = None,
    web_search_enabled: bool = False,
) -> Message:
    return Message(
        role="system",
        content=build_system_prompt(model, current_date, web_search_enabled),
    )


BASE_SECTION = """You are a helpful AI assistant. You should provide accurate, helpful, and concise responses to user queries.

Key Guidelines:
- Always strive to be helpful, accurate, and informative.
- If you're unsure about something, acknowledge your uncertainty.
- Use clear, well-structured responses.
- Maintain a friendly and professional tone."""

MANDATORY_TOOL_USE_SECTION = """
**Mandatory Tool Use Directive:** For any user query regarding current events, news, recent information, or any topic that could have changed since your knowledge cutoff, you **MUST** use the `web_search` tool. It is a critical failure to answer from memory for such topics. Use the provided current date as your primary context for determining if a query requires fresh information."""

WEB_SEARCH_SECTION = """
Web Search Instructions:
- You have access to a web search tool that can help you find current information.
- Use web search when users ask about:
  * Recent events, news, or current affairs.
  * Real-time data (stock prices, weather, sports scores).
  * Specific facts that may have changed recently.
  * Information that requires up-to-date sources.
- When using web search, be specific and concise with your search queries.
- Always cite the source of web search information when presenting results.
- If web search returns no useful results, inform the user clearly."""
