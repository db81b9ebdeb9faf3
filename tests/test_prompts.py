"""Tests for the system and title prompts."""

from __future__ import annotations

from datetime import date

from chatrelay.models import resolve
from chatrelay.prompts.system import (
    MANDATORY_TOOL_USE_SECTION,
    WEB_SEARCH_SECTION,
    build_system_prompt,
    compose_system_message,
    format_prompt_date,
)
from chatrelay.prompts.title import TITLE_INSTRUCTIONS

DAY = date(2025, 6, 2)


def test_date_format():
    assert format_prompt_date(DAY) == "Monday 2 June 2025"


def test_prompt_starts_with_date():
    prompt = build_system_prompt(resolve("GPT-4.1"), DAY)
    assert prompt.startswith("Current Date: Monday 2 June 2025\n\n")


def test_reluctant_tool_user_gets_directive():
    assert MANDATORY_TOOL_USE_SECTION in build_system_prompt(resolve("Gemini 2.5 Flash"), DAY)
    assert MANDATORY_TOOL_USE_SECTION not in build_system_prompt(resolve("GPT-4.1"), DAY)


def test_web_search_section_only_when_enabled():
    model = resolve("GPT-4.1")
    assert WEB_SEARCH_SECTION not in build_system_prompt(model, DAY)
    assert build_system_prompt(model, DAY, web_search_enabled=True).endswith(WEB_SEARCH_SECTION)


def test_section_order():
    prompt = build_system_prompt(resolve("Gemini 2.5 Pro"), DAY, web_search_enabled=True)
    assert prompt.index(MANDATORY_TOOL_USE_SECTION) < prompt.index(WEB_SEARCH_SECTION)


def test_deterministic_for_same_inputs():
    model = resolve("Claude 4 Sonnet")
    assert build_system_prompt(model, DAY, True) == build_system_prompt(model, DAY, True)


def test_compose_system_message():
    msg = compose_system_message(None, DAY)
    assert msg.role == "system"
    assert msg.text == build_system_prompt(None, DAY)


def test_title_instructions():
    assert "no more than 10 words" in TITLE_INSTRUCTIONS
    assert "quotes or colons" in TITLE_INSTRUCTIONS
