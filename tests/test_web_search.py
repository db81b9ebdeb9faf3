"""Tests for the Tavily-backed web search tool."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.tools.web_search import WEB_SEARCH_TOOL_NAME, WebSearchResult, WebSearchTool
from chatrelay.types import ConfigurationError, ErrorCode


def _transport(status: int, payload, requests: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if isinstance(payload, (dict, list)):
            return httpx.Response(status, json=payload)
        return httpx.Response(status, content=payload)

    return httpx.MockTransport(handler)


RESULTS = {
    "results": [
        {"title": "Oslo weather", "url": "https://a.example", "content": "Rain", "score": 0.91},
        {"title": "Forecast", "url": "https://b.example", "content": "Sun", "raw_content": "Full page"},
        {"url": "https://c.example", "content": "Third"},
    ]
}


async def test_search_success():
    requests = []
    tool = WebSearchTool("tvly-key", max_results=2, transport=_transport(200, RESULTS, requests))
    result = await tool.execute(query="weather in Oslo")

    assert result.success is True
    payload = json.loads(result.content)
    assert payload == [
        {"title": "Oslo weather", "url": "https://a.example", "content": "Rain", "score": 0.91},
        {"title": "Forecast", "url": "https://b.example", "content": "Sun", "raw_content": "Full page"},
    ]
    assert result.metadata == {"query": "weather in Oslo", "count": 2}

    sent = requests[0]
    assert str(sent.url) == "https://api.tavily.com/search"
    assert sent.headers["Authorization"] == "Bearer tvly-key"
    assert json.loads(sent.content) == {"query": "weather in Oslo", "max_results": 2}


async def test_upstream_failure_is_textual():
    tool = WebSearchTool("tvly-key", transport=_transport(500, b"boom"))
    result = await tool.execute(query="anything")

    assert result.success is False
    assert result.content.startswith("Error performing web search:")
    assert result.error_code == ErrorCode.UPSTREAM_ERROR


async def test_non_json_body_is_textual_failure():
    tool = WebSearchTool("tvly-key", transport=_transport(200, b"<html>"))
    result = await tool.execute(query="anything")
    assert result.success is False
    assert result.content.startswith("Error performing web search:")


async def test_empty_results():
    tool = WebSearchTool("tvly-key", transport=_transport(200, {"results": []}))
    result = await tool.execute(query="nothing")
    assert result.success is True
    assert result.content == "[]"


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationError, match="TAVILY_API_KEY"):
        WebSearchTool(None)


def test_result_defaults():
    result = WebSearchResult.from_raw({"url": "https://x", "score": "high"})
    assert result.title == "Untitled"
    assert result.score is None
    assert result.to_dict() == {"title": "Untitled", "url": "https://x", "content": ""}


def test_declaration():
    decl = WebSearchTool("k").declaration()
    assert decl["name"] == WEB_SEARCH_TOOL_NAME
    assert decl["parameters"]["required"] == ["query"]
