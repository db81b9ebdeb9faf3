"""
Web search tool backed by the Tavily search API.

Upstream failures are returned to the model as a plain-text tool result
(``Error performing web search: ...``) so it can react within the
conversation.  A missing API key is a configuration error raised when the tool
is constructed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass

import httpx

from chatrelay.tools.base import Tool
from chatrelay.types import ConfigurationError, ErrorCode, ToolResult

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_NAME = "web_search"


@dataclass
class WebSearchResult:
    title: str
    url: str
    content: str
    raw_content: str | None = None
    score: float | None = None

    @classmethod
    def from_raw(cls, raw: dict) -> WebSearchResult:
        score = raw.get("score")
        raw_content = raw.get("raw_content")
        return cls(
            title=str(raw.get("title") or "Untitled"),
            url=str(raw.get("url") or ""),
            content=str(raw.get("content") or ""),
            raw_content=str(raw_content) if raw_content else None,
            score=float(score) if isinstance(score, (int, float)) else None,
        )

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class WebSearchTool(Tool):
    """
    Search the web and return the top results as a JSON string.

    Parameters
    ----------
    api_key:
        Tavily API key.  Required.
    max_results:
        Upper bound on returned results.
    url:
        Tavily API base URL.
    timeout:
        HTTP timeout in seconds.
    transport:
        Optional httpx transport (tests).
    """

    def __init__(
        self,
        api_key: str | None,
        max_results: int = 5,
        url: str = "https://api.tavily.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError(
                "TAVILY_API_KEY is not set. Web search cannot be enabled without it."
            )
        self._api_key = api_key
        self._max_results = max_results
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return WEB_SEARCH_TOOL_NAME

    @property
    def description(self) -> str:
        return (
            "Search the web for current information. Use this tool when you need "
            "up-to-date information about recent events, current affairs, real-time "
            "data (stock prices, weather, sports scores), or specific facts that may "
            "have changed recently. Always provide clear citations when using search "
            "results."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        "The search query to use. Be specific and concise. Focus on "
                        "key terms relevant to the user's question."
                    ),
                },
            },
            "required": ["query"],
        }

    async def search(self, query: str) -> list[WebSearchResult]:
        """Call Tavily and return at most ``max_results`` results.  May raise."""
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            resp = await client.post(
                f"{self._url}/search",
                json={"query": query, "max_results": self._max_results},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            resp.raise_for_status()
            data = resp.json()

        raw_results = data.get("results") or []
        return [WebSearchResult.from_raw(r) for r in raw_results[: self._max_results]]

    async def execute(self, **kwargs) -> ToolResult:
        query = kwargs.get("query", "")
        try:
            results = await self.search(query)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Web search failed for %r: %s", query, exc)
            message = f"Error performing web search: {exc}"
            return ToolResult(
                success=False,
                content=message,
                error=str(exc),
                error_code=ErrorCode.UPSTREAM_ERROR,
            )

        payload = [r.to_dict() for r in results]
        return ToolResult(
            success=True,
            content=json.dumps(payload),
            data=payload,
            metadata={"query": query, "count": len(payload)},
        )
