"""Abstract base class for provider adapters, plus the shared SSE transport."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Union

import httpx

from chatrelay.llm.types import (
    Done,
    Message,
    ProviderOptions,
    RawToolDelta,
    ReasoningDelta,
    StreamError,
    TextDelta,
)
from chatrelay.types import ProviderError

logger = logging.getLogger(__name__)

# What an adapter yields.  Tool calls arrive as raw fragments; the engine
# assembles them.
ProviderEvent = Union[TextDelta, ReasoningDelta, RawToolDelta, StreamError, Done]


def mask_key(key: str | None) -> str:
    return f"{key[:4]}..." if key else "(none)"


class Provider(ABC):
    """
    One upstream vendor's streaming completion endpoint.

    Subclasses translate provider-ready ``Message`` lists into the vendor's
    request body and translate the vendor's SSE payloads back into
    ``ProviderEvent`` objects.  Connection handling, retries and SSE framing
    are shared.

    Parameters
    ----------
    api_key:
        The credential for this provider.
    url:
        Base URL of the API.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Retries on 429/5xx responses and transport errors at stream-open.
    transport:
        Optional httpx transport, used by tests.
    """

    default_url: str = ""

    def __init__(
        self,
        api_key: str,
        url: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = (url or self.default_url).rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (one of ``Providers.ALL``)."""
        ...

    @abstractmethod
    def build_request(
        self,
        model: str,
        system: str,
        messages: list[Message],
        tools: list[dict] | None,
        options: ProviderOptions,
    ) -> tuple[str, dict[str, str], dict]:
        """Return ``(url, headers, body)`` for one streaming request."""
        ...

    @abstractmethod
    def parse_event(self, event: str | None, data: dict) -> list[ProviderEvent]:
        """Translate one SSE payload.  *event* is the SSE ``event:`` name, if any."""
        ...

    def finish(self) -> list[ProviderEvent]:
        """Events to emit once the byte stream ends.  Called exactly once."""
        return [Done()]

    def reset(self) -> None:
        """Clear per-request parse state before a new request."""

    async def stream(
        self,
        model: str,
        system: str,
        messages: list[Message],
        tools: list[dict] | None = None,
        options: ProviderOptions | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        options = options or ProviderOptions()
        url, headers, body = self.build_request(model, system, messages, tools, options)
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d reasoning=%s api_key=%s",
            self.name,
            model,
            len(tools) if tools else 0,
            len(messages),
            options.reasoning,
            mask_key(self._api_key),
        )
        self.reset()
        async for event in self._stream_request(url, headers, body):
            yield event

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _stream_request(
        self, url: str, headers: dict[str, str], body: dict
    ) -> AsyncIterator[ProviderEvent]:
        # Only the connection attempt is retried.  Once an event has reached
        # the caller a transport failure ends the stream.
        last_error: Exception | None = None
        yielded = False
        for attempt in range(1 + self._max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code == 429 or response.status_code >= 500:
                            await response.aread()
                            last_error = self._status_error(response)
                            logger.warning(
                                "%s returned HTTP %d (attempt %d/%d)",
                                self.name,
                                response.status_code,
                                attempt + 1,
                                1 + self._max_retries,
                            )
                            continue

                        if response.status_code >= 400:
                            await response.aread()
                            raise self._status_error(response)

                        async for event in self._parse_sse_stream(response):
                            yielded = True
                            yield event
                        return
            except httpx.TransportError as exc:
                if yielded:
                    raise ProviderError(
                        f"{self.name} stream interrupted: {exc}",
                        provider=self.name,
                        cause=exc,
                    ) from exc
                last_error = ProviderError(
                    f"{self.name} connection failed: {exc}",
                    provider=self.name,
                    cause=exc,
                )
                if attempt < self._max_retries:
                    logger.warning(
                        "%s connection failed (attempt %d/%d): %s",
                        self.name,
                        attempt + 1,
                        1 + self._max_retries,
                        exc,
                    )
                    continue
                raise last_error from exc

        if last_error is not None:
            raise last_error

    def _status_error(self, response: httpx.Response) -> ProviderError:
        detail = response.text[:500] if response.content else ""
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            detail = payload["error"].get("message") or detail
        message = f"{self.name} returned HTTP {response.status_code}"
        if detail:
            message = f"{message}: {detail}"
        return ProviderError(
            message,
            provider=self.name,
            status_code=response.status_code,
        )

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[ProviderEvent]:
        """
        Parse Server-Sent Events from the response.

        Lines come from httpx's incremental decoder, so characters split across
        network chunks survive and a final line without a newline is kept.
        Handles ``event:`` and ``data:`` fields; ``:`` comment lines (keep-alive)
        are skipped.  The OpenAI-style ``data: [DONE]`` sentinel ends the stream.
        """
        event_name: str | None = None
        async for line in response.aiter_lines():
            line = line.rstrip("\r")

            if not line:
                event_name = None
                continue
            if line.startswith(":"):
                continue
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
                continue
            if not line.startswith("data:"):
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                for event in self.finish():
                    yield event
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue
            if not isinstance(data, dict):
                continue

            for event in self.parse_event(event_name, data):
                yield event
                if isinstance(event, StreamError):
                    return

        for event in self.finish():
            yield event

    def stream_error(self, payload: object) -> StreamError:
        """Wrap an in-stream ``error`` payload as a ``StreamError`` event."""
        if isinstance(payload, dict):
            message = str(payload.get("message") or payload.get("type") or payload)
            code = payload.get("code")
        else:
            message, code = str(payload), None
        return StreamError(
            ProviderError(
                message,
                provider=self.name,
                status_code=code if isinstance(code, int) else None,
                cause=payload,
            )
        )
