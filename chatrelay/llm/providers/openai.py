"""
OpenAI chat-completion provider.

Speaks the ``/chat/completions`` streaming protocol over plain httpx.  The
OpenRouter adapter reuses this wire format and only adds reasoning.
"""

from __future__ import annotations

import json
import logging

from chatrelay.llm.providers.base import Provider, ProviderEvent
from chatrelay.llm.types import (
    ContentBlock,
    Done,
    ImageContent,
    Message,
    ProviderOptions,
    RawToolDelta,
    ReasoningDelta,
    TextContent,
    TextDelta,
)
from chatrelay.models import Providers

logger = logging.getLogger(__name__)


class OpenAIProvider(Provider):
    """OpenAI ``/chat/completions`` over SSE.  Never sends reasoning config."""

    default_url = "https://api.openai.com/v1"
    max_tokens_field = "max_completion_tokens"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._finish_reason: str | None = None
        self._usage: dict = {}

    @property
    def name(self) -> str:
        return Providers.OPENAI

    def reset(self) -> None:
        self._finish_reason = None
        self._usage = {}

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {self._api_key}",
        }

    def build_request(
        self,
        model: str,
        system: str,
        messages: list[Message],
        tools: list[dict] | None,
        options: ProviderOptions,
    ) -> tuple[str, dict[str, str], dict]:
        wire_messages: list[dict] = []
        if system:
            wire_messages.append({"role": "system", "content": system})
        wire_messages.extend(self._wire_message(m) for m in messages)

        body: dict = {
            "model": model,
            "messages": wire_messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            self.max_tokens_field: options.max_output_tokens,
        }
        if tools:
            body["tools"] = [{"type": "function", "function": t} for t in tools]
            body["tool_choice"] = options.tool_choice or "auto"
        self.apply_reasoning(body, options)
        return f"{self._url}/chat/completions", self._build_headers(), body

    def apply_reasoning(self, body: dict, options: ProviderOptions) -> None:
        """Inject reasoning configuration.  OpenAI has none to inject."""

    def _wire_message(self, msg: Message) -> dict:
        if msg.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.text,
            }

        m: dict = {"role": msg.role}
        if msg.role == "user" and isinstance(msg.content, list):
            m["content"] = [self._wire_block(b) for b in msg.content]
        else:
            m["content"] = msg.text

        if msg.tool_calls:
            m["content"] = m["content"] or None
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in msg.tool_calls
            ]
        return m

    @staticmethod
    def _wire_block(block: ContentBlock) -> dict:
        if isinstance(block, ImageContent):
            return {"type": "image_url", "image_url": {"url": block.data_url}}
        if isinstance(block, TextContent):
            return {"type": "text", "text": block.text}
        raise TypeError(f"Unsupported content block: {type(block).__name__}")

    # ------------------------------------------------------------------
    # Stream parsing
    # ------------------------------------------------------------------

    def reasoning_from_delta(self, delta: dict) -> str | None:
        return None

    def parse_event(self, event: str | None, data: dict) -> list[ProviderEvent]:
        if data.get("error") is not None:
            return [self.stream_error(data["error"])]

        if data.get("usage"):
            self._usage = data["usage"]

        choices = data.get("choices")
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        out: list[ProviderEvent] = []

        reasoning = self.reasoning_from_delta(delta)
        if reasoning:
            out.append(ReasoningDelta(reasoning))

        text = delta.get("content")
        if text:
            out.append(TextDelta(text))

        for raw_tc in delta.get("tool_calls") or []:
            func = raw_tc.get("function") or {}
            out.append(
                RawToolDelta(
                    call_index=raw_tc.get("index", 0),
                    id=raw_tc.get("id"),
                    name_delta=func.get("name") or "",
                    args_delta=func.get("arguments") or "",
                )
            )

        if choice.get("finish_reason"):
            self._finish_reason = choice["finish_reason"]
        return out

    def finish(self) -> list[ProviderEvent]:
        return [Done(finish_reason=self._finish_reason, usage=self._usage)]
