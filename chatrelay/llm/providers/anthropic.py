"""
Anthropic Messages API provider.

Streams ``POST /messages`` with typed SSE events.  Extended thinking is the
nested ``thinking: {"type": "enabled", "budget_tokens": N}`` field, and
``max_tokens`` must be larger than that budget.  Thinking blocks carry a
signature that must be sent back verbatim on the follow-up request of a
tool-use loop.
"""

from __future__ import annotations

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

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(Provider):
    default_url = "https://api.anthropic.com/v1"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.reset()

    @property
    def name(self) -> str:
        return Providers.ANTHROPIC

    def reset(self) -> None:
        self._tool_blocks: set[int] = set()
        self._stop_reason: str | None = None
        self._usage: dict = {}

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_request(
        self,
        model: str,
        system: str,
        messages: list[Message],
        tools: list[dict] | None,
        options: ProviderOptions,
    ) -> tuple[str, dict[str, str], dict]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        # The Messages API only takes user and assistant turns; stored system
        # messages join the top-level system prompt.
        history_system = [m.text for m in messages if m.role == "system" and m.text]
        system = "\n\n".join(s for s in [system, *history_system] if s)

        body: dict = {
            "model": model,
            "max_tokens": options.max_output_tokens,
            "messages": self._wire_messages(
                [m for m in messages if m.role != "system"]
            ),
            "stream": True,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = [
                {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "input_schema": t.get("parameters") or {"type": "object"},
                }
                for t in tools
            ]
            if options.tool_choice:
                body["tool_choice"] = {"type": options.tool_choice}
        if options.reasoning:
            budget = options.reasoning_budget_tokens
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
            if body["max_tokens"] <= budget:
                body["max_tokens"] = budget + options.max_output_tokens
        return f"{self._url}/messages", headers, body

    def _wire_messages(self, messages: list[Message]) -> list[dict]:
        wire: list[dict] = []
        for msg in messages:
            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text,
                }
                # Consecutive tool results share one user turn.
                if wire and wire[-1]["role"] == "user" and _is_tool_results(wire[-1]):
                    wire[-1]["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
                continue

            if msg.role == "assistant":
                wire.append({"role": "assistant", "content": self._assistant_blocks(msg)})
            elif isinstance(msg.content, list):
                wire.append(
                    {"role": msg.role, "content": [self._wire_block(b) for b in msg.content]}
                )
            else:
                wire.append({"role": msg.role, "content": msg.text})
        return wire

    @staticmethod
    def _assistant_blocks(msg: Message) -> list[dict] | str:
        if not msg.tool_calls:
            return msg.text
        blocks: list[dict] = []
        if msg.reasoning and msg.reasoning_signature:
            blocks.append(
                {
                    "type": "thinking",
                    "thinking": msg.reasoning,
                    "signature": msg.reasoning_signature,
                }
            )
        if msg.text:
            blocks.append({"type": "text", "text": msg.text})
        for tc in msg.tool_calls:
            blocks.append(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
            )
        return blocks

    @staticmethod
    def _wire_block(block: ContentBlock) -> dict:
        if isinstance(block, ImageContent):
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": block.mime_type,
                    "data": block.base64_data,
                },
            }
        if isinstance(block, TextContent):
            return {"type": "text", "text": block.text}
        raise TypeError(f"Unsupported content block: {type(block).__name__}")

    # ------------------------------------------------------------------
    # Stream parsing
    # ------------------------------------------------------------------

    def parse_event(self, event: str | None, data: dict) -> list[ProviderEvent]:
        kind = data.get("type") or event

        if kind == "error":
            return [self.stream_error(data.get("error"))]

        if kind == "message_start":
            self._usage.update((data.get("message") or {}).get("usage") or {})
            return []

        if kind == "content_block_start":
            block = data.get("content_block") or {}
            index = data.get("index", 0)
            if block.get("type") == "tool_use":
                self._tool_blocks.add(index)
                return [
                    RawToolDelta(
                        call_index=index,
                        id=block.get("id"),
                        name_delta=block.get("name", ""),
                    )
                ]
            if block.get("type") == "text" and block.get("text"):
                return [TextDelta(block["text"])]
            return []

        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            index = data.get("index", 0)
            dtype = delta.get("type")
            if dtype == "text_delta":
                return [TextDelta(delta.get("text", ""))]
            if dtype == "thinking_delta":
                return [ReasoningDelta(delta.get("thinking", ""))]
            if dtype == "signature_delta":
                return [ReasoningDelta("", signature=delta.get("signature"))]
            if dtype == "input_json_delta":
                return [
                    RawToolDelta(call_index=index, args_delta=delta.get("partial_json", ""))
                ]
            return []

        if kind == "content_block_stop":
            index = data.get("index", 0)
            if index in self._tool_blocks:
                self._tool_blocks.discard(index)
                return [RawToolDelta(call_index=index, done=True)]
            return []

        if kind == "message_delta":
            delta = data.get("delta") or {}
            if delta.get("stop_reason"):
                self._stop_reason = delta["stop_reason"]
            self._usage.update(data.get("usage") or {})
            return []

        # message_stop, ping
        return []

    def finish(self) -> list[ProviderEvent]:
        return [Done(finish_reason=self._stop_reason, usage=dict(self._usage))]


def _is_tool_results(wire_message: dict) -> bool:
    content = wire_message.get("content")
    return isinstance(content, list) and all(
        b.get("type") == "tool_result" for b in content
    )
