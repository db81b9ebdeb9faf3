"""
Google Gemini provider (``streamGenerateContent`` over SSE).

Thinking is requested with ``generationConfig.thinkingConfig``; thought
summaries come back as parts flagged ``thought: true``.  Gemini returns whole
``functionCall`` parts without ids, so ids are generated here.
"""

from __future__ import annotations

import json
import logging
import uuid

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

# JSON-schema keywords the Gemini function-declaration schema rejects.
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "$schema"})


def gemini_schema(schema: object) -> object:
    """Strip keywords Gemini does not accept, recursively."""
    if isinstance(schema, dict):
        return {
            k: gemini_schema(v)
            for k, v in schema.items()
            if k not in _UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [gemini_schema(v) for v in schema]
    return schema


class GoogleProvider(Provider):
    default_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.reset()

    @property
    def name(self) -> str:
        return Providers.GOOGLE

    def reset(self) -> None:
        self._call_index = 0
        self._finish_reason: str | None = None
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
            "x-goog-api-key": self._api_key,
        }

        generation_config: dict = {"maxOutputTokens": options.max_output_tokens}
        if options.reasoning:
            generation_config["thinkingConfig"] = {"includeThoughts": True}

        body: dict = {
            "contents": self._wire_contents(messages),
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t["name"],
                            "description": t.get("description", ""),
                            "parameters": gemini_schema(t.get("parameters") or {}),
                        }
                        for t in tools
                    ]
                }
            ]
            if options.tool_choice:
                body["toolConfig"] = {
                    "functionCallingConfig": {"mode": options.tool_choice.upper()}
                }

        url = f"{self._url}/models/{model}:streamGenerateContent?alt=sse"
        return url, headers, body

    def _wire_contents(self, messages: list[Message]) -> list[dict]:
        contents: list[dict] = []
        for msg in messages:
            if msg.role == "tool":
                part = {
                    "functionResponse": {
                        "name": msg.name or "",
                        "response": {"name": msg.name or "", "content": msg.text},
                    }
                }
                if contents and _is_function_responses(contents[-1]):
                    contents[-1]["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
                continue

            role = "model" if msg.role == "assistant" else "user"
            if isinstance(msg.content, list):
                parts = [self._wire_block(b) for b in msg.content]
            else:
                parts = [{"text": msg.content}] if msg.content else []
            for tc in msg.tool_calls or []:
                parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
            if parts:
                contents.append({"role": role, "parts": parts})
        return contents

    @staticmethod
    def _wire_block(block: ContentBlock) -> dict:
        if isinstance(block, ImageContent):
            return {
                "inlineData": {"mimeType": block.mime_type, "data": block.base64_data}
            }
        if isinstance(block, TextContent):
            return {"text": block.text}
        raise TypeError(f"Unsupported content block: {type(block).__name__}")

    # ------------------------------------------------------------------
    # Stream parsing
    # ------------------------------------------------------------------

    def parse_event(self, event: str | None, data: dict) -> list[ProviderEvent]:
        if data.get("error") is not None:
            return [self.stream_error(data["error"])]

        if data.get("usageMetadata"):
            self._usage = data["usageMetadata"]

        candidates = data.get("candidates") or []
        if not candidates:
            return []

        candidate = candidates[0]
        out: list[ProviderEvent] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "functionCall" in part:
                call = part["functionCall"] or {}
                out.append(
                    RawToolDelta(
                        call_index=self._call_index,
                        id=f"call_{uuid.uuid4().hex[:12]}",
                        name_delta=call.get("name", ""),
                        args_delta=json.dumps(call.get("args") or {}),
                        done=True,
                    )
                )
                self._call_index += 1
            elif part.get("text"):
                if part.get("thought"):
                    out.append(ReasoningDelta(part["text"]))
                else:
                    out.append(TextDelta(part["text"]))

        if candidate.get("finishReason"):
            self._finish_reason = candidate["finishReason"]
        return out

    def finish(self) -> list[ProviderEvent]:
        return [Done(finish_reason=self._finish_reason, usage=self._usage)]


def _is_function_responses(content: dict) -> bool:
    parts = content.get("parts") or []
    return content.get("role") == "user" and bool(parts) and all(
        "functionResponse" in p for p in parts
    )
