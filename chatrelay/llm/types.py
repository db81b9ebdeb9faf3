"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from chatrelay.types import ProviderError


# ---------------------------------------------------------------------------
# Provider-ready messages
# ---------------------------------------------------------------------------


@dataclass
class TextContent:
    text: str


@dataclass
class ImageContent:
    """An inline image.  *data_url* is always a ``data:<mime>;base64,`` URL."""

    data_url: str
    mime_type: str = "image/jpeg"

    @property
    def base64_data(self) -> str:
        return self.data_url.split(",", 1)[1] if "," in self.data_url else ""


ContentBlock = Union[TextContent, ImageContent]


@dataclass
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict


@dataclass
class Message:
    """
    A single message in provider-ready form.

    Only ``user`` messages carry a list of content blocks; every other role
    carries plain text.  ``tool`` messages answer a prior tool call.
    """

    role: str  # "user", "assistant", "system", "tool"
    content: str | list[ContentBlock]
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    reasoning: str | None = None
    reasoning_signature: str | None = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextContent))


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Providers emit these as tool-call fragments arrive.  The ToolCallAssembler
    accumulates them and produces finished ToolCall objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


# ---------------------------------------------------------------------------
# Normalized stream events
# ---------------------------------------------------------------------------


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str
    signature: str | None = None


@dataclass
class ToolCallEvent:
    id: str
    name: str
    args: dict[str, Any]


@dataclass
class ToolResultEvent:
    tool_call_id: str
    result: Any
    name: str = ""


@dataclass
class StreamError:
    cause: Any

    def as_exception(self) -> BaseException:
        if isinstance(self.cause, BaseException):
            return self.cause
        return ProviderError(str(self.cause), cause=self.cause)


@dataclass
class Done:
    finish_reason: str | None = None
    usage: dict = field(default_factory=dict)


StreamEvent = Union[
    TextDelta, ReasoningDelta, ToolCallEvent, ToolResultEvent, StreamError, Done
]


@dataclass
class ProviderOptions:
    """Per-request knobs the engine passes down to a provider adapter."""

    reasoning: bool = False
    reasoning_budget_tokens: int = 8_000
    max_output_tokens: int = 8_192
    tool_choice: str | None = None
