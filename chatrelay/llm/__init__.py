"""LLM subsystem -- provider adapters, the tool-use engine, and stream events."""

from chatrelay.llm.engine import Engine, create_engine
from chatrelay.llm.tool_call_assembler import ToolCallAssembler
from chatrelay.llm.token_counter import TokenCounter
from chatrelay.llm.types import (
    Done,
    Message,
    ProviderOptions,
    ReasoningDelta,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallEvent,
    ToolResultEvent,
)

__all__ = [
    "Done",
    "Engine",
    "Message",
    "ProviderOptions",
    "ReasoningDelta",
    "StreamError",
    "StreamEvent",
    "TextDelta",
    "TokenCounter",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallEvent",
    "ToolResultEvent",
    "create_engine",
]
