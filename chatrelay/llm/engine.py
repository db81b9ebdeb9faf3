"""
Completion engine -- the multi-step tool-use loop over one provider.

``create_engine`` is a per-call factory: every turn builds a fresh provider
client from its own credential, so nothing credential-bearing is shared
across turns.

Each step streams one provider request.  Text and reasoning deltas are
forwarded as they arrive; tool-call fragments are assembled.  When a step
ends with tool calls, each call is validated and executed, a ``ToolCallEvent``
and a ``ToolResultEvent`` are emitted, and the calls and their results are
appended to the wire history for the next step.  On the last step tools are
still declared but ``tool_choice="none"`` forces a final answer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import AsyncIterator

import httpx

from chatrelay.config import ProvidersConfig
from chatrelay.llm.providers import PROVIDER_CLASSES, Provider
from chatrelay.llm.tool_call_assembler import ToolCallAssembler
from chatrelay.llm.types import (
    Done,
    Message,
    ProviderOptions,
    RawToolDelta,
    ReasoningDelta,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolCallEvent,
    ToolResultEvent,
)
from chatrelay.models import Providers
from chatrelay.tools.registry import ToolRegistry
from chatrelay.tools.validation import ToolValidator
from chatrelay.types import (
    ErrorCode,
    MissingCredentialError,
    ToolResult,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5


def create_engine(
    provider: str,
    credential: str | None,
    *,
    config: ProvidersConfig | None = None,
    max_steps: int = DEFAULT_MAX_STEPS,
    tool_timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Engine:
    """
    Build an ``Engine`` for *provider* authenticated with *credential*.

    Raises ``UnsupportedProviderError`` for an unknown provider and
    ``MissingCredentialError`` when *credential* is empty.
    """
    cls = PROVIDER_CLASSES.get(provider)
    if cls is None:
        raise UnsupportedProviderError(provider)
    if not credential:
        raise MissingCredentialError(provider)

    config = config or ProvidersConfig()
    url = {
        Providers.OPENAI: config.openai_url,
        Providers.ANTHROPIC: config.anthropic_url,
        Providers.GOOGLE: config.google_url,
        Providers.OPENROUTER: config.openrouter_url,
    }[provider]
    client = cls(
        credential,
        url=url,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
        transport=transport,
    )
    return Engine(client, max_steps=max_steps, tool_timeout=tool_timeout)


class Engine:
    """
    Streams completions from one provider, running tools between steps.

    Parameters
    ----------
    provider : Provider
        The adapter to stream from.
    max_steps : int
        Max provider round trips per completion.
    tool_timeout : float
        Max seconds for a single tool execution.
    """

    def __init__(
        self,
        provider: Provider,
        max_steps: int = DEFAULT_MAX_STEPS,
        tool_timeout: float = 30.0,
    ) -> None:
        self.provider = provider
        self.max_steps = max(1, max_steps)
        self.tool_timeout = tool_timeout

    async def stream_completion(
        self,
        model: str,
        system_message: Message | str,
        history: list[Message],
        tools: ToolRegistry | None = None,
        options: ProviderOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield normalized stream events for one completion.

        The stream ends with ``Done`` on success or ``StreamError`` when the
        provider reports an in-stream error.  Failures opening the stream are
        raised.
        """
        options = options or ProviderOptions()
        system = (
            system_message.text
            if isinstance(system_message, Message)
            else system_message
        )
        messages = list(history)
        declarations = tools.declarations() if tools and len(tools) else None

        for step in range(self.max_steps):
            step_options = options
            if declarations and step == self.max_steps - 1:
                step_options = replace(options, tool_choice="none")

            assembler = ToolCallAssembler()
            calls: list[ToolCall] = []
            text: list[str] = []
            reasoning: list[str] = []
            signature: str | None = None
            done: Done | None = None

            async for event in self.provider.stream(
                model, system, messages, declarations, step_options
            ):
                if isinstance(event, TextDelta):
                    if event.text:
                        text.append(event.text)
                        yield event
                elif isinstance(event, ReasoningDelta):
                    if event.signature:
                        signature = event.signature
                    if event.text:
                        reasoning.append(event.text)
                        yield ReasoningDelta(event.text)
                elif isinstance(event, RawToolDelta):
                    calls.extend(assembler.feed(event))
                elif isinstance(event, StreamError):
                    yield event
                    return
                elif isinstance(event, Done):
                    done = event

            calls.extend(assembler.flush())
            for err in assembler.errors:
                logger.warning("Dropped malformed tool call: %s", err)

            if not calls or not declarations:
                yield done or Done()
                return

            logger.info(
                "Step %d/%d produced %d tool call(s): %s",
                step + 1,
                self.max_steps,
                len(calls),
                ", ".join(c.name for c in calls),
            )
            messages.append(
                Message(
                    role="assistant",
                    content="".join(text),
                    tool_calls=calls,
                    reasoning="".join(reasoning) or None,
                    reasoning_signature=signature,
                )
            )
            for call in calls:
                yield ToolCallEvent(id=call.id, name=call.name, args=call.arguments)
                result = await self._execute_tool_call(tools, call)
                yield ToolResultEvent(
                    tool_call_id=call.id, result=result.content, name=call.name
                )
                messages.append(
                    Message(
                        role="tool",
                        content=result.content,
                        tool_call_id=call.id,
                        name=call.name,
                    )
                )

        logger.info("Reached maximum of %d steps", self.max_steps)
        yield Done(finish_reason="max_steps")

    async def _execute_tool_call(
        self, registry: ToolRegistry, tool_call: ToolCall
    ) -> ToolResult:
        """
        Run one tool call.  Never raises: every failure becomes a textual
        result the model can read.
        """
        tool = registry.get(tool_call.name)
        if tool is None:
            return ToolResult(
                success=False,
                content=f"Unknown tool: {tool_call.name}",
                error=f"Unknown tool: {tool_call.name}",
                error_code=ErrorCode.UNKNOWN_TOOL,
            )

        valid, error_msg = ToolValidator.validate(tool, tool_call.arguments)
        if not valid:
            return ToolResult(
                success=False,
                content=f"Invalid arguments for {tool_call.name}: {error_msg}",
                error=error_msg,
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        try:
            return await asyncio.wait_for(
                tool.execute(**tool_call.arguments),
                timeout=self.tool_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", tool_call.name, self.tool_timeout)
            return ToolResult(
                success=False,
                content=f"Tool {tool_call.name} timed out after {self.tool_timeout}s",
                error=f"Timeout after {self.tool_timeout}s",
                error_code=ErrorCode.TIMEOUT,
            )
        except Exception as e:
            logger.exception("Tool %s raised", tool_call.name)
            return ToolResult(
                success=False,
                content=f"Tool exception: {e}",
                error=str(e),
                error_code=ErrorCode.TOOL_EXCEPTION,
            )
