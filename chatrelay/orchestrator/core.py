"""
Turn orchestrator -- drives one conversation turn end to end.

A turn:
1. Resolves the model and picks the provider route and credential
2. Converts stored history into provider-ready messages (remote images are
   fetched and inlined)
3. Composes the system prompt and, with web search on, registers the tool
4. Streams the engine, persisting the full part accumulator after every event
5. Finalizes the assistant message exactly once, on success or failure
6. Schedules background jobs (attachment annotation, first-exchange title)

State machine: CREATED -> STREAMING -> FINALIZING -> COMPLETED | FAILED.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import httpx

from chatrelay.chat.parts import (
    ImagePart,
    Part,
    TextPart,
    ToolCallPart,
    append_text,
    append_tool_call,
    append_tool_result,
    fold_reasoning,
    merge_reasoning,
    parts_text,
    project_tool_calls,
    project_tool_outputs,
    reasoning_text,
)
from chatrelay.chat.records import ChatMessage, Roles
from chatrelay.chat.store import ChatStore
from chatrelay.config import ChatRelayConfig
from chatrelay.llm.engine import create_engine
from chatrelay.llm.token_counter import TokenCounter
from chatrelay.llm.types import (
    ContentBlock,
    Done,
    ImageContent,
    Message,
    ProviderOptions,
    ReasoningDelta,
    StreamError,
    StreamEvent,
    TextContent,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
)
from chatrelay.models import ModelConfig, Providers, resolve
from chatrelay.orchestrator.jobs import JobQueue, annotate_attachments, generate_title
from chatrelay.prompts.system import compose_system_message
from chatrelay.tools.registry import ToolRegistry
from chatrelay.tools.web_search import WebSearchTool
from chatrelay.types import StaleWriterError

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Sorry, I ran into an error: "


class TurnState(str, Enum):
    CREATED = "created"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TurnRequest:
    """Everything one orchestrator run needs.  ``history`` is already persisted."""

    conversation_id: str
    history: list[ChatMessage]
    assistant_message_id: str
    writer_token: str
    model: str
    provider: str | None = None
    credential: str | None = None
    web_search_enabled: bool = False
    thinking_enabled: bool = False
    attachment_ids: list[str] = field(default_factory=list)


@dataclass
class TurnResult:
    state: TurnState
    content: str = ""
    parts: list[Part] = field(default_factory=list)
    error: str | None = None
    abandoned: bool = False


def drop_trailing_placeholder(history: list[ChatMessage]) -> list[ChatMessage]:
    """Remove a final empty assistant message; some providers reject it."""
    if history and history[-1].role == Roles.ASSISTANT and history[-1].is_empty:
        return history[:-1]
    return list(history)


def wire_model_id(config: ModelConfig, provider: str, requested: str) -> str:
    """The model id to send to *provider* for a request naming *requested*."""
    if requested != config.name:
        return requested
    if provider == Providers.OPENROUTER and config.provider != Providers.OPENROUTER:
        return config.openrouter_model_id or config.model_id
    return config.model_id


class TurnOrchestrator:
    """
    Runs turns against a ``ChatStore``.

    Parameters
    ----------
    store : ChatStore
        Conversation/message store.
    config : ChatRelayConfig
        Provider URLs, limits, tool settings, title model.
    jobs : JobQueue
        Where follow-on background work is submitted.
    engine_factory : callable
        ``create_engine``-compatible factory (tests pass a scripted one).
    web_search_factory : callable
        Returns the web search tool; raises ``ConfigurationError`` when the
        search credential is missing.
    http_transport : httpx.AsyncBaseTransport
        Optional transport for image fetches (tests).
    """

    def __init__(
        self,
        store: ChatStore,
        config: ChatRelayConfig | None = None,
        jobs: JobQueue | None = None,
        engine_factory: Callable = create_engine,
        web_search_factory: Callable[[], WebSearchTool] | None = None,
        token_counter: TokenCounter | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.config = config or ChatRelayConfig()
        self.jobs = jobs or JobQueue()
        self.engine_factory = engine_factory
        self.web_search_factory = web_search_factory or self._default_web_search
        self.token_counter = token_counter or TokenCounter()
        self._http_transport = http_transport

    def _default_web_search(self) -> WebSearchTool:
        tools = self.config.tools
        return WebSearchTool(
            api_key=tools.tavily_api_key(),
            max_results=tools.web_search_max_results,
            url=tools.tavily_url,
            timeout=tools.tool_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    async def run(self, request: TurnRequest) -> TurnResult:
        """Run one turn.  Never raises; the outcome is in the result and the store."""
        state = TurnState.CREATED
        parts: list[Part] = []
        provider: str | None = None
        try:
            model_config = resolve(request.model)
            provider = request.provider or model_config.provider
            credential = request.credential
            if not credential and provider == Providers.GOOGLE:
                credential = self.config.providers.host_google_api_key()
            engine = self.engine_factory(
                provider,
                credential,
                config=self.config.providers,
                max_steps=self.config.tools.max_tool_steps,
                tool_timeout=self.config.tools.tool_timeout_seconds,
            )

            history = await self._to_wire_history(
                drop_trailing_placeholder(request.history)
            )
            system = compose_system_message(
                model_config, web_search_enabled=request.web_search_enabled
            )
            tools = None
            if request.web_search_enabled:
                tools = ToolRegistry([self.web_search_factory()])

            options = ProviderOptions(
                reasoning=model_config.wants_reasoning(request.thinking_enabled),
                reasoning_budget_tokens=self.config.providers.reasoning_budget_tokens,
                max_output_tokens=self.config.providers.max_output_tokens,
            )
            model_id = wire_model_id(model_config, provider, request.model)

            logger.info(
                "Turn start: conversation=%s message=%s provider=%s model=%s "
                "web_search=%s thinking=%s",
                request.conversation_id,
                request.assistant_message_id,
                provider,
                model_id,
                request.web_search_enabled,
                options.reasoning,
            )

            state = TurnState.STREAMING
            async for event in engine.stream_completion(
                model_id, system, history, tools, options
            ):
                if isinstance(event, StreamError):
                    raise event.as_exception()
                if isinstance(event, Done):
                    break
                parts = self.apply_event(parts, event)
                await self._persist(request, parts)

            state = TurnState.FINALIZING
            parts = fold_reasoning(parts, reasoning_text(parts))
            content = parts_text(parts)
            await self._finalize(request, content, parts)
            state = TurnState.COMPLETED
        except StaleWriterError as exc:
            logger.warning("Abandoning turn in state %s: %s", state.value, exc)
            return TurnResult(TurnState.FAILED, parts=parts, error=str(exc), abandoned=True)
        except Exception as exc:
            logger.exception(
                "Turn failed: conversation=%s message=%s state=%s",
                request.conversation_id,
                request.assistant_message_id,
                state.value,
            )
            return await self._fail(request, exc)

        logger.info(
            "Turn completed: conversation=%s message=%s parts=%d",
            request.conversation_id,
            request.assistant_message_id,
            len(parts),
        )
        self._schedule_side_effects(request, provider, content)
        return TurnResult(TurnState.COMPLETED, content=content, parts=parts)

    @staticmethod
    def apply_event(parts: list[Part], event: StreamEvent) -> list[Part]:
        """Fold one stream event into the part accumulator."""
        if isinstance(event, TextDelta):
            return append_text(parts, event.text)
        if isinstance(event, ReasoningDelta):
            return merge_reasoning(parts, event.text)
        if isinstance(event, ToolCallEvent):
            return append_tool_call(parts, event.id, event.name, event.args)
        if isinstance(event, ToolResultEvent):
            if not any(
                isinstance(p, ToolCallPart) and p.id == event.tool_call_id
                for p in parts
            ):
                logger.warning(
                    "Tool result %s has no matching tool call", event.tool_call_id
                )
            return append_tool_result(parts, event.tool_call_id, event.result)
        return parts

    async def _persist(self, request: TurnRequest, parts: list[Part]) -> None:
        await self.store.update_streaming_message(
            request.assistant_message_id,
            request.writer_token,
            conversation_id=request.conversation_id,
            content=parts_text(parts),
            parts=parts,
            reasoning=reasoning_text(parts),
            tool_calls=project_tool_calls(parts),
            tool_outputs=project_tool_outputs(parts),
        )

    async def _finalize(
        self, request: TurnRequest, content: str, parts: list[Part]
    ) -> None:
        await self.store.finalize_message(
            request.assistant_message_id,
            request.writer_token,
            conversation_id=request.conversation_id,
            content=content,
            parts=parts,
            tool_calls=project_tool_calls(parts),
            tool_outputs=project_tool_outputs(parts),
        )

    async def _fail(self, request: TurnRequest, exc: BaseException) -> TurnResult:
        detail = str(exc) or type(exc).__name__
        text = f"{ERROR_PREFIX}{detail}"
        parts: list[Part] = [TextPart(text)]
        try:
            await self._finalize(request, text, parts)
        except StaleWriterError as stale:
            logger.warning("Could not record turn failure: %s", stale)
            return TurnResult(TurnState.FAILED, error=detail, abandoned=True)
        except Exception:
            logger.exception(
                "Could not record turn failure: conversation=%s message=%s",
                request.conversation_id,
                request.assistant_message_id,
            )
            return TurnResult(TurnState.FAILED, error=detail)
        logger.info(
            "Turn failed: conversation=%s message=%s parts=1",
            request.conversation_id,
            request.assistant_message_id,
        )
        return TurnResult(TurnState.FAILED, content=text, parts=parts, error=detail)

    # ------------------------------------------------------------------
    # History conversion
    # ------------------------------------------------------------------

    async def _to_wire_history(self, history: list[ChatMessage]) -> list[Message]:
        wire: list[Message] = []
        async with httpx.AsyncClient(
            timeout=self.config.providers.timeout_seconds,
            transport=self._http_transport,
            follow_redirects=True,
        ) as client:
            for msg in history:
                converted = await self._to_wire_message(client, msg)
                if converted is not None:
                    wire.append(converted)
        return wire

    async def _to_wire_message(
        self, client: httpx.AsyncClient, msg: ChatMessage
    ) -> Message | None:
        if msg.role == Roles.DATA:
            return None
        if not msg.parts:
            return Message(role=msg.role, content=msg.content)

        blocks: list[ContentBlock] = []
        for part in msg.parts:
            if isinstance(part, TextPart):
                blocks.append(TextContent(part.text))
            elif isinstance(part, ImagePart):
                image = await self._inline_image(client, part)
                if image is not None:
                    blocks.append(image)

        if not blocks:
            return None
        if msg.role == Roles.USER:
            return Message(role=Roles.USER, content=blocks)
        text = "".join(b.text for b in blocks if isinstance(b, TextContent))
        return Message(role=msg.role, content=text)

    async def _inline_image(
        self, client: httpx.AsyncClient, part: ImagePart
    ) -> ImageContent | None:
        mime_type = part.mime_type or "image/jpeg"
        if part.image.startswith("data:"):
            header = part.image.split(",", 1)[0]
            if ";" in header and not part.mime_type:
                mime_type = header[len("data:"):].split(";", 1)[0] or mime_type
            return ImageContent(data_url=part.image, mime_type=mime_type)

        try:
            resp = await client.get(part.image)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Skipping image %s: %s", part.image, exc)
            return None
        encoded = base64.b64encode(resp.content).decode("ascii")
        return ImageContent(data_url=f"data:{mime_type};base64,{encoded}", mime_type=mime_type)

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _schedule_side_effects(
        self, request: TurnRequest, provider: str | None, content: str
    ) -> None:
        if request.attachment_ids:
            self.jobs.submit(
                "annotate_attachments",
                annotate_attachments(
                    self.store, request.attachment_ids, content, self.token_counter
                ),
            )

        if len(request.history) != 2:
            return
        first_user = next((m for m in request.history if m.role == Roles.USER), None)
        if first_user is None:
            return

        if provider == Providers.GOOGLE and request.credential:
            title_key = request.credential
        else:
            title_key = self.config.providers.host_google_api_key()

        logger.info("Scheduling title generation for conversation %s", request.conversation_id)
        self.jobs.submit(
            "generate_title",
            generate_title(
                self.store,
                prompt=first_user.content,
                conversation_id=request.conversation_id,
                message_id=first_user.id,
                api_key=title_key,
                is_title=True,
                config=self.config,
                engine_factory=self.engine_factory,
            ),
        )
