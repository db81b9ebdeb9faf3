"""
Background jobs scheduled by a turn: title generation and attachment token
annotation.

Jobs run as independent asyncio tasks.  A failing job is logged and never
propagates into the turn that scheduled it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from chatrelay.chat.store import ChatStore
from chatrelay.config import ChatRelayConfig
from chatrelay.llm.engine import create_engine
from chatrelay.llm.token_counter import TokenCounter
from chatrelay.llm.types import Message, StreamError, TextDelta
from chatrelay.models import Providers
from chatrelay.prompts.title import TITLE_INSTRUCTIONS
from chatrelay.types import MissingCredentialError

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Fire-and-forget job runner.

    ``submit`` returns immediately.  ``drain`` waits for everything submitted
    so far (tests and graceful shutdown).
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.failures: list[tuple[str, BaseException]] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, job: Awaitable[object]) -> asyncio.Task:
        task = asyncio.ensure_future(self._run(name, job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, job: Awaitable[object]) -> object:
        try:
            return await job
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Background job %s failed", name)
            self.failures.append((name, exc))
            return None

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def generate_title(
    store: ChatStore,
    *,
    prompt: str,
    conversation_id: str,
    message_id: str,
    api_key: str | None,
    is_title: bool = True,
    config: ChatRelayConfig | None = None,
    engine_factory: Callable = create_engine,
) -> str:
    """
    Generate a short title for *prompt* with the title model.

    Updates the conversation title when *is_title* and always records a
    ``MessageSummary`` for *message_id*.  Raises on any failure.
    """
    config = config or ChatRelayConfig()
    if not api_key:
        raise MissingCredentialError(
            Providers.GOOGLE,
            "No Google API key available for title generation. Provide a user "
            f"key or set {config.providers.host_google_api_key_env}.",
        )

    engine = engine_factory(
        Providers.GOOGLE, api_key, config=config.providers, max_steps=1
    )
    chunks: list[str] = []
    async for event in engine.stream_completion(
        config.titles.model,
        TITLE_INSTRUCTIONS,
        [Message(role="user", content=prompt)],
    ):
        if isinstance(event, TextDelta):
            chunks.append(event.text)
        elif isinstance(event, StreamError):
            raise event.as_exception()

    title = "".join(chunks).strip()
    if is_title:
        await store.update_conversation(conversation_id, title=title)
    await store.create_summary(conversation_id, message_id, title)
    logger.info("Generated title for conversation %s: %r", conversation_id, title)
    return title


async def annotate_attachments(
    store: ChatStore,
    attachment_ids: Iterable[str],
    final_content: str,
    counter: TokenCounter | None = None,
) -> int:
    """Record an estimated prompt-token count on each consumed attachment."""
    counter = counter or TokenCounter()
    tokens = counter.estimate_prompt_tokens(final_content)
    ids = list(attachment_ids)
    await store.set_attachment_prompt_tokens(ids, tokens)
    logger.debug("Annotated %d attachment(s) with %d prompt tokens", len(ids), tokens)
    return tokens
