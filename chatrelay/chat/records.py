"""Persistent records: conversations, messages, summaries, attachments."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from chatrelay.chat.parts import Part


class Roles:
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    DATA = "data"

    ALL = (USER, ASSISTANT, SYSTEM, DATA)


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass
class Conversation:
    """
    A conversation owned by exactly one principal: a user id or a guest
    session id.
    """

    id: str
    uuid: str
    title: str
    user_id: str | None = None
    session_id: str | None = None
    created_at: int = 0
    updated_at: int = 0
    last_message_at: int = 0
    is_public: bool = False
    is_branched: bool = False
    branched_from: str | None = None
    branched_from_title: str | None = None

    def __post_init__(self) -> None:
        if bool(self.user_id) == bool(self.session_id):
            raise ValueError(
                "A conversation must have exactly one owner: user_id or session_id"
            )

    def is_owned_by(self, user_id: str | None, session_id: str | None) -> bool:
        if self.user_id:
            return self.user_id == user_id
        return bool(session_id) and self.session_id == session_id


@dataclass
class ChatMessage:
    """
    One stored message.

    ``content`` is the flattened text; ``parts`` is authoritative once
    present.  ``reasoning`` is only populated while an assistant message is
    streaming.  ``tool_calls`` and ``tool_outputs`` are projections of the
    tool parts.
    """

    id: str
    conversation_id: str
    role: str
    content: str = ""
    parts: list[Part] = field(default_factory=list)
    created_at: int = 0
    is_complete: bool = True
    reasoning: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_outputs: list[dict[str, Any]] | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.parts


@dataclass
class MessageSummary:
    id: str
    conversation_id: str
    message_id: str
    content: str
    created_at: int = 0


@dataclass
class Attachment:
    id: str
    user_id: str
    storage_id: str
    file_name: str
    content_type: str
    created_at: int = 0
    conversation_id: str | None = None
    prompt_tokens: int | None = None
    url: str | None = None

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")
