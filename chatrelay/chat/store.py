"""
SQLite-backed conversation and message store.

Uses ``aiosqlite`` for async database access with a write lock to serialise
mutations (SQLite only supports one writer at a time in WAL mode).

Schema is version-tracked via a ``schema_version`` table.  Migrations are
applied automatically on ``init()``.

Every message write publishes a ``ChangeNotice`` to subscribers of that
conversation; that feed is what live observers re-read on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from chatrelay.chat.parts import Part, parse_parts, serialize_parts
from chatrelay.chat.records import (
    Attachment,
    ChatMessage,
    Conversation,
    MessageSummary,
    Roles,
    now_ms,
)
from chatrelay.types import NotFoundError, StaleWriterError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            uuid TEXT NOT NULL,
            title TEXT NOT NULL,
            user_id TEXT,
            session_id TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            last_message_at INTEGER NOT NULL,
            is_public INTEGER NOT NULL DEFAULT 0,
            is_branched INTEGER NOT NULL DEFAULT 0,
            branched_from TEXT,
            branched_from_title TEXT,
            CHECK ((user_id IS NULL) <> (session_id IS NULL))
        )""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_uuid ON conversations(uuid)""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_user
           ON conversations(user_id, last_message_at)""",
        """CREATE INDEX IF NOT EXISTS idx_conversations_session
           ON conversations(session_id)""",
        """CREATE TABLE IF NOT EXISTS messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            conversation_id TEXT NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            parts TEXT NOT NULL DEFAULT '[]',
            created_at INTEGER NOT NULL,
            is_complete INTEGER NOT NULL DEFAULT 1,
            reasoning TEXT,
            tool_calls TEXT,
            tool_outputs TEXT,
            writer_token TEXT,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_conversation
           ON messages(conversation_id, created_at)""",
        """CREATE TABLE IF NOT EXISTS message_summaries (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL,
            message_id TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE,
            FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_summaries_message
           ON message_summaries(message_id)""",
        """CREATE TABLE IF NOT EXISTS attachments (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            storage_id TEXT NOT NULL,
            file_name TEXT NOT NULL,
            content_type TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            conversation_id TEXT,
            prompt_tokens INTEGER,
            FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE SET NULL
        )""",
        """CREATE INDEX IF NOT EXISTS idx_attachments_user ON attachments(user_id)""",
        """CREATE INDEX IF NOT EXISTS idx_attachments_conversation
           ON attachments(conversation_id)""",
    ],
}

_CONVERSATION_FIELDS = frozenset(
    {
        "title",
        "updated_at",
        "last_message_at",
        "is_public",
        "is_branched",
        "branched_from",
        "branched_from_title",
    }
)


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeNotice:
    conversation_id: str
    message_id: str | None
    kind: str  # "insert", "update", "finalize", "delete"


class Subscription:
    """
    Async iterator of ``ChangeNotice`` for one conversation.

    Registered on creation, so no change between ``subscribe()`` and the
    first ``__anext__`` is lost.  Use as an async context manager or call
    ``close()``.
    """

    def __init__(self, store: ChatStore, conversation_id: str) -> None:
        self._store = store
        self.conversation_id = conversation_id
        self.queue: asyncio.Queue[ChangeNotice] = asyncio.Queue()
        self.closed = False

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeNotice:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    def drain(self) -> list[ChangeNotice]:
        """Take every notice already queued without waiting."""
        pending: list[ChangeNotice] = []
        while True:
            try:
                pending.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return pending

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._store._unsubscribe(self)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return uuid.uuid4().hex


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _load(value: str | None) -> Any:
    return None if value is None else json.loads(value)


class ChatStore:
    """
    Async SQLite store for conversations, messages, summaries and attachments.

    Usage::

        store = ChatStore("~/.chatrelay/chat.db")
        await store.init()
        conv = await store.create_conversation(str(uuid4()), "New Conversation",
                                               user_id="u1")
        msg = await store.insert_message(conv.id, "user", "hi")
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None
        self._subscribers: dict[str, set[Subscription]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ChatStore is not initialised; call init() first")
        return self._db

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def _run_migrations(self) -> None:
        current = await self.get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self.db.execute(stmt)
            await self.db.execute("DELETE FROM schema_version")
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            logger.debug("Applied schema migration %d", version)
        await self.db.commit()

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def subscribe(self, conversation_id: str) -> Subscription:
        sub = Subscription(self, conversation_id)
        self._subscribers.setdefault(conversation_id, set()).add(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.conversation_id)
        if subs is not None:
            subs.discard(sub)
            if not subs:
                del self._subscribers[sub.conversation_id]

    def _publish(self, conversation_id: str, message_id: str | None, kind: str) -> None:
        notice = ChangeNotice(conversation_id, message_id, kind)
        for sub in list(self._subscribers.get(conversation_id, ())):
            sub.queue.put_nowait(notice)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_conversation(row: aiosqlite.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            uuid=row["uuid"],
            title=row["title"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_message_at=row["last_message_at"],
            is_public=bool(row["is_public"]),
            is_branched=bool(row["is_branched"]),
            branched_from=row["branched_from"],
            branched_from_title=row["branched_from_title"],
        )

    async def create_conversation(
        self,
        conversation_uuid: str,
        title: str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        is_branched: bool = False,
        branched_from: str | None = None,
        branched_from_title: str | None = None,
    ) -> Conversation:
        now = now_ms()
        conv = Conversation(
            id=_new_id(),
            uuid=conversation_uuid,
            title=title,
            user_id=user_id,
            session_id=session_id,
            created_at=now,
            updated_at=now,
            last_message_at=now,
            is_branched=is_branched,
            branched_from=branched_from,
            branched_from_title=branched_from_title,
        )
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO conversations
                   (id, uuid, title, user_id, session_id, created_at, updated_at,
                    last_message_at, is_public, is_branched, branched_from,
                    branched_from_title)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
                (
                    conv.id,
                    conv.uuid,
                    conv.title,
                    conv.user_id,
                    conv.session_id,
                    now,
                    now,
                    now,
                    int(is_branched),
                    branched_from,
                    branched_from_title,
                ),
            )
            await self.db.commit()
        return conv

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        cursor = await self.db.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def get_conversation_by_uuid(self, conversation_uuid: str) -> Conversation | None:
        cursor = await self.db.execute(
            "SELECT * FROM conversations WHERE uuid = ? ORDER BY created_at LIMIT 1",
            (conversation_uuid,),
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def find_conversation(
        self,
        conversation_uuid: str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> Conversation | None:
        """Look up a conversation by uuid scoped to its owning principal."""
        if user_id:
            cursor = await self.db.execute(
                "SELECT * FROM conversations WHERE uuid = ? AND user_id = ?",
                (conversation_uuid, user_id),
            )
        elif session_id:
            cursor = await self.db.execute(
                "SELECT * FROM conversations WHERE uuid = ? AND session_id = ?",
                (conversation_uuid, session_id),
            )
        else:
            return None
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def list_conversations_for_user(self, user_id: str) -> list[Conversation]:
        """Newest ``last_message_at`` first."""
        cursor = await self.db.execute(
            """SELECT * FROM conversations WHERE user_id = ?
               ORDER BY last_message_at DESC, created_at DESC""",
            (user_id,),
        )
        return [self._row_to_conversation(r) for r in await cursor.fetchall()]

    async def list_conversations_for_session(self, session_id: str) -> list[Conversation]:
        cursor = await self.db.execute(
            """SELECT * FROM conversations WHERE session_id = ?
               ORDER BY last_message_at DESC, created_at DESC""",
            (session_id,),
        )
        return [self._row_to_conversation(r) for r in await cursor.fetchall()]

    async def update_conversation(self, conversation_id: str, **fields: Any) -> None:
        unknown = set(fields) - _CONVERSATION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {sorted(unknown)}")
        if not fields:
            return
        values = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        assignments = ", ".join(f"{name} = ?" for name in fields)
        async with self._write_lock:
            cursor = await self.db.execute(
                f"UPDATE conversations SET {assignments} WHERE id = ?",
                (*values, conversation_id),
            )
            await self.db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation; messages and summaries cascade."""
        async with self._write_lock:
            await self.db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await self.db.commit()
        self._publish(conversation_id, None, "delete")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> ChatMessage:
        return ChatMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            parts=parse_parts(json.loads(row["parts"])),
            created_at=row["created_at"],
            is_complete=bool(row["is_complete"]),
            reasoning=row["reasoning"],
            tool_calls=_load(row["tool_calls"]),
            tool_outputs=_load(row["tool_outputs"]),
        )

    async def insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str = "",
        parts: Iterable[Part] | None = None,
        *,
        created_at: int | None = None,
        is_complete: bool = True,
        writer_token: str | None = None,
        tool_calls: list[dict] | None = None,
        tool_outputs: list[dict] | None = None,
    ) -> ChatMessage:
        if role not in Roles.ALL:
            raise ValueError(f"Invalid message role: {role}")
        msg = ChatMessage(
            id=_new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            parts=list(parts or []),
            created_at=created_at if created_at is not None else now_ms(),
            is_complete=is_complete,
            tool_calls=tool_calls,
            tool_outputs=tool_outputs,
        )
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO messages
                   (id, conversation_id, role, content, parts, created_at,
                    is_complete, tool_calls, tool_outputs, writer_token)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    msg.id,
                    conversation_id,
                    role,
                    content,
                    json.dumps(serialize_parts(msg.parts)),
                    msg.created_at,
                    int(is_complete),
                    _dump(tool_calls),
                    _dump(tool_outputs),
                    writer_token,
                ),
            )
            await self.db.commit()
        self._publish(conversation_id, msg.id, "insert")
        return msg

    async def get_message(self, message_id: str) -> ChatMessage | None:
        cursor = await self.db.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def list_messages(self, conversation_id: str) -> list[ChatMessage]:
        """Messages in ``created_at`` order, ties broken by insertion order."""
        cursor = await self.db.execute(
            """SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY created_at ASC, seq ASC""",
            (conversation_id,),
        )
        return [self._row_to_message(r) for r in await cursor.fetchall()]

    async def last_message(self, conversation_id: str) -> ChatMessage | None:
        cursor = await self.db.execute(
            """SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY created_at DESC, seq DESC LIMIT 1""",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def count_user_messages(self, conversation_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ? AND role = ?",
            (conversation_id, Roles.USER),
        )
        row = await cursor.fetchone()
        return int(row[0])

    async def _guarded_update(
        self,
        message_id: str,
        writer_token: str,
        assignments: str,
        values: tuple,
    ) -> None:
        async with self._write_lock:
            cursor = await self.db.execute(
                f"""UPDATE messages SET {assignments}
                    WHERE id = ? AND writer_token = ? AND is_complete = 0""",
                (*values, message_id, writer_token),
            )
            await self.db.commit()
        if cursor.rowcount == 0:
            raise StaleWriterError(message_id)

    async def update_streaming_message(
        self,
        message_id: str,
        writer_token: str,
        *,
        conversation_id: str,
        content: str,
        parts: Iterable[Part],
        reasoning: str | None,
        tool_calls: list[dict] | None,
        tool_outputs: list[dict] | None,
    ) -> None:
        """
        Overwrite the in-progress state of an assistant message.

        Raises ``StaleWriterError`` if the message is complete or owned by a
        different writer.
        """
        await self._guarded_update(
            message_id,
            writer_token,
            "content = ?, parts = ?, reasoning = ?, tool_calls = ?, tool_outputs = ?",
            (
                content,
                json.dumps(serialize_parts(parts)),
                reasoning,
                _dump(tool_calls),
                _dump(tool_outputs),
            ),
        )
        self._publish(conversation_id, message_id, "update")

    async def finalize_message(
        self,
        message_id: str,
        writer_token: str,
        *,
        conversation_id: str,
        content: str,
        parts: Iterable[Part],
        tool_calls: list[dict] | None = None,
        tool_outputs: list[dict] | None = None,
    ) -> None:
        """Seal an assistant message: ``is_complete = 1`` and ``reasoning`` cleared."""
        await self._guarded_update(
            message_id,
            writer_token,
            """content = ?, parts = ?, reasoning = NULL, tool_calls = ?,
               tool_outputs = ?, is_complete = 1""",
            (
                content,
                json.dumps(serialize_parts(parts)),
                _dump(tool_calls),
                _dump(tool_outputs),
            ),
        )
        self._publish(conversation_id, message_id, "finalize")

    async def delete_messages_from(
        self, conversation_id: str, created_at: int, inclusive: bool = True
    ) -> int:
        """Delete messages at/after *created_at*.  Summaries cascade."""
        op = ">=" if inclusive else ">"
        async with self._write_lock:
            cursor = await self.db.execute(
                f"DELETE FROM messages WHERE conversation_id = ? AND created_at {op} ?",
                (conversation_id, created_at),
            )
            await self.db.commit()
        deleted = cursor.rowcount
        if deleted:
            self._publish(conversation_id, None, "delete")
        return deleted

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_summary(row: aiosqlite.Row) -> MessageSummary:
        return MessageSummary(
            id=row["id"],
            conversation_id=row["conversation_id"],
            message_id=row["message_id"],
            content=row["content"],
            created_at=row["created_at"],
        )

    async def create_summary(
        self, conversation_id: str, message_id: str, content: str
    ) -> MessageSummary:
        summary = MessageSummary(
            id=_new_id(),
            conversation_id=conversation_id,
            message_id=message_id,
            content=content,
            created_at=now_ms(),
        )
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO message_summaries
                   (id, conversation_id, message_id, content, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    summary.id,
                    conversation_id,
                    message_id,
                    content,
                    summary.created_at,
                ),
            )
            await self.db.commit()
        return summary

    async def get_summary_for_message(self, message_id: str) -> MessageSummary | None:
        cursor = await self.db.execute(
            """SELECT * FROM message_summaries WHERE message_id = ?
               ORDER BY created_at DESC LIMIT 1""",
            (message_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_summary(row) if row else None

    async def list_summaries(self, conversation_id: str) -> list[MessageSummary]:
        """Newest first."""
        cursor = await self.db.execute(
            """SELECT * FROM message_summaries WHERE conversation_id = ?
               ORDER BY created_at DESC""",
            (conversation_id,),
        )
        return [self._row_to_summary(r) for r in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_attachment(row: aiosqlite.Row) -> Attachment:
        return Attachment(
            id=row["id"],
            user_id=row["user_id"],
            storage_id=row["storage_id"],
            file_name=row["file_name"],
            content_type=row["content_type"],
            created_at=row["created_at"],
            conversation_id=row["conversation_id"],
            prompt_tokens=row["prompt_tokens"],
        )

    async def create_attachment(
        self,
        user_id: str,
        storage_id: str,
        file_name: str,
        content_type: str,
        conversation_id: str | None = None,
    ) -> Attachment:
        attachment = Attachment(
            id=_new_id(),
            user_id=user_id,
            storage_id=storage_id,
            file_name=file_name,
            content_type=content_type,
            created_at=now_ms(),
            conversation_id=conversation_id,
        )
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO attachments
                   (id, user_id, storage_id, file_name, content_type, created_at,
                    conversation_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    attachment.id,
                    user_id,
                    storage_id,
                    file_name,
                    content_type,
                    attachment.created_at,
                    conversation_id,
                ),
            )
            await self.db.commit()
        return attachment

    async def get_attachment(self, attachment_id: str) -> Attachment | None:
        cursor = await self.db.execute(
            "SELECT * FROM attachments WHERE id = ?", (attachment_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_attachment(row) if row else None

    async def link_attachment(self, attachment_id: str, conversation_id: str) -> None:
        async with self._write_lock:
            await self.db.execute(
                "UPDATE attachments SET conversation_id = ? WHERE id = ?",
                (conversation_id, attachment_id),
            )
            await self.db.commit()

    async def list_attachments_for_user(self, user_id: str) -> list[Attachment]:
        cursor = await self.db.execute(
            "SELECT * FROM attachments WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [self._row_to_attachment(r) for r in await cursor.fetchall()]

    async def list_attachments_for_conversation(
        self, conversation_id: str
    ) -> list[Attachment]:
        cursor = await self.db.execute(
            "SELECT * FROM attachments WHERE conversation_id = ? ORDER BY created_at DESC",
            (conversation_id,),
        )
        return [self._row_to_attachment(r) for r in await cursor.fetchall()]

    async def set_attachment_prompt_tokens(
        self, attachment_ids: Iterable[str], prompt_tokens: int
    ) -> None:
        ids = list(attachment_ids)
        if not ids:
            return
        async with self._write_lock:
            await self.db.executemany(
                "UPDATE attachments SET prompt_tokens = ? WHERE id = ?",
                [(prompt_tokens, aid) for aid in ids],
            )
            await self.db.commit()

    async def count_attachments_for_storage(self, storage_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM attachments WHERE storage_id = ?", (storage_id,)
        )
        row = await cursor.fetchone()
        return int(row[0])

    async def delete_attachment(self, attachment_id: str) -> None:
        async with self._write_lock:
            await self.db.execute(
                "DELETE FROM attachments WHERE id = ?", (attachment_id,)
            )
            await self.db.commit()
