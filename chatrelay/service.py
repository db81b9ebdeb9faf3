"""
Caller-facing chat operations.

``ChatService`` authorizes each call against a ``CallerIdentity`` and then
works through the store.  ``send_turn`` persists the user message and an
empty assistant placeholder, then hands the turn to the orchestrator on the
job queue and returns without waiting for the model.

Authorization:
- an authenticated user id must own the conversation;
- otherwise a guest session id must own it, and guests are capped at
  ``limits.guest_message_limit`` user messages per conversation;
- otherwise the call is rejected.
Public conversations are readable (never writable) by anyone.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator

from chatrelay.chat.blobs import BlobStore
from chatrelay.chat.parts import ImagePart, Part, TextPart
from chatrelay.chat.records import (
    Attachment,
    ChatMessage,
    Conversation,
    MessageSummary,
    Roles,
    now_ms,
)
from chatrelay.chat.store import ChatStore
from chatrelay.config import ChatRelayConfig
from chatrelay.orchestrator.core import TurnOrchestrator, TurnRequest
from chatrelay.orchestrator.jobs import JobQueue, generate_title
from chatrelay.types import (
    AuthorizationError,
    CallerIdentity,
    GuestLimitError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class AttachmentRef:
    attachment_id: str
    file_name: str = ""
    content_type: str = ""


@dataclass
class SentTurn:
    user_message_id: str
    assistant_message_id: str


@dataclass
class ConversationListing:
    conversation: Conversation
    last_message: ChatMessage | None = None
    owner_name: str | None = None


@dataclass
class TurnSettings:
    """Per-turn model selection and feature toggles."""

    model: str
    provider: str | None = None
    credential: str | None = None
    web_search_enabled: bool = False
    thinking_enabled: bool = False
    attachments: list[AttachmentRef] = field(default_factory=list)


class ChatService:
    """
    Parameters
    ----------
    store : ChatStore
        Initialised conversation store.
    blobs : BlobStore
        Attachment byte storage.
    config : ChatRelayConfig
        Limits, titles, provider and tool settings.
    jobs : JobQueue
        Background job queue shared with the orchestrator.
    orchestrator : TurnOrchestrator
        Turn runner; built from the other arguments when omitted.
    """

    def __init__(
        self,
        store: ChatStore,
        blobs: BlobStore,
        config: ChatRelayConfig | None = None,
        jobs: JobQueue | None = None,
        orchestrator: TurnOrchestrator | None = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.config = config or ChatRelayConfig()
        self.jobs = jobs or JobQueue()
        self.orchestrator = orchestrator or TurnOrchestrator(
            store, self.config, self.jobs
        )

    @classmethod
    async def open(cls, config: ChatRelayConfig) -> ChatService:
        """Build a service with the store and blob directory from *config*."""
        store = ChatStore(config.store.database)
        await store.init()
        blobs = BlobStore(
            config.store.blob_dir,
            base_url=config.store.blob_base_url,
            upload_ttl_seconds=config.store.upload_url_ttl_seconds,
        )
        return cls(store, blobs, config)

    async def close(self) -> None:
        await self.jobs.drain()
        await self.store.close()

    # ------------------------------------------------------------------
    # Authorization helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_user(caller: CallerIdentity, action: str) -> str:
        if not caller.is_authenticated:
            raise AuthorizationError(f"Must be authenticated to {action}")
        return caller.user_id

    async def _owned_conversation(
        self, conversation_id: str, caller: CallerIdentity, action: str
    ) -> Conversation:
        """Conversation owned by the authenticated caller, else raise."""
        user_id = self._require_user(caller, action)
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or conv.user_id != user_id:
            raise AuthorizationError(f"Not authorised to {action}")
        return conv

    @staticmethod
    def _can_read(conv: Conversation, caller: CallerIdentity) -> bool:
        return conv.is_public or conv.is_owned_by(caller.user_id, caller.session_id)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self, conversation_uuid: str, caller: CallerIdentity
    ) -> Conversation:
        """Create (or return the existing) conversation for this uuid and principal."""
        default_title = self.config.titles.default_title
        if caller.is_authenticated:
            existing = await self.store.find_conversation(
                conversation_uuid, user_id=caller.user_id
            )
            if existing:
                return existing
            return await self.store.create_conversation(
                conversation_uuid, default_title, user_id=caller.user_id
            )
        if caller.session_id:
            existing = await self.store.find_conversation(
                conversation_uuid, session_id=caller.session_id
            )
            if existing:
                return existing
            return await self.store.create_conversation(
                conversation_uuid, default_title, session_id=caller.session_id
            )
        raise AuthorizationError("Authentication or session ID is required.")

    async def get_conversation(
        self, conversation_id: str, caller: CallerIdentity
    ) -> Conversation | None:
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or not self._can_read(conv, caller):
            return None
        return conv

    async def get_conversation_by_uuid(
        self, conversation_uuid: str, caller: CallerIdentity
    ) -> Conversation | None:
        conv = await self.store.find_conversation(
            conversation_uuid, user_id=caller.user_id, session_id=caller.session_id
        )
        if conv is not None:
            return conv
        conv = await self.store.get_conversation_by_uuid(conversation_uuid)
        if conv is not None and conv.is_public:
            return conv
        return None

    async def list_conversations(self, caller: CallerIdentity) -> list[Conversation]:
        if not caller.is_authenticated:
            return []
        return await self.store.list_conversations_for_user(caller.user_id)

    async def list_conversations_with_last_message(
        self, caller: CallerIdentity
    ) -> list[ConversationListing]:
        listings = []
        for conv in await self.list_conversations(caller):
            listings.append(
                ConversationListing(
                    conversation=conv,
                    last_message=await self.store.last_message(conv.id),
                    owner_name=caller.name,
                )
            )
        return listings

    async def rename_conversation(
        self, conversation_id: str, title: str, caller: CallerIdentity
    ) -> None:
        await self._owned_conversation(conversation_id, caller, "update this conversation")
        await self.store.update_conversation(
            conversation_id, title=title, updated_at=now_ms()
        )

    async def delete_conversation(
        self, conversation_id: str, caller: CallerIdentity
    ) -> None:
        await self._owned_conversation(conversation_id, caller, "delete this conversation")
        await self.store.delete_conversation(conversation_id)
        logger.info("Deleted conversation %s", conversation_id)

    async def toggle_public(self, conversation_id: str, caller: CallerIdentity) -> bool:
        conv = await self._owned_conversation(
            conversation_id, caller, "change sharing for this conversation"
        )
        is_public = not conv.is_public
        await self.store.update_conversation(
            conversation_id, is_public=is_public, updated_at=now_ms()
        )
        return is_public

    async def branch_conversation(
        self,
        original_conversation_id: str,
        branch_point_message_id: str,
        caller: CallerIdentity,
    ) -> str:
        """Copy messages up to the branch point into a new conversation; return its uuid."""
        original = await self._owned_conversation(
            original_conversation_id, caller, "branch this conversation"
        )
        branch_point = await self.store.get_message(branch_point_message_id)
        if branch_point is None or branch_point.conversation_id != original.id:
            raise NotFoundError(
                "Branch point message not found in the original conversation."
            )

        to_copy: list[ChatMessage] = []
        for msg in await self.store.list_messages(original.id):
            to_copy.append(msg)
            if msg.id == branch_point_message_id:
                break

        new_uuid = str(uuid.uuid4())
        branched = await self.store.create_conversation(
            new_uuid,
            f"{original.title} (branched)",
            user_id=caller.user_id,
            is_branched=True,
            branched_from=original.id,
            branched_from_title=original.title,
        )
        # Copies have no writer, so an in-flight reply is frozen as it stands.
        for msg in to_copy:
            await self.store.insert_message(
                branched.id,
                msg.role,
                msg.content,
                msg.parts,
                created_at=msg.created_at,
                is_complete=True,
                tool_calls=msg.tool_calls,
                tool_outputs=msg.tool_outputs,
            )
        logger.info(
            "Branched conversation %s into %s (%d messages)",
            original.id,
            branched.id,
            len(to_copy),
        )
        return new_uuid

    async def clear_guest_data(self, session_id: str) -> int:
        """Delete every conversation owned by a guest session.  Returns the count."""
        conversations = await self.store.list_conversations_for_session(session_id)
        for conv in conversations:
            await self.store.delete_conversation(conv.id)
        return len(conversations)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_turn(
        self,
        conversation_id: str,
        content: str,
        settings: TurnSettings,
        caller: CallerIdentity,
    ) -> SentTurn:
        """
        Persist the user message and assistant placeholder, then schedule the
        turn.  Authorization failures raise before anything is written.
        """
        conv = await self.store.get_conversation(conversation_id)
        if caller.is_authenticated:
            if conv is None or conv.user_id != caller.user_id:
                raise AuthorizationError(
                    "Not authorised to send messages to this conversation"
                )
        elif caller.is_guest:
            if conv is None or conv.session_id != caller.session_id:
                raise AuthorizationError("Not authorised for this guest session.")
            limit = self.config.limits.guest_message_limit
            if await self.store.count_user_messages(conversation_id) >= limit:
                raise GuestLimitError(limit)
        else:
            raise AuthorizationError("Authentication or session ID is required.")

        parts: list[Part] = []
        if content.strip():
            parts.append(TextPart(content))

        attachments: list[Attachment] = []
        for ref in settings.attachments:
            attachment = await self.store.get_attachment(ref.attachment_id)
            if attachment is None or attachment.user_id != caller.user_id:
                raise AuthorizationError(
                    f"Attachment not found or not owned by user: {ref.file_name}"
                )
            url = self.blobs.get_url(attachment.storage_id)
            if url is None:
                raise NotFoundError(f"Could not get URL for attachment: {ref.file_name}")
            attachments.append(attachment)
            if attachment.is_image:
                parts.append(ImagePart(image=url, mime_type=attachment.content_type))

        for attachment in attachments:
            if not attachment.conversation_id:
                await self.store.link_attachment(attachment.id, conversation_id)

        user_msg = await self.store.insert_message(
            conversation_id, Roles.USER, content, parts
        )
        writer_token = uuid.uuid4().hex
        placeholder = await self.store.insert_message(
            conversation_id,
            Roles.ASSISTANT,
            "",
            created_at=max(now_ms(), user_msg.created_at + 1),
            is_complete=False,
            writer_token=writer_token,
        )

        history = await self.store.list_messages(conversation_id)
        request = TurnRequest(
            conversation_id=conversation_id,
            history=history,
            assistant_message_id=placeholder.id,
            writer_token=writer_token,
            model=settings.model,
            provider=settings.provider,
            credential=settings.credential,
            web_search_enabled=settings.web_search_enabled,
            thinking_enabled=settings.thinking_enabled,
            attachment_ids=[a.id for a in attachments],
        )
        self.jobs.submit("turn", self.orchestrator.run(request))

        now = now_ms()
        await self.store.update_conversation(
            conversation_id, last_message_at=now, updated_at=now
        )
        return SentTurn(user_msg.id, placeholder.id)

    async def list_messages(
        self, conversation_id: str, caller: CallerIdentity
    ) -> list[ChatMessage]:
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or not self._can_read(conv, caller):
            return []
        return await self.store.list_messages(conversation_id)

    async def watch_messages(
        self, conversation_id: str, caller: CallerIdentity
    ) -> AsyncIterator[list[ChatMessage]]:
        """
        Yield the ordered message list now and again after every change.

        Notices that pile up while the caller is busy collapse into one
        snapshot.  Unauthorized callers get a single empty snapshot.
        """
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or not self._can_read(conv, caller):
            yield []
            return

        async with self.store.subscribe(conversation_id) as changes:
            yield await self.store.list_messages(conversation_id)
            async for _ in changes:
                changes.drain()
                yield await self.store.list_messages(conversation_id)

    async def delete_trailing(
        self,
        conversation_id: str,
        from_created_at: int,
        caller: CallerIdentity,
        inclusive: bool = True,
    ) -> int:
        await self._owned_conversation(
            conversation_id, caller, "delete messages from this conversation"
        )
        return await self.store.delete_messages_from(
            conversation_id, from_created_at, inclusive
        )

    # ------------------------------------------------------------------
    # Titles and summaries
    # ------------------------------------------------------------------

    async def generate_title_for_message(
        self,
        conversation_id: str,
        message_id: str,
        prompt: str,
        caller: CallerIdentity,
        is_title: bool = False,
        google_api_key: str | None = None,
    ) -> None:
        """Schedule a title/summary job for one message."""
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or not conv.is_owned_by(caller.user_id, caller.session_id):
            raise AuthorizationError("Not authorised to summarise this conversation")
        self.jobs.submit(
            "generate_title",
            generate_title(
                self.store,
                prompt=prompt,
                conversation_id=conversation_id,
                message_id=message_id,
                api_key=google_api_key or self.config.providers.host_google_api_key(),
                is_title=is_title,
                config=self.config,
                engine_factory=self.orchestrator.engine_factory,
            ),
        )

    async def get_summary_for_message(
        self, message_id: str, caller: CallerIdentity
    ) -> MessageSummary | None:
        if not caller.is_authenticated:
            return None
        message = await self.store.get_message(message_id)
        if message is None:
            return None
        conv = await self.store.get_conversation(message.conversation_id)
        if conv is None or conv.user_id != caller.user_id:
            return None
        return await self.store.get_summary_for_message(message_id)

    async def list_summaries(
        self, conversation_id: str, caller: CallerIdentity
    ) -> list[MessageSummary]:
        if not caller.is_authenticated:
            return []
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or conv.user_id != caller.user_id:
            return []
        return await self.store.list_summaries(conversation_id)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def _with_url(self, attachment: Attachment) -> Attachment:
        attachment.url = self.blobs.get_url(attachment.storage_id)
        return attachment

    def generate_upload_url(self, caller: CallerIdentity) -> str:
        self._require_user(caller, "upload a file")
        return self.blobs.generate_upload_url()

    async def save_attachment(
        self,
        storage_id: str,
        file_name: str,
        content_type: str,
        caller: CallerIdentity,
        conversation_id: str | None = None,
    ) -> Attachment:
        user_id = self._require_user(caller, "save an attachment")
        attachment = await self.store.create_attachment(
            user_id, storage_id, file_name, content_type, conversation_id
        )
        return self._with_url(attachment)

    async def get_attachment(
        self, attachment_id: str, caller: CallerIdentity
    ) -> Attachment | None:
        if not caller.is_authenticated:
            return None
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None or attachment.user_id != caller.user_id:
            return None
        return self._with_url(attachment)

    async def list_attachments_for_user(self, caller: CallerIdentity) -> list[Attachment]:
        if not caller.is_authenticated:
            return []
        attachments = await self.store.list_attachments_for_user(caller.user_id)
        return [self._with_url(a) for a in attachments]

    async def list_attachments_for_conversation(
        self, conversation_id: str, caller: CallerIdentity
    ) -> list[Attachment]:
        if not caller.is_authenticated:
            return []
        conv = await self.store.get_conversation(conversation_id)
        if conv is None or conv.user_id != caller.user_id:
            return []
        attachments = await self.store.list_attachments_for_conversation(conversation_id)
        return [self._with_url(a) for a in attachments]

    async def delete_attachment(self, attachment_id: str, caller: CallerIdentity) -> None:
        user_id = self._require_user(caller, "delete an attachment")
        attachment = await self.store.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found")
        if attachment.user_id != user_id:
            raise AuthorizationError("Not authorised to delete this attachment")
        await self.store.delete_attachment(attachment_id)
        # Blobs are content-addressed and may back other attachments.
        if await self.store.count_attachments_for_storage(attachment.storage_id) == 0:
            self.blobs.delete(attachment.storage_id)
