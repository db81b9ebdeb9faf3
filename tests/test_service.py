"""Tests for caller-facing chat operations and their authorization rules."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.chat.blobs import BlobStore
from chatrelay.chat.parts import ImagePart, TextPart
from chatrelay.chat.records import Roles
from chatrelay.chat.store import ChatStore
from chatrelay.config import ChatRelayConfig, StoreConfig
from chatrelay.orchestrator.core import ERROR_PREFIX, TurnOrchestrator
from chatrelay.orchestrator.jobs import JobQueue
from chatrelay.service import AttachmentRef, ChatService, TurnSettings
from chatrelay.types import (
    AuthorizationError,
    CallerIdentity,
    GuestLimitError,
    NotFoundError,
)
from tests.mock_providers import MockEngine, MockEngineFactory, make_text_engine

ALICE = CallerIdentity(user_id="alice", name="Alice")
BOB = CallerIdentity(user_id="bob")
GUEST = CallerIdentity(session_id="guest-session")
OTHER_GUEST = CallerIdentity(session_id="another-session")
NOBODY = CallerIdentity()

SETTINGS = TurnSettings(model="GPT-4.1", credential="sk-test")


@pytest.fixture(autouse=True)
def no_host_key(monkeypatch):
    monkeypatch.delenv("HOST_GOOGLE_API_KEY", raising=False)


@pytest.fixture
def factory():
    return MockEngineFactory(title="Reply")


@pytest.fixture
async def service(tmp_path, factory):
    config = ChatRelayConfig()
    store = ChatStore(str(tmp_path / "chat.db"))
    await store.init()
    blobs = BlobStore(str(tmp_path / "blobs"), base_url="https://cdn.example/blobs")
    jobs = JobQueue()
    orchestrator = TurnOrchestrator(store, config, jobs, engine_factory=factory)
    svc = ChatService(store, blobs, config, jobs, orchestrator)
    yield svc
    await svc.close()


class TestConversations:
    async def test_create_is_idempotent_per_principal(self, service):
        first = await service.create_conversation("uuid-1", ALICE)
        again = await service.create_conversation("uuid-1", ALICE)
        assert first.id == again.id
        assert first.title == "New Conversation"

        guest_conv = await service.create_conversation("uuid-1", GUEST)
        assert guest_conv.id != first.id
        assert guest_conv.session_id == "guest-session"

    async def test_create_requires_a_principal(self, service):
        with pytest.raises(AuthorizationError, match="Authentication or session ID is required."):
            await service.create_conversation("uuid-1", NOBODY)

    async def test_rename_and_delete_need_ownership(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        with pytest.raises(AuthorizationError):
            await service.rename_conversation(conv.id, "Mine now", BOB)
        with pytest.raises(AuthorizationError):
            await service.delete_conversation(conv.id, GUEST)

        await service.rename_conversation(conv.id, "Renamed", ALICE)
        assert (await service.get_conversation(conv.id, ALICE)).title == "Renamed"
        await service.delete_conversation(conv.id, ALICE)
        assert await service.get_conversation(conv.id, ALICE) is None

    async def test_public_conversations_are_read_only(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        await service.store.insert_message(conv.id, Roles.USER, "hi", [TextPart("hi")])

        assert await service.get_conversation(conv.id, BOB) is None
        assert await service.list_messages(conv.id, BOB) == []

        assert await service.toggle_public(conv.id, ALICE) is True
        assert (await service.get_conversation(conv.id, BOB)).id == conv.id
        assert [m.content for m in await service.list_messages(conv.id, NOBODY)] == ["hi"]
        assert (await service.get_conversation_by_uuid("uuid-1", BOB)).id == conv.id

        with pytest.raises(AuthorizationError):
            await service.send_turn(conv.id, "hijack", SETTINGS, BOB)
        with pytest.raises(AuthorizationError):
            await service.toggle_public(conv.id, BOB)

    async def test_listing_is_per_user(self, service):
        await service.create_conversation("a", ALICE)
        await service.create_conversation("b", BOB)
        listings = await service.list_conversations_with_last_message(ALICE)
        assert [entry.conversation.uuid for entry in listings] == ["a"]
        assert listings[0].owner_name == "Alice"
        assert listings[0].last_message is None
        assert await service.list_conversations(GUEST) == []

    async def test_branch(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        await service.rename_conversation(conv.id, "Trip plans", ALICE)
        m1 = await service.store.insert_message(conv.id, Roles.USER, "q1", created_at=100)
        m2 = await service.store.insert_message(conv.id, Roles.ASSISTANT, "a1", created_at=200)
        await service.store.insert_message(conv.id, Roles.USER, "q2", created_at=300)

        new_uuid = await service.branch_conversation(conv.id, m2.id, ALICE)

        branched = await service.get_conversation_by_uuid(new_uuid, ALICE)
        assert branched.title == "Trip plans (branched)"
        assert branched.is_branched is True
        assert branched.branched_from == conv.id
        assert branched.branched_from_title == "Trip plans"
        copied = await service.list_messages(branched.id, ALICE)
        assert [(m.content, m.created_at) for m in copied] == [("q1", 100), ("a1", 200)]
        assert copied[0].id != m1.id

    async def test_branch_freezes_a_streaming_reply(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        await service.store.insert_message(conv.id, Roles.USER, "q1", created_at=100)
        streaming = await service.store.insert_message(
            conv.id, Roles.ASSISTANT, "partial", created_at=200,
            is_complete=False, writer_token="tok-1",
        )

        new_uuid = await service.branch_conversation(conv.id, streaming.id, ALICE)

        branched = await service.get_conversation_by_uuid(new_uuid, ALICE)
        copied = await service.list_messages(branched.id, ALICE)
        assert [(m.content, m.is_complete) for m in copied] == [("q1", True), ("partial", True)]
        original = await service.store.get_message(streaming.id)
        assert original.is_complete is False

    async def test_branch_point_must_belong_to_conversation(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        other = await service.create_conversation("uuid-2", ALICE)
        stray = await service.store.insert_message(other.id, Roles.USER, "x")
        with pytest.raises(NotFoundError):
            await service.branch_conversation(conv.id, stray.id, ALICE)
        with pytest.raises(AuthorizationError):
            await service.branch_conversation(conv.id, stray.id, BOB)

    async def test_clear_guest_data(self, service):
        await service.create_conversation("g1", GUEST)
        await service.create_conversation("g2", GUEST)
        await service.create_conversation("g3", OTHER_GUEST)

        assert await service.clear_guest_data("guest-session") == 2
        assert await service.store.list_conversations_for_session("guest-session") == []
        assert len(await service.store.list_conversations_for_session("another-session")) == 1


class TestSendTurn:
    async def test_user_turn_is_persisted_and_answered(self, service, factory):
        factory.engines.append(make_text_engine("Hello Alice"))
        conv = await service.create_conversation("uuid-1", ALICE)

        sent = await service.send_turn(conv.id, "Hello", SETTINGS, ALICE)

        user_msg = await service.store.get_message(sent.user_message_id)
        placeholder = await service.store.get_message(sent.assistant_message_id)
        assert user_msg.parts == [TextPart("Hello")]
        assert placeholder.role == Roles.ASSISTANT
        assert placeholder.created_at > user_msg.created_at

        await service.jobs.drain()
        reply = await service.store.get_message(sent.assistant_message_id)
        assert reply.is_complete is True
        assert reply.content == "Hello Alice"
        assert factory.calls[0][:2] == ("openai", "sk-test")

    async def test_turn_failure_is_recorded_on_the_message(self, service, factory):
        factory.engines.append(MockEngine(raise_on_open=RuntimeError("no route")))
        conv = await service.create_conversation("uuid-1", ALICE)
        sent = await service.send_turn(conv.id, "Hello", SETTINGS, ALICE)
        await service.jobs.drain()

        reply = await service.store.get_message(sent.assistant_message_id)
        assert reply.is_complete is True
        assert reply.content == f"{ERROR_PREFIX}no route"

    async def test_authorization_messages(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        guest_conv = await service.create_conversation("uuid-2", GUEST)

        with pytest.raises(AuthorizationError, match="Not authorised to send messages to this conversation"):
            await service.send_turn(conv.id, "hi", SETTINGS, BOB)
        with pytest.raises(AuthorizationError, match="Not authorised for this guest session."):
            await service.send_turn(guest_conv.id, "hi", SETTINGS, OTHER_GUEST)
        with pytest.raises(AuthorizationError, match="Authentication or session ID is required."):
            await service.send_turn(conv.id, "hi", SETTINGS, NOBODY)

        assert await service.store.list_messages(conv.id) == []
        assert await service.store.list_messages(guest_conv.id) == []

    async def test_guest_message_limit(self, service):
        conv = await service.create_conversation("uuid-1", GUEST)
        for i in range(10):
            await service.send_turn(conv.id, f"message {i}", SETTINGS, GUEST)
            await service.jobs.drain()

        with pytest.raises(GuestLimitError):
            await service.send_turn(conv.id, "one too many", SETTINGS, GUEST)
        assert await service.store.count_user_messages(conv.id) == 10

    async def test_guest_limit_is_configurable(self, service):
        service.config.limits.guest_message_limit = 1
        conv = await service.create_conversation("uuid-1", GUEST)
        await service.send_turn(conv.id, "first", SETTINGS, GUEST)
        await service.jobs.drain()
        with pytest.raises(GuestLimitError):
            await service.send_turn(conv.id, "second", SETTINGS, GUEST)

    async def test_image_attachment_is_linked_and_sent(self, service, factory):
        factory.engines.append(make_text_engine("A cat."))
        conv = await service.create_conversation("uuid-1", ALICE)
        storage_id = service.blobs.put(b"\x89PNG")
        att = await service.save_attachment(storage_id, "cat.png", "image/png", ALICE)

        sent = await service.send_turn(
            conv.id,
            "What is this?",
            TurnSettings(model="GPT-4.1", credential="sk", attachments=[AttachmentRef(att.id, "cat.png")]),
            ALICE,
        )

        user_msg = await service.store.get_message(sent.user_message_id)
        assert user_msg.parts == [
            TextPart("What is this?"),
            ImagePart(f"https://cdn.example/blobs/{storage_id}", mime_type="image/png"),
        ]
        assert (await service.store.get_attachment(att.id)).conversation_id == conv.id

    async def test_foreign_attachment_rejected(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        storage_id = service.blobs.put(b"secret")
        att = await service.save_attachment(storage_id, "bob.pdf", "application/pdf", BOB)
        settings = TurnSettings(model="GPT-4.1", attachments=[AttachmentRef(att.id, "bob.pdf")])

        with pytest.raises(AuthorizationError, match="bob.pdf"):
            await service.send_turn(conv.id, "peek", settings, ALICE)
        assert await service.store.list_messages(conv.id) == []


class TestMessages:
    async def test_delete_trailing(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        await service.store.insert_message(conv.id, Roles.USER, "1", created_at=100)
        await service.store.insert_message(conv.id, Roles.ASSISTANT, "2", created_at=200)
        await service.store.insert_message(conv.id, Roles.USER, "3", created_at=300)

        with pytest.raises(AuthorizationError):
            await service.delete_trailing(conv.id, 100, BOB)
        assert await service.delete_trailing(conv.id, 200, ALICE, inclusive=False) == 1
        assert await service.delete_trailing(conv.id, 200, ALICE) == 1
        assert [m.content for m in await service.list_messages(conv.id, ALICE)] == ["1"]

    async def test_watch_messages(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        watcher = service.watch_messages(conv.id, ALICE)

        assert await watcher.__anext__() == []
        await service.store.insert_message(conv.id, Roles.USER, "hi")
        snapshot = await watcher.__anext__()
        assert [m.content for m in snapshot] == ["hi"]
        await watcher.aclose()

    async def test_watch_coalesces_pending_changes(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        watcher = service.watch_messages(conv.id, ALICE)
        assert await watcher.__anext__() == []

        for text in ("a", "b", "c"):
            await service.store.insert_message(conv.id, Roles.USER, text)
        snapshot = await watcher.__anext__()
        assert [m.content for m in snapshot] == ["a", "b", "c"]

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(watcher.__anext__(), timeout=0.05)
        await watcher.aclose()

    async def test_watch_unauthorised_gets_one_empty_snapshot(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        await service.store.insert_message(conv.id, Roles.USER, "private")
        assert [snap async for snap in service.watch_messages(conv.id, BOB)] == [[]]

    async def test_generate_title_for_message(self, service, factory):
        factory.title = "Packing list"
        conv = await service.create_conversation("uuid-1", ALICE)
        msg = await service.store.insert_message(conv.id, Roles.USER, "What should I pack?")

        await service.generate_title_for_message(
            conv.id, msg.id, msg.content, ALICE, google_api_key="user-g"
        )
        await service.jobs.drain()

        assert (await service.get_summary_for_message(msg.id, ALICE)).content == "Packing list"
        assert (await service.get_conversation(conv.id, ALICE)).title == "New Conversation"
        assert await service.get_summary_for_message(msg.id, BOB) is None
        assert [s.content for s in await service.list_summaries(conv.id, ALICE)] == ["Packing list"]

        with pytest.raises(AuthorizationError):
            await service.generate_title_for_message(conv.id, msg.id, "x", BOB)


class TestAttachments:
    async def test_upload_requires_authentication(self, service):
        with pytest.raises(AuthorizationError):
            service.generate_upload_url(GUEST)
        assert service.generate_upload_url(ALICE).startswith("https://cdn.example/blobs")

    async def test_visibility_and_delete(self, service):
        storage_id = service.blobs.put(b"shared bytes")
        first = await service.save_attachment(storage_id, "a.png", "image/png", ALICE)
        second = await service.save_attachment(storage_id, "b.png", "image/png", ALICE)
        assert first.url == f"https://cdn.example/blobs/{storage_id}"

        assert await service.get_attachment(first.id, BOB) is None
        assert len(await service.list_attachments_for_user(ALICE)) == 2
        assert await service.list_attachments_for_user(GUEST) == []

        with pytest.raises(AuthorizationError):
            await service.delete_attachment(first.id, BOB)
        with pytest.raises(NotFoundError):
            await service.delete_attachment("missing", ALICE)

        await service.delete_attachment(first.id, ALICE)
        assert service.blobs.exists(storage_id)
        await service.delete_attachment(second.id, ALICE)
        assert not service.blobs.exists(storage_id)

    async def test_conversation_attachments(self, service):
        conv = await service.create_conversation("uuid-1", ALICE)
        storage_id = service.blobs.put(b"x")
        att = await service.save_attachment(storage_id, "x.png", "image/png", ALICE, conv.id)
        listed = await service.list_attachments_for_conversation(conv.id, ALICE)
        assert [a.id for a in listed] == [att.id]
        assert await service.list_attachments_for_conversation(conv.id, BOB) == []


async def test_open_uses_configured_paths(tmp_path):
    config = ChatRelayConfig(
        store=StoreConfig(database=str(tmp_path / "c.db"), blob_dir=str(tmp_path / "b"))
    )
    svc = await ChatService.open(config)
    try:
        conv = await svc.create_conversation("uuid-1", ALICE)
        assert (await svc.get_conversation(conv.id, ALICE)).id == conv.id
    finally:
        await svc.close()
