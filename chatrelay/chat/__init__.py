"""Chat state: message parts, persistent records, the store, and blobs."""

from chatrelay.chat.blobs import BlobStore
from chatrelay.chat.records import (
    Attachment,
    ChatMessage,
    Conversation,
    MessageSummary,
    Roles,
)
from chatrelay.chat.store import ChangeNotice, ChatStore, Subscription

__all__ = [
    "Attachment",
    "BlobStore",
    "ChangeNotice",
    "ChatMessage",
    "ChatStore",
    "Conversation",
    "MessageSummary",
    "Roles",
    "Subscription",
]
