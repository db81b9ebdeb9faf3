"""
Deterministic token estimates.

Counts are approximate (about four characters per token) but monotonic in the
input and stable across runs, which is all attachment accounting needs.
"""

from __future__ import annotations

import math

from chatrelay.chat.parts import Part, TextPart, parts_text

# Overhead for role markers and separators around each message.
MESSAGE_OVERHEAD = 3


class TokenCounter:
    """Estimate token counts for text and message lists."""

    def __init__(self, chars_per_token: int = 4) -> None:
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def count_message(self, role: str, content: str, parts: list[Part] | None = None) -> int:
        text = content
        if parts and any(isinstance(p, TextPart) for p in parts):
            text = parts_text(parts)
        return self.count_text(text) + self.count_text(role) + MESSAGE_OVERHEAD

    def count_messages(self, messages: list) -> int:
        """Sum over anything with ``role``/``content`` (and optionally ``parts``)."""
        total = 0
        for msg in messages:
            total += self.count_message(
                getattr(msg, "role", ""),
                getattr(msg, "content", "") or "",
                getattr(msg, "parts", None),
            )
        return total

    def estimate_prompt_tokens(self, final_content: str, floor: int = 100) -> int:
        """Prompt-token annotation for attachments consumed by a turn."""
        return max(floor, self.count_text(final_content))
