from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CallerIdentity:
    """Who is calling: an authenticated user, a guest session, or nobody."""

    user_id: str | None = None
    session_id: str | None = None
    name: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def is_guest(self) -> bool:
        return not self.user_id and bool(self.session_id)


class ErrorCode:
    CONFIGURATION_ERROR = "configuration_error"
    PROVIDER_ERROR = "provider_error"
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
    UPSTREAM_ERROR = "upstream_error"


class ChatRelayError(Exception):
    """Base class for every error raised by chatrelay."""

    code: str = "error"


class ConfigurationError(ChatRelayError):
    code = ErrorCode.CONFIGURATION_ERROR


class UnknownModelError(ConfigurationError):
    def __init__(self, model: str) -> None:
        super().__init__(f"Configuration not found for model: {model}")
        self.model = model


class MissingCredentialError(ConfigurationError):
    def __init__(self, provider: str, detail: str = "") -> None:
        msg = f"No API key available for provider {provider!r}"
        if detail:
            msg = f"{msg}. {detail}"
        super().__init__(msg)
        self.provider = provider


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class ProviderError(ChatRelayError):
    code = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        cause: Any = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.cause = cause


class AuthorizationError(ChatRelayError):
    code = "authorization_error"


class GuestLimitError(AuthorizationError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            "Guest message limit reached. Please log in to continue."
        )
        self.limit = limit


class NotFoundError(ChatRelayError):
    code = "not_found"


class PartValidationError(ChatRelayError, ValueError):
    code = ErrorCode.VALIDATION_ERROR


class StaleWriterError(ChatRelayError):
    """The assistant message is sealed or owned by another turn."""

    code = "stale_writer"

    def __init__(self, message_id: str) -> None:
        super().__init__(
            f"Message {message_id} is no longer writable by this turn"
        )
        self.message_id = message_id
