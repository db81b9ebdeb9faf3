"""Interface for tools the model may call during a turn."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatrelay.types import ToolResult


def normalize_schema(schema: dict | None) -> dict:
    """Object schema, closed to unknown keys unless the tool says otherwise."""
    normalized: dict = {"type": "object", "additionalProperties": False}
    normalized.update(schema or {})
    return normalized


class Tool(ABC):
    """
    A callable the engine can offer to a provider.

    ``parameters`` is a JSON schema for the keyword arguments of ``execute``.
    ``execute`` reports failures in the returned ``ToolResult``; anything it
    raises is turned into a textual result by the engine.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def declaration(self) -> dict:
        """Provider-neutral declaration; adapters translate it to their wire shape."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": normalize_schema(self.parameters),
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
