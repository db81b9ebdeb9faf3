from __future__ import annotations

from typing import Iterable

from chatrelay.tools.base import Tool


class ToolRegistry:
    """The tools offered to the model for one turn, keyed by name."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if not overwrite and tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return [self._tools[name] for name in sorted(self._tools)]

    def declarations(self) -> list[dict]:
        """Declarations in name order, ready for a provider request."""
        return [tool.declaration() for tool in self.list()]
