"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatrelay.chat.parts import (
    ImagePart,
    Part,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from chatrelay.chat.records import ChatMessage, Conversation
from chatrelay.models import ModelConfig

PROVIDER_COLORS = {
    "openai": "green",
    "anthropic": "yellow",
    "google": "blue",
    "openrouter": "magenta",
}

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "system": "dim",
    "data": "dim",
}


def _fmt_ms(value: int) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


class OutputFormatter:
    """Rich-based output formatting for the chatrelay CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_model_list(
        self, models: Iterable[ModelConfig], available: set[str] | None = None
    ) -> None:
        table = Table(title="Models", show_lines=False)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Provider", no_wrap=True)
        table.add_column("Model id")
        table.add_column("Reasoning", no_wrap=True)
        table.add_column("Context", justify="right")
        if available is not None:
            table.add_column("Available", no_wrap=True)

        for m in models:
            color = PROVIDER_COLORS.get(m.provider, "white")
            if not m.supports_reasoning:
                reasoning = "-"
            elif m.can_toggle_thinking:
                reasoning = "toggle"
            else:
                reasoning = "always"
            row = [
                m.name,
                Text(m.provider, style=color),
                m.model_id,
                reasoning,
                f"{m.context_window:,}",
            ]
            if available is not None:
                row.append("[green]yes[/green]" if m.name in available else "[dim]no[/dim]")
            table.add_row(*row)

        self.console.print(table)

    def format_conversation_list(self, conversations: list[Conversation]) -> None:
        if not conversations:
            self.console.print("[dim]No conversations found.[/dim]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Last message", no_wrap=True)
        table.add_column("Public", no_wrap=True)

        for c in conversations:
            title = c.title
            if c.is_branched and c.branched_from_title:
                title = f"{title} [dim](from {c.branched_from_title})[/dim]"
            table.add_row(
                c.id,
                title,
                _fmt_ms(c.last_message_at),
                "yes" if c.is_public else "",
            )

        self.console.print(table)

    def format_messages(self, messages: list[ChatMessage]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for msg in messages:
            color = ROLE_COLORS.get(msg.role, "white")
            status = "" if msg.is_complete else " [yellow](streaming)[/yellow]"
            self.console.print(
                f"[{color}]{_fmt_ms(msg.created_at)} {msg.role:>9s}[/{color}]{status}"
            )
            if msg.parts:
                self.format_parts(msg.parts)
            elif msg.content:
                self.console.print(f"  {msg.content}")

    def format_parts(self, parts: list[Part]) -> None:
        for part in parts:
            if isinstance(part, TextPart):
                self.console.print(f"  {part.text}")
            elif isinstance(part, ReasoningPart):
                self.console.print(Panel(part.text, title="reasoning", style="dim"))
            elif isinstance(part, ImagePart):
                self.console.print(f"  [dim]image:[/dim] {part.image[:80]}")
            elif isinstance(part, ToolCallPart):
                args = json.dumps(part.args, default=str)
                self.console.print(f"  [yellow]{part.name}[/yellow]({args[:80]})")
            elif isinstance(part, ToolResultPart):
                result = part.result if isinstance(part.result, str) else json.dumps(part.result)
                self.console.print(f"  [cyan]-> {part.tool_call_id}[/cyan] {result[:200]}")

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
