"""
Operator CLI for chatrelay.

Usage:
    chatrelay models [--available]
    chatrelay send MESSAGE --model NAME [--conversation UUID] [--web-search] [--thinking]
    chatrelay conversations list|show|delete
    chatrelay config show|validate
    chatrelay version
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatrelay.config import ChatRelayConfig, load_config
from chatrelay.models import (
    MODEL_CONFIGS,
    Providers,
    is_model_available,
    resolve_credential_and_provider,
)
from chatrelay.types import CallerIdentity, ChatRelayError, ConfigurationError

app = typer.Typer(name="chatrelay", help="chatrelay - streaming multi-provider chat backend")
conversations_app = typer.Typer(help="Conversation management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(conversations_app, name="conversations")
app.add_typer(config_app, name="config")

console = Console()

# Environment variables holding the operator's own provider keys.
USER_KEY_ENV = {
    Providers.OPENAI: "OPENAI_API_KEY",
    Providers.ANTHROPIC: "ANTHROPIC_API_KEY",
    Providers.GOOGLE: "GOOGLE_API_KEY",
    Providers.OPENROUTER: "OPENROUTER_API_KEY",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatrelay.yaml",
        Path.cwd() / "chatrelay.yml",
        Path.home() / ".config" / "chatrelay" / "config.yaml",
        Path.home() / ".chatrelay" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None) -> ChatRelayConfig:
    cfg = load_config(_get_config_path(), profile=profile)
    _setup_logging(cfg.logging.level)
    return cfg


def _setup_logging(level: str) -> None:
    root = logging.getLogger("chatrelay")
    if any(isinstance(h, RichHandler) for h in root.handlers):
        return
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())


def _user_key(provider: str) -> str | None:
    return os.environ.get(USER_KEY_ENV.get(provider, ""))


def _caller(user: str) -> CallerIdentity:
    return CallerIdentity(user_id=user, name=user)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def models(
    available: bool = typer.Option(False, "--available", help="Show which models the current keys unlock"),
):
    """List registered models."""
    from chatrelay.cli.output import OutputFormatter

    formatter = OutputFormatter(console)
    if not available:
        formatter.format_model_list(MODEL_CONFIGS.values())
        return

    cfg = _load()
    host_key = cfg.providers.host_google_api_key()
    unlocked = {
        name
        for name in MODEL_CONFIGS
        if is_model_available(name, _user_key, host_key)
    }
    formatter.format_model_list(MODEL_CONFIGS.values(), available=unlocked)


@app.command()
def send(
    message: str = typer.Argument(..., help="Message text"),
    model: str = typer.Option(..., "--model", "-m", help="Logical model name"),
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Conversation UUID"),
    user: str = typer.Option("local", "--user", help="User id to act as"),
    web_search: bool = typer.Option(False, "--web-search", help="Offer the web search tool"),
    thinking: bool = typer.Option(False, "--thinking", help="Request reasoning output"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Send one message and print the assistant reply."""

    async def _run():
        from chatrelay.cli.output import OutputFormatter
        from chatrelay.service import ChatService, TurnSettings

        cfg = _load(profile)
        effective = resolve_credential_and_provider(
            model, _user_key, cfg.providers.host_google_api_key()
        )
        caller = _caller(user)
        service = await ChatService.open(cfg)
        try:
            conv_uuid = conversation or str(uuid.uuid4())
            conv = await service.create_conversation(conv_uuid, caller)
            sent = await service.send_turn(
                conv.id,
                message,
                TurnSettings(
                    model=effective.config.name,
                    provider=effective.provider,
                    credential=effective.credential,
                    web_search_enabled=web_search,
                    thinking_enabled=thinking,
                ),
                caller,
            )
            with console.status(f"Waiting for {effective.config.name}..."):
                await service.jobs.drain()

            reply = await service.store.get_message(sent.assistant_message_id)
            formatter = OutputFormatter(console)
            if reply is not None:
                formatter.format_messages([reply])
            console.print(f"[dim]Conversation: {conv.uuid}[/dim]")
        finally:
            await service.close()

    try:
        asyncio.run(_run())
    except ChatRelayError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@conversations_app.command("list")
def conversations_list(
    user: str = typer.Option("local", "--user", help="User id to act as"),
):
    """List a user's conversations, most recent first."""

    async def _run():
        from chatrelay.cli.output import OutputFormatter
        from chatrelay.service import ChatService

        service = await ChatService.open(_load())
        try:
            conversations = await service.list_conversations(_caller(user))
            OutputFormatter(console).format_conversation_list(conversations)
        finally:
            await service.close()

    asyncio.run(_run())


@conversations_app.command("show")
def conversations_show(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    user: str = typer.Option("local", "--user", help="User id to act as"),
):
    """Show a conversation's messages."""

    async def _run():
        from chatrelay.cli.output import OutputFormatter
        from chatrelay.service import ChatService

        service = await ChatService.open(_load())
        try:
            caller = _caller(user)
            conv = await service.get_conversation(conversation_id, caller)
            if conv is None:
                console.print(f"[red]Conversation not found:[/red] {conversation_id}")
                raise typer.Exit(1)
            console.print(f"[bold]{conv.title}[/bold]  [dim]{conv.uuid}[/dim]")
            messages = await service.list_messages(conversation_id, caller)
            OutputFormatter(console).format_messages(messages)
        finally:
            await service.close()

    asyncio.run(_run())


@conversations_app.command("delete")
def conversations_delete(
    conversation_id: str = typer.Argument(..., help="Conversation ID"),
    user: str = typer.Option("local", "--user", help="User id to act as"),
):
    """Delete a conversation with its messages and summaries."""

    async def _run():
        from chatrelay.service import ChatService

        service = await ChatService.open(_load())
        try:
            await service.delete_conversation(conversation_id, _caller(user))
            console.print(f"Deleted conversation: {conversation_id}")
        finally:
            await service.close()

    try:
        asyncio.run(_run())
    except ChatRelayError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@config_app.command("show")
def config_show():
    """Show effective config."""
    from chatrelay.cli.output import OutputFormatter

    cfg = load_config(_get_config_path())
    formatter = OutputFormatter(console)
    formatter.format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and report which credentials are present."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path)
        console.print("[green]Config is valid.[/green]")
        if config_path:
            console.print(f"  Loaded from: {config_path}")
        else:
            console.print("  [dim]No config file found, using defaults.[/dim]")
        console.print(f"  Database: {cfg.store.database}")
        console.print(f"  Title model: {cfg.titles.model}")
        host_key = "set" if cfg.providers.host_google_api_key() else "missing"
        console.print(f"  Host Google key ({cfg.providers.host_google_api_key_env}): {host_key}")
        search_key = "set" if cfg.tools.tavily_api_key() else "missing"
        console.print(f"  Web search key ({cfg.tools.tavily_api_key_env}): {search_key}")
    except ConfigurationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version."""
    from chatrelay import __version__

    console.print(f"chatrelay v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
