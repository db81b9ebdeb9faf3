"""Tests for the operator CLI."""

from __future__ import annotations

import asyncio

import pytest
import yaml
from typer.testing import CliRunner

from chatrelay import __version__
from chatrelay.chat.records import Roles
from chatrelay.chat.store import ChatStore
from chatrelay.cli.app import USER_KEY_ENV, app

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run in a directory holding a chatrelay.yaml that points storage at tmp_path."""
    config = {
        "store": {
            "database": str(tmp_path / "chat.db"),
            "blob_dir": str(tmp_path / "blobs"),
        },
        "logging": {"level": "WARNING"},
    }
    (tmp_path / "chatrelay.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    for var in [*USER_KEY_ENV.values(), "HOST_GOOGLE_API_KEY", "TAVILY_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"chatrelay v{__version__}" in result.output


def test_models_lists_registry():
    result = runner.invoke(app, ["models"])
    assert result.exit_code == 0
    assert "Claude 4 Sonnet" in result.output
    assert "Gemini 2.5 Flash" in result.output


def test_models_available_with_openai_key(workdir, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    result = runner.invoke(app, ["models", "--available"])
    assert result.exit_code == 0
    assert "Available" in result.output
    assert "yes" in result.output


def test_config_validate_reports_keys(workdir, monkeypatch):
    monkeypatch.setenv("TAVILY_API_KEY", "tvly")
    result = runner.invoke(app, ["config", "validate"])
    assert result.exit_code == 0
    assert "Config is valid." in result.output
    assert "chatrelay.yaml" in result.output
    assert "Host Google key (HOST_GOOGLE_API_KEY): missing" in result.output
    assert "Web search key (TAVILY_API_KEY): set" in result.output


def test_config_show(workdir):
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    assert "guest_message_limit" in result.output


def test_send_without_credentials_fails_cleanly(workdir):
    result = runner.invoke(app, ["send", "hello", "--model", "Claude 4 Opus"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_conversations_list_and_show(workdir):
    async def seed() -> str:
        store = ChatStore(str(workdir / "chat.db"))
        await store.init()
        conv = await store.create_conversation("uuid-1", "Holidays", user_id="local")
        await store.insert_message(conv.id, Roles.USER, "Where should I go?")
        await store.close()
        return conv.id

    conv_id = asyncio.run(seed())

    listed = runner.invoke(app, ["conversations", "list"])
    assert listed.exit_code == 0
    assert "Holidays" in listed.output

    shown = runner.invoke(app, ["conversations", "show", conv_id])
    assert shown.exit_code == 0
    assert "Where should I go?" in shown.output

    hidden = runner.invoke(app, ["conversations", "show", conv_id, "--user", "someone-else"])
    assert hidden.exit_code == 1

    deleted = runner.invoke(app, ["conversations", "delete", conv_id])
    assert deleted.exit_code == 0
    assert runner.invoke(app, ["conversations", "list"]).output.count("Holidays") == 0


def test_config_validate_rejects_bad_yaml(workdir):
    (workdir / "chatrelay.yaml").write_text("store: [oops", encoding="utf-8")
    result = runner.invoke(app, ["config", "validate"])
    assert result.exit_code == 1
    assert "Config validation failed" in result.output
