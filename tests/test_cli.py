"""Tests for aura/cli/ — Click commands, formatters and the chat session."""

from __future__ import annotations

import io
import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from aura.agent import AuraAgent
from aura.cli.app import async_cmd, cli
from aura.cli.formatters import (
    build_table,
    format_created,
    get_console,
    render_tool,
    render_toolbox,
)
from aura.cli.repl import ChatSession
from aura.memory.store import ConversationStore
from aura.tools.models import (
    AffirmationCard,
    BreathingExercise,
    Checklist,
    ChecklistItem,
    MoodTracker,
    ToolKind,
)
from aura.types import MemoryEntry, Role


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=100, no_color=True)
    console.print(renderable)
    return console.file.getvalue()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:

    def test_get_console(self) -> None:
        assert get_console(no_color=True).no_color is True

    def test_build_table(self) -> None:
        table = build_table("T", ["a", "b"], [[1, "x"]])
        assert table.row_count == 1

    def test_format_created(self) -> None:
        assert format_created("not-a-number") == "-"
        assert format_created("1700000000000").startswith("2023-11-1")

    @pytest.mark.parametrize("tool,expected", [
        (Checklist(id="c1", title="Plan", items=[ChecklistItem(text="Pack")]), "[0] Pack"),
        (MoodTracker(id="m1", title="Mood"), "Happy | Okay"),
        (BreathingExercise(id="b1", title="Breathe"), "14s per breath"),
        (AffirmationCard(id="a1", title="Yes", text=["I can."]), "I will remember this."),
    ])
    def test_render_tool(self, tool, expected) -> None:
        output = _render(render_tool(tool))
        assert expected in output
        assert tool.title in output

    def test_empty_toolbox(self) -> None:
        assert "The toolbox is empty." in _render(render_toolbox({}))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pytest.fixture()
def cli_store(config) -> ConversationStore:
    s = ConversationStore(config.store.state_file)
    s.initialize()
    return s


def _reload(store: ConversationStore) -> ConversationStore:
    fresh = ConversationStore(store.state_path)
    fresh.initialize()
    return fresh


class TestCommands:

    def test_chats_json(self, cli_store) -> None:
        cli_store.append_message(Role.USER, "Plan my week")
        result = CliRunner().invoke(cli, ["--json", "chats"])
        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert rows == [{
            "id": cli_store.active_id,
            "title": "Plan my week...",
            "messages": 1,
            "active": True,
        }]

    def test_chats_table(self, cli_store) -> None:
        result = CliRunner().invoke(cli, ["--no-color", "chats"])
        assert result.exit_code == 0, result.output
        assert "New Chat" in result.output

    def test_new(self, cli_store) -> None:
        result = CliRunner().invoke(cli, ["new"])
        assert result.exit_code == 0
        new_id = result.output.strip()
        assert _reload(cli_store).active_id == new_id

    def test_switch(self, cli_store) -> None:
        first = cli_store.active_id
        cli_store.create_conversation()
        result = CliRunner().invoke(cli, ["switch", first])
        assert result.exit_code == 0
        assert _reload(cli_store).active_id == first

    def test_switch_unknown(self, cli_store) -> None:
        result = CliRunner().invoke(cli, ["switch", "nope"])
        assert result.exit_code == 1
        assert "No conversation" in result.output

    def test_delete_with_yes(self, cli_store) -> None:
        doomed = cli_store.active_id
        result = CliRunner().invoke(cli, ["delete", doomed, "--yes"])
        assert result.exit_code == 0
        reloaded = _reload(cli_store)
        assert reloaded.get(doomed) is None
        assert reloaded.get(reloaded.active_id) is not None

    def test_delete_declined(self, cli_store) -> None:
        kept = cli_store.active_id
        result = CliRunner().invoke(cli, ["delete", kept], input="n\n")
        assert result.exit_code == 1
        assert _reload(cli_store).get(kept) is not None

    def test_tools_json(self, cli_store) -> None:
        cli_store.add_tool(
            ToolKind.AFFIRMATION_CARD,
            AffirmationCard(id="a1", title="Yes", text=["I can."]),
        )
        result = CliRunner().invoke(cli, ["--json", "tools"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["affirmation_card"][0]["buttonText"] == "I will remember this."

    def test_memories_json(self, cli_store) -> None:
        cli_store.add_memory(MemoryEntry(text="The user has a dog", embedding=None))
        result = CliRunner().invoke(cli, ["--json", "memories"])
        assert json.loads(result.output) == [{"text": "The user has a dog", "embedded": False}]

    def test_ask(self, cli_store, engine, search, monkeypatch) -> None:
        monkeypatch.setattr(
            "aura.agent.AuraAgent",
            lambda config: AuraAgent(config, engine=engine, search=search),
        )
        result = CliRunner().invoke(cli, ["--no-color", "ask", "Hello [there]"])
        assert result.exit_code == 0, result.output
        assert "I'm here for you." in result.output
        assert _reload(cli_store).history()[0].content == "Hello [there]"


def test_async_cmd_runs_coroutine() -> None:
    @async_cmd
    async def double(x):
        return x * 2

    assert double(21) == 42


# ---------------------------------------------------------------------------
# Chat session slash commands
# ---------------------------------------------------------------------------


@pytest.fixture()
def session(agent) -> tuple[ChatSession, io.StringIO]:
    out = io.StringIO()
    return ChatSession(agent, console=Console(file=out, width=100, no_color=True)), out


class TestChatSession:

    @pytest.mark.asyncio
    async def test_exit(self, session) -> None:
        chat, _ = session
        assert await chat.handle_command("/exit") is False
        assert await chat.handle_command("/quit") is False

    @pytest.mark.asyncio
    async def test_help_and_unknown(self, session) -> None:
        chat, out = session
        assert await chat.handle_command("/help") is True
        assert await chat.handle_command("/dance") is True
        text = out.getvalue()
        assert "/breathe" in text
        assert "Unknown command /dance" in text

    @pytest.mark.asyncio
    async def test_new_and_switch(self, session, agent) -> None:
        chat, _ = session
        first = agent.store.active_id
        await chat.handle_command("/new")
        assert agent.store.active_id != first
        await chat.handle_command(f"/switch {first}")
        assert agent.store.active_id == first

    @pytest.mark.asyncio
    async def test_done_completes_item(self, session, agent, engine) -> None:
        chat, out = session
        agent.store.add_tool(
            ToolKind.CHECKLIST,
            Checklist(id="c1", title="Plan", items=[ChecklistItem(text="Pack")]),
        )
        await chat.handle_command("/done c1 0")
        assert agent.store.completed_tasks() == ["Pack"]
        assert "I'm here for you." in out.getvalue()

    @pytest.mark.asyncio
    async def test_done_stale(self, session) -> None:
        chat, out = session
        await chat.handle_command("/done c1 0")
        assert "no longer there" in out.getvalue()

    @pytest.mark.asyncio
    async def test_mood_without_tracker(self, session) -> None:
        chat, out = session
        await chat.handle_command("/mood Happy")
        assert "no mood tracker" in out.getvalue()

    @pytest.mark.asyncio
    async def test_affirm_uses_latest_card(self, session, agent, engine) -> None:
        chat, _ = session
        agent.store.add_tool(
            ToolKind.AFFIRMATION_CARD,
            AffirmationCard(id="a1", title="Yes", text=["I can.", "I will."]),
        )
        await chat.handle_command("/affirm")
        assert 'affirmation "I can. I will."' in engine.reply_prompts[-1]
