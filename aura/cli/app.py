"""CLI application — Click-based command hierarchy for Aura.

``aura`` with no subcommand opens the interactive chat. The other commands
inspect or manage the persisted conversations without talking to the model.
"""

from __future__ import annotations

import asyncio
import functools
import json
from typing import Any

import click

from aura.cli.formatters import build_table, format_created, get_console, render_toolbox
from aura.config import AuraConfig
from aura.memory.store import ConversationStore


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def _open_store() -> ConversationStore:
    config = AuraConfig()
    store = ConversationStore(
        config.store.state_file,
        max_completed_tasks=config.store.max_completed_tasks,
        max_mood_history=config.store.max_mood_history,
    )
    store.initialize()
    return store


@click.group(invoke_without_command=True)
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, no_color: bool) -> None:
    """Aura - a supportive companion running on a local model."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["no_color"] = no_color

    if ctx.invoked_subcommand is None:
        from aura.cli.repl import run_repl

        run_repl(ctx.obj)


@cli.command("chats")
@click.pass_context
def chats_cmd(ctx: click.Context) -> None:
    """List conversations, newest first."""
    store = _open_store()
    conversations = store.conversations()
    if ctx.obj.get("json"):
        click.echo(json.dumps([
            {
                "id": c.id,
                "title": c.title,
                "messages": len(c.history),
                "active": c.id == store.active_id,
            }
            for c in conversations
        ]))
        return
    rows = [
        [
            "*" if c.id == store.active_id else "",
            c.id,
            c.title,
            len(c.history),
            format_created(c.id),
        ]
        for c in conversations
    ]
    get_console(ctx.obj.get("no_color", False)).print(
        build_table("Conversations", ["", "ID", "Title", "Messages", "Created"], rows)
    )


@cli.command("new")
@click.pass_context
def new_cmd(ctx: click.Context) -> None:
    """Start a new conversation and make it active."""
    conversation = _open_store().create_conversation()
    click.echo(conversation.id)


@cli.command("switch")
@click.argument("conversation_id")
def switch_cmd(conversation_id: str) -> None:
    """Make CONVERSATION_ID the active conversation."""
    if not _open_store().set_active(conversation_id):
        raise click.ClickException(f"No conversation with id {conversation_id}")
    click.echo(f"Active conversation: {conversation_id}")


@cli.command("delete")
@click.argument("conversation_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def delete_cmd(conversation_id: str, yes: bool) -> None:
    """Delete a conversation."""
    store = _open_store()
    if store.get(conversation_id) is None:
        raise click.ClickException(f"No conversation with id {conversation_id}")
    if not yes:
        click.confirm(f"Delete conversation {conversation_id}?", abort=True)
    store.delete(conversation_id)
    click.echo(f"Deleted. Active conversation: {store.active_id}")


@cli.command("tools")
@click.pass_context
def tools_cmd(ctx: click.Context) -> None:
    """Show the active conversation's toolbox."""
    store = _open_store()
    tools = store.tools()
    if ctx.obj.get("json"):
        click.echo(json.dumps({
            kind.value: [t.model_dump(mode="json", by_alias=True) for t in instances]
            for kind, instances in tools.items()
        }))
        return
    console = get_console(ctx.obj.get("no_color", False))
    console.print(render_toolbox(tools))
    completed = store.completed_tasks()
    if completed:
        console.print(f"[dim]Completed: {', '.join(completed)}[/dim]")


@cli.command("memories")
@click.pass_context
def memories_cmd(ctx: click.Context) -> None:
    """List what Aura remembers in the active conversation."""
    store = _open_store()
    memories = store.memories()
    if ctx.obj.get("json"):
        click.echo(json.dumps([
            {"text": m.text, "embedded": m.embedding is not None} for m in memories
        ]))
        return
    rows = [[i + 1, m.text, "yes" if m.embedding else "no"] for i, m in enumerate(memories)]
    get_console(ctx.obj.get("no_color", False)).print(
        build_table("Memories", ["#", "Fact", "Embedded"], rows)
    )


@cli.command("ask")
@click.argument("message")
@click.pass_context
@async_cmd
async def ask_cmd(ctx: click.Context, message: str) -> None:
    """Send one MESSAGE to the active conversation and print the reply."""
    from aura.agent import AuraAgent
    from aura.cli.formatters import render_tool
    from aura.main import configure_logging

    configure_logging()
    agent = AuraAgent(AuraConfig())
    await agent.initialize()
    try:
        reply = await agent.send(message)
    finally:
        await agent.aclose()

    console = get_console(ctx.obj.get("no_color", False))
    if reply.text:
        console.print(reply.text, markup=False)
    for tool in reply.tools_created:
        console.print(render_tool(tool))
