"""REPL — the interactive chat that runs when ``aura`` has no subcommand.

Plain lines go to the agent. Lines starting with ``/`` drive the rendered
tools (complete an item, log a mood, finish a breathing exercise) and the
conversation list. Tool events from the bus are printed as they arrive.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape as markup_escape

from aura.agent import AgentReply, AuraAgent
from aura.cli.formatters import build_table, get_console, render_tool, render_toolbox
from aura.config import AuraConfig
from aura.events import AuraEvent, ToolCreatedEvent, ToolWorkingEvent
from aura.tools.models import AffirmationCard, ToolKind


HELP_TEXT = """[bold]Commands[/bold]
  /new                 start a new conversation
  /chats               list conversations
  /switch <id>         switch to a conversation
  /delete <id>         delete a conversation
  /tools               show the toolbox
  /done <tool> <n>     complete item n of a checklist
  /mood <mood> [tool]  log a mood on the mood tracker
  /breathe             finish the breathing exercise
  /affirm [tool]       commit to an affirmation card
  /memories            show remembered facts
  /exit                leave"""


class ChatSession:
    """One terminal chat bound to one agent."""

    def __init__(self, agent: AuraAgent, console: Optional[Console] = None):
        self._agent = agent
        self._console = console or get_console()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _on_tool_event(self, event: AuraEvent) -> None:
        if isinstance(event, ToolWorkingEvent):
            label = ToolKind(event.kind).label
            self._console.print(f"[dim]Aura is preparing a {label}...[/dim]")
        elif isinstance(event, ToolCreatedEvent):
            self._console.print(f"[dim]Added to your toolbox: {markup_escape(event.title)}[/dim]")

    def show_reply(self, reply: Optional[AgentReply]) -> None:
        if reply is None:
            self._console.print("[yellow]That item is no longer there.[/yellow]")
            return
        if reply.in_chat_tool is not None:
            self._console.print(render_tool(reply.in_chat_tool))
        if reply.text:
            style = "bold magenta" if reply.persisted else "bold red"
            self._console.print(f"[{style}]Aura[/{style}]:")
            self._console.print(Markdown(reply.text))
        for tool in reply.tools_created:
            if tool is not reply.in_chat_tool:
                self._console.print(render_tool(tool))

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    def _latest_affirmation(self, tool_id: Optional[str]) -> Optional[AffirmationCard]:
        cards = self._agent.store.tools_of(ToolKind.AFFIRMATION_CARD)
        if tool_id:
            return next((c for c in cards if c.id == tool_id), None)
        return cards[-1] if cards else None

    async def handle_command(self, line: str) -> bool:
        """Run one slash command. Returns False when the session should end."""
        parts = line.strip().split()
        command, args = parts[0].lower(), parts[1:]
        agent = self._agent
        console = self._console

        if command in ("/exit", "/quit"):
            return False
        if command == "/help":
            console.print(HELP_TEXT)
        elif command == "/new":
            conversation = agent.new_conversation()
            console.print(f"[dim]New conversation {conversation.id}[/dim]")
        elif command == "/chats":
            rows = [
                ["*" if c.id == agent.store.active_id else "", c.id, c.title]
                for c in agent.store.conversations()
            ]
            console.print(build_table("Conversations", ["", "ID", "Title"], rows))
        elif command == "/switch" and args:
            if agent.switch(args[0]):
                console.print(f"[dim]Switched to {markup_escape(agent.store.active.title)}[/dim]")
            else:
                console.print("[yellow]No such conversation.[/yellow]")
        elif command == "/delete" and args:
            if agent.delete(args[0]):
                console.print(f"[dim]Deleted. Now in {agent.store.active_id}[/dim]")
            else:
                console.print("[yellow]No such conversation.[/yellow]")
        elif command == "/tools":
            console.print(render_toolbox(agent.store.tools()))
        elif command == "/memories":
            facts = [[i + 1, m.text] for i, m in enumerate(agent.memories())]
            console.print(build_table("Memories", ["#", "Fact"], facts))
        elif command == "/done" and len(args) == 2 and args[1].isdigit():
            with console.status("[magenta]Aura is thinking...[/magenta]"):
                reply = await agent.complete_checklist_item(args[0], int(args[1]))
            self.show_reply(reply)
        elif command == "/mood" and args:
            with console.status("[magenta]Aura is thinking...[/magenta]"):
                reply = await agent.log_mood(args[0], args[1] if len(args) > 1 else None)
            if reply is None:
                console.print(
                    "[yellow]There is no mood tracker to log on, "
                    "or that mood is not one of its options.[/yellow]"
                )
            else:
                self.show_reply(reply)
        elif command == "/breathe":
            with console.status("[magenta]Aura is thinking...[/magenta]"):
                reply = await agent.finish_breathing()
            self.show_reply(reply)
        elif command == "/affirm":
            card = self._latest_affirmation(args[0] if args else None)
            if card is None:
                console.print("[yellow]There is no affirmation card.[/yellow]")
            else:
                with console.status("[magenta]Aura is thinking...[/magenta]"):
                    reply = await agent.commit_affirmation(" ".join(card.text))
                self.show_reply(reply)
        else:
            console.print(f"[yellow]Unknown command {markup_escape(line.strip())}. Try /help.[/yellow]")
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _read_input(self) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._console.input, "[bold]you[/bold]> ")
        except (EOFError, KeyboardInterrupt):
            return None

    async def run(self) -> None:
        agent = self._agent
        await agent.initialize()
        subscription = agent.event_bus.subscribe("tool.*", self._on_tool_event)
        self._console.print(
            f"[bold magenta]Aura[/bold magenta] [dim]({markup_escape(agent.store.active.title)}, "
            f"/help for commands)[/dim]"
        )
        try:
            while True:
                line = await self._read_input()
                if line is None:
                    break
                if not line.strip():
                    continue
                if line.strip().startswith("/"):
                    if not await self.handle_command(line):
                        break
                    continue
                with self._console.status("[magenta]Aura is thinking...[/magenta]"):
                    reply = await agent.send(line)
                self.show_reply(reply)
        finally:
            agent.event_bus.unsubscribe(subscription)
            await agent.aclose()
            self._console.print("[dim]Take care![/dim]")


def run_repl(ctx_obj: dict[str, Any] | None = None) -> None:
    """Launch the interactive chat."""
    from aura.main import configure_logging

    configure_logging()
    ctx_obj = ctx_obj or {}
    session = ChatSession(
        AuraAgent(AuraConfig()),
        console=get_console(ctx_obj.get("no_color", False)),
    )
    try:
        asyncio.run(session.run())
    except KeyboardInterrupt:
        pass
