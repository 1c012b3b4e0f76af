"""
interfaces/cli.py — Parley interactive chat REPL

Streams each turn through the same relay the HTTP gateway uses, rendering
thinking markers dimmed and content deltas inline. Uses rich for terminal
output and aioconsole for async input.

Commands:
    /new               start a fresh conversation
    /id                show the current handle and session id
    /feedback <text>   record feedback on the current conversation
    /help              list commands
    exit | quit        leave
"""

from __future__ import annotations

from typing import Optional

import aioconsole
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from parley.agent.events import EventKind
from parley.bootstrap import AgentStack
from parley.exceptions import ParleyError
from parley.gateway.relay import relay_turn
from parley.observability.logger import get_logger

log = get_logger(__name__)

_HELP = (
    "[bold]/new[/]               start a fresh conversation\n"
    "[bold]/id[/]                show the current handle and session id\n"
    "[bold]/feedback <text>[/]   record feedback on this conversation\n"
    "[bold]/help[/]              this list\n"
    "[bold]exit[/]               leave"
)


class ChatREPL:

    def __init__(self, stack: AgentStack, console: Optional[Console] = None) -> None:
        self.stack = stack
        self.console = console or Console()
        self._handle: Optional[str] = None

    async def run(self) -> None:
        name = self.stack.settings.agent_name
        self.console.print(
            Panel.fit(
                f"[bold cyan]{name}[/]  ·  {self.stack.backend.name}/{self.stack.settings.llm.model}\n"
                "[dim]Type /help for commands, exit to quit.[/]"
            )
        )
        while True:
            try:
                line = (await aioconsole.ainput("you › ")).strip()
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return
            if not line:
                continue
            if line.lower() in {"exit", "quit"}:
                return
            if line.startswith("/"):
                await self._command(line)
                continue
            await self._turn(line)

    async def _turn(self, text: str) -> None:
        self.console.print(f"[bold green]{self.stack.settings.agent_name} ›[/] ", end="")
        async for event in relay_turn(
            self.stack.engine,
            self.stack.binder,
            text,
            handle=self._handle,
            buffer_size=self.stack.settings.agent.stream_buffer_size,
        ):
            if event.kind is EventKind.META:
                self._handle = event.data["conversation_id"]
            elif event.kind is EventKind.THINKING:
                log.debug("cli.thinking", marker=event.marker())
                if event.phase is not None and event.phase.value.startswith("tool"):
                    self.console.print(f"\n[dim]… {escape(event.text)}[/]")
            elif event.kind is EventKind.CONTENT:
                self.console.print(event.text, end="", markup=False, highlight=False)
            elif event.kind is EventKind.ERROR:
                self.console.print(f"\n[red]✗ {escape(event.text)}[/]", end="")
        self.console.print("\n")

    async def _command(self, line: str) -> None:
        cmd, _, arg = line.partition(" ")
        cmd = cmd.lower()
        if cmd == "/help":
            self.console.print(_HELP)
        elif cmd == "/new":
            self._handle = None
            session_id = await self.stack.engine.new_conversation(title="cli")
            self.stack.engine.set_conversation_id(session_id)
            self.console.print(f"[dim]New conversation {session_id}[/]")
        elif cmd == "/id":
            session_id = (
                await self.stack.binder.lookup(self._handle) if self._handle else None
            ) or self.stack.engine.get_conversation_id()
            self.console.print(f"[dim]handle={self._handle or '-'} session={session_id}[/]")
        elif cmd == "/feedback":
            session_id = await self.stack.binder.lookup(self._handle) if self._handle else None
            try:
                await self.stack.engine.learn(arg, session_id=session_id)
            except ParleyError as e:
                self.console.print(f"[red]✗ {escape(str(e))}[/]")
            else:
                self.console.print("[dim]Feedback recorded.[/]")
        else:
            self.console.print(f"[yellow]Unknown command {cmd}. Try /help.[/]")
