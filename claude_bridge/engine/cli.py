"""CLI entry point for the Claude bridge.

Usage:
    claude-bridge ask "Add tests for the parser"
    claude-bridge ask --resume 217df94b-... "Now fix the failing one"
    claude-bridge sessions --all --limit 20
    claude-bridge show 217df94b-a1f0-43b4-b457-764295a557ec
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.markdown import Markdown
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .config import BridgeConfig
from .errors import BridgeError
from .manager import SessionManager
from .sink import StreamSink
from .yaml_config import load_yaml_config
from claude_bridge.shared.formatters.message import (
    extract_code_blocks,
    extract_file_paths,
    format_message_for_display,
)
from claude_bridge.shared.models.events import EventKind, StreamEvent
from claude_bridge.shared.models.message import Message, MessageRole
from claude_bridge.shared.models.session import Session

_STATUS_STYLE = {
    "pending": "yellow",
    "running": "cyan",
    "completed": "green",
    "error": "red",
}


class ConsoleSink(StreamSink):
    """Renders live events to a rich console."""

    def __init__(self, console: Console, *, show_thinking: bool = True) -> None:
        super().__init__(
            on_event=self._on_event,
            on_complete=self._on_complete,
            on_error=self._on_error,
            on_message=self._on_message,
        )
        self.console = console
        self.show_thinking = show_thinking

    def _on_event(self, event: StreamEvent) -> None:
        if event.kind is EventKind.TEXT:
            self.console.print(Text(event.content), end="")
        elif event.kind is EventKind.THINKING:
            if self.show_thinking:
                self.console.print(Text(event.content.rstrip("\n"), style="dim italic"))
        elif event.kind is EventKind.TOOL_USE:
            self.console.print()
            if event.metadata.get("is_code_file"):
                self.console.print(Text(f"✎ {event.metadata.get('file_path')}", style="bold cyan"))
            else:
                self.console.print(Text(f"⚙ {event.content}", style="cyan"))
        elif event.kind is EventKind.TOOL_RESULT:
            preview = event.content.strip().splitlines()[:3]
            style = "red" if event.metadata.get("is_error") else "dim"
            for line in preview:
                self.console.print(Text(f"  {line[:160]}", style=style))
        elif event.kind is EventKind.PROGRESS:
            self.console.print(Text(event.content, style="dim"))

    def _on_complete(self, message: Message) -> None:
        self.console.print()
        usage = message.metadata.get("usage") or {}
        parts = []
        if usage:
            parts.append(
                f"{usage.get('input_tokens', 0)} in / {usage.get('output_tokens', 0)} out tokens"
            )
        if message.metadata.get("total_cost_usd") is not None:
            parts.append(f"${message.metadata['total_cost_usd']:.4f}")
        if message.metadata.get("cancelled"):
            parts.append("cancelled")
        if parts:
            self.console.print(Text(" · ".join(parts), style="dim"))

    def _on_error(self, error: str) -> None:
        self.console.print()
        self.console.print(Text(f"Error: {error}", style="bold red"))

    def _on_message(self, message: Message) -> None:
        label = "You" if message.role is MessageRole.USER else "Claude"
        style = "bold yellow" if message.role is MessageRole.USER else "bold green"
        self.console.print(Text(f"{label} · {message.timestamp:%Y-%m-%d %H:%M}", style=style))
        self.console.print(Markdown(format_message_for_display(message)))
        self.console.print()


def _sessions_table(sessions: list[Session], *, show_project: bool) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Session")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    if show_project:
        table.add_column("Project")
    for session in sessions:
        status = session.status.value
        row = [
            session.id[:8],
            session.title,
            Text(status, style=_STATUS_STYLE.get(status, "")),
            str(len(session.messages)),
            f"{session.updated_at:%Y-%m-%d %H:%M}",
        ]
        if show_project:
            row.append(str(session.metadata.get("project_dir") or ""))
        table.add_row(*row)
    return table


async def _ask(manager: SessionManager, args: argparse.Namespace, console: Console) -> int:
    await manager.initialize()
    sink = ConsoleSink(console, show_thinking=not args.quiet)
    if args.resume:
        await manager.resume_session(args.resume)
    try:
        await manager.send_streaming(args.prompt, sink)
    finally:
        await manager.shutdown()
    session = manager.current_session
    return 1 if session is not None and session.status.value == "error" else 0


def touched_files(session: Session) -> list[str]:
    """Files a session mentions or writes, in order of first appearance."""
    paths: list[str] = []
    for message in session.messages:
        for path in [*message.files, *extract_file_paths(message.content)]:
            if path not in paths:
                paths.append(path)
    return paths


async def _show(manager: SessionManager, args: argparse.Namespace, console: Console) -> int:
    session = await manager.resume_session(args.session_id, ConsoleSink(console))
    if args.code:
        for message in session.messages:
            for block in extract_code_blocks(message.content):
                console.print(Syntax(block.code, block.language, line_numbers=False))
    if args.files:
        console.print(Text("Files:", style="bold"))
        for path in touched_files(session):
            console.print(Text(f"  {path}"))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-bridge",
        description="Stream Claude requests over the Agent SDK or the claude CLI",
    )
    parser.add_argument("--config", default=None, help="YAML config file (bridge: section)")
    parser.add_argument("--cwd", default=None, help="Project directory (default: from config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Send a prompt and stream the reply")
    ask.add_argument("prompt")
    ask.add_argument("--resume", default=None, help="Continue an existing session id")
    ask.add_argument("--no-direct", action="store_true", help="Skip the SDK, use the CLI only")
    ask.add_argument("--quiet", "-q", action="store_true", help="Hide thinking lines")

    sessions = sub.add_parser("sessions", help="List stored sessions")
    sessions.add_argument("--all", action="store_true", help="Across every project")
    sessions.add_argument("--limit", type=int, default=None)

    show = sub.add_parser("show", help="Replay a stored session")
    show.add_argument("session_id")
    show.add_argument("--code", action="store_true", help="Also list code blocks")
    show.add_argument("--files", action="store_true", help="Also list files the session touched")
    return parser


def main() -> None:
    args = _build_parser().parse_args()

    try:
        config = load_yaml_config(args.config) if args.config else BridgeConfig.from_env()
    except BridgeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.cwd is not None:
        config.cwd = args.cwd
    if getattr(args, "no_direct", False):
        config.use_direct = False

    # Configure logging
    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    console = Console()
    manager = SessionManager(config)

    if args.command == "sessions":
        if args.all:
            sessions = manager.store.get_all_sessions()
        else:
            sessions = manager.load_sessions()
        if args.limit:
            sessions = sessions[: args.limit]
        console.print(_sessions_table(sessions, show_project=args.all))
        return

    handler = _ask if args.command == "ask" else _show
    try:
        sys.exit(asyncio.run(handler(manager, args, console)))
    except BridgeError as exc:
        console.print(Text(f"Error: {exc}", style="bold red"))
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
