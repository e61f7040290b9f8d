"""Slash commands for chat connectors (/threads, /new, /switch, ...)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mneme.errors import NotFoundError
from mneme.memory.export import export_entities, render_manifest, render_summary

if TYPE_CHECKING:
    from mneme.core import Mneme

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  /help             Show this help
  /threads          List threads (most recent first)
  /new [name]       Start a new thread and switch to it
  /clear            Same as /new
  /switch <id>      Switch to another thread
  /delete <id>      Delete a thread and its history
  /rename <name>    Rename the current thread
  /memory           Show the thread summary and known entities
  /export [dir]     Write entities as markdown files"""


async def run_command(mneme: Mneme, text: str) -> str:
    """Execute a slash command and return the text to show."""
    name, _, arg = text.strip().partition(" ")
    arg = arg.strip()
    handler = _COMMANDS.get(name.lower())
    if not handler:
        return f"Unknown command: {name}. Type /help for commands."
    try:
        return await handler(mneme, arg)
    except NotFoundError as e:
        return str(e)


async def _help(mneme: Mneme, arg: str) -> str:
    return HELP_TEXT


async def _threads(mneme: Mneme, arg: str) -> str:
    current = mneme.threads.current_id
    lines = []
    for thread in mneme.threads.list():
        marker = "*" if thread.id == current else " "
        lines.append(
            f"{marker} {thread.id}  {thread.name}  "
            f"({thread.message_count} messages, last {thread.last_message_at})"
        )
    return "\n".join(lines)


async def _new(mneme: Mneme, arg: str) -> str:
    thread = await mneme.threads.create_thread(arg or None)
    await mneme.threads.switch_thread(thread.id)
    return f"Started {thread.id} ({thread.name})"


async def _switch(mneme: Mneme, arg: str) -> str:
    if not arg:
        return "Usage: /switch <thread-id>"
    thread = await mneme.threads.switch_thread(arg)
    return f"Switched to {thread.id} ({thread.name}, {thread.message_count} messages)"


async def _delete(mneme: Mneme, arg: str) -> str:
    if not arg:
        return "Usage: /delete <thread-id>"
    await mneme.delete_thread(arg)
    current = mneme.threads.current
    return f"Deleted {arg}. Current thread: {current.id} ({current.name})"


async def _rename(mneme: Mneme, arg: str) -> str:
    if not arg:
        return "Usage: /rename <name>"
    thread = await mneme.threads.rename_thread(mneme.threads.current_id, arg)
    return f"Renamed {thread.id} to {thread.name}"


async def _memory(mneme: Mneme, arg: str) -> str:
    summary = mneme.conversations.summary(mneme.threads.current_id)
    return f"{render_summary(summary)}\n\n{render_manifest(mneme.entities)}"


async def _export(mneme: Mneme, arg: str) -> str:
    directory = Path(arg).expanduser() if arg else mneme.config.data_dir.parent / "export"
    written = await export_entities(mneme.entities, directory)
    return f"Exported {len(written)} entities to {directory}"


_COMMANDS = {
    "/help": _help,
    "/threads": _threads,
    "/new": _new,
    "/clear": _new,
    "/switch": _switch,
    "/delete": _delete,
    "/rename": _rename,
    "/memory": _memory,
    "/export": _export,
}
