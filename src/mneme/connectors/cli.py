"""Terminal chat connector.

Lines starting with ``/`` are slash commands; ``exit``/``quit`` or EOF ends
the session. The thread id is shown whenever the reply comes from a
different thread than the previous one.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, TextIO

from mneme.connectors.base import IncomingMessage

if TYPE_CHECKING:
    from mneme.connectors.base import MessageHandler
    from mneme.engines.base import AgentResponse

logger = logging.getLogger(__name__)

BANNER = "Mneme chat: /help lists commands, 'exit' quits"
_EXIT_WORDS = {"exit", "quit"}


class CLIConnector:
    """Read user lines from ``stdin`` and print replies to ``stdout``."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._in = stdin or sys.stdin
        self._out = stdout or sys.stdout
        self._running = False
        self._last_thread: str | None = None

    @property
    def name(self) -> str:
        return "cli"

    async def start(self, handler: MessageHandler) -> None:
        self._running = True
        self._write(BANNER)
        while self._running:
            line = await asyncio.to_thread(self._prompt)
            if line is None or line.lower() in _EXIT_WORDS:
                break
            if not line:
                continue
            response = await handler(
                IncomingMessage(text=line, sender="user", connector_name=self.name)
            )
            self._show(response)
        self._write("Bye!")

    async def stop(self) -> None:
        self._running = False

    def _prompt(self) -> str | None:
        self._out.write("\nYou: ")
        self._out.flush()
        raw = self._in.readline()
        return raw.strip() if raw else None

    def _show(self, response: AgentResponse) -> None:
        if response.metadata.get("command"):
            self._write(response.text)
            self._last_thread = response.thread_id
            return
        if response.thread_id and response.thread_id != self._last_thread:
            self._write(f"[{response.thread_id}]")
            self._last_thread = response.thread_id
        self._write(f"Assistant: {response.text}")
        if response.tool_calls:
            names = ", ".join(call["name"] for call in response.tool_calls)
            self._write(f"  (memory: {names})")

    def _write(self, text: str) -> None:
        print(f"\n{text}", file=self._out)
