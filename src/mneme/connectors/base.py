"""Connector protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Coroutine, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mneme.engines.base import AgentResponse


@dataclass
class IncomingMessage:
    """A message received from any connector.

    ``thread_id`` of None means "the current thread".
    """

    text: str
    thread_id: str | None = None
    sender: str = ""
    connector_name: str = ""
    metadata: dict = field(default_factory=dict)


# Callback type: core.Mneme.handle_message
MessageHandler = Callable[[IncomingMessage], Coroutine[None, None, "AgentResponse"]]


@runtime_checkable
class Connector(Protocol):
    """Protocol that all input connectors must implement."""

    @property
    def name(self) -> str: ...

    async def start(self, handler: MessageHandler) -> None:
        """Start listening for messages. Call handler for each incoming message."""
        ...

    async def stop(self) -> None:
        """Gracefully stop the connector."""
        ...
