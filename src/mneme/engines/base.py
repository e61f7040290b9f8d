"""Engine protocol and shared types."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Chat message as sent to an engine:
#   {"role": "system" | "user" | "assistant" | "tool", "content": str,
#    "tool_calls"?: [{"id", "name", "arguments"}], "tool_call_id"?: str}
ChatMessage = dict[str, Any]


@dataclass
class ToolDefinition:
    """Tool the model can call, dispatched inside Mneme."""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: Callable[..., str] | None = None

    def to_schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class ToolCall:
    """Tool invocation requested by the model.

    ``arguments`` is whatever the backend delivered: a dict, or the raw
    JSON string some OpenAI-compatible servers send.
    """

    id: str
    name: str
    arguments: dict[str, Any] | str = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Completion:
    """Result of one completion request."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass
class AgentResponse:
    """Reply handed back to a connector."""

    text: str
    thread_id: str | None = None
    model: str | None = None
    metadata: dict = field(default_factory=dict)
    tool_calls: list[dict] = field(default_factory=list)


@runtime_checkable
class Engine(Protocol):
    """Protocol that all engine backends must implement."""

    @property
    def name(self) -> str: ...

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        tools: list[ToolDefinition] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        """Run one completion. Raises ProviderUnavailable on transport failure."""
        ...

    async def health_check(self) -> bool:
        """Check if the engine is available. Returns True if healthy."""
        ...
