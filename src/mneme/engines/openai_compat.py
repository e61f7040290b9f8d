"""OpenAI-compatible engine: OpenAI, vLLM, or a local Ollama server.

Ollama exposes the same chat completions endpoint under ``/v1``, so this one
engine covers local models too. Tool-call arguments are passed through as the
raw JSON string the server sent; normalization happens at the tool bridge.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from mneme.engines.base import ChatMessage, Completion, ToolCall, ToolDefinition
from mneme.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434/v1"


def convert_messages(messages: list[ChatMessage]) -> list[dict]:
    converted: list[dict] = []
    for msg in messages:
        role = msg["role"]
        if role == "tool":
            converted.append(
                {
                    "role": "tool",
                    "tool_call_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content") or "",
                }
            )
        elif role == "assistant" and msg.get("tool_calls"):
            converted.append(
                {
                    "role": "assistant",
                    "content": msg.get("content") or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {
                                "name": call["name"],
                                "arguments": _encode_arguments(call.get("arguments")),
                            },
                        }
                        for call in msg["tool_calls"]
                    ],
                }
            )
        else:
            converted.append({"role": role, "content": msg.get("content") or ""})
    return converted


def _encode_arguments(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments or {}, ensure_ascii=False)


def convert_tools(tools: list[ToolDefinition]) -> list[dict]:
    return [{"type": "function", "function": t.to_schema()} for t in tools]


@dataclass
class OpenAICompatEngine:
    """Chat completions via the `openai` SDK against any compatible server."""

    model: str = "llama3.2"
    base_url: str = DEFAULT_BASE_URL
    api_key_env: str = "OPENAI_API_KEY"
    timeout: int = 120

    def __post_init__(self) -> None:
        try:
            from openai import OpenAI
        except ImportError:
            raise ImportError(
                "openai package required. Install with: uv pip install 'mneme[openai]'"
            )
        # Local servers ignore the key but the SDK insists on one.
        api_key = os.environ.get(self.api_key_env) or "unused"
        self._client = OpenAI(base_url=self.base_url, api_key=api_key, timeout=self.timeout)

    @property
    def name(self) -> str:
        return "openai_compat"

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        tools: list[ToolDefinition] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        payload: dict = {
            "model": self.model,
            "messages": convert_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = convert_tools(tools)

        logger.debug("Dispatching chat request (%d messages)", len(payload["messages"]))
        try:
            response = await asyncio.to_thread(self._client.chat.completions.create, **payload)
        except Exception as e:
            logger.error("OpenAI-compatible API error: %s", e)
            raise ProviderUnavailable(f"{self.base_url}: {e}") from e

        choice = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=tc.id or f"call_{i}",
                name=tc.function.name,
                arguments=tc.function.arguments,
            )
            for i, tc in enumerate(getattr(choice, "tool_calls", None) or [])
        ]
        usage = getattr(response, "usage", None)
        return Completion(
            content=getattr(choice, "content", "") or "",
            tool_calls=tool_calls,
            model=getattr(response, "model", self.model),
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
        )

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._client.models.list)
            return True
        except Exception:
            return False
