"""Mneme orchestrator: drives one user/assistant exchange at a time.

Responsibilities:
1. Receive messages from any connector (IncomingMessage)
2. Lane Queue: serialize per thread so connectors cannot interleave turns
3. Context assembly: system prompt + entity index + summary + recent window
4. Tool round trip: execute entity tool calls, persist the graph, ask again
5. Persistence: thread log and index after every turn
6. Summarization: schedule a detached pass when enough messages piled up
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING

from mneme.config import MnemeConfig
from mneme.connectors.base import IncomingMessage
from mneme.engines.base import AgentResponse, ChatMessage
from mneme.memory.conversation import ConversationStore
from mneme.memory.entities import EntityGraphStore
from mneme.memory.models import Message
from mneme.memory.summarizer import MemorySummarizer
from mneme.memory.threads import ThreadRegistry
from mneme.memory.tools import ToolBridge
from mneme.prompts import SUMMARY_CONTEXT_TEMPLATE, build_system_prompt
from mneme.storage import JSONDocumentStore

if TYPE_CHECKING:
    from mneme.connectors.base import Connector
    from mneme.engines.base import Engine

logger = logging.getLogger(__name__)


class Mneme:
    """Core orchestrator: routes turns between connectors, engines and memory."""

    def __init__(self, config: MnemeConfig) -> None:
        self.config = config
        self.store = JSONDocumentStore(config.data_dir)
        self.conversations = ConversationStore(self.store)
        self.threads = ThreadRegistry(self.store, self.conversations, is_pinned=self._in_turn)
        self.entities = EntityGraphStore(self.store)
        self.tools = ToolBridge(self.entities)
        self.summarizer = MemorySummarizer(
            self.conversations,
            self.entities,
            self._get_engine,
            frequency=config.memory.summary_update_frequency,
            temperature=config.memory.summary_temperature,
            max_tokens=config.memory.summary_max_tokens,
        )
        self._engines: dict[str, Engine] = {}
        self._connectors: list[Connector] = []
        self._lane_locks: dict[str, asyncio.Lock] = {}  # per-thread serialization
        self._in_flight: Counter[str] = Counter()  # turns running per thread
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Load the entity graph and thread index. Idempotent."""
        async with self._init_lock:
            if self._initialized:
                return
            await self.store.initialize()
            await self.entities.load()
            await self.threads.initialize()
            self._initialized = True
            logger.info(
                "Mneme ready: %d threads, %d entities, current=%s",
                len(self.threads),
                len(self.entities),
                self.threads.current_id,
            )

    # ── Engine management ────────────────────────────────────

    def add_engine(self, engine: Engine) -> None:
        self._engines[engine.name] = engine
        logger.info("Registered engine: %s", engine.name)

    def _get_engine(self, name: str | None = None) -> Engine:
        name = name or self.config.engine.name
        engine = self._engines.get(name)
        if not engine:
            raise RuntimeError(
                f"Engine '{name}' not registered. Available: {list(self._engines)}"
            )
        return engine

    # ── Connector management ─────────────────────────────────

    def add_connector(self, connector: Connector) -> None:
        self._connectors.append(connector)
        logger.info("Registered connector: %s", connector.name)

    # ── Lane Queue (per-thread serialization) ────────────────

    def _get_lane_lock(self, thread_id: str) -> asyncio.Lock:
        if thread_id not in self._lane_locks:
            self._lane_locks[thread_id] = asyncio.Lock()
        return self._lane_locks[thread_id]

    def _in_turn(self, thread_id: str) -> bool:
        return self._in_flight[thread_id] > 0

    # ── Message handling (the core loop) ─────────────────────

    async def handle_message(self, msg: IncomingMessage) -> AgentResponse:
        """Process an incoming message: the main entry point for all connectors."""
        await self.initialize()
        if msg.text.startswith("/"):
            from mneme.commands import run_command

            text = await run_command(self, msg.text)
            return AgentResponse(
                text=text, thread_id=self.threads.current_id, metadata={"command": True}
            )

        thread_id = msg.thread_id or self.threads.current_id
        async with self._get_lane_lock(thread_id):
            return await self._process(thread_id, msg.text)

    async def send_turn(self, thread_id: str, user_text: str) -> str:
        """Run one turn on ``thread_id`` and return the assistant's reply."""
        await self.initialize()
        async with self._get_lane_lock(thread_id):
            response = await self._process(thread_id, user_text)
        return response.text

    async def delete_thread(self, thread_id: str) -> None:
        """Delete a thread once its running turn and summary pass have finished."""
        await self.initialize()
        self.threads.get(thread_id)
        async with self._get_lane_lock(thread_id):
            await self.summarizer.wait(thread_id)
            await self.threads.delete_thread(thread_id)
        lock = self._lane_locks.get(thread_id)
        if lock and not lock.locked():
            del self._lane_locks[thread_id]

    async def _process(self, thread_id: str, user_text: str) -> AgentResponse:
        """Run a turn without touching the current-thread pointer."""
        self.threads.get(thread_id)
        self._in_flight[thread_id] += 1
        try:
            if not self.conversations.is_loaded(thread_id):
                await self.conversations.load(thread_id)
            return await self._run_turn(thread_id, user_text)
        finally:
            self._in_flight[thread_id] -= 1
            if self._in_flight[thread_id] <= 0:
                del self._in_flight[thread_id]
                # Background threads are persisted by the turn; drop their logs.
                if thread_id != self.threads.current_id:
                    self.conversations.unload(thread_id)

    async def _run_turn(self, thread_id: str, user_text: str) -> AgentResponse:
        # 1. Record the user message
        self.conversations.append(thread_id, Message(role="user", content=user_text))

        # 2. Assemble context
        messages = self._build_messages(thread_id)
        settings = self.config.engine
        tool_records: list[dict] = []

        try:
            # 3. First completion
            engine = self._get_engine()
            completion = await engine.complete(
                messages,
                tools=self.tools.definitions,
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
            )
            text = completion.content
            model = completion.model

            # 4. One tool round trip
            if completion.tool_calls:
                tool_records = [call.to_dict() for call in completion.tool_calls]
                results = await self.tools.execute_all(completion.tool_calls)
                logger.info(
                    "Thread %s: executed %d tool call(s)", thread_id, len(completion.tool_calls)
                )

                followup = messages + [
                    {"role": "assistant", "content": completion.content, "tool_calls": tool_records}
                ]
                for call, result in zip(completion.tool_calls, results):
                    followup.append(
                        {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": result}
                    )

                final = await engine.complete(
                    followup,
                    tools=self.tools.definitions,
                    temperature=settings.temperature,
                    max_tokens=settings.max_tokens,
                )
                if final.tool_calls:
                    logger.debug(
                        "Ignoring %d tool call(s) in follow-up reply", len(final.tool_calls)
                    )
                text = final.content or completion.content or "\n".join(results)
                model = final.model or model
        except Exception as e:
            logger.error("Turn failed on thread %s: %s", thread_id, e)
            await self._persist(thread_id)
            return AgentResponse(
                text=f"[Error: {e}]",
                thread_id=thread_id,
                metadata={"error": True},
                tool_calls=tool_records,
            )

        # 5. Record the reply and persist
        self.conversations.append(
            thread_id,
            Message(role="assistant", content=text, tool_calls=tool_records or None),
        )
        await self._persist(thread_id)

        # 6. Summarize in the background when due
        self.summarizer.schedule(thread_id)

        return AgentResponse(text=text, thread_id=thread_id, model=model, tool_calls=tool_records)

    def _build_messages(self, thread_id: str) -> list[ChatMessage]:
        messages: list[ChatMessage] = [
            {"role": "system", "content": build_system_prompt(self.entities.index())}
        ]
        summary = self.conversations.summary(thread_id)
        if summary and summary.summary:
            messages.append(
                {"role": "system", "content": SUMMARY_CONTEXT_TEMPLATE.format(summary=summary.summary)}
            )
        window = self.conversations.recent_window(
            thread_id, self.config.memory.recent_messages_count
        )
        messages.extend(
            {"role": m.role, "content": m.content} for m in window if m.role != "tool"
        )
        return messages

    async def _persist(self, thread_id: str) -> None:
        await self.conversations.persist(thread_id)
        await self.threads.record_activity(
            thread_id, self.conversations.message_count(thread_id)
        )

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start all connectors (each listens for messages)."""
        if not self._engines:
            raise RuntimeError("No engines registered. Call add_engine() first.")

        await self.initialize()
        tasks = [connector.start(self.handle_message) for connector in self._connectors]
        if tasks:
            await asyncio.gather(*tasks)

    async def stop(self) -> None:
        """Finish pending summaries, flush the current thread, close everything."""
        await self.summarizer.drain()
        if self._initialized and self.conversations.is_loaded(self.threads.current_id):
            await self.conversations.persist(self.threads.current_id)

        for connector in self._connectors:
            await connector.stop()

        for engine in self._engines.values():
            close = getattr(engine, "close", None)
            if close and callable(close):
                await close()

        await self.store.close()
