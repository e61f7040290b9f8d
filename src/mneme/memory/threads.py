"""Thread registry: owns the thread index and the current-thread pointer."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Callable

from mneme.errors import ThreadNotFound
from mneme.memory.models import Thread, now_iso

if TYPE_CHECKING:
    from mneme.memory.conversation import ConversationStore
    from mneme.storage import JSONDocumentStore

logger = logging.getLogger(__name__)

THREADS_KEY = "threads"
DEFAULT_THREAD_NAME = "New conversation"


def _new_thread_id() -> str:
    return f"thread-{uuid.uuid4().hex[:8]}"


class ThreadRegistry:
    """Create, switch and delete threads. Never leaves zero threads.

    ``is_pinned`` reports threads with a turn in flight; switching away from
    such a thread persists it but leaves its log loaded.
    """

    def __init__(
        self,
        store: JSONDocumentStore,
        conversations: ConversationStore,
        *,
        is_pinned: Callable[[str], bool] | None = None,
    ) -> None:
        self.store = store
        self.conversations = conversations
        self._is_pinned = is_pinned or (lambda thread_id: False)
        self._threads: dict[str, Thread] = {}
        self._current_id: str | None = None

    # ── Startup ───────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the index, creating a first thread on a fresh install."""
        records = await self.store.read(THREADS_KEY) or []
        self._threads = {}
        for record in records:
            thread = Thread.from_dict(record)
            self._threads[thread.id] = thread

        if not self._threads:
            thread = await self.create_thread()
            logger.info("No threads found, created %s", thread.id)

        first = self.list()[0]
        await self.conversations.load(first.id)
        self._current_id = first.id

    # ── Reads ─────────────────────────────────────────────────

    @property
    def current_id(self) -> str:
        if self._current_id is None:
            raise RuntimeError("ThreadRegistry not initialized. Call initialize() first.")
        return self._current_id

    @property
    def current(self) -> Thread:
        return self._threads[self.current_id]

    def get(self, thread_id: str) -> Thread:
        thread = self._threads.get(thread_id)
        if not thread:
            raise ThreadNotFound(thread_id)
        return thread

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._threads

    def __len__(self) -> int:
        return len(self._threads)

    def list(self) -> list[Thread]:
        """All threads, most recently active first."""
        return sorted(self._threads.values(), key=lambda t: t.last_message_at, reverse=True)

    # ── Mutations ─────────────────────────────────────────────

    async def create_thread(self, name: str | None = None) -> Thread:
        thread_id = _new_thread_id()
        while thread_id in self._threads:
            thread_id = _new_thread_id()
        thread = Thread(id=thread_id, name=(name or "").strip() or DEFAULT_THREAD_NAME)
        self._threads[thread.id] = thread
        await self._save_index()
        logger.info("Created thread %s (%s)", thread.id, thread.name)
        return thread

    async def switch_thread(self, thread_id: str) -> Thread:
        thread = self.get(thread_id)
        if thread_id == self._current_id:
            return thread

        previous = self._current_id
        if previous and self.conversations.is_loaded(previous):
            await self.conversations.persist(previous)
            if not self._is_pinned(previous):
                self.conversations.unload(previous)

        if not self.conversations.is_loaded(thread_id):
            await self.conversations.load(thread_id)
        self._current_id = thread_id
        logger.info("Switched to thread %s", thread_id)
        return thread

    async def delete_thread(self, thread_id: str) -> None:
        self.get(thread_id)
        await self.conversations.delete(thread_id)
        del self._threads[thread_id]
        was_current = thread_id == self._current_id

        if was_current:
            self._current_id = None
            remaining = self.list()
            replacement = remaining[0] if remaining else await self.create_thread()
            if not self.conversations.is_loaded(replacement.id):
                await self.conversations.load(replacement.id)
            self._current_id = replacement.id

        await self._save_index()
        logger.info("Deleted thread %s", thread_id)

    async def rename_thread(self, thread_id: str, name: str) -> Thread:
        thread = self.get(thread_id)
        thread.name = name.strip() or thread.name
        await self._save_index()
        return thread

    async def record_activity(self, thread_id: str, message_count: int) -> None:
        thread = self.get(thread_id)
        thread.last_message_at = now_iso()
        thread.message_count = message_count
        await self._save_index()

    async def _save_index(self) -> None:
        await self.store.write(THREADS_KEY, [t.to_dict() for t in self.list()])
