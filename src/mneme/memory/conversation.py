"""Per-thread message log and narrative summary.

Only loaded threads live in memory (normally just the current one). The log
is append-only; context windows are slices, never edits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mneme.errors import ThreadNotFound
from mneme.memory.models import ConversationSummary, Message

if TYPE_CHECKING:
    from mneme.storage import JSONDocumentStore

logger = logging.getLogger(__name__)


def history_key(thread_id: str) -> str:
    return f"threads/{thread_id}/history"


def summary_key(thread_id: str) -> str:
    return f"threads/{thread_id}/summary"


class ConversationStore:
    """Read/write access to thread logs and summaries."""

    def __init__(self, store: JSONDocumentStore) -> None:
        self.store = store
        self._logs: dict[str, list[Message]] = {}
        self._summaries: dict[str, ConversationSummary | None] = {}
        self._deleted: set[str] = set()

    # ── Loading ───────────────────────────────────────────────

    async def load(self, thread_id: str) -> None:
        history = await self.store.read(history_key(thread_id)) or []
        summary = await self.store.read(summary_key(thread_id))
        self._logs[thread_id] = [Message.from_dict(m) for m in history]
        self._summaries[thread_id] = ConversationSummary.from_dict(summary) if summary else None
        logger.debug("Loaded thread %s (%d messages)", thread_id, len(self._logs[thread_id]))

    def unload(self, thread_id: str) -> None:
        self._logs.pop(thread_id, None)
        self._summaries.pop(thread_id, None)

    def is_loaded(self, thread_id: str) -> bool:
        return thread_id in self._logs

    def _log(self, thread_id: str) -> list[Message]:
        try:
            return self._logs[thread_id]
        except KeyError:
            raise ThreadNotFound(thread_id) from None

    # ── Log access ────────────────────────────────────────────

    def append(self, thread_id: str, message: Message) -> None:
        self._log(thread_id).append(message)

    def messages(self, thread_id: str) -> list[Message]:
        return list(self._log(thread_id))

    def message_count(self, thread_id: str) -> int:
        return len(self._log(thread_id))

    def recent_window(self, thread_id: str, n: int) -> list[Message]:
        if n <= 0:
            return []
        return self._log(thread_id)[-n:]

    async def snapshot(
        self, thread_id: str
    ) -> tuple[list[Message], ConversationSummary | None]:
        """Messages and summary, from memory if loaded, else from storage."""
        if thread_id in self._logs:
            return list(self._logs[thread_id]), self._summaries.get(thread_id)
        history = await self.store.read(history_key(thread_id))
        if history is None:
            raise ThreadNotFound(thread_id)
        summary = await self.store.read(summary_key(thread_id))
        return (
            [Message.from_dict(m) for m in history],
            ConversationSummary.from_dict(summary) if summary else None,
        )

    # ── Summary ───────────────────────────────────────────────

    def summary(self, thread_id: str) -> ConversationSummary | None:
        self._log(thread_id)
        return self._summaries.get(thread_id)

    async def save_summary(self, summary: ConversationSummary) -> bool:
        """Store a new summary, in memory if loaded and on disk regardless.

        Returns False, writing nothing, if the thread was deleted meanwhile.
        """
        if summary.thread_id in self._deleted:
            logger.debug("Thread %s was deleted, dropping its summary", summary.thread_id)
            return False
        if summary.thread_id in self._logs:
            self._summaries[summary.thread_id] = summary
        await self.store.write(summary_key(summary.thread_id), summary.to_dict())
        return True

    # ── Persistence ───────────────────────────────────────────

    async def persist(self, thread_id: str) -> None:
        log = self._log(thread_id)
        await self.store.write(history_key(thread_id), [m.to_dict() for m in log])
        summary = self._summaries.get(thread_id)
        if summary:
            await self.store.write(summary_key(thread_id), summary.to_dict())

    async def delete(self, thread_id: str) -> None:
        self._deleted.add(thread_id)
        self.unload(thread_id)
        await self.store.delete(history_key(thread_id))
        await self.store.delete(summary_key(thread_id))
