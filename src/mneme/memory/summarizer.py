"""Memory summarizer: folds recent messages into the thread summary and
the entity graph with one extra LLM call.

Runs are fire-and-forget from the turn's point of view. A per-thread lease
keeps two passes over the same thread from overlapping; passes over
different threads run independently. A failed or unparseable pass leaves
memory exactly as it was.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from mneme.memory.models import ConversationSummary, Message
from mneme.prompts import ENTITIES_SECTION, SUMMARY_SECTION, build_summarize_prompt

if TYPE_CHECKING:
    from mneme.engines.base import Engine
    from mneme.memory.conversation import ConversationStore
    from mneme.memory.entities import EntityGraphStore

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


@dataclass
class SummaryUpdate:
    """Parsed summarizer response. ``None`` means the section was absent."""

    summary: str | None = None
    entities: list[Any] | None = None
    entities_error: str | None = None


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_summary_response(text: str) -> SummaryUpdate:
    """Split the response on the two section markers and decode the entity JSON."""
    update = SummaryUpdate()
    summary_at = text.find(SUMMARY_SECTION)
    entities_at = text.find(ENTITIES_SECTION)

    if summary_at != -1:
        end = entities_at if entities_at > summary_at else len(text)
        summary = text[summary_at + len(SUMMARY_SECTION) : end].strip()
        update.summary = summary or None

    if entities_at != -1:
        raw = _strip_fences(text[entities_at + len(ENTITIES_SECTION) :])
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            # Trailing prose after the array is common; retry on the bracketed span.
            match = re.search(r"\[.*\]", raw, re.DOTALL)
            try:
                data = json.loads(match.group()) if match else None
            except json.JSONDecodeError:
                data = None
            if data is None:
                update.entities_error = f"unparseable entity JSON: {raw[:120]!r}"
                return update
        if isinstance(data, list):
            update.entities = data
        else:
            update.entities_error = f"entity section is {type(data).__name__}, not a list"
    return update


def _task_name(thread_id: str) -> str:
    return f"summarize-{thread_id}"


def format_messages(messages: list[Message]) -> str:
    lines = []
    for msg in messages:
        line = f"{msg.role}: {msg.content}"
        if msg.tool_calls:
            names = ", ".join(call.get("name", "?") for call in msg.tool_calls)
            line += f" [tools used: {names}]"
        lines.append(line)
    return "\n".join(lines)


class MemorySummarizer:
    """Periodic summary + entity-graph refresh for a thread."""

    def __init__(
        self,
        conversations: ConversationStore,
        graph: EntityGraphStore,
        get_engine: Callable[[], Engine],
        *,
        frequency: int = 5,
        temperature: float = 0.3,
        max_tokens: int = 2048,
    ) -> None:
        self.conversations = conversations
        self.graph = graph
        self._get_engine = get_engine
        self.frequency = frequency
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.stats: Counter[str] = Counter()
        self._busy: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    # ── Trigger ───────────────────────────────────────────────

    def pending_messages(self, thread_id: str) -> int:
        summary = self.conversations.summary(thread_id)
        summarized = summary.message_count if summary else 0
        return self.conversations.message_count(thread_id) - summarized

    def should_summarize(self, thread_id: str) -> bool:
        return self.pending_messages(thread_id) >= self.frequency

    def is_busy(self, thread_id: str) -> bool:
        return thread_id in self._busy

    def schedule(self, thread_id: str) -> asyncio.Task | None:
        """Start a detached pass if the thread is due and not already running."""
        if not self.should_summarize(thread_id):
            return None
        if thread_id in self._busy:
            self.stats["skipped"] += 1
            logger.debug("Summary already running for %s, skipping", thread_id)
            return None
        self._busy.add(thread_id)
        task = asyncio.create_task(self._leased(thread_id), name=_task_name(thread_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled pass to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def wait(self, thread_id: str) -> None:
        """Wait for the scheduled pass over ``thread_id``, if one is running."""
        pending = [t for t in self._tasks if t.get_name() == _task_name(thread_id)]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Pass ──────────────────────────────────────────────────

    async def summarize(self, thread_id: str) -> bool:
        """Run one pass. Returns True if anything was written."""
        if thread_id in self._busy:
            self.stats["skipped"] += 1
            return False
        self._busy.add(thread_id)
        return await self._leased(thread_id)

    async def _leased(self, thread_id: str) -> bool:
        """Run a pass for a thread whose lease is already held."""
        try:
            return await self._run(thread_id)
        except Exception as e:
            self.stats["failures"] += 1
            logger.error("Summarization failed for %s: %s", thread_id, e)
            return False
        finally:
            self._busy.discard(thread_id)

    async def _run(self, thread_id: str) -> bool:
        messages, previous = await self.conversations.snapshot(thread_id)
        count = len(messages)
        start = min(previous.message_count, count) if previous else 0
        delta = messages[start:]
        if not delta:
            logger.debug("Nothing new to summarize for %s", thread_id)
            return False

        prompt = build_summarize_prompt(
            previous.summary if previous else None,
            json.dumps(self.graph.to_payload(), ensure_ascii=False, indent=2),
            format_messages(delta),
        )
        logger.info("Summarizing %s (%d new messages)", thread_id, len(delta))
        completion = await self._get_engine().complete(
            [{"role": "user", "content": prompt}],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        self.stats["runs"] += 1

        update = parse_summary_response(completion.content)
        if update.entities_error:
            self.stats["parse_failures"] += 1
            logger.warning(
                "Summary for %s had bad entity section, graph left unchanged: %s",
                thread_id,
                update.entities_error,
            )

        wrote = False
        if update.summary is not None:
            wrote = await self.conversations.save_summary(
                ConversationSummary(thread_id=thread_id, summary=update.summary, message_count=count)
            )
        if update.entities:
            added, merged = self.graph.merge_nodes(update.entities)
            await self.graph.save()
            logger.info("Summary merged entities for %s (+%d, ~%d)", thread_id, added, merged)
            wrote = True
        return wrote
