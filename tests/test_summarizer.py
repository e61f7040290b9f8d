"""Tests for the memory summarizer."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from mneme.engines.base import Completion
from mneme.errors import ProviderUnavailable
from mneme.memory.conversation import ConversationStore, summary_key
from mneme.memory.entities import ENTITY_MEMORY_KEY, EntityGraphStore
from mneme.memory.models import ConversationSummary, Message
from mneme.memory.summarizer import MemorySummarizer, parse_summary_response
from mneme.storage import JSONDocumentStore

GOOD_RESPONSE = """SUMMARY:
The user introduced their friend Alice who lives in San Francisco.

ENTITIES:
[
  {"id": "person-alice", "type": "person", "name": "Alice", "description": "friend",
   "relationships": [{"target_id": "place-sf", "relationship": "lives_in", "strength": 0.8}]},
  {"id": "place-sf", "type": "place", "name": "San Francisco", "description": "city"}
]
"""


class MockEngine:
    def __init__(self, text: str = GOOD_RESPONSE, fail: bool = False, delay: float = 0):
        self._text = text
        self._fail = fail
        self._delay = delay
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return "mock"

    async def complete(self, messages, *, tools=None, temperature=0.7, max_tokens=1024):
        self.calls.append({"messages": messages, "temperature": temperature, "tools": tools})
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise ProviderUnavailable("boom")
        return Completion(content=self._text, model="mock")

    async def health_check(self) -> bool:
        return True


@pytest.fixture
async def parts(tmp_path: Path):
    store = JSONDocumentStore(tmp_path / "data")
    await store.initialize()
    convs = ConversationStore(store)
    await convs.load("t1")
    graph = EntityGraphStore(store)
    return store, convs, graph


def _summarizer(parts, engine: MockEngine, frequency: int = 5) -> MemorySummarizer:
    _, convs, graph = parts
    return MemorySummarizer(convs, graph, lambda: engine, frequency=frequency)


def _fill(convs: ConversationStore, n: int, thread_id: str = "t1") -> None:
    for i in range(n):
        role = "user" if i % 2 == 0 else "assistant"
        convs.append(thread_id, Message(role=role, content=f"message {i}"))


class TestParseSummaryResponse:
    def test_both_sections(self):
        update = parse_summary_response(GOOD_RESPONSE)
        assert update.summary.startswith("The user introduced")
        assert [e["id"] for e in update.entities] == ["person-alice", "place-sf"]
        assert update.entities_error is None

    def test_fenced_json(self):
        text = 'SUMMARY:\nshort\n\nENTITIES:\n```json\n[{"id": "a", "type": "concept"}]\n```\n'
        update = parse_summary_response(text)
        assert update.entities == [{"id": "a", "type": "concept"}]

    def test_trailing_prose_after_array(self):
        text = 'SUMMARY:\nshort\nENTITIES:\n[{"id": "a"}]\nThat is all.'
        assert parse_summary_response(text).entities == [{"id": "a"}]

    def test_malformed_json(self):
        update = parse_summary_response("SUMMARY:\nok\nENTITIES:\n[{broken")
        assert update.summary == "ok"
        assert update.entities is None
        assert update.entities_error

    def test_object_instead_of_list(self):
        update = parse_summary_response('SUMMARY:\nok\nENTITIES:\n{"id": "a"}')
        assert update.entities is None
        assert "not a list" in update.entities_error

    def test_missing_markers(self):
        update = parse_summary_response("I could not do that.")
        assert update.summary is None
        assert update.entities is None


class TestTrigger:
    @pytest.mark.asyncio
    async def test_below_frequency_no_trigger(self, parts):
        engine = MockEngine()
        summarizer = _summarizer(parts, engine)
        _fill(parts[1], 4)
        assert summarizer.schedule("t1") is None
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_fifth_message_triggers_exactly_once(self, parts):
        engine = MockEngine(delay=0.01)
        summarizer = _summarizer(parts, engine)
        _fill(parts[1], 5)

        task = summarizer.schedule("t1")
        assert task is not None
        # Second request while the first holds the lease is skipped.
        assert summarizer.schedule("t1") is None
        await summarizer.drain()

        assert len(engine.calls) == 1
        assert summarizer.stats["skipped"] == 1
        assert not summarizer.is_busy("t1")

    @pytest.mark.asyncio
    async def test_pending_counts_from_last_summary(self, parts):
        _, convs, _ = parts
        summarizer = _summarizer(parts, MockEngine())
        _fill(convs, 7)
        await convs.save_summary(ConversationSummary(thread_id="t1", summary="s", message_count=5))
        assert summarizer.pending_messages("t1") == 2
        assert not summarizer.should_summarize("t1")


class TestSummarize:
    @pytest.mark.asyncio
    async def test_successful_pass(self, parts):
        store, convs, graph = parts
        engine = MockEngine()
        summarizer = _summarizer(parts, engine)
        _fill(convs, 5)

        assert await summarizer.summarize("t1") is True

        summary = convs.summary("t1")
        assert summary.message_count == 5
        assert "Alice" in summary.summary
        assert graph.get("person-alice").relationships[0].target_id == "place-sf"
        assert (await store.read(summary_key("t1")))["message_count"] == 5
        assert "person-alice" in (await store.read(ENTITY_MEMORY_KEY))["nodes"]
        assert engine.calls[0]["temperature"] == 0.3
        assert engine.calls[0]["tools"] is None

    @pytest.mark.asyncio
    async def test_prompt_contains_only_new_messages(self, parts):
        _, convs, _ = parts
        engine = MockEngine()
        summarizer = _summarizer(parts, engine)
        _fill(convs, 7)
        await convs.save_summary(
            ConversationSummary(thread_id="t1", summary="earlier stuff", message_count=5)
        )

        await summarizer.summarize("t1")

        prompt = engine.calls[0]["messages"][0]["content"]
        assert "earlier stuff" in prompt
        assert "message 5" in prompt
        assert "message 4" not in prompt
        assert convs.summary("t1").message_count == 7

    @pytest.mark.asyncio
    async def test_empty_delta_writes_nothing(self, parts):
        store, convs, _ = parts
        engine = MockEngine()
        summarizer = _summarizer(parts, engine)
        _fill(convs, 3)
        await convs.save_summary(ConversationSummary(thread_id="t1", summary="s", message_count=3))

        assert await summarizer.summarize("t1") is False
        assert engine.calls == []
        assert not await store.exists(ENTITY_MEMORY_KEY)
        assert not summarizer.is_busy("t1")

    @pytest.mark.asyncio
    async def test_parse_failure_leaves_graph_untouched(self, parts):
        store, convs, graph = parts
        graph.create_or_update("person-bob", "person", "Bob", "coworker")
        summarizer = _summarizer(parts, MockEngine("SUMMARY:\nnew summary\nENTITIES:\n[{oops"))
        _fill(convs, 5)

        await summarizer.summarize("t1")

        assert summarizer.stats["parse_failures"] == 1
        assert [n.id for n in graph.nodes()] == ["person-bob"]
        assert not await store.exists(ENTITY_MEMORY_KEY)
        assert convs.summary("t1").summary == "new summary"

    @pytest.mark.asyncio
    async def test_provider_failure_releases_lease(self, parts):
        _, convs, graph = parts
        summarizer = _summarizer(parts, MockEngine(fail=True))
        _fill(convs, 5)

        assert await summarizer.summarize("t1") is False
        assert summarizer.stats["failures"] == 1
        assert not summarizer.is_busy("t1")
        assert convs.summary("t1") is None
        assert len(graph) == 0

        summarizer._get_engine = lambda: MockEngine()
        assert await summarizer.summarize("t1") is True

    @pytest.mark.asyncio
    async def test_threads_do_not_block_each_other(self, parts):
        _, convs, _ = parts
        await convs.load("t2")
        engine = MockEngine(delay=0.01)
        summarizer = _summarizer(parts, engine)
        _fill(convs, 5, "t1")
        _fill(convs, 5, "t2")

        assert summarizer.schedule("t1") is not None
        assert summarizer.schedule("t2") is not None
        await summarizer.drain()
        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_thread_unloaded_mid_pass(self, parts):
        store, convs, _ = parts
        summarizer = _summarizer(parts, MockEngine(delay=0.01))
        _fill(convs, 5)
        await convs.persist("t1")

        summarizer.schedule("t1")
        convs.unload("t1")
        await summarizer.drain()

        stored = await store.read(summary_key("t1"))
        assert stored["message_count"] == 5

    @pytest.mark.asyncio
    async def test_wait_for_one_thread(self, parts):
        store, convs, _ = parts
        await convs.load("t2")
        summarizer = _summarizer(parts, MockEngine(delay=0.01))
        _fill(convs, 5, "t1")

        await summarizer.wait("t1")
        summarizer.schedule("t1")
        await summarizer.wait("t2")
        assert summarizer.is_busy("t1")

        await summarizer.wait("t1")
        assert not summarizer.is_busy("t1")
        assert await store.exists(summary_key("t1"))
