"""Tests for the JSON document store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mneme.errors import StorageError
from mneme.storage import JSONDocumentStore


@pytest.fixture
async def store(tmp_path: Path) -> JSONDocumentStore:
    s = JSONDocumentStore(tmp_path / "data")
    await s.initialize()
    return s


class TestJSONDocumentStore:
    @pytest.mark.asyncio
    async def test_initialize_creates_root(self, store: JSONDocumentStore):
        assert store.root.is_dir()

    @pytest.mark.asyncio
    async def test_write_and_read(self, store: JSONDocumentStore):
        await store.write("threads/t1/history", [{"role": "user", "content": "hi"}])
        assert await store.read("threads/t1/history") == [{"role": "user", "content": "hi"}]
        assert (store.root / "threads" / "t1" / "history.json").is_file()

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, store: JSONDocumentStore):
        assert await store.read("nope") is None

    @pytest.mark.asyncio
    async def test_overwrite_replaces_whole_value(self, store: JSONDocumentStore):
        await store.write("entity-memory", {"nodes": {"a": 1}})
        await store.write("entity-memory", {"nodes": {}})
        assert await store.read("entity-memory") == {"nodes": {}}

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, store: JSONDocumentStore):
        await store.write("threads", [])
        await store.write("threads", [{"id": "x"}])
        leftovers = [p for p in store.root.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_delete(self, store: JSONDocumentStore):
        await store.write("threads/t1/summary", {"summary": "x"})
        await store.delete("threads/t1/summary")
        assert await store.read("threads/t1/summary") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store: JSONDocumentStore):
        await store.delete("never/written")

    @pytest.mark.asyncio
    async def test_exists(self, store: JSONDocumentStore):
        assert not await store.exists("threads")
        await store.write("threads", [])
        assert await store.exists("threads")

    @pytest.mark.asyncio
    async def test_list_with_prefix(self, store: JSONDocumentStore):
        await store.write("threads", [])
        await store.write("threads/t1/history", [])
        await store.write("threads/t2/history", [])
        await store.write("entity-memory", {})

        assert await store.list() == [
            "entity-memory",
            "threads",
            "threads/t1/history",
            "threads/t2/history",
        ]
        assert await store.list("threads/") == ["threads/t1/history", "threads/t2/history"]

    @pytest.mark.asyncio
    async def test_unicode_round_trip(self, store: JSONDocumentStore):
        await store.write("note", {"text": "王伟 lives in 北京"})
        assert (await store.read("note"))["text"] == "王伟 lives in 北京"

    @pytest.mark.asyncio
    async def test_corrupt_document_raises(self, store: JSONDocumentStore):
        (store.root / "broken.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError, match="broken"):
            await store.read("broken")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "../escape", "/abs", "a/../b", "a//b"])
    async def test_invalid_keys_rejected(self, store: JSONDocumentStore, key: str):
        with pytest.raises(ValueError):
            await store.write(key, {})

    @pytest.mark.asyncio
    async def test_pretty_output(self, store: JSONDocumentStore):
        await store.write("threads", [{"id": "t1"}])
        text = (store.root / "threads.json").read_text(encoding="utf-8")
        assert "\n" in text
        assert json.loads(text) == [{"id": "t1"}]
