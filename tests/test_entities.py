"""Tests for the entity graph store."""

from __future__ import annotations

from pathlib import Path

import pytest

from mneme.errors import EntityNotFound
from mneme.memory.entities import ENTITY_MEMORY_KEY, EntityGraphStore
from mneme.storage import JSONDocumentStore


@pytest.fixture
def graph(tmp_path: Path) -> EntityGraphStore:
    return EntityGraphStore(JSONDocumentStore(tmp_path / "data"))


def _alice(graph: EntityGraphStore, **kwargs):
    return graph.create_or_update("person-alice", "person", "Alice", "friend", **kwargs)


class TestCreateOrUpdate:
    def test_insert(self, graph: EntityGraphStore):
        node, created = _alice(graph)
        assert created is True
        assert node.relationships == []
        assert graph.get("person-alice").name == "Alice"

    def test_idempotent_upsert(self, graph: EntityGraphStore):
        for _ in range(3):
            _alice(graph)
        assert len(graph) == 1

    def test_merge_keeps_relationships_and_merges_properties(self, graph: EntityGraphStore):
        _alice(graph, properties={"age": 30})
        graph.create_or_update("place-sf", "place", "San Francisco", "city")
        graph.add_relationship("person-alice", "place-sf", "lives_in")

        node, created = graph.create_or_update(
            "person-alice", "person", "", "", properties={"job": "engineer"}
        )
        assert created is False
        assert node.name == "Alice"
        assert node.description == "friend"
        assert node.properties == {"age": 30, "job": "engineer"}
        assert len(node.relationships) == 1

    def test_supplied_fields_overwrite(self, graph: EntityGraphStore):
        _alice(graph)
        node, _ = graph.create_or_update("person-alice", "person", "Alice Chen", "colleague")
        assert node.name == "Alice Chen"
        assert node.description == "colleague"

    def test_unknown_type_becomes_other(self, graph: EntityGraphStore):
        node, _ = graph.create_or_update("x", "spaceship", "X", "")
        assert node.type == "other"


class TestUpdate:
    def test_missing_raises(self, graph: EntityGraphStore):
        with pytest.raises(EntityNotFound) as exc:
            graph.update("ghost", name="Boo")
        assert exc.value.entity_id == "ghost"

    def test_only_supplied_fields(self, graph: EntityGraphStore):
        _alice(graph, properties={"age": 30})
        node = graph.update("person-alice", properties={"city": "SF"})
        assert node.name == "Alice"
        assert node.description == "friend"
        assert node.properties == {"age": 30, "city": "SF"}


class TestDelete:
    def test_missing_raises(self, graph: EntityGraphStore):
        with pytest.raises(EntityNotFound):
            graph.delete("ghost")

    def test_cascades_incoming_edges(self, graph: EntityGraphStore):
        _alice(graph)
        graph.create_or_update("person-bob", "person", "Bob", "")
        graph.create_or_update("place-sf", "place", "SF", "")
        graph.add_relationship("person-alice", "place-sf", "lives_in")
        graph.add_relationship("person-bob", "place-sf", "visited")
        graph.add_relationship("person-alice", "person-bob", "knows")

        stripped = graph.delete("place-sf")

        assert stripped == 2
        assert "place-sf" not in graph
        for node in graph.nodes():
            assert all(e.target_id != "place-sf" for e in node.relationships)
        assert [e.target_id for e in graph.get("person-alice").relationships] == ["person-bob"]


class TestRelationships:
    def test_upsert_updates_strength_in_place(self, graph: EntityGraphStore):
        _alice(graph)
        graph.create_or_update("person-bob", "person", "Bob", "")
        graph.add_relationship("person-alice", "person-bob", "knows")
        edge, created = graph.add_relationship("person-alice", "person-bob", "knows", 0.9)

        assert created is False
        edges = graph.get("person-alice").relationships
        assert len(edges) == 1
        assert edges[0].strength == 0.9

    def test_same_pair_different_label_is_new_edge(self, graph: EntityGraphStore):
        _alice(graph)
        graph.create_or_update("person-bob", "person", "Bob", "")
        graph.add_relationship("person-alice", "person-bob", "knows")
        graph.add_relationship("person-alice", "person-bob", "works_with")
        assert len(graph.get("person-alice").relationships) == 2

    @pytest.mark.parametrize("given,stored", [(5, 1.0), (-2, 0.0), (0.25, 0.25)])
    def test_strength_clamped(self, graph: EntityGraphStore, given, stored):
        _alice(graph)
        edge, _ = graph.add_relationship("person-alice", "person-alice", "self", given)
        assert edge.strength == stored

    def test_default_strength(self, graph: EntityGraphStore):
        _alice(graph)
        edge, _ = graph.add_relationship("person-alice", "person-alice", "self")
        assert edge.strength == 0.5

    def test_missing_target_names_it_and_leaves_source(self, graph: EntityGraphStore):
        _alice(graph)
        with pytest.raises(EntityNotFound) as exc:
            graph.add_relationship("person-alice", "place-sf", "lives_in")
        assert exc.value.entity_id == "place-sf"
        assert "place-sf" in str(exc.value)
        node = graph.get("person-alice")
        assert node.relationships == []
        assert node.description == "friend"

    def test_missing_source_named(self, graph: EntityGraphStore):
        _alice(graph)
        with pytest.raises(EntityNotFound) as exc:
            graph.add_relationship("person-zed", "person-alice", "knows")
        assert exc.value.entity_id == "person-zed"

    def test_remove(self, graph: EntityGraphStore):
        _alice(graph)
        graph.add_relationship("person-alice", "person-alice", "self")
        assert graph.remove_relationship("person-alice", "person-alice", "self") is True
        assert graph.remove_relationship("person-alice", "person-alice", "self") is False
        assert graph.remove_relationship("ghost", "person-alice", "self") is False


class TestMergeNodes:
    def test_new_and_known_nodes(self, graph: EntityGraphStore):
        _alice(graph, properties={"age": 30})
        added, merged = graph.merge_nodes(
            [
                {"id": "person-alice", "type": "person", "name": "Alice", "description": "best friend"},
                {"id": "place-sf", "type": "place", "name": "SF", "description": "city"},
            ]
        )
        assert (added, merged) == (1, 1)
        alice = graph.get("person-alice")
        assert alice.description == "best friend"
        # Restated node without properties keeps what a tool call stored.
        assert alice.properties == {"age": 30}

    def test_relationships_merged_and_dangling_dropped(self, graph: EntityGraphStore):
        _alice(graph)
        graph.merge_nodes(
            [
                {
                    "id": "person-alice",
                    "relationships": [
                        {"target_id": "place-sf", "relationship": "lives_in", "strength": 3},
                        {"target_id": "place-nowhere", "relationship": "visited"},
                    ],
                },
                {"id": "place-sf", "type": "place", "name": "SF"},
            ]
        )
        edges = graph.get("person-alice").relationships
        assert [(e.target_id, e.relationship, e.strength) for e in edges] == [
            ("place-sf", "lives_in", 1.0)
        ]

    def test_malformed_entries_skipped(self, graph: EntityGraphStore):
        added, merged = graph.merge_nodes(["junk", {"name": "no id"}, {"id": "task-x", "type": "task"}])
        assert (added, merged) == (1, 0)
        assert graph.get("task-x").name == "task-x"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load(self, graph: EntityGraphStore):
        _alice(graph)
        graph.add_relationship("person-alice", "person-alice", "self", 0.7)
        await graph.save()

        reloaded = EntityGraphStore(graph.store)
        await reloaded.load()
        node = reloaded.get("person-alice")
        assert node.name == "Alice"
        assert node.relationships[0].strength == 0.7

    @pytest.mark.asyncio
    async def test_load_drops_dangling_edges(self, graph: EntityGraphStore):
        await graph.store.write(
            ENTITY_MEMORY_KEY,
            {
                "nodes": {
                    "a": {
                        "id": "a",
                        "type": "concept",
                        "name": "A",
                        "relationships": [{"target_id": "gone", "relationship": "x"}],
                    }
                }
            },
        )
        await graph.load()
        assert graph.get("a").relationships == []

    def test_index_lists_id_name_type(self, graph: EntityGraphStore):
        _alice(graph)
        assert graph.index() == "- person-alice | Alice | person"
