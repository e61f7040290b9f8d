"""Entity graph store: the cross-thread knowledge graph.

Mutations happen in memory and are synchronous; ``save()`` writes the whole
graph back as the single ``entity-memory`` document.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from mneme.errors import EntityNotFound
from mneme.memory.models import (
    DEFAULT_STRENGTH,
    EntityGraph,
    EntityNode,
    Relationship,
    clamp_strength,
    normalize_type,
    now_iso,
)

if TYPE_CHECKING:
    from mneme.storage import JSONDocumentStore

logger = logging.getLogger(__name__)

ENTITY_MEMORY_KEY = "entity-memory"


class EntityGraphStore:
    """Node and relationship CRUD with merge semantics."""

    def __init__(self, store: JSONDocumentStore) -> None:
        self.store = store
        self.graph = EntityGraph()

    # ── Persistence ───────────────────────────────────────────

    async def load(self) -> None:
        data = await self.store.read(ENTITY_MEMORY_KEY)
        self.graph = EntityGraph.from_dict(data) if data else EntityGraph()
        dropped = self._drop_dangling()
        if dropped:
            logger.warning("Dropped %d dangling relationships on load", dropped)
        logger.info("Loaded entity graph (%d nodes)", len(self.graph.nodes))

    async def save(self) -> None:
        await self.store.write(ENTITY_MEMORY_KEY, self.graph.to_dict())

    # ── Reads ─────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.graph.nodes)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self.graph.nodes

    def get(self, entity_id: str) -> EntityNode | None:
        return self.graph.nodes.get(entity_id)

    def nodes(self) -> list[EntityNode]:
        return list(self.graph.nodes.values())

    def index(self) -> str:
        """Compact id/name/type listing for the system prompt."""
        return "\n".join(
            f"- {node.id} | {node.name} | {node.type}" for node in self.graph.nodes.values()
        )

    def to_payload(self) -> list[dict[str, Any]]:
        return [node.to_dict() for node in self.graph.nodes.values()]

    # ── Node CRUD ─────────────────────────────────────────────

    def create_or_update(
        self,
        id: str,
        type: str,
        name: str,
        description: str = "",
        properties: dict[str, Any] | None = None,
    ) -> tuple[EntityNode, bool]:
        """Upsert a node. Returns ``(node, created)``."""
        existing = self.graph.nodes.get(id)
        if existing:
            self._merge_fields(
                existing, type=type, name=name, description=description, properties=properties
            )
            self._touch()
            return existing, False

        node = EntityNode(
            id=id,
            type=type,
            name=name or id,
            description=description or "",
            properties=dict(properties or {}),
        )
        self.graph.nodes[id] = node
        self._touch()
        logger.debug("Created entity %s (%s)", id, node.type)
        return node, True

    def update(
        self,
        id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        properties: dict[str, Any] | None = None,
        type: str | None = None,
    ) -> EntityNode:
        node = self.graph.nodes.get(id)
        if not node:
            raise EntityNotFound(id)
        self._merge_fields(
            node, type=type, name=name, description=description, properties=properties
        )
        self._touch()
        return node

    def delete(self, id: str) -> int:
        """Remove a node and every edge pointing at it. Returns edges stripped."""
        if id not in self.graph.nodes:
            raise EntityNotFound(id)
        del self.graph.nodes[id]
        stripped = 0
        for node in self.graph.nodes.values():
            before = len(node.relationships)
            node.relationships = [e for e in node.relationships if e.target_id != id]
            stripped += before - len(node.relationships)
        self._touch()
        logger.debug("Deleted entity %s (%d incoming edges removed)", id, stripped)
        return stripped

    # ── Relationships ─────────────────────────────────────────

    def add_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship: str,
        strength: float = DEFAULT_STRENGTH,
    ) -> tuple[Relationship, bool]:
        """Upsert an edge keyed by ``(target_id, relationship)``. Returns ``(edge, created)``."""
        source = self.graph.nodes.get(source_id)
        if not source:
            raise EntityNotFound(source_id)
        if target_id not in self.graph.nodes:
            raise EntityNotFound(target_id)

        value = clamp_strength(strength)
        edge = source.find_relationship(target_id, relationship)
        if edge:
            edge.strength = value
            self._touch()
            return edge, False

        edge = Relationship(target_id=target_id, relationship=relationship, strength=value)
        source.relationships.append(edge)
        self._touch()
        return edge, True

    def remove_relationship(self, source_id: str, target_id: str, relationship: str) -> bool:
        source = self.graph.nodes.get(source_id)
        if not source:
            return False
        edge = source.find_relationship(target_id, relationship)
        if not edge:
            return False
        source.relationships.remove(edge)
        self._touch()
        return True

    # ── Bulk merge (summarizer path) ──────────────────────────

    def merge_nodes(self, proposed: Iterable[Any]) -> tuple[int, int]:
        """Merge a model-proposed node list. Returns ``(added, merged)``.

        Known ids are merged field by field, exactly like ``create_or_update``;
        relationships are upserted by ``(target_id, relationship)`` so nothing
        a tool call wrote is lost when the model restates a node partially.
        """
        added = merged = 0
        pending_edges: list[tuple[str, list[Any]]] = []

        for item in proposed:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning("Skipping malformed entity in summary: %r", item)
                continue
            node_id = str(item["id"])
            props = item.get("properties")
            _, created = self.create_or_update(
                node_id,
                item.get("type") or "",
                str(item.get("name") or ""),
                str(item.get("description") or ""),
                props if isinstance(props, dict) else None,
            )
            if created:
                added += 1
            else:
                merged += 1
            edges = item.get("relationships")
            if isinstance(edges, list):
                pending_edges.append((node_id, edges))

        # Edges last, so a node may point at one introduced later in the batch.
        for node_id, edges in pending_edges:
            source = self.graph.nodes[node_id]
            for raw in edges:
                if not isinstance(raw, dict):
                    continue
                edge = Relationship.from_dict(raw)
                if not edge.relationship or edge.target_id not in self.graph.nodes:
                    continue
                existing = source.find_relationship(edge.target_id, edge.relationship)
                if existing:
                    existing.strength = edge.strength
                else:
                    source.relationships.append(edge)

        self._touch()
        return added, merged

    # ── Internal ──────────────────────────────────────────────

    def _merge_fields(
        self,
        node: EntityNode,
        *,
        type: str | None,
        name: str | None,
        description: str | None,
        properties: dict[str, Any] | None,
    ) -> None:
        if type:
            node.type = normalize_type(type)
        if name:
            node.name = name
        if description:
            node.description = description
        if properties:
            node.properties.update(properties)

    def _drop_dangling(self) -> int:
        dropped = 0
        for node in self.graph.nodes.values():
            before = len(node.relationships)
            node.relationships = [
                e for e in node.relationships if e.target_id in self.graph.nodes
            ]
            dropped += before - len(node.relationships)
        return dropped

    def _touch(self) -> None:
        self.graph.last_updated = now_iso()
