"""Typed records for threads, messages, summaries and the entity graph.

Every record round-trips through plain JSON dicts so the document store
never needs to know about these classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Role = Literal["user", "assistant", "tool"]

ENTITY_TYPES = ("person", "place", "concept", "event", "task", "other")
DEFAULT_STRENGTH = 0.5


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def clamp_strength(value: Any) -> float:
    """Coerce ``value`` into [0, 1]; non-numeric input falls back to the default."""
    try:
        strength = float(value)
    except (TypeError, ValueError):
        return DEFAULT_STRENGTH
    if strength != strength:  # NaN
        return DEFAULT_STRENGTH
    return max(0.0, min(1.0, strength))


def normalize_type(value: Any) -> str:
    t = str(value or "").strip().lower()
    return t if t in ENTITY_TYPES else "other"


@dataclass
class Thread:
    """An independent conversation with its own log and summary."""

    id: str
    name: str
    created_at: str = field(default_factory=now_iso)
    last_message_at: str = field(default_factory=now_iso)
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "last_message_at": self.last_message_at,
            "message_count": self.message_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Thread:
        created = data.get("created_at") or now_iso()
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            created_at=created,
            last_message_at=data.get("last_message_at") or created,
            message_count=int(data.get("message_count", 0)),
        )


@dataclass
class Message:
    """One entry in a thread's append-only log."""

    role: Role
    content: str
    timestamp: str = field(default_factory=now_iso)
    tool_calls: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.tool_calls:
            data["tool_calls"] = self.tool_calls
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=data.get("timestamp") or now_iso(),
            tool_calls=data.get("tool_calls") or None,
        )


@dataclass
class ConversationSummary:
    """Narrative summary of a thread as of ``message_count`` messages."""

    thread_id: str
    summary: str
    message_count: int
    last_updated: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "summary": self.summary,
            "message_count": self.message_count,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationSummary:
        return cls(
            thread_id=str(data["thread_id"]),
            summary=data.get("summary", ""),
            message_count=int(data.get("message_count", 0)),
            last_updated=data.get("last_updated") or now_iso(),
        )


@dataclass
class Relationship:
    """Directed, weighted edge to another entity."""

    target_id: str
    relationship: str
    strength: float = DEFAULT_STRENGTH

    def __post_init__(self) -> None:
        self.strength = clamp_strength(self.strength)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "relationship": self.relationship,
            "strength": self.strength,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Relationship:
        return cls(
            target_id=str(data.get("target_id") or data.get("targetId") or ""),
            relationship=str(data.get("relationship") or ""),
            strength=data.get("strength", DEFAULT_STRENGTH),
        )


@dataclass
class EntityNode:
    """A named entity in the shared knowledge graph."""

    id: str
    type: str
    name: str
    description: str = ""
    properties: dict[str, Any] = field(default_factory=dict)
    relationships: list[Relationship] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = normalize_type(self.type)

    def find_relationship(self, target_id: str, relationship: str) -> Relationship | None:
        for edge in self.relationships:
            if edge.target_id == target_id and edge.relationship == relationship:
                return edge
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "properties": dict(self.properties),
            "relationships": [edge.to_dict() for edge in self.relationships],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityNode:
        props = data.get("properties")
        return cls(
            id=str(data["id"]),
            type=data.get("type", "other"),
            name=str(data.get("name") or data["id"]),
            description=str(data.get("description") or ""),
            properties=dict(props) if isinstance(props, dict) else {},
            relationships=[
                Relationship.from_dict(edge)
                for edge in data.get("relationships") or []
                if isinstance(edge, dict)
            ],
        )


@dataclass
class EntityGraph:
    """All entity nodes, keyed by id. Shared by every thread."""

    nodes: dict[str, EntityNode] = field(default_factory=dict)
    last_updated: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": {node_id: node.to_dict() for node_id, node in self.nodes.items()},
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityGraph:
        raw = data.get("nodes") or {}
        items = raw.values() if isinstance(raw, dict) else raw
        nodes = {}
        for item in items:
            node = EntityNode.from_dict(item)
            nodes[node.id] = node
        return cls(nodes=nodes, last_updated=data.get("last_updated") or now_iso())
