"""Entity tools exposed to the model, and the bridge that executes them.

Every tool result is a short status string fed back to the model as the
tool message. Failures are reported the same way; nothing raised by a
single call escapes ``ToolBridge.execute``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Callable

from mneme.engines.base import ToolCall, ToolDefinition
from mneme.errors import MnemeError, ToolArgumentError
from mneme.memory.models import DEFAULT_STRENGTH, ENTITY_TYPES

if TYPE_CHECKING:
    from mneme.memory.entities import EntityGraphStore

logger = logging.getLogger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "object": (dict,),
}


def _schema(properties: dict[str, dict], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_ID = {"type": "string", "description": "Stable entity id, e.g. person-alice or place-sf"}
_TYPE = {"type": "string", "enum": list(ENTITY_TYPES), "description": "Entity type"}
_PROPS = {"type": "object", "description": "Extra key/value facts (merged into existing ones)"}

TOOL_SCHEMAS: dict[str, tuple[str, dict[str, Any]]] = {
    "create_entity": (
        "Create an entity, or update it if the id already exists. Use for people, "
        "places, concepts, events and tasks the user mentions.",
        _schema(
            {
                "id": _ID,
                "type": _TYPE,
                "name": {"type": "string", "description": "Display name"},
                "description": {"type": "string", "description": "One-line description"},
                "properties": _PROPS,
            },
            ["id", "type", "name", "description"],
        ),
    ),
    "update_entity": (
        "Update fields of an existing entity. Only supplied fields change.",
        _schema(
            {
                "id": _ID,
                "name": {"type": "string"},
                "description": {"type": "string"},
                "type": _TYPE,
                "properties": _PROPS,
            },
            ["id"],
        ),
    ),
    "delete_entity": (
        "Delete an entity and every relationship that points to it.",
        _schema({"id": _ID}, ["id"]),
    ),
    "add_relationship": (
        "Link two existing entities with a labeled, weighted relationship. "
        "Calling it again for the same pair and label updates the strength.",
        _schema(
            {
                "sourceId": {"type": "string", "description": "Entity the edge starts from"},
                "targetId": {"type": "string", "description": "Entity the edge points to"},
                "relationship": {"type": "string", "description": "Label, e.g. lives_in"},
                "strength": {
                    "type": "number",
                    "description": f"0.0-1.0, default {DEFAULT_STRENGTH}",
                },
            },
            ["sourceId", "targetId", "relationship"],
        ),
    ),
    "remove_relationship": (
        "Remove a labeled relationship between two entities.",
        _schema(
            {
                "sourceId": {"type": "string"},
                "targetId": {"type": "string"},
                "relationship": {"type": "string"},
            },
            ["sourceId", "targetId", "relationship"],
        ),
    ),
}


def normalize_arguments(name: str, arguments: Any) -> dict[str, Any]:
    """Accept a dict or JSON string and check it against the tool's schema."""
    if arguments is None or arguments == "":
        args: Any = {}
    elif isinstance(arguments, str):
        try:
            args = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"arguments for {name} are not valid JSON: {e.msg}") from e
    else:
        args = arguments

    if not isinstance(args, dict):
        raise ToolArgumentError(f"arguments for {name} must be an object")

    _, schema = TOOL_SCHEMAS[name]
    missing = [key for key in schema["required"] if args.get(key) in (None, "")]
    if missing:
        raise ToolArgumentError(f"{name} missing required argument(s): {', '.join(missing)}")

    for key, prop in schema["properties"].items():
        if key not in args or args[key] is None:
            continue
        expected = _JSON_TYPES[prop["type"]]
        value = args[key]
        if not isinstance(value, expected) or isinstance(value, bool):
            raise ToolArgumentError(f"{name}.{key} must be a {prop['type']}")
    return args


class ToolBridge:
    """Dispatch model tool calls onto the entity graph."""

    def __init__(self, graph: EntityGraphStore) -> None:
        self.graph = graph
        handlers: dict[str, Callable[..., str]] = {
            "create_entity": self._create_entity,
            "update_entity": self._update_entity,
            "delete_entity": self._delete_entity,
            "add_relationship": self._add_relationship,
            "remove_relationship": self._remove_relationship,
        }
        self.definitions = [
            ToolDefinition(name=name, description=desc, parameters=schema, handler=handlers[name])
            for name, (desc, schema) in TOOL_SCHEMAS.items()
        ]
        self._tools = {tool.name: tool for tool in self.definitions}

    # ── Execution ─────────────────────────────────────────────

    def execute(self, call: ToolCall) -> str:
        tool = self._tools.get(call.name)
        if not tool:
            logger.warning("Model called unknown tool: %s", call.name)
            return f"Error: unknown tool '{call.name}'"

        try:
            args = normalize_arguments(call.name, call.arguments)
            return tool.handler(args)
        except MnemeError as e:
            logger.warning("Tool %s failed: %s", call.name, e)
            return f"Error: {e}"
        except Exception as e:
            logger.exception("Tool %s raised unexpectedly", call.name)
            return f"Error: {call.name} failed: {e}"

    async def execute_all(self, calls: list[ToolCall]) -> list[str]:
        """Run calls in order, then persist the graph once."""
        results = [self.execute(call) for call in calls]
        try:
            await self.graph.save()
        except Exception as e:
            logger.error("Failed to persist entity graph after tool calls: %s", e)
        return results

    # ── Handlers ──────────────────────────────────────────────

    def _create_entity(self, args: dict[str, Any]) -> str:
        node, created = self.graph.create_or_update(
            args["id"],
            args["type"],
            args["name"],
            args["description"],
            args.get("properties"),
        )
        verb = "Created" if created else "Updated"
        return f"{verb} entity {node.id} ({node.type}): {node.name}"

    def _update_entity(self, args: dict[str, Any]) -> str:
        node = self.graph.update(
            args["id"],
            name=args.get("name"),
            description=args.get("description"),
            properties=args.get("properties"),
            type=args.get("type"),
        )
        return f"Updated entity {node.id}: {node.name}"

    def _delete_entity(self, args: dict[str, Any]) -> str:
        stripped = self.graph.delete(args["id"])
        suffix = f" and {stripped} relationship(s) pointing to it" if stripped else ""
        return f"Deleted entity {args['id']}{suffix}"

    def _add_relationship(self, args: dict[str, Any]) -> str:
        edge, created = self.graph.add_relationship(
            args["sourceId"],
            args["targetId"],
            args["relationship"],
            args.get("strength", DEFAULT_STRENGTH),
        )
        verb = "Added" if created else "Updated"
        return (
            f"{verb} relationship {args['sourceId']} -[{edge.relationship}]-> "
            f"{edge.target_id} (strength {edge.strength:.2f})"
        )

    def _remove_relationship(self, args: dict[str, Any]) -> str:
        source, target, label = args["sourceId"], args["targetId"], args["relationship"]
        if self.graph.remove_relationship(source, target, label):
            return f"Removed relationship {source} -[{label}]-> {target}"
        return f"Relationship not found: {source} -[{label}]-> {target}"
