"""Human-readable views of the memory: a manifest table and markdown files.

Exported layout:
    <dir>/
    ├── people/alice.md        # YAML frontmatter + relationship list
    ├── places/san-francisco.md
    └── ...
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

import frontmatter

if TYPE_CHECKING:
    from mneme.memory.entities import EntityGraphStore
    from mneme.memory.models import ConversationSummary, EntityNode

logger = logging.getLogger(__name__)

PLURAL_MAP = {"person": "people", "other": "other"}


def type_to_dir(type_name: str) -> str:
    """Map entity type to directory name (pluralized)."""
    t = type_name.lower()
    if t in PLURAL_MAP:
        return PLURAL_MAP[t]
    return t + "s"


def slugify(name: str) -> str:
    """Minimal slug: strip illegal chars, spaces to hyphens, keep CJK."""
    slug = re.sub(r'[<>:"/\\|?*\n\r\t]', "", name)
    slug = slug.strip().replace(" ", "-").lower()
    return slug or "unnamed"


def render_manifest(graph: EntityGraphStore) -> str:
    nodes = graph.nodes()
    if not nodes:
        return "No entities yet."
    lines = [
        f"# Entities ({len(nodes)})",
        "",
        "| id | name | type | description |",
        "|----|------|------|-------------|",
    ]
    for node in sorted(nodes, key=lambda n: (n.type, n.name.lower())):
        desc = node.description.replace("|", "/").replace("\n", " ")
        lines.append(f"| {node.id} | {node.name} | {node.type} | {desc} |")
    return "\n".join(lines)


def render_summary(summary: ConversationSummary | None) -> str:
    if not summary:
        return "# Summary\n\n(not summarized yet)"
    return (
        f"# Summary\n\n{summary.summary}\n\n"
        f"_covers {summary.message_count} messages, updated {summary.last_updated}_"
    )


def render_entity(node: EntityNode, graph: EntityGraphStore) -> str:
    """Markdown document with YAML frontmatter for a single entity."""
    lines = [f"# {node.name}", ""]
    if node.description:
        lines += [node.description, ""]
    if node.relationships:
        lines.append("## Relationships")
        for edge in node.relationships:
            target = graph.get(edge.target_id)
            label = target.name if target else edge.target_id
            lines.append(f"- {edge.relationship} → {label} ({edge.strength:.2f})")
    post = frontmatter.Post(
        "\n".join(lines).rstrip() + "\n",
        id=node.id,
        type=node.type,
        name=node.name,
        properties=dict(node.properties),
    )
    return frontmatter.dumps(post) + "\n"


def _write_files(files: dict[Path, str]) -> None:
    for path, text in files.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


async def export_entities(graph: EntityGraphStore, directory: Path) -> list[Path]:
    """Write one markdown file per entity. Returns the paths written.

    Documents are rendered on the loop so the graph is read in one piece;
    only the file writes run in a worker thread.
    """
    files: dict[Path, str] = {}
    for node in graph.nodes():
        type_dir = directory / type_to_dir(node.type)
        slug = slugify(node.name)
        path = type_dir / f"{slug}.md"
        counter = 2
        while path in files:
            path = type_dir / f"{slug}-{counter}.md"
            counter += 1
        files[path] = render_entity(node, graph)
    await asyncio.to_thread(_write_files, files)
    logger.info("Exported %d entities to %s", len(files), directory)
    return list(files)
