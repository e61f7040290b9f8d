"""Prompt templates for chat turns and summarization passes."""

from __future__ import annotations

SYSTEM_PROMPT_TEMPLATE = """\
You are a helpful AI assistant with a persistent memory.

## Entity memory
You keep a knowledge graph of the people, places, concepts, events and tasks
the user talks about. It is shared across all conversations.

Use the entity tools proactively, without being asked:
- create_entity when the user mentions something worth remembering
  (ids look like person-alice, place-sf, task-taxes)
- update_entity when you learn new facts about a known entity
- add_relationship to connect entities (e.g. person-alice lives_in place-sf)
- delete_entity / remove_relationship when the user says something is wrong

Known entities (id | name | type):
{entity_index}

Respond concisely and clearly.
"""

NO_ENTITIES = "(none yet)"

SUMMARY_CONTEXT_TEMPLATE = "Previous conversation summary:\n{summary}"

NO_PRIOR_CONVERSATION = "(no prior conversation)"

SUMMARY_SECTION = "SUMMARY:"
ENTITIES_SECTION = "ENTITIES:"

SUMMARIZE_PROMPT_TEMPLATE = """\
You maintain the memory of a chat assistant. Update it using the new messages.

## Current summary
{summary}

## Current entities (JSON)
{entities}

## New messages
{messages}

## Instructions
1. Rewrite the summary so it covers the whole conversation so far: who the
   user is, what was discussed, decisions and open tasks. Keep it under 200 words.
2. List every entity that is new or changed because of the new messages,
   as a JSON array. Each item has id, type (person, place, concept, event,
   task, other), name, description, properties (object) and relationships
   (array of {{"target_id", "relationship", "strength"}} with strength 0.0-1.0).
   Reuse existing ids. Output [] when nothing changed.

Answer in exactly this format:

{summary_section}
<updated summary>

{entities_section}
<JSON array>
"""


def build_system_prompt(entity_index: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(entity_index=entity_index or NO_ENTITIES)


def build_summarize_prompt(summary: str | None, entities_json: str, messages: str) -> str:
    return SUMMARIZE_PROMPT_TEMPLATE.format(
        summary=summary or NO_PRIOR_CONVERSATION,
        entities=entities_json,
        messages=messages,
        summary_section=SUMMARY_SECTION,
        entities_section=ENTITIES_SECTION,
    )
