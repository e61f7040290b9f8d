"""Memory subsystem: thread logs, summaries and the shared entity graph.

Documents (see mneme.storage):
    threads                    # Thread index, most recent first
    threads/{id}/history       # Append-only message log per thread
    threads/{id}/summary       # Narrative summary per thread (optional)
    entity-memory              # Entity graph shared by every thread

Entities are written by model tool calls during a turn (memory.tools) and in
bulk by summarization passes (memory.summarizer).
"""
