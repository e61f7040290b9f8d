"""Error taxonomy shared across the memory subsystem."""

from __future__ import annotations


class MnemeError(Exception):
    """Base class for all Mneme errors."""


class NotFoundError(MnemeError):
    """A thread, entity or relationship does not exist."""


class ThreadNotFound(NotFoundError):
    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread not found: {thread_id}")
        self.thread_id = thread_id


class EntityNotFound(NotFoundError):
    def __init__(self, entity_id: str) -> None:
        super().__init__(f"Entity not found: {entity_id}")
        self.entity_id = entity_id


class ParseFailure(MnemeError):
    """Malformed model output: tool arguments or summarizer JSON."""


class ToolArgumentError(ParseFailure):
    """Tool arguments that do not match the declared schema."""


class ProviderUnavailable(MnemeError):
    """The LLM backend could not be reached or returned an error."""


class StorageError(MnemeError):
    """A persisted document could not be read back."""
