"""Lifelog error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lifelog.pipeline import IngestResult


class LifelogError(Exception):
    """Base exception for Lifelog."""

    pass


class ParseError(LifelogError):
    """Malformed input record (bad timestamp, missing required field)."""

    def __init__(self, message: str, external_log_id: str | None = None):
        super().__init__(message)
        self.external_log_id = external_log_id


class StorageError(LifelogError):
    """Error in database storage or retrieval."""

    pass


class ConstraintViolation(StorageError):
    """A write broke a uniqueness, foreign-key or check constraint.

    Signals bad input: retrying the same write will fail the same way.
    """

    pass


class StorageUnavailable(StorageError):
    """The database could not be reached, locked too long, or failed on I/O.

    Signals a transient condition: the caller may retry later.
    """

    pass


class MigrationFailure(StorageError):
    """Schema setup failed. The store must not be used."""

    def __init__(self, message: str, version: int | None = None):
        super().__init__(message)
        self.version = version


class RecordNotFound(LifelogError):
    """An update or lookup referenced a row that does not exist."""

    pass


class ConversationNotFound(RecordNotFound):
    """No conversation exists with the requested id."""

    def __init__(self, conversation_id: int):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class IngestError(LifelogError):
    """Ingestion stopped before the end of the batch.

    Carries the partial result so the caller can decide how to retry.
    """

    def __init__(
        self,
        message: str,
        result: IngestResult | None = None,
        external_log_id: str | None = None,
    ):
        super().__init__(message)
        self.result = result
        self.external_log_id = external_log_id


class IngestInProgress(IngestError):
    """Another batch is already being ingested by this pipeline."""

    pass
