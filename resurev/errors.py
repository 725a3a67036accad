"""Error taxonomy shared by the store, ingestion and sync layers."""
from __future__ import annotations


class ResuRevError(Exception):
    """Base class for every error raised by resurev."""


class BackendUnavailable(ResuRevError):
    """Key-value store, blob store or AI endpoint could not be reached."""


class NotFound(ResuRevError):
    """The requested record is absent (or tombstoned)."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class ParseError(ResuRevError):
    """A stored payload could not be decoded into a record."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Corrupt payload at {key}: {reason}")
        self.key = key
        self.reason = reason


class FeedbackValidationError(ResuRevError):
    """AI output failed the feedback schema after repair.

    Raised by ParseResult.unwrap; parse_feedback itself returns a diagnostic
    Feedback instead.
    """


class DeleteConflict(ResuRevError):
    """Hard delete of a record key did not succeed."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Hard delete failed for {record_id}")
        self.record_id = record_id


class IngestionCancelled(ResuRevError):
    """The caller cancelled an in-flight ingestion."""


class AIInvocationFailed(ResuRevError):
    """The AI call failed or returned nothing usable."""
