"""Error taxonomy for the ingestion endpoint."""
from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for failures that map onto an HTTP error response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(IngestError):
    """Raised when a required deployment setting is missing or invalid."""

    status_code = 500


class AuthError(IngestError):
    """Raised when the caller's credentials do not match the shared secret."""

    status_code = 401


class ValidationError(IngestError):
    """Raised for payloads the normalizer cannot accept."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidPayloadError(ValidationError):
    """Malformed JSON or a payload shape that matches no known variant."""


class InvalidTableError(ValidationError):
    """Table name missing or outside the allow-list."""

    def __init__(self, table: Optional[str]) -> None:
        label = table or "<none>"
        super().__init__(f"Table not identified or invalid: {label}", field="table")
        self.table = table


class PersistenceError(IngestError):
    """Raised when the database rejects an upsert or cannot be reached."""

    status_code = 500
