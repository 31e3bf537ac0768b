"""
Custom exceptions for the diagram session core.

Session, persistence and export components raise these exceptions
so callers get consistent error handling whichever backend or
editor surface is in use.
"""

from __future__ import annotations

from enum import Enum


class ErrorClass(Enum):
    """Classification of a persistence failure, decided once at the storage boundary.

    FATAL_SCHEMA: The primary store has no table/container for diagrams
    FATAL_AUTH: Permission denied or no authenticated principal
    TRANSIENT: Network, throttling or server-side failure worth retrying
    PERMANENT: Anything else - surfaced immediately, never retried
    """

    FATAL_SCHEMA = "fatal_schema"
    FATAL_AUTH = "fatal_auth"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def is_fatal(self) -> bool:
        return self in (ErrorClass.FATAL_SCHEMA, ErrorClass.FATAL_AUTH)


class ProcessSheetsError(Exception):
    """Base exception for all diagram session errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ProcessSheetsError):
    """Raised when a session operation is rejected before any state change."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class DiagramNotFoundError(ProcessSheetsError):
    """Raised when a diagram id is not part of the session."""

    def __init__(self, diagram_id: str):
        super().__init__(f"Diagram not found: {diagram_id}", {"diagram_id": diagram_id})
        self.diagram_id = diagram_id


class PersistenceError(ProcessSheetsError):
    """Raised when a persistence call failed and the caller must be told.

    Fatal-class failures never surface as PersistenceError from the gateway:
    they trip the circuit breaker and the call completes on the fallback store.
    """

    def __init__(
        self,
        operation: str,
        error_class: ErrorClass = ErrorClass.PERMANENT,
        cause: Exception | None = None,
        diagram_id: str | None = None,
    ):
        details: dict = {"operation": operation, "error_class": error_class.value}
        if diagram_id:
            details["diagram_id"] = diagram_id
        if cause:
            details["cause"] = str(cause)
        message = f"Persistence failed during {operation}"
        if diagram_id:
            message += f" ({diagram_id})"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.error_class = error_class
        self.cause = cause
        self.diagram_id = diagram_id

    @property
    def transient(self) -> bool:
        return self.error_class == ErrorClass.TRANSIENT


class RenderError(ProcessSheetsError):
    """Raised when the editor surface or an export stage cannot produce output."""

    def __init__(self, stage: str, reason: str, diagram_id: str | None = None):
        details = {"stage": stage, "reason": reason}
        if diagram_id:
            details["diagram_id"] = diagram_id
        super().__init__(f"Render failed at {stage}: {reason}", details)
        self.stage = stage
        self.reason = reason
        self.diagram_id = diagram_id


class ExportError(ProcessSheetsError):
    """Raised when an export produced no document at all."""

    def __init__(self, reason: str, results: list | None = None):
        super().__init__(f"Export failed: {reason}", {"reason": reason})
        self.reason = reason
        self.results = results or []


class ConcurrencyError(ProcessSheetsError):
    """A stale save or superseded switch.

    Never surfaced to the user: it means the session already moved on.
    """

    def __init__(self, diagram_id: str, reason: str):
        super().__init__(
            f"Discarded operation for {diagram_id}: {reason}",
            {"diagram_id": diagram_id, "reason": reason},
        )
        self.diagram_id = diagram_id
        self.reason = reason
