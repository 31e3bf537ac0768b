"""
Process Sheets

Session core for multi-sheet process diagram editing.

Provides:
- An ordered collection of diagrams with exactly one loaded in the editor
- Debounced autosave with at most one save in flight per diagram
- Cosmos DB persistence with a sticky downgrade to local file storage
- Paginated PDF export of one or many diagrams

Usage:

    >>> from process_sheets import (
    ...     InMemoryEditorAdapter, PersistenceGateway, SessionStore, StorageConfig,
    ... )
    >>> config = StorageConfig.from_environment(user_id="user-123")
    >>> session = SessionStore(InMemoryEditorAdapter(), PersistenceGateway.from_config(config))
    >>> await session.init()
    >>> sheet = await session.create_diagram(activate=True)
    >>> await session.rename_diagram(sheet.id, "Intake Flow")
    ...
    >>> await session.teardown()

Export:

    from process_sheets.export import ExportPipeline

    result = await ExportPipeline(session).export_batch(title="Order to Cash")
"""

from .adapter import (
    ZOOM_STEP,
    DiagramEditorAdapter,
    DiagramElement,
    InMemoryEditorAdapter,
    reset_zoom,
    zoom_in,
    zoom_out,
)
from .advisory import GenerationResult, Suggestion, SuggestionFix
from .autosave import AutosaveConfig, AutosaveScheduler, SaveState, SaveTask
from .clock import AsyncioClock, Clock
from .exceptions import (
    ConcurrencyError,
    DiagramNotFoundError,
    ErrorClass,
    ExportError,
    PersistenceError,
    ProcessSheetsError,
    RenderError,
    ValidationError,
)
from .export import ExportConfig, ExportPipeline, ExportResult, PageGeometry
from .models import DEFAULT_DIAGRAM_XML, Diagram, DiagramInput
from .session import SessionLease, SessionState, SessionStore
from .storage import PersistenceGateway, RetryConfig, StorageConfig

__all__ = [
    # Session
    "SessionStore",
    "SessionState",
    "SessionLease",
    "Diagram",
    "DiagramInput",
    "DEFAULT_DIAGRAM_XML",
    # Autosave
    "AutosaveScheduler",
    "AutosaveConfig",
    "SaveTask",
    "SaveState",
    "Clock",
    "AsyncioClock",
    # Editor surface
    "DiagramEditorAdapter",
    "DiagramElement",
    "InMemoryEditorAdapter",
    "ZOOM_STEP",
    "zoom_in",
    "zoom_out",
    "reset_zoom",
    # Persistence
    "PersistenceGateway",
    "StorageConfig",
    "RetryConfig",
    # Export
    "ExportPipeline",
    "ExportConfig",
    "ExportResult",
    "PageGeometry",
    # Advisory payloads
    "Suggestion",
    "SuggestionFix",
    "GenerationResult",
    # Exceptions
    "ProcessSheetsError",
    "ValidationError",
    "DiagramNotFoundError",
    "PersistenceError",
    "RenderError",
    "ExportError",
    "ConcurrencyError",
    "ErrorClass",
]

__version__ = "0.1.0"
