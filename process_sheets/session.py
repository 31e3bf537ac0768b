"""
Diagram session lifecycle.

SessionStore owns the ordered collection of diagrams of one session and
which of them is loaded in the editor surface. Every operation that
touches the surface's single loaded-diagram slot (switch, create, delete,
generation import, export visits) runs under one FIFO operation lock, so
rapid switching can never interleave imports.

Invariants:
- Once initialized the session holds at least one diagram
- At most one diagram is active, and it is part of the ordered collection
- Edits are flushed before the surface is loaded with another diagram
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .adapter import DiagramEditorAdapter
from .advisory import GenerationResult, Suggestion
from .autosave import AutosaveConfig, AutosaveScheduler, Thumbnailer
from .clock import Clock
from .exceptions import (
    DiagramNotFoundError,
    ErrorClass,
    PersistenceError,
    RenderError,
    ValidationError,
)
from .logging_utils import DiagramLoggerAdapter
from .models import DEFAULT_DIAGRAM_XML, DEFAULT_SHEET_PREFIX, Diagram, DiagramInput, new_diagram_id
from .storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

_SHEET_NAME = re.compile(rf"^{DEFAULT_SHEET_PREFIX} (\d+)$")


@dataclass(frozen=True)
class SessionState:
    """Point-in-time view of a session."""

    ordered_ids: tuple[str, ...]
    active_id: str | None
    dirty: dict[str, bool] = field(default_factory=dict)


class SessionStore:
    """Ordered diagram collection with one active diagram.

    Lifecycle: construct, ``await init()``, use, ``await teardown()``.
    """

    def __init__(
        self,
        adapter: DiagramEditorAdapter,
        gateway: PersistenceGateway,
        scheduler: AutosaveScheduler | None = None,
        clock: Clock | None = None,
        autosave_config: AutosaveConfig | None = None,
        thumbnailer: Thumbnailer | None = None,
    ) -> None:
        self._adapter = adapter
        self._gateway = gateway
        self._scheduler = scheduler or AutosaveScheduler(
            adapter, gateway, clock=clock, config=autosave_config, thumbnailer=thumbnailer
        )
        self.session_id = str(uuid.uuid4())
        self._log = DiagramLoggerAdapter(logger, {"session_id": self.session_id})

        self._diagrams: dict[str, Diagram] = {}
        self._order: list[str] = []
        self._active_id: str | None = None
        self._deleted: set[str] = set()

        self._op_lock = asyncio.Lock()
        self._creating = False
        self._initialized = False

    # Lifecycle

    async def init(self) -> None:
        """Load the collection and activate its first loadable diagram.

        Diagrams whose content the surface rejects are kept in the
        collection but skipped. When none can be loaded (or the collection
        is empty) a fresh sheet is created and activated. A failed init
        leaves the session empty, so it can be retried.
        """
        if self._initialized:
            return

        self._scheduler.bind(lambda: self._active_id, self._handle_saved)
        async with self._op_lock:
            loaded = await self._gateway.list()
            self._diagrams = {d.id: d for d in loaded}
            self._order = [d.id for d in loaded]
            try:
                await self._activate_first_loadable()
            except BaseException:
                self._diagrams = {}
                self._order = []
                self._active_id = None
                raise

        self._scheduler.attach()
        self._initialized = True
        self._log.info(f"Session initialized with {len(self._order)} diagram(s)")

    async def teardown(self) -> list[str]:
        """Flush all pending edits and release the editor surface.

        Returns the ids of diagrams whose final save failed.
        """
        async with self._op_lock:
            failed = await self._scheduler.flush_all()
            await self._scheduler.close()
            self._adapter.destroy()
            self._active_id = None
            self._initialized = False
        if failed:
            self._log.error(f"Unsaved diagrams at teardown: {failed}")
        return failed

    # Read access

    @property
    def scheduler(self) -> AutosaveScheduler:
        return self._scheduler

    @property
    def ordered_ids(self) -> tuple[str, ...]:
        return tuple(self._order)

    @property
    def diagrams(self) -> list[Diagram]:
        return [self._diagrams[i] for i in self._order]

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_diagram(self) -> Diagram | None:
        return self._diagrams.get(self._active_id) if self._active_id else None

    def get(self, diagram_id: str) -> Diagram:
        try:
            return self._diagrams[diagram_id]
        except KeyError:
            raise DiagramNotFoundError(diagram_id) from None

    def is_dirty(self, diagram_id: str) -> bool:
        return self._scheduler.is_dirty(diagram_id)

    def state(self) -> SessionState:
        return SessionState(
            ordered_ids=tuple(self._order),
            active_id=self._active_id,
            dirty={i: self._scheduler.is_dirty(i) for i in self._order},
        )

    # Operations

    async def create_diagram(
        self,
        initial_content: str | None = None,
        name: str | None = None,
        activate: bool = False,
    ) -> Diagram:
        """Create and persist a diagram at the end of the order.

        The diagram is activated when it is the first one or ``activate``
        is set.

        Raises:
            ValidationError: If a creation is already in progress or the
                name is blank
        """
        if self._creating:
            raise ValidationError("create", "a diagram creation is already in progress")
        if name is not None and not name.strip():
            raise ValidationError("name", "name must not be empty", name)

        self._creating = True
        try:
            async with self._op_lock:
                diagram = await self._create(initial_content, name)
                if activate or self._active_id is None:
                    await self._switch_locked(diagram.id)
                return diagram
        finally:
            self._creating = False

    async def switch_active(self, diagram_id: str) -> None:
        """Load a diagram into the editor surface.

        Queued behind any running session operation; switches apply in
        call order.

        Raises:
            DiagramNotFoundError: If the id was never part of the session
            RenderError: If the surface rejected the diagram content
        """
        async with self._op_lock:
            await self._switch_locked(diagram_id)

    async def delete_diagram(self, diagram_id: str) -> None:
        """Delete a diagram, activating the new first one if it was active.

        Raises:
            ValidationError: If it is the last diagram of the session
            DiagramNotFoundError: If the id is not part of the session
        """
        if diagram_id not in self._diagrams:
            raise DiagramNotFoundError(diagram_id)
        if len(self._order) == 1:
            raise ValidationError("diagram_id", "cannot delete the last diagram", diagram_id)

        async with self._op_lock:
            # Re-check: the collection may have changed while queued
            if diagram_id not in self._diagrams:
                raise DiagramNotFoundError(diagram_id)
            if len(self._order) == 1:
                raise ValidationError("diagram_id", "cannot delete the last diagram", diagram_id)

            if self._scheduler.is_dirty(diagram_id):
                try:
                    await self._scheduler.flush(diagram_id)
                except (PersistenceError, RenderError) as e:
                    self._log.for_diagram(diagram_id).warning(f"Flush before delete failed: {e}")

            self._scheduler.invalidate(diagram_id)
            was_active = diagram_id == self._active_id
            self._order.remove(diagram_id)
            del self._diagrams[diagram_id]
            self._deleted.add(diagram_id)
            if was_active:
                self._active_id = None

            try:
                if not await self._gateway.delete(diagram_id):
                    self._log.warning(f"Diagram {diagram_id} was already absent from the store")
            finally:
                if was_active:
                    await self._switch_locked(self._order[0])

        self._log.info(f"Deleted diagram {diagram_id}")

    async def rename_diagram(self, diagram_id: str, new_name: str) -> Diagram:
        """Rename a diagram and persist the new name.

        Raises:
            ValidationError: If the name is blank or unchanged
        """
        diagram = self.get(diagram_id)
        stripped = (new_name or "").strip()
        if not stripped:
            raise ValidationError("name", "name must not be empty", new_name)
        if stripped == diagram.name:
            raise ValidationError("name", "name is unchanged", new_name)

        # Serialized with autosaves of the same diagram
        async with self._scheduler.exclusive(diagram_id):
            updated = await self._gateway.update(diagram_id, name=stripped)
        if updated is None:
            raise PersistenceError("rename", ErrorClass.PERMANENT, diagram_id=diagram_id)

        current = self._diagrams.get(diagram_id)
        if current is not None:
            current.name = stripped
            current.updated_at = updated.updated_at
        return self._diagrams.get(diagram_id, updated)

    def reorder_diagrams(self, from_id: str, to_id: str) -> None:
        """Move ``from_id`` into the position held by ``to_id``.

        Order is session-local; nothing is persisted.
        """
        if from_id not in self._diagrams:
            raise DiagramNotFoundError(from_id)
        if to_id not in self._diagrams:
            raise DiagramNotFoundError(to_id)
        if from_id == to_id:
            return
        target = self._order.index(to_id)
        self._order.remove(from_id)
        self._order.insert(target, from_id)

    # Advisory pass-through

    async def apply_generation_result(self, result: GenerationResult) -> Diagram:
        """Load generated content into the active diagram and schedule its save."""
        async with self._op_lock:
            if self._active_id is None:
                raise ValidationError("active_id", "no active diagram")
            await self._adapter.import_content(result.diagram_content)
            self._adapter.fit_to_viewport()
            self._scheduler.schedule(self._active_id)
            return self._diagrams[self._active_id]

    def focus_suggestion(self, suggestion: Suggestion) -> bool:
        """Select the element a suggestion points at. False if it does not exist."""
        if not suggestion.target_element_id:
            return False
        if self._adapter.lookup_element(suggestion.target_element_id) is None:
            return False
        self._adapter.set_selection([suggestion.target_element_id])
        return True

    # Exclusive access for multi-step visits (export)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[SessionLease]:
        """Hold the operation lock across several switches and snapshots."""
        async with self._op_lock:
            yield SessionLease(self)

    # Internals

    def _next_sheet_name(self) -> str:
        used = set()
        for diagram in self._diagrams.values():
            match = _SHEET_NAME.match(diagram.name)
            if match:
                used.add(int(match.group(1)))
        n = 1
        while n in used:
            n += 1
        return f"{DEFAULT_SHEET_PREFIX} {n}"

    async def _create(self, initial_content: str | None, name: str | None) -> Diagram:
        diagram = await self._gateway.save(
            DiagramInput(
                id=new_diagram_id(),
                name=name.strip() if name else self._next_sheet_name(),
                xml_content=initial_content or DEFAULT_DIAGRAM_XML,
            )
        )
        self._diagrams[diagram.id] = diagram
        self._order.append(diagram.id)
        self._log.info(f"Created diagram {diagram.id} ({diagram.name})")
        return diagram

    async def _activate_first_loadable(self) -> None:
        for diagram_id in list(self._order):
            try:
                await self._switch_locked(diagram_id)
                return
            except RenderError as e:
                self._log.for_diagram(diagram_id).warning(f"Skipping unloadable diagram: {e}")

        diagram = await self._create(None, None)
        await self._switch_locked(diagram.id)

    async def _flush_before_leaving(self, diagram_id: str) -> None:
        try:
            await self._scheduler.flush(diagram_id)
        except (PersistenceError, RenderError) as e:
            # Snapshot stays pending in the scheduler and is retried later
            self._log.for_diagram(diagram_id).warning(f"Save before switch failed: {e}")

    async def _load_content(self, diagram_id: str) -> str:
        pending = self._scheduler.pending_content(diagram_id)
        if pending is not None:
            return pending

        diagram = self._diagrams[diagram_id]
        if diagram.xml_content:
            return diagram.xml_content

        stored = await self._gateway.get(diagram_id)
        if stored is None:
            raise DiagramNotFoundError(diagram_id)
        self._diagrams[diagram_id] = stored
        return stored.xml_content or DEFAULT_DIAGRAM_XML

    async def _switch_locked(self, diagram_id: str) -> None:
        if diagram_id == self._active_id:
            return
        if diagram_id not in self._diagrams:
            if diagram_id in self._deleted:
                # Superseded: deleted while this switch was queued
                self._log.debug(f"Discarded switch to deleted diagram {diagram_id}")
                return
            raise DiagramNotFoundError(diagram_id)

        previous = self._active_id
        if previous is not None:
            await self._flush_before_leaving(previous)

        content = await self._load_content(diagram_id)
        if previous is not None and self._scheduler.has_live_edits(previous):
            # Edits made while the target was loading
            await self._flush_before_leaving(previous)
        await self._adapter.import_content(content)
        self._active_id = diagram_id
        self._adapter.fit_to_viewport()
        self._log.debug(f"Active diagram: {diagram_id}")

    def _handle_saved(self, diagram: Diagram) -> None:
        if diagram.id in self._diagrams:
            self._diagrams[diagram.id] = diagram


class SessionLease:
    """Session access while holding the operation lock."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    @property
    def active_id(self) -> str | None:
        return self._store.active_id

    @property
    def ordered_ids(self) -> tuple[str, ...]:
        return self._store.ordered_ids

    def get(self, diagram_id: str) -> Diagram:
        return self._store.get(diagram_id)

    async def switch_active(self, diagram_id: str) -> None:
        await self._store._switch_locked(diagram_id)

    def current_zoom(self) -> float:
        return self._store._adapter.current_zoom()

    async def vector_snapshot(self) -> str:
        return await self._store._adapter.export_vector_snapshot()
