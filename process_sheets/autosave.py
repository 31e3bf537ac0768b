"""
Debounced autosave for the active diagram.

Edit notifications from the editor surface restart a debounce timer;
when it fires (or flush() is called) the scheduler captures the surface's
snapshot and persists it through the gateway.

Guarantees:
- Notifications inside one debounce window produce a single save
- At most one save in flight per diagram; a flush during an in-flight
  save waits for it instead of writing concurrently
- Every diagram carries a generation counter. A save that completes
  after its diagram's generation moved on (deleted diagram) is discarded
- A snapshot whose save failed is kept and persisted on the next flush,
  even when the diagram is no longer loaded in the surface
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

from .adapter import DiagramEditorAdapter, Unsubscribe
from .clock import AsyncioClock, Clock, TimerHandle
from .exceptions import ConcurrencyError, ErrorClass, PersistenceError, RenderError
from .models import Diagram
from .storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

Thumbnailer = Callable[[str], str | None]


class SaveState(Enum):
    """Lifecycle of a SaveTask."""

    PENDING = "pending"  # Waiting for the debounce window to close
    IN_FLIGHT = "in_flight"  # Snapshot captured, persistence call running
    DONE = "done"
    STALE = "stale"  # Completed after its generation moved on; discarded
    FAILED = "failed"  # Persistence failed; snapshot kept for a retry


@dataclass
class SaveTask:
    diagram_id: str
    generation: int
    scheduled_at: float
    state: SaveState = SaveState.PENDING
    error: Exception | None = None


@dataclass
class AutosaveConfig:
    """Autosave settings."""

    debounce_seconds: float = 1.0
    thumbnails: bool = True


@dataclass(frozen=True)
class _Snapshot:
    xml_content: str
    svg_content: str
    thumbnail: str | None = None


class AutosaveScheduler:
    """Debounces edits and serializes saves per diagram."""

    def __init__(
        self,
        adapter: DiagramEditorAdapter,
        gateway: PersistenceGateway,
        clock: Clock | None = None,
        config: AutosaveConfig | None = None,
        thumbnailer: Thumbnailer | None = None,
        on_save_failed: Callable[[str, Exception], None] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            adapter: Editor surface to snapshot
            gateway: Persistence gateway receiving the updates
            clock: Timer source (default: the asyncio loop)
            config: Debounce settings
            thumbnailer: Optional SVG -> PNG data URL renderer
            on_save_failed: Called when a timer-driven save fails, so the
                host can alert the user
        """
        self._adapter = adapter
        self._gateway = gateway
        self._clock = clock or AsyncioClock()
        self.config = config or AutosaveConfig()
        self._thumbnailer = thumbnailer if self.config.thumbnails else None
        self.on_save_failed = on_save_failed

        self._active_id_provider: Callable[[], str | None] = lambda: None
        self._on_saved: Callable[[Diagram], None] | None = None

        self._dirty: dict[str, bool] = {}
        self._generations: dict[str, int] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._tasks: dict[str, SaveTask] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._snapshots: dict[str, _Snapshot] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._unsubscribe: Unsubscribe | None = None

    def bind(
        self,
        active_id_provider: Callable[[], str | None],
        on_saved: Callable[[Diagram], None] | None = None,
    ) -> None:
        """Connect the scheduler to the session that owns the active diagram."""
        self._active_id_provider = active_id_provider
        self._on_saved = on_saved

    def attach(self) -> None:
        """Subscribe to the editor surface's change notifications."""
        if self._unsubscribe is None:
            self._unsubscribe = self._adapter.on_changed(self._handle_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # State

    def generation(self, diagram_id: str) -> int:
        return self._generations.get(diagram_id, 0)

    def is_dirty(self, diagram_id: str) -> bool:
        return self._dirty.get(diagram_id, False) or diagram_id in self._snapshots

    def dirty_ids(self) -> list[str]:
        return [i for i in {*self._dirty, *self._snapshots} if self.is_dirty(i)]

    def task_for(self, diagram_id: str) -> SaveTask | None:
        return self._tasks.get(diagram_id)

    def has_live_edits(self, diagram_id: str) -> bool:
        """True when the surface holds edits not yet captured into a snapshot."""
        return self._dirty.get(diagram_id, False)

    def pending_content(self, diagram_id: str) -> str | None:
        """Captured XML not yet persisted, if a save of it failed."""
        snapshot = self._snapshots.get(diagram_id)
        return snapshot.xml_content if snapshot else None

    # Scheduling

    def _handle_change(self) -> None:
        diagram_id = self._active_id_provider()
        if diagram_id is None:
            logger.debug("Change notification with no active diagram - ignored")
            return
        self.schedule(diagram_id)

    def schedule(self, diagram_id: str) -> SaveTask:
        """Mark a diagram dirty and (re)start its debounce timer."""
        self._dirty[diagram_id] = True
        self.cancel(diagram_id)

        task = self._tasks.get(diagram_id)
        if task is None or task.state != SaveState.PENDING:
            task = SaveTask(
                diagram_id=diagram_id,
                generation=self.generation(diagram_id),
                scheduled_at=self._clock.now(),
            )
            self._tasks[diagram_id] = task
        else:
            task.scheduled_at = self._clock.now()

        self._timers[diagram_id] = self._clock.call_later(
            self.config.debounce_seconds, lambda: self._on_timer(diagram_id)
        )
        return task

    def cancel(self, diagram_id: str) -> None:
        """Drop a pending debounce timer. The diagram stays dirty."""
        timer = self._timers.pop(diagram_id, None)
        if timer is not None:
            timer.cancel()

    def invalidate(self, diagram_id: str) -> int:
        """Bump the generation so any in-flight save is discarded on completion.

        Also forgets pending work for the diagram. Returns the new generation.
        """
        self.cancel(diagram_id)
        self._generations[diagram_id] = self.generation(diagram_id) + 1
        self._dirty.pop(diagram_id, None)
        self._snapshots.pop(diagram_id, None)
        task = self._tasks.get(diagram_id)
        if task is not None and task.state == SaveState.PENDING:
            task.state = SaveState.STALE
        return self._generations[diagram_id]

    def _on_timer(self, diagram_id: str) -> None:
        self._timers.pop(diagram_id, None)
        task = asyncio.get_running_loop().create_task(self._timer_save(diagram_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _timer_save(self, diagram_id: str) -> None:
        try:
            await self._save(diagram_id)
        except ConcurrencyError as e:
            logger.debug(e.message)
        except (PersistenceError, RenderError) as e:
            logger.error(f"Autosave failed for diagram {diagram_id}: {e}")
            if self.on_save_failed is not None:
                self.on_save_failed(diagram_id, e)

    # Flushing

    async def flush(self, diagram_id: str) -> Diagram | None:
        """Persist a diagram's pending edits now.

        Returns the saved diagram, or None when there was nothing to save or
        the save went stale.

        Raises:
            PersistenceError: If the save failed; the diagram stays dirty
            RenderError: If the surface could not produce a snapshot
        """
        self.cancel(diagram_id)
        try:
            return await self._save(diagram_id)
        except ConcurrencyError as e:
            logger.debug(e.message)
            return None

    async def flush_all(self) -> list[str]:
        """Flush every dirty diagram. Returns the ids that failed to save."""
        failed: list[str] = []
        for diagram_id in self.dirty_ids():
            try:
                await self.flush(diagram_id)
            except (PersistenceError, RenderError) as e:
                logger.error(f"Final flush failed for diagram {diagram_id}: {e}")
                failed.append(diagram_id)
        return failed

    async def wait_idle(self) -> None:
        """Wait for timer-driven saves already started."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self.detach()
        for diagram_id in list(self._timers):
            self.cancel(diagram_id)
        await self.wait_idle()

    def _lock_for(self, diagram_id: str) -> asyncio.Lock:
        lock = self._locks.get(diagram_id)
        if lock is None:
            lock = self._locks[diagram_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def exclusive(self, diagram_id: str) -> AsyncIterator[None]:
        """Hold the diagram's save lock, so no autosave writes meanwhile."""
        async with self._lock_for(diagram_id):
            yield

    async def _capture(self, diagram_id: str) -> _Snapshot:
        xml_content = await self._adapter.export_xml_snapshot()
        svg_content = await self._adapter.export_vector_snapshot()
        thumbnail = None
        if self._thumbnailer is not None:
            try:
                thumbnail = self._thumbnailer(svg_content)
            except RenderError as e:
                logger.debug(f"Thumbnail skipped for diagram {diagram_id}: {e}")
        return _Snapshot(xml_content, svg_content, thumbnail)

    async def _save(self, diagram_id: str) -> Diagram | None:
        # Waiting on the lock is waiting for the in-flight save, if any
        async with self._lock_for(diagram_id):
            if not self.is_dirty(diagram_id):
                return None

            generation = self.generation(diagram_id)
            task = self._tasks.get(diagram_id)
            if task is None or task.state != SaveState.PENDING:
                task = SaveTask(diagram_id, generation, self._clock.now())
                self._tasks[diagram_id] = task

            if self._dirty.get(diagram_id) and self._active_id_provider() == diagram_id:
                snapshot = await self._capture(diagram_id)
                self._dirty[diagram_id] = False
                self._snapshots[diagram_id] = snapshot
            else:
                snapshot = self._snapshots.get(diagram_id)
                if snapshot is None:
                    # Dirty flag for a diagram the surface no longer holds
                    self._dirty[diagram_id] = False
                    task.state = SaveState.STALE
                    raise ConcurrencyError(diagram_id, "diagram is no longer loaded")

            task.generation = generation
            task.state = SaveState.IN_FLIGHT
            fields: dict[str, str | None] = {
                "xml_content": snapshot.xml_content,
                "svg_content": snapshot.svg_content,
            }
            if self._thumbnailer is not None:
                fields["thumbnail"] = snapshot.thumbnail

            try:
                diagram = await self._gateway.update(diagram_id, **fields)
            except PersistenceError as e:
                if generation != self.generation(diagram_id):
                    task.state = SaveState.STALE
                    raise ConcurrencyError(diagram_id, "diagram deleted during save") from e
                task.state = SaveState.FAILED
                task.error = e
                raise

            if generation != self.generation(diagram_id):
                task.state = SaveState.STALE
                raise ConcurrencyError(diagram_id, "diagram deleted during save")

            if diagram is None:
                task.state = SaveState.FAILED
                error = PersistenceError("update", ErrorClass.PERMANENT, diagram_id=diagram_id)
                task.error = error
                logger.error(f"Autosave target {diagram_id} does not exist in the active store")
                raise error

            task.state = SaveState.DONE
            if self._snapshots.get(diagram_id) is snapshot:
                del self._snapshots[diagram_id]
            logger.debug(f"Saved diagram {diagram_id} (generation {generation})")
            if self._on_saved is not None:
                self._on_saved(diagram)
            return diagram
