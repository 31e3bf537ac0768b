"""
Shared test configuration and fixtures.

Provides fakes for the collaborators of the session core:
- ManualClock: timers and sleeps driven explicitly by the test
- RecordingStorage: in-memory primary store that counts calls and can be
  told to fail
- stub_rasterizer: Pillow-based SVG "rasterizer" that paints a blank image
  of the SVG's intrinsic size, so tests need no native cairo library
"""

from __future__ import annotations

import asyncio
import io
import tempfile
from collections import Counter
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from process_sheets.adapter import InMemoryEditorAdapter
from process_sheets.autosave import AutosaveConfig
from process_sheets.clock import Clock
from process_sheets.export.stages import svg_dimensions
from process_sheets.models import sort_freshest_first, utc_now
from process_sheets.session import SessionStore
from process_sheets.storage import (
    DiagramStorage,
    LocalDiagramStorage,
    PersistenceGateway,
    RetryConfig,
    StorageConfig,
)


def make_diagram_xml(*labels: str) -> str:
    """BPMN document with one task per label, laid out left to right."""
    tasks = "".join(f'<bpmn:task id="Task_{i}" name="{label}"/>' for i, label in enumerate(labels))
    shapes = "".join(
        f'<bpmndi:BPMNShape id="Task_{i}_di" bpmnElement="Task_{i}">'
        f'<dc:Bounds x="{100 + 150 * i}" y="100" width="100" height="80"/>'
        "</bpmndi:BPMNShape>"
        for i in range(len(labels))
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<bpmn:definitions xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL" '
        'xmlns:bpmndi="http://www.omg.org/spec/BPMN/20100524/DI" '
        'xmlns:dc="http://www.omg.org/spec/DD/20100524/DC" id="Definitions_1">'
        f'<bpmn:process id="Process_1">{tasks}</bpmn:process>'
        '<bpmndi:BPMNDiagram id="BPMNDiagram_1">'
        f'<bpmndi:BPMNPlane id="BPMNPlane_1" bpmnElement="Process_1">{shapes}</bpmndi:BPMNPlane>'
        "</bpmndi:BPMNDiagram>"
        "</bpmn:definitions>"
    )


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualClock(Clock):
    """Clock whose time only moves when the test says so."""

    def __init__(self) -> None:
        self._now = 0.0
        self._timers: list[ManualTimer] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + delay, callback)
        self._timers.append(timer)
        return timer

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.advance(delay)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in due order."""
        self._now += seconds
        due = sorted(
            (t for t in self._timers if t.due <= self._now and not t.cancelled()),
            key=lambda t: t.due,
        )
        self._timers = [t for t in self._timers if t not in due and not t.cancelled()]
        for timer in due:
            timer.callback()

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled())


class RecordingStorage(DiagramStorage):
    """In-memory store that records calls and fails on demand."""

    name = "recording"

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.calls: Counter[str] = Counter()
        self.updates: list[tuple[str, dict[str, Any]]] = []
        # method -> errors raised by the next calls, in order
        self.fail_next: dict[str, list[Exception]] = {}
        # raised by every call, whatever the method
        self.fail_always: Exception | None = None
        # when set, update() waits on it before writing
        self.update_gate: asyncio.Event | None = None
        self.closed = False

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        if self.fail_always is not None:
            raise self.fail_always
        queued = self.fail_next.get(method)
        if queued:
            raise queued.pop(0)

    async def get(self, diagram_id: str) -> dict[str, Any] | None:
        self._enter("get")
        record = self.records.get(diagram_id)
        return dict(record) if record else None

    async def list(self) -> list[dict[str, Any]]:
        self._enter("list")
        return sort_freshest_first([dict(r) for r in self.records.values()])

    async def save(self, record: dict[str, Any]) -> dict[str, Any]:
        self._enter("save")
        self.records[record["id"]] = dict(record)
        return dict(record)

    async def update(self, diagram_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        self._enter("update")
        if self.update_gate is not None:
            await self.update_gate.wait()
        self.updates.append((diagram_id, dict(updates)))
        record = self.records.get(diagram_id)
        if record is None:
            return None
        record.update(updates)
        record["updated_at"] = utc_now().isoformat()
        return dict(record)

    async def delete(self, diagram_id: str) -> bool:
        self._enter("delete")
        return self.records.pop(diagram_id, None) is not None

    async def close(self) -> None:
        self.closed = True


def stub_rasterizer(svg: str, scale: float) -> bytes:
    """Paint a semi-transparent image of the SVG's size at the given scale."""
    width, height = svg_dimensions(svg)
    image = Image.new(
        "RGBA",
        (max(1, round(width * scale)), max(1, round(height * scale))),
        (40, 80, 160, 128),
    )
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


async def no_sleep(_: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage_config(temp_dir: Path) -> StorageConfig:
    return StorageConfig(user_id="test-user", local_path=str(temp_dir))


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def primary() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def fallback(storage_config: StorageConfig) -> LocalDiagramStorage:
    return LocalDiagramStorage(storage_config)


@pytest.fixture
def gateway(primary: RecordingStorage, fallback: LocalDiagramStorage) -> PersistenceGateway:
    return PersistenceGateway(
        primary,
        fallback,
        retry_config=RetryConfig(max_retries=2, backoff_base=0.01),
        sleep=no_sleep,
    )


@pytest.fixture
def adapter() -> InMemoryEditorAdapter:
    return InMemoryEditorAdapter()


@pytest.fixture
async def session(
    adapter: InMemoryEditorAdapter,
    gateway: PersistenceGateway,
    clock: ManualClock,
) -> AsyncIterator[SessionStore]:
    """An initialized session over the recording primary store."""
    store = SessionStore(
        adapter,
        gateway,
        clock=clock,
        autosave_config=AutosaveConfig(debounce_seconds=1.0, thumbnails=False),
    )
    await store.init()
    yield store
    await store.teardown()
