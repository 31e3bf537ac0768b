"""
Diagram editor adapter contract.

The vector-diagram editing surface is an external collaborator. The
session core consumes exactly the capabilities declared by
DiagramEditorAdapter and never reaches into the surface's internals.

InMemoryEditorAdapter is a headless implementation over BPMN XML, used
by tooling that runs without an interactive editor and by the tests.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from html import escape

from .exceptions import RenderError

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]
Unsubscribe = Callable[[], None]

ZOOM_STEP = 1.2


@dataclass(frozen=True)
class DiagramElement:
    """An element of the loaded diagram, as reported by lookup_element."""

    id: str
    type: str
    name: str | None = None


class DiagramEditorAdapter(ABC):
    """Capabilities the session core needs from an editing surface.

    The surface holds exactly one loaded diagram at a time.
    """

    @abstractmethod
    async def import_content(self, content: str) -> None:
        """Replace the loaded diagram.

        Raises:
            RenderError: If the content cannot be imported
        """
        ...

    @abstractmethod
    async def export_xml_snapshot(self) -> str:
        """Serialize the loaded diagram."""
        ...

    @abstractmethod
    async def export_vector_snapshot(self) -> str:
        """Render the loaded diagram as SVG markup."""
        ...

    @abstractmethod
    def current_zoom(self) -> float: ...

    @abstractmethod
    def set_zoom(self, value: float) -> None: ...

    @abstractmethod
    def fit_to_viewport(self) -> None: ...

    @abstractmethod
    def get_selection(self) -> list[str]: ...

    @abstractmethod
    def set_selection(self, element_ids: list[str]) -> None: ...

    @abstractmethod
    def lookup_element(self, element_id: str) -> DiagramElement | None: ...

    @abstractmethod
    def on_changed(self, callback: ChangeListener) -> Unsubscribe:
        """Subscribe to edit notifications. Returns an unsubscribe callable."""
        ...

    @abstractmethod
    def destroy(self) -> None:
        """Tear down the surface and drop all listeners."""
        ...


def zoom_in(adapter: DiagramEditorAdapter) -> float:
    adapter.set_zoom(adapter.current_zoom() * ZOOM_STEP)
    return adapter.current_zoom()


def zoom_out(adapter: DiagramEditorAdapter) -> float:
    adapter.set_zoom(adapter.current_zoom() / ZOOM_STEP)
    return adapter.current_zoom()


def reset_zoom(adapter: DiagramEditorAdapter) -> float:
    adapter.set_zoom(1.0)
    return adapter.current_zoom()


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


@dataclass
class _Shape:
    element_id: str
    x: float
    y: float
    width: float
    height: float
    label: str | None


class InMemoryEditorAdapter(DiagramEditorAdapter):
    """Headless editing surface over BPMN 2.0 XML.

    Edits are applied with apply_edit(), which notifies change listeners
    the way an interactive editor's command stack would.
    """

    def __init__(self, viewport_width: float = 1200.0, viewport_height: float = 800.0) -> None:
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height

        self._xml: str | None = None
        self._root: ET.Element | None = None
        self._zoom = 1.0
        self._selection: list[str] = []
        self._listeners: list[ChangeListener] = []
        self._destroyed = False

    @property
    def loaded_content(self) -> str | None:
        return self._xml

    def _parse(self, content: str, stage: str) -> ET.Element:
        if not content or not content.strip():
            raise RenderError(stage, "empty diagram content")
        try:
            return ET.fromstring(content.strip().encode("utf-8"))
        except ET.ParseError as e:
            raise RenderError(stage, f"malformed diagram XML: {e}") from e

    def _ensure_alive(self, stage: str) -> None:
        if self._destroyed:
            raise RenderError(stage, "editor surface was destroyed")

    async def import_content(self, content: str) -> None:
        self._ensure_alive("import")
        root = self._parse(content, "import")
        self._root = root
        self._xml = content
        self._selection = []

    def apply_edit(self, content: str) -> None:
        """Replace the loaded diagram as a user edit and notify listeners."""
        self._ensure_alive("edit")
        self._root = self._parse(content, "edit")
        self._xml = content
        self._selection = [i for i in self._selection if self.lookup_element(i)]
        for listener in list(self._listeners):
            listener()

    async def export_xml_snapshot(self) -> str:
        self._ensure_alive("snapshot")
        if self._xml is None:
            raise RenderError("snapshot", "no diagram loaded")
        return self._xml

    async def export_vector_snapshot(self) -> str:
        self._ensure_alive("snapshot")
        if self._root is None:
            raise RenderError("snapshot", "no diagram loaded")
        return self._render_svg()

    def current_zoom(self) -> float:
        return self._zoom

    def set_zoom(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"zoom must be positive, got {value}")
        self._zoom = value

    def fit_to_viewport(self) -> None:
        min_x, min_y, width, height = self._content_box()
        if width <= 0 or height <= 0:
            self._zoom = 1.0
            return
        # Shrinks content larger than the viewport, never magnifies
        self._zoom = min(1.0, self.viewport_width / width, self.viewport_height / height)

    def get_selection(self) -> list[str]:
        return list(self._selection)

    def set_selection(self, element_ids: list[str]) -> None:
        self._selection = [i for i in element_ids if self.lookup_element(i) is not None]

    def lookup_element(self, element_id: str) -> DiagramElement | None:
        if self._root is None:
            return None
        for element in self._root.iter():
            if element.get("id") == element_id:
                return DiagramElement(
                    id=element_id,
                    type=_local_name(element.tag),
                    name=element.get("name"),
                )
        return None

    def on_changed(self, callback: ChangeListener) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def destroy(self) -> None:
        self._listeners.clear()
        self._selection = []
        self._root = None
        self._xml = None
        self._destroyed = True

    # Rendering

    def _shapes(self) -> list[_Shape]:
        if self._root is None:
            return []
        names = {
            el.get("id"): el.get("name") for el in self._root.iter() if el.get("id") is not None
        }
        shapes: list[_Shape] = []
        for el in self._root.iter():
            if _local_name(el.tag) != "BPMNShape":
                continue
            bounds = next((c for c in el if _local_name(c.tag) == "Bounds"), None)
            if bounds is None:
                continue
            ref = el.get("bpmnElement") or el.get("id") or ""
            shapes.append(
                _Shape(
                    element_id=ref,
                    x=float(bounds.get("x", 0)),
                    y=float(bounds.get("y", 0)),
                    width=float(bounds.get("width", 0)),
                    height=float(bounds.get("height", 0)),
                    label=names.get(ref),
                )
            )
        return shapes

    def _edges(self) -> list[list[tuple[float, float]]]:
        if self._root is None:
            return []
        edges = []
        for el in self._root.iter():
            if _local_name(el.tag) != "BPMNEdge":
                continue
            points = [
                (float(c.get("x", 0)), float(c.get("y", 0)))
                for c in el
                if _local_name(c.tag) == "waypoint"
            ]
            if len(points) >= 2:
                edges.append(points)
        return edges

    def _content_box(self) -> tuple[float, float, float, float]:
        xs: list[float] = []
        ys: list[float] = []
        for shape in self._shapes():
            xs += [shape.x, shape.x + shape.width]
            ys += [shape.y, shape.y + shape.height]
        for points in self._edges():
            xs += [p[0] for p in points]
            ys += [p[1] for p in points]
        if not xs:
            return 0.0, 0.0, 0.0, 0.0
        return min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys)

    def _render_svg(self, padding: float = 6.0) -> str:
        min_x, min_y, width, height = self._content_box()
        vb_x, vb_y = min_x - padding, min_y - padding
        vb_w, vb_h = max(width, 1.0) + 2 * padding, max(height, 1.0) + 2 * padding

        parts = [
            '<svg xmlns="http://www.w3.org/2000/svg" '
            f'width="{vb_w:g}" height="{vb_h:g}" '
            f'viewBox="{vb_x:g} {vb_y:g} {vb_w:g} {vb_h:g}">'
        ]
        for points in self._edges():
            coords = " ".join(f"{x:g},{y:g}" for x, y in points)
            parts.append(
                f'<polyline points="{coords}" fill="none" stroke="black" stroke-width="1.5"/>'
            )
        for shape in self._shapes():
            parts.append(
                f'<rect x="{shape.x:g}" y="{shape.y:g}" width="{shape.width:g}" '
                f'height="{shape.height:g}" rx="4" fill="white" stroke="black" stroke-width="2"/>'
            )
            if shape.label:
                cx = shape.x + shape.width / 2
                cy = shape.y + shape.height / 2
                parts.append(
                    f'<text x="{cx:g}" y="{cy:g}" font-size="12" text-anchor="middle">'
                    f"{escape(shape.label)}</text>"
                )
        parts.append("</svg>")
        return "".join(parts)
