"""
Export pipeline.

Drives the session to visit diagrams one after another and turns each
into a PDF page. Batch export holds the session's operation lock for the
whole visit, so no user switch can interleave, and always puts the
originally active diagram back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from ..clock import AsyncioClock, Clock
from ..exceptions import (
    DiagramNotFoundError,
    ExportError,
    PersistenceError,
    ProcessSheetsError,
    RenderError,
)
from .geometry import PageGeometry
from .stages import (
    ExportJob,
    HeaderStyle,
    PageResult,
    PageSpec,
    Rasterizer,
    Snapshot,
    assemble_document,
    cairo_rasterizer,
    compose_page,
    layout,
    rasterize,
    render_png,
)
from .stages import render_thumbnail as _render_thumbnail

if TYPE_CHECKING:
    from ..session import SessionLease, SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExportConfig:
    """Export settings."""

    geometry: PageGeometry = field(default_factory=PageGeometry)
    settle_seconds: float = 0.3  # Lets the surface finish layout after a switch
    header: HeaderStyle = field(default_factory=HeaderStyle)


@dataclass
class ExportResult:
    """PDF bytes plus the per-diagram outcome of the export."""

    document: bytes
    results: list[PageResult] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return sum(1 for r in self.results if r.status == "ok")

    @property
    def failed(self) -> list[PageResult]:
        return [r for r in self.results if r.status == "failed"]


class ExportPipeline:
    """Exports diagrams of one session to PDF, SVG or PNG."""

    def __init__(
        self,
        session: SessionStore,
        clock: Clock | None = None,
        config: ExportConfig | None = None,
        rasterizer: Rasterizer | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            session: Session whose diagrams are exported
            clock: Time source for the settle interval (default: asyncio loop)
            config: Page geometry, settle interval and header style
            rasterizer: SVG -> PNG renderer (default: CairoSVG)
        """
        self._session = session
        self._clock = clock or AsyncioClock()
        self.config = config or ExportConfig()
        self._rasterizer = rasterizer or cairo_rasterizer

    # Public API

    async def export_single(self, title: str | None = None) -> ExportResult:
        """Export the active diagram as a one-page PDF.

        Raises:
            ExportError: If no diagram is active
            RenderError: If any stage failed
        """
        async with self._session.exclusive() as lease:
            diagram_id = lease.active_id
            if diagram_id is None:
                raise ExportError("no active diagram")
            page = await self._render_page(lease, diagram_id, title)

        document = self._run(
            "document",
            diagram_id,
            assemble_document,
            [page],
            self.config.geometry,
            self.config.header,
            title,
        )
        return ExportResult(
            document=document,
            results=[PageResult(diagram_id, "ok", page_image=page.image.png)],
        )

    async def export_batch(
        self,
        diagram_ids: list[str] | None = None,
        title: str | None = None,
    ) -> ExportResult:
        """Export several diagrams, one page each, in display order.

        Per-diagram failures are recorded in the result and the batch moves
        on; failed diagrams get no page.

        Args:
            diagram_ids: Diagrams to export (default: all). Exported in the
                session's display order whatever order they are given in.
            title: Optional document title printed above every header

        Raises:
            ExportError: If there was nothing to export or no page succeeded
        """
        async with self._session.exclusive() as lease:
            ordered = list(lease.ordered_ids)
            if diagram_ids is not None:
                wanted = set(diagram_ids)
                ordered = [i for i in ordered if i in wanted]
            if not ordered:
                raise ExportError("no diagrams to export")

            job = ExportJob(diagram_ids=ordered, page_geometry=self.config.geometry)
            pages: list[PageSpec] = []
            original = lease.active_id
            logger.info(f"Batch export of {len(ordered)} diagram(s) started")
            try:
                for diagram_id in ordered:
                    try:
                        await lease.switch_active(diagram_id)
                        await self._clock.sleep(self.config.settle_seconds)
                        page = await self._render_page(lease, diagram_id, title)
                    except (RenderError, PersistenceError, DiagramNotFoundError) as e:
                        logger.warning(f"Export of diagram {diagram_id} failed: {e}")
                        job.results.append(PageResult(diagram_id, "failed", error=str(e)))
                        continue
                    pages.append(page)
                    job.results.append(PageResult(diagram_id, "ok", page_image=page.image.png))
            finally:
                if original is not None:
                    await self._restore(lease, original)

        if not pages:
            raise ExportError("no page could be rendered", job.results)

        document = self._run(
            "document", None, assemble_document, pages, job.page_geometry, self.config.header, title
        )
        result = ExportResult(document=document, results=job.results)
        logger.info(
            f"Batch export finished: {result.page_count} page(s), {len(result.failed)} failed"
        )
        return result

    async def export_svg(self) -> str:
        """Vector snapshot of the active diagram."""
        async with self._session.exclusive() as lease:
            if lease.active_id is None:
                raise ExportError("no active diagram")
            return await lease.vector_snapshot()

    async def export_png(self) -> bytes:
        """The active diagram as a PNG at scale 1 on white."""
        svg = await self.export_svg()
        return self._run("rasterize", None, render_png, svg, self._rasterizer, 1.0)

    def render_thumbnail(self, svg: str) -> str:
        """PNG data URL of at most 200px on its longest side."""
        return self._run("thumbnail", None, _render_thumbnail, svg, self._rasterizer)

    # Stages

    async def _render_page(
        self, lease: SessionLease, diagram_id: str, title: str | None
    ) -> PageSpec:
        try:
            svg = await lease.vector_snapshot()
            zoom = lease.current_zoom()
        except RenderError:
            raise
        except Exception as e:
            raise RenderError("snapshot", str(e), diagram_id) from e

        snapshot = Snapshot(diagram_id, lease.get(diagram_id).name, svg, zoom)
        image = self._run("rasterize", diagram_id, rasterize, snapshot, self._rasterizer)
        placement = self._run(
            "layout", diagram_id, layout, image, self.config.geometry, self.config.header, title
        )
        return compose_page(image, placement, title)

    def _run(self, stage: str, diagram_id: str | None, fn: Callable[..., T], *args) -> T:
        try:
            return fn(*args)
        except RenderError as e:
            if e.diagram_id is None and diagram_id is not None:
                raise RenderError(e.stage, e.reason, diagram_id) from e
            raise
        except ProcessSheetsError:
            raise
        except Exception as e:
            raise RenderError(stage, str(e), diagram_id) from e

    async def _restore(self, lease: SessionLease, diagram_id: str) -> None:
        try:
            await lease.switch_active(diagram_id)
        except (RenderError, PersistenceError, DiagramNotFoundError) as e:
            logger.error(f"Could not restore active diagram {diagram_id} after export: {e}")
