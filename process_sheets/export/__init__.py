"""
Diagram export.

Turns diagrams of a session into a paginated PDF (one page per diagram,
name header above a fit-to-page image), or into SVG/PNG for the active
diagram.

Example:
    >>> from process_sheets.export import ExportPipeline
    >>> pipeline = ExportPipeline(session)
    >>> result = await pipeline.export_batch(title="Order to Cash")
    >>> Path("process.pdf").write_bytes(result.document)
"""

from .geometry import PX_TO_PT, PageGeometry, Placement, fit_to_page
from .pipeline import ExportConfig, ExportPipeline, ExportResult
from .stages import (
    ExportJob,
    HeaderStyle,
    PageResult,
    Rasterizer,
    cairo_rasterizer,
    make_thumbnailer,
    svg_dimensions,
)

__all__ = [
    "ExportPipeline",
    "ExportConfig",
    "ExportResult",
    "ExportJob",
    "PageResult",
    "HeaderStyle",
    # Geometry
    "PageGeometry",
    "Placement",
    "fit_to_page",
    "PX_TO_PT",
    # Rendering
    "Rasterizer",
    "cairo_rasterizer",
    "make_thumbnailer",
    "svg_dimensions",
]
