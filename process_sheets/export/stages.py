"""
Export stages: snapshot -> rasterize -> layout -> page -> document.

Each stage is a plain function from its input to its output. The
pipeline runner wraps them and turns failures into RenderError.
"""

from __future__ import annotations

import base64
import io
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..exceptions import RenderError
from .geometry import PX_TO_PT, PageGeometry, Placement, fit_to_page

# Rasterizer: (svg markup, scale) -> PNG bytes
Rasterizer = Callable[[str, float], bytes]

DEFAULT_SVG_SIZE = (800.0, 600.0)
THUMBNAIL_MAX_SIZE = 200

_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")


@dataclass(frozen=True)
class HeaderStyle:
    font: str = "Helvetica-Bold"
    font_size: float = 14.0
    title_font: str = "Helvetica"
    title_size: float = 10.0
    gap: float = 12.0

    def height(self, with_title: bool) -> float:
        extra = self.title_size + 4.0 if with_title else 0.0
        return self.font_size + self.gap + extra


@dataclass(frozen=True)
class Snapshot:
    diagram_id: str
    name: str
    svg: str
    zoom: float


@dataclass(frozen=True)
class RasterImage:
    diagram_id: str
    name: str
    png: bytes
    pixel_width: int
    pixel_height: int
    scale: float

    @property
    def natural_size(self) -> tuple[float, float]:
        """Print size in points, independent of the raster scale."""
        return (
            self.pixel_width / self.scale * PX_TO_PT,
            self.pixel_height / self.scale * PX_TO_PT,
        )


@dataclass(frozen=True)
class PageSpec:
    diagram_id: str
    heading: str
    title: str | None
    image: RasterImage
    placement: Placement


@dataclass
class PageResult:
    diagram_id: str
    status: Literal["ok", "failed"]
    page_image: bytes | None = None
    error: str | None = None


@dataclass
class ExportJob:
    """One export invocation. Never persisted."""

    diagram_ids: list[str]
    page_geometry: PageGeometry
    results: list[PageResult] = field(default_factory=list)


def _parse_length(value: str | None) -> float | None:
    if not value:
        return None
    match = _LENGTH.match(value)
    return float(match.group(1)) if match else None


def svg_dimensions(svg: str) -> tuple[float, float]:
    """Intrinsic size of an SVG document in CSS pixels.

    Uses width/height when absolute, otherwise the viewBox, otherwise
    the 800x600 default.
    """
    try:
        root = ET.fromstring(svg.strip().encode("utf-8"))
    except ET.ParseError as e:
        raise RenderError("rasterize", f"malformed SVG: {e}") from e

    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))
    if width and height:
        return width, height

    view_box = root.get("viewBox")
    if view_box:
        parts = view_box.replace(",", " ").split()
        if len(parts) == 4:
            try:
                vb_w, vb_h = float(parts[2]), float(parts[3])
            except ValueError:
                vb_w = vb_h = 0.0
            if vb_w > 0 and vb_h > 0:
                return vb_w, vb_h
    return DEFAULT_SVG_SIZE


def cairo_rasterizer(svg: str, scale: float) -> bytes:
    """Render SVG to PNG with CairoSVG."""
    # Imported lazily: cairosvg loads the native cairo library at import time
    import cairosvg

    width, height = svg_dimensions(svg)
    return cairosvg.svg2png(
        bytestring=svg.encode("utf-8"),
        output_width=max(1, round(width * scale)),
        output_height=max(1, round(height * scale)),
        background_color="white",
    )


def _flatten_png(png: bytes) -> tuple[bytes, int, int]:
    """Composite onto opaque white and re-encode; returns (png, width, height)."""
    with Image.open(io.BytesIO(png)) as image:
        image.load()
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        background.alpha_composite(rgba)
        out = io.BytesIO()
        background.convert("RGB").save(out, format="PNG")
        return out.getvalue(), rgba.width, rgba.height


def rasterize(snapshot: Snapshot, rasterizer: Rasterizer) -> RasterImage:
    scale = snapshot.zoom if snapshot.zoom > 0 else 1.0
    png, width, height = _flatten_png(rasterizer(snapshot.svg, scale))
    return RasterImage(
        diagram_id=snapshot.diagram_id,
        name=snapshot.name,
        png=png,
        pixel_width=width,
        pixel_height=height,
        scale=scale,
    )


def layout(
    image: RasterImage,
    geometry: PageGeometry,
    header: HeaderStyle,
    title: str | None = None,
) -> Placement:
    width, height = image.natural_size
    return fit_to_page(width, height, geometry, header.height(bool(title)))


def compose_page(image: RasterImage, placement: Placement, title: str | None = None) -> PageSpec:
    return PageSpec(
        diagram_id=image.diagram_id,
        heading=image.name,
        title=title,
        image=image,
        placement=placement,
    )


def assemble_document(
    pages: list[PageSpec],
    geometry: PageGeometry,
    header: HeaderStyle,
    title: str | None = None,
) -> bytes:
    """Draw every page, header above image, into one PDF."""
    if not pages:
        raise RenderError("document", "no pages to assemble")

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=(geometry.width, geometry.height))
    c.setTitle(title or pages[0].heading)

    for page in pages:
        top = geometry.height - geometry.margin
        if page.title:
            c.setFont(header.title_font, header.title_size)
            c.setFillGray(0.4)
            c.drawString(geometry.margin, top - header.title_size, page.title)
            top -= header.title_size + 4.0
        c.setFillGray(0.0)
        c.setFont(header.font, header.font_size)
        c.drawString(geometry.margin, top - header.font_size, page.heading)

        p = page.placement
        c.drawImage(
            ImageReader(io.BytesIO(page.image.png)),
            p.x,
            p.y,
            width=p.width,
            height=p.height,
        )
        c.showPage()

    c.save()
    return buf.getvalue()


def render_png(svg: str, rasterizer: Rasterizer, scale: float = 1.0) -> bytes:
    png, _, _ = _flatten_png(rasterizer(svg, scale))
    return png


def render_thumbnail(svg: str, rasterizer: Rasterizer, max_size: int = THUMBNAIL_MAX_SIZE) -> str:
    """PNG data URL no larger than max_size on its longest side."""
    png = render_png(svg, rasterizer)
    with Image.open(io.BytesIO(png)) as image:
        image.load()
        # thumbnail() only ever shrinks
        image.thumbnail((max_size, max_size))
        out = io.BytesIO()
        image.save(out, format="PNG")
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode("ascii")


def make_thumbnailer(rasterizer: Rasterizer = cairo_rasterizer) -> Callable[[str], str | None]:
    """Adapt render_thumbnail for the autosave scheduler."""

    def thumbnailer(svg: str) -> str | None:
        try:
            return render_thumbnail(svg, rasterizer)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError("thumbnail", str(e)) from e

    return thumbnailer
