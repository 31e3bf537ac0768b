"""
Page geometry and the fit-to-page transform.

All lengths are PDF points (1/72 inch). ReportLab places the origin at
the bottom-left corner of the page.
"""

from __future__ import annotations

from dataclasses import dataclass

from reportlab.lib.pagesizes import A4

# CSS pixels (96 dpi) to points (72 dpi)
PX_TO_PT = 72.0 / 96.0


@dataclass(frozen=True)
class PageGeometry:
    """Fixed page dimensions and uniform margin, in points."""

    width: float = A4[0]
    height: float = A4[1]
    margin: float = 36.0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"page size must be positive, got {self.width}x{self.height}")
        if self.margin < 0 or 2 * self.margin >= min(self.width, self.height):
            raise ValueError(f"margin {self.margin} leaves no printable area")

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def content_height(self) -> float:
        return self.height - 2 * self.margin


@dataclass(frozen=True)
class Placement:
    """Where an image lands on the page."""

    x: float
    y: float
    width: float
    height: float
    scale: float


def fit_to_page(
    width: float,
    height: float,
    geometry: PageGeometry,
    header_height: float = 0.0,
) -> Placement:
    """Scale an image down (never up) to the printable area below the header.

    The image is centered in the area left between the margins once the
    header band is taken off the top.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"image size must be positive, got {width}x{height}")

    avail_w = geometry.content_width
    avail_h = geometry.content_height - header_height
    if avail_h <= 0:
        raise ValueError(f"header of {header_height}pt leaves no room for the image")

    scale = min(1.0, avail_w / width, avail_h / height)
    scaled_w = width * scale
    scaled_h = height * scale
    return Placement(
        x=geometry.margin + (avail_w - scaled_w) / 2,
        y=geometry.margin + (avail_h - scaled_h) / 2,
        width=scaled_w,
        height=scaled_h,
        scale=scale,
    )
