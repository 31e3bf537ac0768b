"""Tests for page geometry and the export stages."""

from __future__ import annotations

import base64
import io

import pytest
from conftest import stub_rasterizer
from PIL import Image

from process_sheets.exceptions import RenderError
from process_sheets.export import PX_TO_PT, HeaderStyle, PageGeometry, fit_to_page
from process_sheets.export.stages import (
    Snapshot,
    assemble_document,
    compose_page,
    layout,
    rasterize,
    render_thumbnail,
    svg_dimensions,
)


def _svg(width: str | None = None, height: str | None = None, view_box: str | None = None) -> str:
    attrs = ['xmlns="http://www.w3.org/2000/svg"']
    if width:
        attrs.append(f'width="{width}"')
    if height:
        attrs.append(f'height="{height}"')
    if view_box:
        attrs.append(f'viewBox="{view_box}"')
    return f"<svg {' '.join(attrs)}><rect width='10' height='10'/></svg>"


class TestPageGeometry:
    """Tests for PageGeometry."""

    def test_default_is_a4_portrait(self) -> None:
        geometry = PageGeometry()

        assert geometry.width == pytest.approx(595.28, abs=0.01)
        assert geometry.height == pytest.approx(841.89, abs=0.01)
        assert geometry.margin == 36.0
        assert geometry.content_width == pytest.approx(595.28 - 72, abs=0.01)

    def test_margin_must_leave_room(self) -> None:
        with pytest.raises(ValueError):
            PageGeometry(width=100, height=100, margin=50)


class TestFitToPage:
    """Tests for the fit-to-page transform."""

    def test_small_image_is_not_scaled_up(self) -> None:
        geometry = PageGeometry()

        placement = fit_to_page(100, 50, geometry)

        assert placement.scale == 1.0
        assert placement.width == 100
        assert placement.height == 50

    def test_small_image_is_centered(self) -> None:
        geometry = PageGeometry(width=400, height=300, margin=50)

        placement = fit_to_page(100, 100, geometry)

        assert placement.x == pytest.approx(150)
        assert placement.y == pytest.approx(100)

    def test_wide_image_fits_width(self) -> None:
        geometry = PageGeometry(width=400, height=300, margin=50)

        placement = fit_to_page(600, 100, geometry)

        assert placement.scale == pytest.approx(0.5)
        assert placement.width == pytest.approx(300)
        assert placement.x == pytest.approx(50)

    def test_tall_image_fits_below_header(self) -> None:
        geometry = PageGeometry(width=400, height=300, margin=50)

        placement = fit_to_page(100, 400, geometry, header_height=40)

        assert placement.height == pytest.approx(160)
        assert placement.y == pytest.approx(50)
        # Top of the image stays under the header band
        top = geometry.height - geometry.margin - 40
        assert placement.y + placement.height == pytest.approx(top)

    def test_rejects_empty_image(self) -> None:
        with pytest.raises(ValueError):
            fit_to_page(0, 10, PageGeometry())

    def test_rejects_header_taller_than_page(self) -> None:
        with pytest.raises(ValueError):
            fit_to_page(10, 10, PageGeometry(), header_height=1000)


class TestSvgDimensions:
    """Tests for svg_dimensions."""

    def test_width_and_height(self) -> None:
        assert svg_dimensions(_svg("300", "200px")) == (300.0, 200.0)

    def test_view_box_when_no_absolute_size(self) -> None:
        assert svg_dimensions(_svg("100%", "100%", "0 0 640 480")) == (640.0, 480.0)

    def test_default_when_nothing_is_known(self) -> None:
        assert svg_dimensions(_svg()) == (800.0, 600.0)

    def test_malformed_svg(self) -> None:
        with pytest.raises(RenderError) as exc_info:
            svg_dimensions("<svg")

        assert exc_info.value.stage == "rasterize"


class TestStages:
    """Tests for rasterize, layout and document assembly."""

    def test_rasterize_flattens_onto_white(self) -> None:
        snapshot = Snapshot("d-1", "Sheet 1", _svg("40", "20"), zoom=2.0)

        image = rasterize(snapshot, stub_rasterizer)

        assert (image.pixel_width, image.pixel_height) == (80, 40)
        with Image.open(io.BytesIO(image.png)) as png:
            assert png.mode == "RGB"
        assert image.natural_size == pytest.approx((40 * PX_TO_PT, 20 * PX_TO_PT))

    def test_layout_uses_natural_size(self) -> None:
        image = rasterize(Snapshot("d-1", "Sheet 1", _svg("400", "200"), 0.5), stub_rasterizer)

        placement = layout(image, PageGeometry(), HeaderStyle())

        assert placement.scale == 1.0
        assert placement.width == pytest.approx(400 * PX_TO_PT)

    def test_assemble_document(self) -> None:
        geometry = PageGeometry()
        header = HeaderStyle()
        pages = []
        for i in range(3):
            image = rasterize(
                Snapshot(f"d-{i}", f"Sheet {i}", _svg("300", "200"), 1.0), stub_rasterizer
            )
            pages.append(compose_page(image, layout(image, geometry, header, "Report"), "Report"))

        document = assemble_document(pages, geometry, header, "Report")

        assert document.startswith(b"%PDF")
        assert document.count(b"/Type /Page") - document.count(b"/Type /Pages") == 3

    def test_assemble_without_pages_fails(self) -> None:
        with pytest.raises(RenderError):
            assemble_document([], PageGeometry(), HeaderStyle())

    def test_thumbnail_is_scaled_down(self) -> None:
        data_url = render_thumbnail(_svg("1000", "500"), stub_rasterizer)

        assert data_url.startswith("data:image/png;base64,")
        raw = base64.b64decode(data_url.split(",", 1)[1])
        with Image.open(io.BytesIO(raw)) as thumb:
            assert thumb.size == (200, 100)

    def test_thumbnail_is_never_scaled_up(self) -> None:
        data_url = render_thumbnail(_svg("50", "30"), stub_rasterizer)

        raw = base64.b64decode(data_url.split(",", 1)[1])
        with Image.open(io.BytesIO(raw)) as thumb:
            assert thumb.size == (50, 30)
