"""Tests for WorkbookPackage: sheet parts, layout metadata and drawing anchors."""

from __future__ import annotations

import io
import pathlib
import zipfile

import pytest

from ingestkit_workbook.errors import CorruptWorkbookError, UnsupportedFormatError
from ingestkit_workbook.package import (
    WorkbookPackage,
    merge_bounds,
    rels_part_for,
    resolve_target,
)


def _open(path: pathlib.Path) -> WorkbookPackage:
    return WorkbookPackage(io.BytesIO(path.read_bytes()))


def _zip(parts: dict[str, str]) -> io.BytesIO:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in parts.items():
            zf.writestr(name, text)
    buf.seek(0)
    return buf


_ROOT_RELS = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '<Relationship Id="rId1" '
    'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" '
    'Target="{target}"/></Relationships>'
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestPathHelpers:
    def test_resolve_relative_target(self) -> None:
        assert (
            resolve_target("xl/worksheets/sheet1.xml", "../drawings/drawing1.xml")
            == "xl/drawings/drawing1.xml"
        )

    def test_resolve_absolute_target(self) -> None:
        assert resolve_target("xl/drawings/drawing1.xml", "/xl/media/image1.png") == "xl/media/image1.png"

    def test_rels_part_for(self) -> None:
        assert rels_part_for("xl/workbook.xml") == "xl/_rels/workbook.xml.rels"
        assert rels_part_for("") == "_rels/.rels"

    def test_merge_bounds(self) -> None:
        assert merge_bounds("A7:C8") == (6, 0, 7, 2)
        assert merge_bounds("E1:E3") == (0, 4, 2, 4)

    def test_merge_bounds_invalid(self) -> None:
        assert merge_bounds("not a range") is None
        assert merge_bounds("A:C") is None


# ---------------------------------------------------------------------------
# Workbook structure
# ---------------------------------------------------------------------------


class TestSheetParts:
    def test_order_and_visibility(self, multi_sheet_xlsx: pathlib.Path) -> None:
        with _open(multi_sheet_xlsx) as package:
            assert [s.name for s in package.sheets] == ["First", "Hidden", "Empty"]
            assert [s.position for s in package.sheets] == [0, 1, 2]
            assert [s.hidden for s in package.sheets] == [False, True, False]
            assert all(package.has_part(s.path) for s in package.sheets)

    def test_default_font(self, simple_xlsx: pathlib.Path) -> None:
        with _open(simple_xlsx) as package:
            assert package.default_font() == ("Calibri", 11.0)


class TestLayout:
    def test_styled_layout(self, styled_xlsx: pathlib.Path) -> None:
        with _open(styled_xlsx) as package:
            layout = package.read_layout(package.sheets[0])

        assert set(layout.merge_refs) == {"A7:C8", "E1:E3", "B8:D9"}
        assert layout.frozen
        assert (layout.freeze_x_split, layout.freeze_y_split) == (1, 1)
        assert layout.tab_color == "#FF0000"
        assert layout.row_heights[3] == (30.0, False)
        assert layout.row_heights[6][1] is True

        spans = {span.min: span for span in layout.columns}
        assert spans[1].width == 20.0
        assert spans[1].hidden is False
        assert spans[6].hidden is True

    def test_plain_sheet_has_no_layout(self, simple_xlsx: pathlib.Path) -> None:
        with _open(simple_xlsx) as package:
            layout = package.read_layout(package.sheets[0])
        assert layout.merge_refs == []
        assert not layout.frozen
        assert layout.row_heights == {}
        assert layout.tab_color is None


class TestImages:
    def test_anchors_in_drawing_order(self, assets_xlsx: pathlib.Path) -> None:
        with _open(assets_xlsx) as package:
            photos = next(s for s in package.sheets if s.name == "Fotos")
            images = package.images(photos)
            assert [(i.anchor_row, i.anchor_column) for i in images] == [(2, 1), (11, 1), (11, 2)]
            for image in images:
                assert image.media_path.startswith("xl/media/")
                assert package.has_part(image.media_path)
                assert package.read_bytes(image.media_path)[:4] == b"\x89PNG"

    def test_sheet_without_drawing(self, assets_xlsx: pathlib.Path) -> None:
        with _open(assets_xlsx) as package:
            assert package.images(package.sheets[0]) == []


# ---------------------------------------------------------------------------
# Damaged packages
# ---------------------------------------------------------------------------


class TestDamagedPackages:
    def test_not_a_zip(self) -> None:
        with pytest.raises(CorruptWorkbookError):
            WorkbookPackage(io.BytesIO(b"definitely not a zip file"))

    def test_missing_content_types(self) -> None:
        with pytest.raises(CorruptWorkbookError, match="Content_Types"):
            WorkbookPackage(_zip({"xl/workbook.xml": "<workbook/>"}))

    def test_missing_workbook_part(self) -> None:
        with pytest.raises(CorruptWorkbookError, match="missing"):
            WorkbookPackage(_zip({"[Content_Types].xml": "<Types/>"}))

    def test_binary_workbook(self) -> None:
        fileobj = _zip(
            {
                "[Content_Types].xml": "<Types/>",
                "_rels/.rels": _ROOT_RELS.format(target="xl/workbook.bin"),
                "xl/workbook.bin": "binary",
            }
        )
        with pytest.raises(UnsupportedFormatError):
            WorkbookPackage(fileobj)

    def test_malformed_workbook_xml(self) -> None:
        fileobj = _zip(
            {
                "[Content_Types].xml": "<Types/>",
                "_rels/.rels": _ROOT_RELS.format(target="xl/workbook.xml"),
                "xl/workbook.xml": "<workbook><sheets>",
            }
        )
        with pytest.raises(CorruptWorkbookError, match="Malformed XML"):
            WorkbookPackage(fileobj)
