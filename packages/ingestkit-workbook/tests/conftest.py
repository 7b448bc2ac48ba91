"""Shared test fixtures for ingestkit-workbook tests.

Provides an in-memory ``MockObjectStore`` with failure injection, config
fixtures, and session-scoped .xlsx file generators built with openpyxl.
"""

from __future__ import annotations

import io
import pathlib
import re
import tempfile
import zipfile
from typing import BinaryIO

import openpyxl
import pytest
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from PIL import Image as PILImage

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    ObjectNotFoundError,
    StoreRejectedError,
    TransientStoreError,
)
from ingestkit_workbook.models import IngestKey


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_config() -> WorkbookProcessorConfig:
    """Return a WorkbookProcessorConfig with all defaults."""
    return WorkbookProcessorConfig()


@pytest.fixture()
def test_config() -> WorkbookProcessorConfig:
    """``WorkbookProcessorConfig`` pre-set with test-friendly values (no backoff sleeps)."""
    return WorkbookProcessorConfig(
        tenant_id="test_tenant",
        backend_backoff_base=0.0,
    )


@pytest.fixture()
def sample_ingest_key() -> IngestKey:
    """Return a sample IngestKey instance for testing."""
    return IngestKey(
        content_hash="abc123def456",
        source_uri="file:///tmp/test.xlsx",
        parser_version="ingestkit_workbook:1.0.0",
        tenant_id="test_tenant",
    )


# ---------------------------------------------------------------------------
# Mock Object Store
# ---------------------------------------------------------------------------


class MockObjectStore:
    """In-memory object store satisfying the ``ObjectStore`` protocol.

    Failure injection:
    - ``fail_puts[key_substring] = n`` makes the next *n* puts of matching
      keys raise ``TransientStoreError``.
    - ``reject_puts`` is a set of key substrings whose puts always raise
      ``StoreRejectedError``.
    - ``fail_gets[key_substring] = n`` does the same for gets.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.put_log: list[str] = []
        self.get_log: list[str] = []
        self.fail_puts: dict[str, int] = {}
        self.fail_gets: dict[str, int] = {}
        self.reject_puts: set[str] = set()

    @staticmethod
    def _should_fail(failures: dict[str, int], key: str) -> bool:
        for fragment, remaining in failures.items():
            if fragment in key and remaining > 0:
                failures[fragment] = remaining - 1
                return True
        return False

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        if any(fragment in key for fragment in self.reject_puts):
            raise StoreRejectedError(f"MockObjectStore rejected {key}")
        if self._should_fail(self.fail_puts, key):
            raise TransientStoreError(f"MockObjectStore simulated put failure for {key}")
        self.put_log.append(key)
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type

    def get_object(self, key: str) -> BinaryIO:
        self.get_log.append(key)
        if self._should_fail(self.fail_gets, key):
            raise TransientStoreError(f"MockObjectStore simulated get failure for {key}")
        if key not in self.objects:
            raise ObjectNotFoundError(f"No object at key {key!r}")
        return io.BytesIO(self.objects[key])

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))


@pytest.fixture()
def mock_store() -> MockObjectStore:
    """Fresh ``MockObjectStore`` instance."""
    return MockObjectStore()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def png_bytes(
    color: str | int | tuple = "red",
    size: tuple[int, int] = (40, 30),
    mode: str = "RGB",
) -> bytes:
    """Render a solid-color PNG with Pillow."""
    buf = io.BytesIO()
    PILImage.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def add_picture(ws, anchor: str, color: str = "red", size: tuple[int, int] = (40, 30)) -> None:
    """Anchor a generated PNG on *ws* at cell *anchor*."""
    ws.add_image(XLImage(io.BytesIO(png_bytes(color, size))), anchor)


# ---------------------------------------------------------------------------
# Session-scoped .xlsx Fixture Generators
# ---------------------------------------------------------------------------

_XLSX_TMP_DIR: tempfile.TemporaryDirectory | None = None


def _xlsx_dir() -> pathlib.Path:
    """Lazily create a session-wide temp directory for generated .xlsx files."""
    global _XLSX_TMP_DIR  # noqa: PLW0603
    if _XLSX_TMP_DIR is None:
        _XLSX_TMP_DIR = tempfile.TemporaryDirectory(prefix="ingestkit_test_workbook_")
    return pathlib.Path(_XLSX_TMP_DIR.name)


@pytest.fixture(scope="session")
def simple_xlsx() -> pathlib.Path:
    """3 columns (ID, Name, Value) with a header and 20 data rows."""
    path = _xlsx_dir() / "simple.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Data"
    ws.append(["ID", "Name", "Value"])
    for i in range(1, 21):
        ws.append([i, f"Item-{i}", round(i * 1.5, 2)])
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def styled_xlsx() -> pathlib.Path:
    """One sheet exercising styles, formulas, booleans, merges, freeze and layout.

    - A1 and C5: bold + red background (same style, distinct cells)
    - B1: bold only
    - A2: 10, A3: 32, A4: ``=A2+A3`` with an injected cached result of 42
    - B2: TRUE, B3: 3.5, B4: thin bottom border, C2: centered + wrapped
    - D2: "dd/mm/yyyy" number format on a date
    - Merges A7:C8 and B8:D9 (overlaps the first, dropped), E1:E3
    - Frozen at B2, column A width 20, column F hidden, row 3 height 30,
      row 6 hidden, red tab color
    """
    path = _xlsx_dir() / "styled.xlsx"
    if path.exists():
        return path
    import datetime

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Styled"
    bold = Font(bold=True)
    red = PatternFill(fill_type="solid", fgColor="FFFF0000")

    ws["A1"] = "Header"
    ws["A1"].font = bold
    ws["A1"].fill = red
    ws["B1"] = "Bold only"
    ws["B1"].font = bold
    ws["C5"] = "Also bold red"
    ws["C5"].font = Font(bold=True)
    ws["C5"].fill = PatternFill(fill_type="solid", fgColor="FFFF0000")

    ws["A2"] = 10
    ws["A3"] = 32
    ws["A4"] = "=A2+A3"
    ws["B2"] = True
    ws["B3"] = 3.5
    ws["B4"].border = Border(bottom=Side(style="thin", color="FF000000"))
    ws["C2"] = "Centered"
    ws["C2"].alignment = Alignment(horizontal="center", wrap_text=True)
    ws["D2"] = datetime.date(2024, 3, 1)
    ws["D2"].number_format = "dd/mm/yyyy"

    ws["A7"] = "Merged block"
    ws.merge_cells("A7:C8")
    ws.merge_cells("E1:E3")
    ws.freeze_panes = "B2"
    ws.column_dimensions["A"].width = 20
    ws.column_dimensions["F"].hidden = True
    ws.row_dimensions[3].height = 30
    ws.row_dimensions[6].hidden = True
    ws.sheet_properties.tabColor = "FFFF0000"
    wb.save(path)

    # openpyxl does not compute formula results, and the overlapping merge
    # must reach the file verbatim, so both are patched into the sheet XML.
    _patch_sheet_xml(
        path,
        [
            (r"<f>A2\+A3</f>(?:<v\s*/>|<v></v>)", "<f>A2+A3</f><v>42</v>"),
            ("</mergeCells>", '<mergeCell ref="B8:D9"/></mergeCells>'),
        ],
    )
    return path


def _patch_sheet_xml(
    path: pathlib.Path,
    replacements: list[tuple[str, str]],
    part: str = "xl/worksheets/sheet1.xml",
) -> None:
    """Rewrite one sheet part of a saved workbook with regex substitutions."""
    buf = io.BytesIO()
    with zipfile.ZipFile(path) as src, zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as dst:
        for item in src.infolist():
            data = src.read(item.filename)
            if item.filename == part:
                text = data.decode("utf-8")
                for pattern, repl in replacements:
                    text = re.sub(pattern, repl, text)
                data = text.encode("utf-8")
            dst.writestr(item, data)
    path.write_bytes(buf.getvalue())


@pytest.fixture(scope="session")
def multi_sheet_xlsx() -> pathlib.Path:
    """Three sheets: "First" (5 rows), "Hidden" (hidden, 2 rows), "Empty" (no cells)."""
    path = _xlsx_dir() / "multi_sheet.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws1 = wb.active
    ws1.title = "First"
    for i in range(5):
        ws1.append([f"row-{i}", i])
    ws2 = wb.create_sheet("Hidden")
    ws2.sheet_state = "hidden"
    ws2.append(["secret"])
    ws2.append(["more"])
    wb.create_sheet("Empty")
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def sparse_xlsx() -> pathlib.Path:
    """Populated rows 1, 5 and 100 only; row 5 uses columns A and D."""
    path = _xlsx_dir() / "sparse.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Sparse"
    ws["A1"] = "top"
    ws["A5"] = "middle"
    ws["D5"] = 4
    ws["B100"] = "bottom"
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def large_xlsx() -> pathlib.Path:
    """Single sheet with 4500 populated rows, written in write-only mode."""
    path = _xlsx_dir() / "large_4500.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook(write_only=True)
    ws = wb.create_sheet("Rows")
    for i in range(4500):
        ws.append([i, f"value-{i}"])
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def assets_xlsx() -> pathlib.Path:
    """Workbook with a main "Desglose" sheet and two image sheets.

    - "Desglose": headers Código/Descripción/Importe and three concept rows
    - "Fotos": column A "5.2.1" at row 10, image at B12 (upward search),
      "7.1" at row 3 with an image at B3 (same row), and the same red image
      again at B12's neighbour C12 (duplicate id, extracted once)
    - "Notas Varias": image at A1 with no concept codes (sheet-name slug)
    """
    path = _xlsx_dir() / "assets.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    main = wb.active
    main.title = "Desglose"
    main.append(["Código", "Descripción", "Importe"])
    main.append(["5.2.1", "Excavación", 1200.5])
    main.append(["7.1", "Relleno", 300])
    main.append([None, "Nota sin código", None])

    photos = wb.create_sheet("Fotos")
    photos["A3"] = "7.1"
    photos["A10"] = "5.2.1"
    add_picture(photos, "B3", color="blue")
    add_picture(photos, "B12", color="red")
    add_picture(photos, "C12", color="red")

    notes = wb.create_sheet("Notas Varias")
    notes["B2"] = "sin códigos"
    add_picture(notes, "A1", color="green", size=(3000, 1000))
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def no_main_sheet_xlsx() -> pathlib.Path:
    """Two sheets, neither matching the main-sheet patterns, one with an image."""
    path = _xlsx_dir() / "no_main.xlsx"
    if path.exists():
        return path
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws["A1"] = "total"
    other = wb.create_sheet("Pictures")
    add_picture(other, "B2")
    wb.save(path)
    return path


@pytest.fixture(scope="session")
def truncated_xlsx(simple_xlsx: pathlib.Path) -> pathlib.Path:
    """The simple workbook cut in half."""
    path = _xlsx_dir() / "truncated.xlsx"
    if path.exists():
        return path
    data = simple_xlsx.read_bytes()
    path.write_bytes(data[: len(data) // 2])
    return path
