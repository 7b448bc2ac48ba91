"""Low-level access to the parts of an ``.xlsx`` package.

:class:`WorkbookPackage` opens the zip container and resolves the parts the
cell reader does not expose: sheet order and visibility from
``xl/workbook.xml``, per-sheet layout (column widths, row heights, merges,
frozen panes, tab color), drawing anchors for embedded images, and the
workbook default font.  Sheet XML is streamed with ``iterparse`` and
elements are cleared as soon as they are consumed, so memory stays bounded
by the sparse metadata rather than the row count.
"""

from __future__ import annotations

import logging
import posixpath
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import IO
from xml.etree import ElementTree

from openpyxl.utils.cell import range_boundaries

from ingestkit_workbook.errors import CorruptWorkbookError, UnsupportedFormatError
from ingestkit_workbook.styles import argb_to_hex, indexed_to_hex

logger = logging.getLogger("ingestkit_workbook")

# Errors raised by zipfile / zlib / XML parsers when a package is damaged.
CORRUPTION_ERRORS: tuple[type[BaseException], ...] = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    SyntaxError,
    KeyError,
    OSError,
)

_CONTENT_TYPES = "[Content_Types].xml"
_DEFAULT_WORKBOOK_PART = "xl/workbook.xml"
_DEFAULT_STYLES_PART = "xl/styles.xml"

_REL_OFFICE_DOCUMENT = "/officeDocument"
_REL_WORKSHEET = "/worksheet"
_REL_STYLES = "/styles"
_REL_DRAWING = "/drawing"
_REL_IMAGE = "/image"

_FROZEN_STATES = {"frozen", "frozenSplit"}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _attr(element: ElementTree.Element, name: str) -> str | None:
    """Look up an attribute by local name, ignoring its namespace."""
    value = element.get(name)
    if value is not None:
        return value
    for key, candidate in element.attrib.items():
        if _local(key) == name:
            return candidate
    return None


def _is_true(value: str | None) -> bool:
    return value in ("1", "true", "True")


def _to_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def resolve_target(source_part: str, target: str) -> str:
    """Resolve a relationship target against the part that declares it."""
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join(posixpath.dirname(source_part), target))


def rels_part_for(part: str) -> str:
    return posixpath.join(posixpath.dirname(part), "_rels", posixpath.basename(part) + ".rels")


# ---------------------------------------------------------------------------
# Part descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SheetPart:
    """One worksheet as declared in ``xl/workbook.xml``."""

    name: str
    sheet_id: str
    state: str
    path: str
    position: int

    @property
    def hidden(self) -> bool:
        return self.state in ("hidden", "veryHidden")


@dataclass
class ColumnSpan:
    """A ``<col>`` element: 1-based inclusive column range."""

    min: int
    max: int
    width: float | None = None
    hidden: bool = False


@dataclass
class SheetLayout:
    """Sparse layout metadata collected from one worksheet part.

    Row and column numbers are 1-based as stored in the file; merges keep
    their ``A1:C3`` references.  Conversion to 0-based indices happens in
    the manifest builder.
    """

    columns: list[ColumnSpan] = field(default_factory=list)
    row_heights: dict[int, tuple[float | None, bool]] = field(default_factory=dict)
    merge_refs: list[str] = field(default_factory=list)
    freeze_x_split: int | None = None
    freeze_y_split: int | None = None
    default_row_height: float | None = None
    default_column_width: float | None = None
    tab_color: str | None = None

    @property
    def frozen(self) -> bool:
        return self.freeze_x_split is not None or self.freeze_y_split is not None


@dataclass(frozen=True)
class EmbeddedImage:
    """An image placed on a sheet through a drawing part.  Anchor is 0-based."""

    media_path: str
    anchor_row: int
    anchor_column: int
    drawing_path: str
    name: str | None = None


# ---------------------------------------------------------------------------
# Package
# ---------------------------------------------------------------------------


class WorkbookPackage:
    """Zip-level view of an ``.xlsx`` workbook.

    Parameters
    ----------
    fileobj:
        Seekable binary file object positioned anywhere; the package does not
        take ownership of it.

    Raises
    ------
    CorruptWorkbookError
        If the container is not a readable zip package or lacks a workbook part.
    UnsupportedFormatError
        If the package is a binary (``.xlsb``) workbook.
    """

    def __init__(self, fileobj: IO[bytes]) -> None:
        try:
            self._zip = zipfile.ZipFile(fileobj)
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError, ValueError) as exc:
            raise CorruptWorkbookError(f"Source is not a readable zip package: {exc}") from exc

        self._names = set(self._zip.namelist())
        if _CONTENT_TYPES not in self._names:
            self.close()
            raise CorruptWorkbookError(f"Package has no {_CONTENT_TYPES} part")

        try:
            self.workbook_part = self._find_workbook_part()
            if self.workbook_part.endswith(".bin"):
                raise UnsupportedFormatError(
                    "Binary workbooks (.xlsb) are not supported",
                )
            if self.workbook_part not in self._names:
                raise CorruptWorkbookError(
                    f"Workbook part {self.workbook_part!r} is missing from the package"
                )
            self._workbook_rels = self.read_rels(self.workbook_part)
            self.sheets = self._read_sheet_parts()
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> WorkbookPackage:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Raw part access
    # ------------------------------------------------------------------

    def has_part(self, path: str) -> bool:
        return path in self._names

    def read_bytes(self, path: str) -> bytes:
        try:
            return self._zip.read(path)
        except CORRUPTION_ERRORS as exc:
            raise CorruptWorkbookError(f"Cannot read package part {path!r}: {exc}") from exc

    def _parse(self, path: str) -> ElementTree.Element:
        data = self.read_bytes(path)
        try:
            return ElementTree.fromstring(data)
        except ElementTree.ParseError as exc:
            raise CorruptWorkbookError(f"Malformed XML in {path!r}: {exc}") from exc

    def read_rels(self, part: str) -> dict[str, tuple[str, str]]:
        """Return ``{rId: (type, resolved_target)}`` for *part*; empty when it has none."""
        rels_path = rels_part_for(part)
        if rels_path not in self._names:
            return {}
        rels: dict[str, tuple[str, str]] = {}
        for rel in self._parse(rels_path):
            if _local(rel.tag) != "Relationship":
                continue
            if rel.get("TargetMode") == "External":
                continue
            rel_id, rel_type, target = rel.get("Id"), rel.get("Type", ""), rel.get("Target")
            if rel_id and target:
                rels[rel_id] = (rel_type, resolve_target(part, target))
        return rels

    # ------------------------------------------------------------------
    # Workbook structure
    # ------------------------------------------------------------------

    def _find_workbook_part(self) -> str:
        for rel_type, target in self.read_rels("").values():
            if rel_type.endswith(_REL_OFFICE_DOCUMENT):
                return target
        return _DEFAULT_WORKBOOK_PART

    def _read_sheet_parts(self) -> list[SheetPart]:
        root = self._parse(self.workbook_part)
        sheets: list[SheetPart] = []
        position = 0
        for element in root.iter():
            if _local(element.tag) != "sheet":
                continue
            name = element.get("name")
            rel_id = _attr(element, "id")
            rel = self._workbook_rels.get(rel_id or "")
            if name is None or rel is None:
                raise CorruptWorkbookError(f"Sheet entry {name!r} has no resolvable part")
            rel_type, path = rel
            if not rel_type.endswith(_REL_WORKSHEET):
                logger.info("Skipping non-worksheet sheet %r (%s)", name, rel_type.rsplit("/", 1)[-1])
                continue
            if path not in self._names:
                raise CorruptWorkbookError(f"Worksheet part {path!r} for sheet {name!r} is missing")
            sheets.append(
                SheetPart(
                    name=name,
                    sheet_id=element.get("sheetId", str(position + 1)),
                    state=element.get("state", "visible"),
                    path=path,
                    position=position,
                )
            )
            position += 1
        return sheets

    def default_font(self) -> tuple[str | None, float | None]:
        """Return ``(name, size)`` of the workbook's default (first) font."""
        styles_part = _DEFAULT_STYLES_PART
        for rel_type, target in self._workbook_rels.values():
            if rel_type.endswith(_REL_STYLES):
                styles_part = target
                break
        if styles_part not in self._names:
            return None, None
        root = self._parse(styles_part)
        for element in root:
            if _local(element.tag) != "fonts":
                continue
            for font in element:
                name = size = None
                for prop in font:
                    if _local(prop.tag) == "name":
                        name = prop.get("val")
                    elif _local(prop.tag) == "sz":
                        size = _to_float(prop.get("val"))
                return name, size
        return None, None

    # ------------------------------------------------------------------
    # Sheet layout
    # ------------------------------------------------------------------

    def read_layout(self, sheet: SheetPart) -> SheetLayout:
        """Stream *sheet*'s XML once and collect its sparse layout metadata."""
        layout = SheetLayout()
        sheet_data: ElementTree.Element | None = None
        in_sheet_view = False
        view_seen = False
        try:
            with self._zip.open(sheet.path) as fh:
                for event, element in ElementTree.iterparse(fh, events=("start", "end")):
                    tag = _local(element.tag)
                    if event == "start":
                        if tag == "sheetData":
                            sheet_data = element
                        elif tag == "row":
                            self._record_row(layout, element)
                        elif tag == "sheetView":
                            in_sheet_view = not view_seen
                            view_seen = True
                        continue

                    if tag == "row" and sheet_data is not None:
                        sheet_data.clear()
                    elif tag == "sheetView":
                        in_sheet_view = False
                    elif tag == "pane" and in_sheet_view:
                        self._record_pane(layout, element)
                    elif tag == "tabColor":
                        layout.tab_color = _xml_color(element)
                    elif tag == "sheetFormatPr":
                        layout.default_row_height = _to_float(element.get("defaultRowHeight"))
                        layout.default_column_width = _to_float(element.get("defaultColWidth"))
                    elif tag == "col":
                        self._record_column(layout, element)
                    elif tag == "mergeCell":
                        ref = element.get("ref")
                        if ref:
                            layout.merge_refs.append(ref)
        except CORRUPTION_ERRORS as exc:
            raise CorruptWorkbookError(
                f"Cannot read layout of sheet {sheet.name!r}: {exc}",
                sheet_name=sheet.name,
            ) from exc
        return layout

    @staticmethod
    def _record_row(layout: SheetLayout, element: ElementTree.Element) -> None:
        row_number = element.get("r")
        if row_number is None or not row_number.isdigit():
            return
        height = _to_float(element.get("ht"))
        hidden = _is_true(element.get("hidden"))
        if height is not None or hidden:
            layout.row_heights[int(row_number)] = (height, hidden)

    @staticmethod
    def _record_pane(layout: SheetLayout, element: ElementTree.Element) -> None:
        if element.get("state") not in _FROZEN_STATES:
            return
        x_split = int(_to_float(element.get("xSplit")) or 0)
        y_split = int(_to_float(element.get("ySplit")) or 0)
        if x_split or y_split:
            layout.freeze_x_split = x_split
            layout.freeze_y_split = y_split

    @staticmethod
    def _record_column(layout: SheetLayout, element: ElementTree.Element) -> None:
        try:
            low = int(element.get("min", "0"))
            high = int(element.get("max", element.get("min", "0")))
        except ValueError:
            return
        if low < 1 or high < low:
            return
        layout.columns.append(
            ColumnSpan(
                min=low,
                max=high,
                width=_to_float(element.get("width")),
                hidden=_is_true(element.get("hidden")),
            )
        )

    # ------------------------------------------------------------------
    # Drawings
    # ------------------------------------------------------------------

    def images(self, sheet: SheetPart) -> list[EmbeddedImage]:
        """Return every picture anchored on *sheet*, in drawing order."""
        found: list[EmbeddedImage] = []
        for rel_type, drawing_path in self.read_rels(sheet.path).values():
            if not rel_type.endswith(_REL_DRAWING) or drawing_path not in self._names:
                continue
            drawing_rels = self.read_rels(drawing_path)
            root = self._parse(drawing_path)
            for anchor in root:
                kind = _local(anchor.tag)
                if kind not in ("twoCellAnchor", "oneCellAnchor", "absoluteAnchor"):
                    continue
                row, column = _anchor_cell(anchor)
                for element in anchor.iter():
                    if _local(element.tag) != "blip":
                        continue
                    embed = _attr(element, "embed")
                    rel = drawing_rels.get(embed or "")
                    if rel is None or not rel[0].endswith(_REL_IMAGE):
                        continue
                    found.append(
                        EmbeddedImage(
                            media_path=rel[1],
                            anchor_row=row,
                            anchor_column=column,
                            drawing_path=drawing_path,
                            name=_picture_name(anchor),
                        )
                    )
        return found


def _anchor_cell(anchor: ElementTree.Element) -> tuple[int, int]:
    """Return the 0-based ``(row, column)`` of an anchor's top-left cell."""
    for child in anchor:
        if _local(child.tag) != "from":
            continue
        row = column = 0
        for part in child:
            text = (part.text or "").strip()
            if _local(part.tag) == "row" and text.isdigit():
                row = int(text)
            elif _local(part.tag) == "col" and text.isdigit():
                column = int(text)
        return row, column
    return 0, 0


def _picture_name(anchor: ElementTree.Element) -> str | None:
    for element in anchor.iter():
        if _local(element.tag) == "cNvPr":
            return element.get("name")
    return None


def merge_bounds(ref: str) -> tuple[int, int, int, int] | None:
    """Parse an ``A1:C3`` reference into 0-based inclusive ``(r0, c0, r1, c1)``."""
    try:
        min_col, min_row, max_col, max_row = range_boundaries(ref)
    except (TypeError, ValueError):
        return None
    if None in (min_col, min_row, max_col, max_row):
        return None
    return min_row - 1, min_col - 1, max_row - 1, max_col - 1


def _xml_color(element: ElementTree.Element) -> str | None:
    """Resolve a ``CT_Color`` element with an ``rgb`` or ``indexed`` attribute."""
    rgb = argb_to_hex(element.get("rgb"))
    if rgb is not None:
        return rgb
    indexed = element.get("indexed") or ""
    return indexed_to_hex(int(indexed)) if indexed.isdigit() else None
