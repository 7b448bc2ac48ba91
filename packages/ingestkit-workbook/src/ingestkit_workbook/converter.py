"""Row -> cell conversion.

Maps one :class:`~ingestkit_workbook.reader.SourceRow` into a sparse
``{column_index: Cell}`` mapping.  Conversion is pure: no I/O, and the only
state touched is the document-scoped :class:`StyleInterner`.  Column indices
are shifted from the source's 1-based addressing to 0-based here.

The same function backs every execution context (pipeline, benchmark
script, tests); callers that convert many rows should hold one
:class:`RowConverter` so repeated style objects are resolved once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from openpyxl.cell.rich_text import CellRichText, TextBlock
from openpyxl.styles.fills import PatternFill
from openpyxl.styles.fonts import DEFAULT_FONT
from openpyxl.worksheet.formula import ArrayFormula, DataTableFormula

from ingestkit_workbook.models import (
    BorderEdge,
    BorderStyle,
    Cell,
    CellBorders,
    CellRow,
    StyleDescriptor,
)
from ingestkit_workbook.reader import SourceCell, SourceRow
from ingestkit_workbook.styles import StyleInterner, argb_to_hex, indexed_to_hex

BORDER_STYLE_CLASSES: dict[str, BorderStyle] = {
    "thin": BorderStyle.THIN,
    "medium": BorderStyle.MEDIUM,
    "thick": BorderStyle.THICK,
    "dotted": BorderStyle.DOTTED,
    "dashed": BorderStyle.DASHED,
    "double": BorderStyle.DOUBLE,
    "hair": BorderStyle.HAIR,
    "mediumDashed": BorderStyle.MEDIUM_DASHED,
    "dashDot": BorderStyle.DASH_DOT,
    "mediumDashDot": BorderStyle.MEDIUM_DASH_DOT,
    "dashDotDot": BorderStyle.DASH_DOT_DOT,
    "mediumDashDotDot": BorderStyle.MEDIUM_DASH_DOT_DOT,
    "slantDashDot": BorderStyle.SLANT_DASH_DOT,
}

_GENERAL_FORMAT = "General"
_DEFAULT_HORIZONTAL = "general"
_DEFAULT_VERTICAL = "bottom"


@dataclass(frozen=True)
class StyleDefaults:
    """Workbook-level defaults that are not worth recording per cell."""

    font_name: str | None = DEFAULT_FONT.name
    font_size: float | None = float(DEFAULT_FONT.sz)

    @classmethod
    def from_font(cls, name: str | None, size: float | None) -> StyleDefaults:
        return cls(
            font_name=name if name else DEFAULT_FONT.name,
            font_size=size if size else float(DEFAULT_FONT.sz),
        )


DEFAULT_STYLE_DEFAULTS = StyleDefaults()


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------


def normalize_value(value: Any) -> str | bool | int | float | None:
    """Reduce a raw openpyxl value to a JSON-native scalar."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, CellRichText):
        return "".join(
            block.text if isinstance(block, TextBlock) else str(block) for block in value
        )
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    return str(value)


def _formula_text(cell: SourceCell) -> str | None:
    raw = cell.value
    if isinstance(raw, ArrayFormula):
        text = raw.text or ""
    elif isinstance(raw, DataTableFormula):
        refs = ",".join(ref for ref in (raw.r1, raw.r2) if ref)
        return f"TABLE({refs})"
    elif isinstance(raw, str) and (cell.data_type == "f" or cell.data_type is None):
        text = raw
    else:
        return None
    if not text.startswith("=") or len(text) < 2:
        return None
    return text[1:]


def resolve_value(cell: SourceCell) -> tuple[str | bool | int | float | None, str | None]:
    """Return ``(value, formula)`` for one source cell.

    Formula cells take their value from the cached result stored in the
    file; the formula itself is kept as text without the leading ``=``.
    """
    formula = _formula_text(cell)
    if formula is not None:
        return normalize_value(cell.cached_value), formula
    return normalize_value(cell.value), None


# ---------------------------------------------------------------------------
# Styles
# ---------------------------------------------------------------------------


def color_to_hex(color: Any) -> str | None:
    """Resolve an openpyxl ``Color`` to ``#RRGGBB``.  Theme colors are dropped."""
    if color is None:
        return None
    kind = getattr(color, "type", None)
    if kind == "rgb":
        return argb_to_hex(color.rgb)
    if kind == "indexed":
        return indexed_to_hex(color.indexed)
    return None


def _border_edge(side: Any) -> BorderEdge | None:
    style = getattr(side, "style", None) if side is not None else None
    if not style:
        return None
    return BorderEdge(
        style=BORDER_STYLE_CLASSES.get(style, BorderStyle.THIN),
        color=color_to_hex(side.color),
    )


def extract_style(
    cell: SourceCell,
    defaults: StyleDefaults = DEFAULT_STYLE_DEFAULTS,
) -> StyleDescriptor:
    """Build the candidate style descriptor for *cell*, omitting defaults."""
    fields: dict[str, Any] = {}

    font = cell.font
    if font is not None:
        if font.b:
            fields["bold"] = True
        if font.i:
            fields["italic"] = True
        if font.u and font.u != "none":
            fields["underline"] = True
        if font.strike:
            fields["strikethrough"] = True
        if font.name and font.name != defaults.font_name:
            fields["font_family"] = font.name
        if font.sz and float(font.sz) != defaults.font_size:
            fields["font_size"] = float(font.sz)
        font_color = color_to_hex(font.color)
        if font_color:
            fields["font_color"] = font_color

    fill = cell.fill
    if isinstance(fill, PatternFill) and fill.fill_type not in (None, "none"):
        background = color_to_hex(fill.fgColor)
        if background:
            fields["background_color"] = background

    alignment = cell.alignment
    if alignment is not None:
        if alignment.horizontal and alignment.horizontal != _DEFAULT_HORIZONTAL:
            fields["horizontal_alignment"] = alignment.horizontal
        if alignment.vertical and alignment.vertical != _DEFAULT_VERTICAL:
            fields["vertical_alignment"] = alignment.vertical
        if alignment.wrap_text:
            fields["wrap_text"] = True
        if alignment.text_rotation:
            fields["text_rotation"] = int(alignment.text_rotation)

    border = cell.border
    if border is not None:
        edges = {
            name: _border_edge(getattr(border, name, None))
            for name in ("top", "bottom", "left", "right")
        }
        if any(edges.values()):
            fields["borders"] = CellBorders(**edges)

    if cell.number_format and cell.number_format != _GENERAL_FORMAT:
        fields["number_format"] = cell.number_format

    return StyleDescriptor(**fields)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class RowConverter:
    """Converts rows against one interner, memoizing style resolution.

    openpyxl shares font/fill/border/alignment objects between cells with the
    same style id, so the memo is keyed on object identity; the objects are
    pinned in the memo so identities stay unique for its lifetime.
    """

    def __init__(
        self,
        interner: StyleInterner,
        defaults: StyleDefaults = DEFAULT_STYLE_DEFAULTS,
    ) -> None:
        self.interner = interner
        self.defaults = defaults
        self._style_refs: dict[tuple, tuple[str | None, tuple]] = {}

    def style_ref(self, cell: SourceCell) -> str | None:
        pinned = (cell.font, cell.fill, cell.border, cell.alignment)
        key = (*(id(obj) for obj in pinned), cell.number_format)
        hit = self._style_refs.get(key)
        if hit is not None:
            return hit[0]
        descriptor = extract_style(cell, self.defaults)
        ref = None if descriptor.is_empty() else self.interner.intern(descriptor)
        self._style_refs[key] = (ref, pinned)
        return ref

    def convert(self, row: SourceRow) -> CellRow:
        converted: CellRow = {}
        for cell in row.cells:
            if cell.column < 1:
                raise ValueError(f"Source column numbers are 1-based, got {cell.column}")
            value, formula = resolve_value(cell)
            style_ref = self.style_ref(cell)
            if value is None and formula is None and style_ref is None:
                continue
            converted[cell.column - 1] = Cell.build(value, formula=formula, style_ref=style_ref)
        return converted


def convert_row(
    row: SourceRow,
    interner: StyleInterner,
    defaults: StyleDefaults = DEFAULT_STYLE_DEFAULTS,
) -> CellRow:
    """Convert one source row into ``{0-based column: Cell}``."""
    return RowConverter(interner, defaults).convert(row)
