"""Pydantic models and enumerations for the ingestkit-workbook pipeline.

Covers the normalized cell grid (``Cell``, ``StyleDescriptor``), the
persisted artifacts (``Chunk``, ``Manifest``, ``AssetManifest``) and the
result summaries handed back to callers.  Persisted models serialize with
camelCase keys and omit unset fields; see :meth:`WireModel.to_json_bytes`.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ingestkit_workbook.errors import IngestError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for every model persisted to the object store.

    Immutable once built; field names map to camelCase on the wire.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CellType(IntEnum):
    """Runtime type tag stored alongside every cell value."""

    STRING = 1
    NUMBER = 2
    BOOLEAN = 3


class BorderStyle(IntEnum):
    """The 13 discrete border classes, in spreadsheet ``ST_BorderStyle`` order."""

    THIN = 1
    MEDIUM = 2
    THICK = 3
    DOTTED = 4
    DASHED = 5
    DOUBLE = 6
    HAIR = 7
    MEDIUM_DASHED = 8
    DASH_DOT = 9
    MEDIUM_DASH_DOT = 10
    DASH_DOT_DOT = 11
    MEDIUM_DASH_DOT_DOT = 12
    SLANT_DASH_DOT = 13


ProcessingErrorType = Literal[
    "sheet_processing",
    "image_extraction",
    "upload",
    "download",
    "conversion",
]


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


class IngestKey(BaseModel):
    """Deterministic key for deduplication.

    Combines content hash, source URI, parser version, and optional tenant ID
    into a single SHA-256 digest that callers can use to detect duplicate
    ingestion runs.
    """

    content_hash: str
    source_uri: str
    parser_version: str
    tenant_id: str | None = None

    @property
    def key(self) -> str:
        """Deterministic string key for dedup lookups."""
        parts = [self.content_hash, self.source_uri, self.parser_version]
        if self.tenant_id:
            parts.append(self.tenant_id)
        return hashlib.sha256("|".join(parts).encode()).hexdigest()


# ---------------------------------------------------------------------------
# Cell Model & Style Table
# ---------------------------------------------------------------------------


class BorderEdge(WireModel):
    style: BorderStyle
    color: str | None = None


class CellBorders(WireModel):
    top: BorderEdge | None = None
    bottom: BorderEdge | None = None
    left: BorderEdge | None = None
    right: BorderEdge | None = None


class StyleDescriptor(WireModel):
    """Canonical, fully-resolved visual style of one cell.

    Every field defaults to ``None``, meaning "spreadsheet default".  Two
    descriptors are equal iff their canonical JSON serializations are equal,
    which is what :class:`~ingestkit_workbook.styles.StyleInterner` keys on.
    """

    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    strikethrough: bool | None = None
    font_family: str | None = None
    font_size: float | None = None
    font_color: str | None = None
    background_color: str | None = None
    horizontal_alignment: str | None = None
    vertical_alignment: str | None = None
    wrap_text: bool | None = None
    text_rotation: int | None = None
    borders: CellBorders | None = None
    number_format: str | None = None

    def canonical_key(self) -> str:
        """Return the sorted, whitespace-free JSON form used for equality."""
        return json.dumps(self.to_wire(), sort_keys=True, separators=(",", ":"))

    def is_empty(self) -> bool:
        return not self.to_wire()


class Cell(WireModel):
    """One converted spreadsheet cell.

    ``value`` is the display value; for formula cells it is the last cached
    result carried by the file and is never recomputed here.
    """

    value: str | bool | int | float | None = None
    type: CellType = CellType.STRING
    formula: str | None = None
    style_ref: str | None = None

    @model_validator(mode="after")
    def _type_matches_value(self) -> Cell:
        expected = cell_type_for(self.value)
        if self.type != expected:
            raise ValueError(
                f"cell type {self.type.name} does not match value type {expected.name}"
            )
        return self

    @classmethod
    def build(
        cls,
        value: str | bool | int | float | None,
        formula: str | None = None,
        style_ref: str | None = None,
    ) -> Cell:
        """Create a cell whose ``type`` tag is derived from ``value``."""
        return cls(
            value=value,
            type=cell_type_for(value),
            formula=formula,
            style_ref=style_ref,
        )


def cell_type_for(value: object) -> CellType:
    """Map a resolved value to its type tag (booleans before numbers)."""
    if isinstance(value, bool):
        return CellType.BOOLEAN
    if isinstance(value, (int, float)):
        return CellType.NUMBER
    return CellType.STRING


CellRow = dict[int, Cell]


class MergeRegion(WireModel):
    """Rectangular merged range.  0-based, start and end both inclusive."""

    start_row: int = Field(ge=0)
    start_column: int = Field(ge=0)
    end_row: int = Field(ge=0)
    end_column: int = Field(ge=0)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> MergeRegion:
        if self.end_row < self.start_row or self.end_column < self.start_column:
            raise ValueError("merge region end precedes its start")
        return self

    def overlaps(self, other: MergeRegion) -> bool:
        return not (
            self.end_row < other.start_row
            or other.end_row < self.start_row
            or self.end_column < other.start_column
            or other.end_column < self.start_column
        )


class FreezePane(WireModel):
    """Frozen pane split.  ``start_row``/``start_column`` are the first scrolling cells."""

    start_row: int
    start_column: int
    x_split: int = 0
    y_split: int = 0


class ColumnInfo(WireModel):
    width: float | None = None
    hidden: bool | None = None


class RowInfo(WireModel):
    height: float | None = None
    hidden: bool | None = None


class SheetMetadata(WireModel):
    """Per-sheet layout metadata recorded in the manifest.

    ``row_count`` / ``column_count`` are padded beyond the populated grid;
    ``data_row_count`` is the number of rows that actually carried cells.
    """

    id: str
    name: str
    hidden: bool = False
    row_count: int
    column_count: int
    data_row_count: int = 0
    data_column_count: int = 0
    default_row_height: int = 25
    default_column_width: int = 100
    freeze: FreezePane | None = None
    merge_data: list[MergeRegion] = []
    column_widths: dict[int, ColumnInfo] = {}
    row_heights: dict[int, RowInfo] = {}
    tab_color: str | None = None


# ---------------------------------------------------------------------------
# Chunks & Manifest
# ---------------------------------------------------------------------------


class ChunkRow(WireModel):
    r: int = Field(ge=0)
    data: dict[int, Cell]


class Chunk(WireModel):
    """Immutable, row-range-bounded slice of one sheet."""

    sheet_id: str
    start_row: int
    rows: list[ChunkRow]


class ChunkIndexEntry(WireModel):
    sheet_id: str
    start_row: int
    end_row: int
    key: str


class ProcessingError(WireModel):
    """Non-fatal failure accumulated while the run continues."""

    sheet: str | None = None
    asset_id: str | None = None
    type: ProcessingErrorType
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Manifest(WireModel):
    """Top-level descriptor and single source of truth for reassembly."""

    version: int = 1
    original_file_name: str
    chunk_size: int
    total_rows: int = 0
    total_columns: int = 0
    chunks: list[ChunkIndexEntry]
    styles: dict[str, StyleDescriptor]
    sheets: list[SheetMetadata]
    errors: list[ProcessingError] = []
    ingest_key: str | None = None
    asset_manifest_key: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    def sheet(self, sheet_id: str) -> SheetMetadata | None:
        for meta in self.sheets:
            if meta.id == sheet_id:
                return meta
        return None


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class Asset(WireModel):
    """An image extracted from a non-main sheet and re-encoded for storage."""

    id: str
    concept_code: str
    sheet: str
    cell_ref: str
    anchor_row: int
    anchor_column: int
    source_name: str
    content_hash: str
    format: str
    width: int
    height: int
    size_bytes: int
    key: str


class AssetStats(WireModel):
    total_sheets: int = 0
    main_sheet_rows: int = 0
    images_found: int = 0
    images_processed: int = 0
    images_failed: int = 0
    total_processing_time_ms: int = 0


class AssetManifest(WireModel):
    version: int = 1
    original_file_name: str
    main_sheet: str
    assets: list[Asset] = []
    concept_asset_map: dict[str, list[str]] = {}
    stats: AssetStats = AssetStats()
    errors: list[ProcessingError] = []
    processed_at: datetime = Field(default_factory=_utcnow)


class MainSheetData(WireModel):
    """Header-keyed rows of the main sheet, tagged with their concept codes."""

    sheet: str
    headers: list[str]
    rows: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SheetSummary(WireModel):
    id: str
    name: str
    row_count: int


class JobResult(WireModel):
    """Small summary returned to the job queue on success."""

    manifest_key: str
    total_rows: int
    total_chunks: int
    sheets: list[SheetSummary]
    images_processed: int = 0
    images_failed: int = 0
    asset_manifest_key: str | None = None


class IngestionResult(BaseModel):
    """Everything a caller may want after one successful ingestion run."""

    manifest_key: str
    manifest: Manifest
    ingest_key: IngestKey
    asset_manifest: AssetManifest | None = None
    asset_manifest_key: str | None = None
    warnings: list[IngestError] = []
    processing_time_seconds: float = 0.0

    def to_job_result(self) -> JobResult:
        stats = self.asset_manifest.stats if self.asset_manifest else AssetStats()
        return JobResult(
            manifest_key=self.manifest_key,
            total_rows=self.manifest.total_rows,
            total_chunks=len(self.manifest.chunks),
            sheets=[
                SheetSummary(id=s.id, name=s.name, row_count=s.data_row_count)
                for s in self.manifest.sheets
            ],
            images_processed=stats.images_processed,
            images_failed=stats.images_failed,
            asset_manifest_key=self.asset_manifest_key,
        )
