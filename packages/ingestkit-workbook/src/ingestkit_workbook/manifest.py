"""Manifest builder.

Collects :class:`SheetMetadata` as each sheet finishes, then assembles the
immutable :class:`Manifest` once every chunk is written.  ``finalize()`` is
the last line of defence against interrupted runs: it refuses to describe a
workbook with no sheets, a chunk whose sheet is unknown, a style reference
missing from the style table, or a chunk index that is out of sequence.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ingestkit_workbook.chunk_writer import chunk_sequence
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    EmptyWorkbookError,
    ErrorCode,
    IngestError,
    ManifestConsistencyError,
)
from ingestkit_workbook.models import (
    ChunkIndexEntry,
    ColumnInfo,
    FreezePane,
    Manifest,
    MergeRegion,
    ProcessingError,
    RowInfo,
    SheetMetadata,
    StyleDescriptor,
)
from ingestkit_workbook.package import SheetLayout, merge_bounds

logger = logging.getLogger("ingestkit_workbook")


def chunk_index_problems(
    entries: list[ChunkIndexEntry],
    sheet_order: list[str] | None = None,
) -> list[str]:
    """Describe every ordering violation in a chunk index.

    Checks that sequence numbers embedded in the keys run ``0..n-1`` in index
    order, that each sheet's chunks are contiguous and follow *sheet_order*,
    and that row ranges within a sheet are ordered and disjoint.
    """
    problems: list[str] = []
    position = {sheet_id: i for i, sheet_id in enumerate(sheet_order or [])}
    last_end: dict[str, int] = {}
    finished: set[str] = set()
    current: str | None = None

    for expected, entry in enumerate(entries):
        sequence = chunk_sequence(entry.key)
        if sequence != expected:
            problems.append(f"chunk {entry.key!r} is at index {expected}, key says {sequence}")
        if entry.end_row < entry.start_row:
            problems.append(f"chunk {entry.key!r} ends before it starts")

        if entry.sheet_id != current:
            if entry.sheet_id in finished:
                problems.append(f"chunks of sheet {entry.sheet_id!r} are not contiguous")
            if current is not None:
                finished.add(current)
                if (
                    entry.sheet_id in position
                    and current in position
                    and position[entry.sheet_id] < position[current]
                ):
                    problems.append(f"sheet {entry.sheet_id!r} chunks precede sheet {current!r}")
            current = entry.sheet_id

        previous = last_end.get(entry.sheet_id)
        if previous is not None and entry.start_row <= previous:
            problems.append(
                f"chunk {entry.key!r} starts at row {entry.start_row}, "
                f"previous chunk ended at {previous}"
            )
        last_end[entry.sheet_id] = entry.end_row
    return problems


class ManifestBuilder:
    """Accumulates per-sheet metadata and emits the final manifest.

    Parameters
    ----------
    original_file_name:
        Name of the uploaded source, recorded verbatim.
    config:
        Padding margins, grid defaults and chunk size.
    """

    def __init__(
        self,
        original_file_name: str,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._file_name = original_file_name
        self._config = config or WorkbookProcessorConfig()
        self._sheets: list[SheetMetadata] = []
        self.warnings: list[IngestError] = []

    @property
    def sheets(self) -> list[SheetMetadata]:
        return list(self._sheets)

    # ------------------------------------------------------------------
    # Per-sheet metadata
    # ------------------------------------------------------------------

    def add_sheet(
        self,
        sheet_id: str,
        name: str,
        layout: SheetLayout,
        data_row_count: int,
        last_row: int,
        last_column: int,
        hidden: bool = False,
    ) -> SheetMetadata:
        """Record one finished sheet.

        Parameters
        ----------
        last_row, last_column:
            0-based index of the last populated row / column, or ``-1`` for
            a sheet without cells.
        """
        config = self._config
        merges = self._merge_regions(name, layout.merge_refs)

        extent_rows = max([last_row + 1] + [m.end_row + 1 for m in merges])
        extent_columns = max([last_column + 1] + [m.end_column + 1 for m in merges])
        row_count = max(extent_rows + config.row_padding, config.min_row_count)
        column_count = max(extent_columns + config.column_padding, config.min_column_count)

        freeze = None
        if layout.frozen:
            x_split = layout.freeze_x_split or 0
            y_split = layout.freeze_y_split or 0
            freeze = FreezePane(
                start_row=y_split,
                start_column=x_split,
                x_split=x_split,
                y_split=y_split,
            )

        meta = SheetMetadata(
            id=sheet_id,
            name=name,
            hidden=hidden,
            row_count=row_count,
            column_count=column_count,
            data_row_count=data_row_count,
            data_column_count=last_column + 1,
            default_row_height=config.default_row_height,
            default_column_width=config.default_column_width,
            freeze=freeze,
            merge_data=merges,
            column_widths=self._column_widths(layout, column_count),
            row_heights=self._row_heights(layout),
            tab_color=layout.tab_color,
        )
        self._sheets.append(meta)
        logger.info(
            "Sheet %r: %d rows, %d merges, %s",
            name,
            data_row_count,
            len(merges),
            "frozen" if freeze else "not frozen",
        )
        return meta

    def _merge_regions(self, sheet_name: str, refs: list[str]) -> list[MergeRegion]:
        regions: list[MergeRegion] = []
        # row -> column spans of kept regions covering that row
        occupied: dict[int, list[tuple[int, int]]] = {}
        for ref in refs:
            bounds = merge_bounds(ref)
            if bounds is None:
                self._warn(ErrorCode.W_MERGE_INVALID_RANGE, f"Ignoring invalid merge range {ref!r}", sheet_name)
                continue
            region = MergeRegion(
                start_row=bounds[0],
                start_column=bounds[1],
                end_row=bounds[2],
                end_column=bounds[3],
            )
            rows = range(region.start_row, region.end_row + 1)
            clash = any(
                start <= region.end_column and region.start_column <= end
                for row in rows
                for start, end in occupied.get(row, ())
            )
            if clash:
                self._warn(
                    ErrorCode.W_MERGE_OVERLAP_DROPPED,
                    f"Merge {ref!r} overlaps an earlier merge and was dropped",
                    sheet_name,
                )
                continue
            span = (region.start_column, region.end_column)
            for row in rows:
                occupied.setdefault(row, []).append(span)
            regions.append(region)
        return regions

    def _column_widths(self, layout: SheetLayout, column_count: int) -> dict[int, ColumnInfo]:
        px_per_char = self._config.column_width_px_per_char
        default = layout.default_column_width or self._config.source_default_column_width
        widths: dict[int, ColumnInfo] = {}
        for span in layout.columns:
            custom = span.width is not None and span.width != default
            if not custom and not span.hidden:
                continue
            info = ColumnInfo(
                width=round(span.width * px_per_char, 2) if custom else None,
                hidden=True if span.hidden else None,
            )
            for column in range(span.min, min(span.max, column_count) + 1):
                widths[column - 1] = info
        return widths

    def _row_heights(self, layout: SheetLayout) -> dict[int, RowInfo]:
        default = layout.default_row_height or self._config.source_default_row_height
        heights: dict[int, RowInfo] = {}
        for row_number, (height, hidden) in sorted(layout.row_heights.items()):
            custom = height is not None and height != default
            if not custom and not hidden:
                continue
            heights[row_number - 1] = RowInfo(
                height=height if custom else None,
                hidden=True if hidden else None,
            )
        return heights

    def _warn(self, code: ErrorCode, message: str, sheet_name: str) -> None:
        logger.warning("%s: %s (sheet %r)", code.value, message, sheet_name)
        self.warnings.append(
            IngestError(code=code, message=message, sheet_name=sheet_name, stage="manifest", recoverable=True)
        )

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def finalize(
        self,
        chunks: list[ChunkIndexEntry],
        styles: dict[str, StyleDescriptor],
        referenced_styles: Iterable[str] = (),
        errors: Iterable[ProcessingError] = (),
        ingest_key: str | None = None,
        asset_manifest_key: str | None = None,
    ) -> Manifest:
        """Validate everything collected so far and emit the manifest.

        Raises
        ------
        EmptyWorkbookError
            If no sheet was added.
        ManifestConsistencyError
            If a chunk names an unknown sheet, a referenced style is missing
            from *styles*, or the chunk index is out of sequence.
        """
        if not self._sheets:
            raise EmptyWorkbookError(f"Workbook {self._file_name!r} has no worksheets")

        sheet_ids = [meta.id for meta in self._sheets]
        known = set(sheet_ids)
        unknown = sorted({entry.sheet_id for entry in chunks} - known)
        if unknown:
            raise ManifestConsistencyError(
                f"Chunk index references sheets missing from the manifest: {unknown}"
            )

        missing_styles = sorted(set(referenced_styles) - set(styles))
        if missing_styles:
            raise ManifestConsistencyError(
                f"Cells reference styles missing from the style table: {missing_styles[:10]}"
            )

        problems = chunk_index_problems(chunks, sheet_ids)
        if problems:
            raise ManifestConsistencyError("; ".join(problems[:5]))

        manifest = Manifest(
            version=self._config.manifest_version,
            original_file_name=self._file_name,
            chunk_size=self._config.chunk_size,
            total_rows=sum(meta.data_row_count for meta in self._sheets),
            total_columns=max(meta.data_column_count for meta in self._sheets),
            chunks=list(chunks),
            styles=dict(styles),
            sheets=list(self._sheets),
            errors=list(errors),
            ingest_key=ingest_key,
            asset_manifest_key=asset_manifest_key,
        )
        logger.info(
            "Manifest for %r: %d sheets, %d chunks, %d styles",
            self._file_name,
            len(manifest.sheets),
            len(manifest.chunks),
            len(manifest.styles),
        )
        return manifest
