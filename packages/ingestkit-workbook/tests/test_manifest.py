"""Tests for ManifestBuilder and chunk index validation."""

from __future__ import annotations

import time

import pytest

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    EmptyWorkbookError,
    ErrorCode,
    ManifestConsistencyError,
)
from ingestkit_workbook.manifest import ManifestBuilder, chunk_index_problems
from ingestkit_workbook.models import ChunkIndexEntry, ProcessingError, StyleDescriptor
from ingestkit_workbook.package import ColumnSpan, SheetLayout


def _entry(sheet_id: str, start: int, end: int, seq: int) -> ChunkIndexEntry:
    return ChunkIndexEntry(sheet_id=sheet_id, start_row=start, end_row=end, key=f"p/chunk_{seq}.json")


def _builder(**overrides) -> ManifestBuilder:
    return ManifestBuilder("book.xlsx", WorkbookProcessorConfig(**overrides))


# ---------------------------------------------------------------------------
# Sheet metadata
# ---------------------------------------------------------------------------


class TestAddSheet:
    def test_padding_minimums(self) -> None:
        meta = _builder().add_sheet("sheet-1", "Data", SheetLayout(), 10, 9, 2)
        assert meta.row_count == 200
        assert meta.column_count == 30
        assert meta.data_row_count == 10
        assert meta.data_column_count == 3
        assert meta.default_row_height == 25
        assert meta.default_column_width == 100

    def test_padding_beyond_minimum(self) -> None:
        meta = _builder().add_sheet("sheet-1", "Data", SheetLayout(), 1000, 999, 39)
        assert meta.row_count == 1050
        assert meta.column_count == 50

    def test_empty_sheet(self) -> None:
        meta = _builder().add_sheet("sheet-1", "Empty", SheetLayout(), 0, -1, -1)
        assert meta.row_count == 200
        assert meta.data_column_count == 0

    def test_merges_extend_extent(self) -> None:
        layout = SheetLayout(merge_refs=["A300:B310"])
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert meta.row_count == 310 + 50

    def test_overlapping_merge_dropped(self) -> None:
        builder = _builder()
        layout = SheetLayout(merge_refs=["A7:C8", "E1:E3", "B8:D9"])
        meta = builder.add_sheet("sheet-1", "Styled", layout, 6, 6, 2)
        assert [(m.start_row, m.start_column, m.end_row, m.end_column) for m in meta.merge_data] == [
            (6, 0, 7, 2),
            (0, 4, 2, 4),
        ]
        assert [w.code for w in builder.warnings] == [ErrorCode.W_MERGE_OVERLAP_DROPPED]
        assert builder.warnings[0].sheet_name == "Styled"

    def test_invalid_merge_warned(self) -> None:
        builder = _builder()
        meta = builder.add_sheet("sheet-1", "Data", SheetLayout(merge_refs=["A:B"]), 1, 0, 0)
        assert meta.merge_data == []
        assert builder.warnings[0].code == ErrorCode.W_MERGE_INVALID_RANGE

    def test_many_row_merges_scale(self) -> None:
        builder = _builder()
        layout = SheetLayout(merge_refs=[f"A{r}:C{r}" for r in range(1, 30001)] + ["B100:B100"])
        start = time.perf_counter()
        meta = builder.add_sheet("sheet-1", "Data", layout, 30000, 29999, 2)
        assert time.perf_counter() - start < 5
        assert len(meta.merge_data) == 30000
        assert [w.code for w in builder.warnings] == [ErrorCode.W_MERGE_OVERLAP_DROPPED]

    def test_tall_merge_blocks_later_rows(self) -> None:
        builder = _builder()
        layout = SheetLayout(merge_refs=["B2:B50", "A40:C40", "D40:E40"])
        meta = builder.add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert [(m.start_row, m.start_column) for m in meta.merge_data] == [(1, 1), (39, 3)]
        assert len(builder.warnings) == 1

    def test_freeze(self) -> None:
        layout = SheetLayout(freeze_x_split=2, freeze_y_split=1)
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert meta.freeze is not None
        assert (meta.freeze.start_row, meta.freeze.start_column) == (1, 2)
        assert (meta.freeze.x_split, meta.freeze.y_split) == (2, 1)

    def test_no_freeze(self) -> None:
        assert _builder().add_sheet("sheet-1", "Data", SheetLayout(), 1, 0, 0).freeze is None

    def test_column_widths_in_pixels(self) -> None:
        layout = SheetLayout(
            columns=[
                ColumnSpan(min=1, max=1, width=20.0),
                ColumnSpan(min=3, max=4, width=10.0, hidden=True),
                ColumnSpan(min=5, max=5),
            ]
        )
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert set(meta.column_widths) == {0, 2, 3}
        assert meta.column_widths[0].width == 140.0
        assert meta.column_widths[0].hidden is None
        assert meta.column_widths[3].hidden is True

    def test_column_span_clamped(self) -> None:
        layout = SheetLayout(columns=[ColumnSpan(min=1, max=16384, width=9.0)])
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert len(meta.column_widths) == meta.column_count

    def test_row_heights(self) -> None:
        layout = SheetLayout(row_heights={3: (30.0, False), 5: (15.0, False), 6: (None, True)})
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert set(meta.row_heights) == {2, 5}
        assert meta.row_heights[2].height == 30.0
        assert meta.row_heights[5].hidden is True
        assert meta.row_heights[5].height is None

    def test_sheet_defaults_override_config(self) -> None:
        layout = SheetLayout(
            columns=[ColumnSpan(min=1, max=1, width=12.0), ColumnSpan(min=2, max=2, width=10.0)],
            row_heights={2: (20.0, False), 3: (15.0, False)},
            default_row_height=20.0,
            default_column_width=12.0,
        )
        meta = _builder().add_sheet("sheet-1", "Data", layout, 1, 0, 0)
        assert set(meta.column_widths) == {1}
        assert meta.column_widths[1].width == 70.0
        assert set(meta.row_heights) == {2}
        assert meta.row_heights[2].height == 15.0

    def test_tab_color_and_hidden(self) -> None:
        layout = SheetLayout(tab_color="#00FF00")
        meta = _builder().add_sheet("sheet-3", "Secret", layout, 0, -1, -1, hidden=True)
        assert meta.tab_color == "#00FF00"
        assert meta.hidden is True


# ---------------------------------------------------------------------------
# Chunk index checks
# ---------------------------------------------------------------------------


class TestChunkIndexProblems:
    def test_valid(self) -> None:
        entries = [_entry("sheet-1", 0, 1, 0), _entry("sheet-1", 2, 3, 1), _entry("sheet-2", 0, 0, 2)]
        assert chunk_index_problems(entries, ["sheet-1", "sheet-2"]) == []

    def test_sequence_gap(self) -> None:
        entries = [_entry("sheet-1", 0, 1, 0), _entry("sheet-1", 2, 3, 2)]
        assert any("key says 2" in p for p in chunk_index_problems(entries))

    def test_overlapping_rows(self) -> None:
        entries = [_entry("sheet-1", 0, 5, 0), _entry("sheet-1", 5, 8, 1)]
        assert any("previous chunk ended at 5" in p for p in chunk_index_problems(entries))

    def test_interleaved_sheets(self) -> None:
        entries = [_entry("sheet-1", 0, 1, 0), _entry("sheet-2", 0, 1, 1), _entry("sheet-1", 2, 3, 2)]
        assert any("not contiguous" in p for p in chunk_index_problems(entries))

    def test_sheet_order(self) -> None:
        entries = [_entry("sheet-2", 0, 1, 0), _entry("sheet-1", 0, 1, 1)]
        assert chunk_index_problems(entries, ["sheet-1", "sheet-2"]) != []


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------


class TestFinalize:
    def test_builds_manifest(self) -> None:
        builder = _builder(chunk_size=2)
        builder.add_sheet("sheet-1", "Data", SheetLayout(), 3, 2, 4)
        builder.add_sheet("sheet-2", "Other", SheetLayout(), 1, 0, 1)
        error = ProcessingError(type="upload", message="boom")
        manifest = builder.finalize(
            [_entry("sheet-1", 0, 1, 0), _entry("sheet-1", 2, 2, 1), _entry("sheet-2", 0, 0, 2)],
            {"s0": StyleDescriptor(bold=True)},
            referenced_styles={"s0"},
            errors=[error],
            ingest_key="abc",
            asset_manifest_key="p/asset-manifest.json",
        )
        assert manifest.version == 1
        assert manifest.chunk_size == 2
        assert manifest.total_rows == 4
        assert manifest.total_columns == 5
        assert [s.id for s in manifest.sheets] == ["sheet-1", "sheet-2"]
        assert manifest.errors == [error]
        assert manifest.ingest_key == "abc"
        assert manifest.asset_manifest_key == "p/asset-manifest.json"

    def test_no_sheets(self) -> None:
        with pytest.raises(EmptyWorkbookError):
            _builder().finalize([], {})

    def test_unknown_sheet(self) -> None:
        builder = _builder()
        builder.add_sheet("sheet-1", "Data", SheetLayout(), 1, 0, 0)
        with pytest.raises(ManifestConsistencyError, match="sheet-7"):
            builder.finalize([_entry("sheet-7", 0, 0, 0)], {})

    def test_missing_style(self) -> None:
        builder = _builder()
        builder.add_sheet("sheet-1", "Data", SheetLayout(), 1, 0, 0)
        with pytest.raises(ManifestConsistencyError, match="s3"):
            builder.finalize([_entry("sheet-1", 0, 0, 0)], {"s0": StyleDescriptor(bold=True)}, {"s3"})

    def test_out_of_sequence(self) -> None:
        builder = _builder()
        builder.add_sheet("sheet-1", "Data", SheetLayout(), 2, 1, 0)
        with pytest.raises(ManifestConsistencyError):
            builder.finalize([_entry("sheet-1", 1, 1, 1), _entry("sheet-1", 0, 0, 0)], {})

    def test_unused_styles_allowed(self) -> None:
        builder = _builder()
        builder.add_sheet("sheet-1", "Data", SheetLayout(), 0, -1, -1)
        manifest = builder.finalize([], {"s0": StyleDescriptor(italic=True)})
        assert "s0" in manifest.styles
        assert manifest.total_rows == 0
