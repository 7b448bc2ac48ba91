"""Chunk writer: buffers converted rows and persists fixed-size chunks.

Each chunk is written synchronously under ``{prefix}/chunk_{sequence}.json``
as soon as its buffer reaches ``chunk_size`` rows, so a slow store throttles
ingestion instead of growing memory.  A chunk never spans two sheets and the
sequence index is monotonic across the whole document.
"""

from __future__ import annotations

import logging
import re

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import ChunkIntegrityError, ErrorCode
from ingestkit_workbook.models import Chunk, ChunkIndexEntry, ChunkRow, CellRow
from ingestkit_workbook.protocols import ObjectStore
from ingestkit_workbook.retry import put_with_retry

logger = logging.getLogger("ingestkit_workbook")

JSON_CONTENT_TYPE = "application/json"

_CHUNK_KEY_RE = re.compile(r"(?:^|/)chunk_(\d+)\.json$")


def chunk_key(output_prefix: str, sequence: int) -> str:
    return f"{output_prefix.rstrip('/')}/chunk_{sequence}.json"


def chunk_sequence(key: str) -> int | None:
    """Return the sequence index embedded in a chunk key, if any."""
    match = _CHUNK_KEY_RE.search(key)
    return int(match.group(1)) if match else None


class ChunkWriter:
    """Buffers ``(sheet_id, row_index, cells)`` rows and flushes chunks.

    Parameters
    ----------
    store:
        Object store receiving the chunk bodies.
    output_prefix:
        Key prefix shared by every object of this ingestion run.
    config:
        Supplies ``chunk_size`` and the retry policy.
    """

    def __init__(
        self,
        store: ObjectStore,
        output_prefix: str,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._store = store
        self._prefix = output_prefix.rstrip("/")
        self._config = config or WorkbookProcessorConfig()
        self._buffer: list[ChunkRow] = []
        self._sheet_id: str | None = None
        self._last_row: dict[str, int] = {}
        self._closed_sheets: set[str] = set()
        self._sequence = 0
        self.entries: list[ChunkIndexEntry] = []
        self.referenced_styles: set[str] = set()
        self.rows_written = 0

    @property
    def chunk_size(self) -> int:
        return self._config.chunk_size

    @property
    def buffered_rows(self) -> int:
        return len(self._buffer)

    def append(self, sheet_id: str, row_index: int, cell_row: CellRow) -> ChunkIndexEntry | None:
        """Buffer one row; flush and return the index entry when the buffer fills.

        Raises
        ------
        ChunkIntegrityError
            If *row_index* is negative, not strictly after the previous row of
            the same sheet, or belongs to a sheet that was already finished.
        """
        if row_index < 0:
            raise ChunkIntegrityError(f"Row index must be 0-based, got {row_index}")
        if sheet_id in self._closed_sheets:
            raise ChunkIntegrityError(
                f"Sheet {sheet_id!r} was already finished; rows cannot be appended",
                code=ErrorCode.E_CHUNK_OUT_OF_ORDER,
            )
        last = self._last_row.get(sheet_id)
        if last is not None and row_index <= last:
            raise ChunkIntegrityError(
                f"Row {row_index} of sheet {sheet_id!r} follows row {last}",
                code=ErrorCode.E_CHUNK_OUT_OF_ORDER,
            )

        if self._sheet_id is not None and sheet_id != self._sheet_id:
            self.finish_sheet(self._sheet_id)
        self._sheet_id = sheet_id
        self._last_row[sheet_id] = row_index

        self._buffer.append(ChunkRow(r=row_index, data=cell_row))
        for cell in cell_row.values():
            if cell.style_ref is not None:
                self.referenced_styles.add(cell.style_ref)

        if len(self._buffer) >= self.chunk_size:
            return self.flush()
        return None

    def finish_sheet(self, sheet_id: str) -> ChunkIndexEntry | None:
        """Flush the partial buffer of *sheet_id* and close it for appends."""
        entry = self.flush() if self._sheet_id == sheet_id else None
        self._closed_sheets.add(sheet_id)
        if self._sheet_id == sheet_id:
            self._sheet_id = None
        return entry

    def flush(self) -> ChunkIndexEntry | None:
        """Write the buffered rows as one chunk.  No-op when the buffer is empty."""
        if not self._buffer:
            return None
        assert self._sheet_id is not None

        rows = self._buffer
        chunk = Chunk(sheet_id=self._sheet_id, start_row=rows[0].r, rows=rows)
        key = chunk_key(self._prefix, self._sequence)
        put_with_retry(self._store, key, chunk.to_json_bytes(), JSON_CONTENT_TYPE, self._config)

        entry = ChunkIndexEntry(
            sheet_id=self._sheet_id,
            start_row=rows[0].r,
            end_row=rows[-1].r,
            key=key,
        )
        self.entries.append(entry)
        self.rows_written += len(rows)
        self._sequence += 1
        self._buffer = []
        logger.debug(
            "Wrote %s (%s rows %d-%d)",
            key,
            entry.sheet_id,
            entry.start_row,
            entry.end_row,
        )
        return entry
