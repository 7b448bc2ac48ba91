"""Streaming workbook reader.

:class:`WorkbookStreamReader` turns a source (path or binary stream) into a
lazy sequence of ``(SheetDescriptor, rows)`` pairs.  Cells come from two
read-only openpyxl workbooks iterated in lockstep: one exposes formulas, the
other the cached results stored with them.  Neither materializes a sheet;
each advances one ``<row>`` element at a time.

Sources that are not already files on disk are spooled to a
``SpooledTemporaryFile`` so the zip reader can seek, hashing the bytes on
the way through for the ingest key.
"""

from __future__ import annotations

import hashlib
import logging
import os
import pathlib
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import zip_longest
from typing import IO, Any

import openpyxl
from openpyxl.cell.read_only import EmptyCell
from openpyxl.utils.exceptions import InvalidFileException

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import CorruptWorkbookError
from ingestkit_workbook.package import (
    CORRUPTION_ERRORS,
    SheetLayout,
    SheetPart,
    WorkbookPackage,
)
from ingestkit_workbook.security import HEADER_SIZE, WorkbookSecurityScanner, raise_for_fatal

logger = logging.getLogger("ingestkit_workbook")

_COPY_BUFFER = 1024 * 1024

WorkbookSource = str | os.PathLike | IO[bytes]


# ---------------------------------------------------------------------------
# Source-side records (1-based, as addressed in the file)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceCell:
    """One populated source cell, before normalization.

    ``value`` is the cell as stored (formula text for formula cells);
    ``cached_value`` is the last result saved with the file.
    """

    column: int
    value: Any
    cached_value: Any = None
    font: Any = None
    fill: Any = None
    border: Any = None
    alignment: Any = None
    number_format: str | None = None
    data_type: str | None = None


@dataclass(frozen=True)
class SourceRow:
    sheet_id: str
    index: int
    cells: tuple[SourceCell, ...] = ()


@dataclass(frozen=True)
class SheetDescriptor:
    id: str
    name: str
    position: int
    hidden: bool
    part: SheetPart
    layout: SheetLayout = field(default_factory=SheetLayout)


def sheet_id_for(part: SheetPart) -> str:
    return f"sheet-{part.sheet_id}"


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class WorkbookStreamReader:
    """Lazy, single-pass reader over one workbook source.

    Use as a context manager; :meth:`sheets` may be iterated once.

    Parameters
    ----------
    source:
        Filesystem path or readable binary stream of an ``.xlsx`` file.
    config:
        Pipeline configuration (size limit, spool threshold).

    Raises
    ------
    CorruptWorkbookError
        If the bytes are not a well-formed workbook container, either up
        front or at any point during iteration.
    UnsupportedFormatError
        If the container is a legacy ``.xls``, encrypted, or ``.xlsb`` file.
    WorkbookTooLargeError
        If the source exceeds ``max_file_size_mb``.
    """

    def __init__(
        self,
        source: WorkbookSource,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._config = config or WorkbookProcessorConfig()
        self._fh: IO[bytes] | None = None
        self._package: WorkbookPackage | None = None
        self._formula_wb: Any = None
        self._values_wb: Any = None
        self._consumed = False
        self.content_hash = ""
        self.size = 0
        try:
            self._fh = self._open_source(source)
            self._check_header()
            self._package = WorkbookPackage(self._fh)
            self._formula_wb = self._load_openpyxl(data_only=False)
            self._values_wb = self._load_openpyxl(data_only=True)
        except Exception:
            self.close()
            raise

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> WorkbookStreamReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        for wb in (self._formula_wb, self._values_wb):
            if wb is not None:
                wb.close()
        self._formula_wb = self._values_wb = None
        if self._package is not None:
            self._package.close()
            self._package = None
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    @property
    def package(self) -> WorkbookPackage:
        if self._package is None:
            raise RuntimeError("Reader is closed")
        return self._package

    @property
    def sheet_parts(self) -> list[SheetPart]:
        return list(self.package.sheets)

    def _open_source(self, source: WorkbookSource) -> IO[bytes]:
        """Return a private seekable handle, hashing and sizing the content."""
        digest = hashlib.sha256()
        max_bytes = self._config.max_file_size_bytes

        if isinstance(source, (str, os.PathLike)):
            path = pathlib.Path(source)
            self.size = path.stat().st_size
            if self.size > max_bytes:
                self._scan(b"", self.size)
            fh = open(path, "rb")
            for block in iter(lambda: fh.read(_COPY_BUFFER), b""):
                digest.update(block)
            fh.seek(0)
            self.content_hash = digest.hexdigest()
            return fh

        spool = tempfile.SpooledTemporaryFile(
            max_size=self._config.spool_max_memory_mb * 1024 * 1024,
        )
        try:
            while True:
                try:
                    block = source.read(_COPY_BUFFER)
                except (OSError, EOFError) as exc:
                    raise CorruptWorkbookError(f"Source stream failed while reading: {exc}") from exc
                if not block:
                    break
                self.size += len(block)
                if self.size > max_bytes:
                    self._scan(b"", self.size)
                digest.update(block)
                spool.write(block)
            spool.seek(0)
        except Exception:
            spool.close()
            raise
        self.content_hash = digest.hexdigest()
        return spool

    def _scan(self, header: bytes, size: int) -> None:
        raise_for_fatal(WorkbookSecurityScanner(self._config).scan(header, size))

    def _check_header(self) -> None:
        assert self._fh is not None
        header = self._fh.read(HEADER_SIZE)
        self._fh.seek(0)
        self._scan(header, self.size)

    def _load_openpyxl(self, data_only: bool) -> Any:
        assert self._fh is not None
        try:
            return openpyxl.load_workbook(
                self._fh,
                read_only=True,
                data_only=data_only,
                keep_links=False,
                rich_text=True,
            )
        except (InvalidFileException, ValueError, *CORRUPTION_ERRORS) as exc:
            raise CorruptWorkbookError(f"openpyxl could not open the workbook: {exc}") from exc

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def default_font(self) -> tuple[str | None, float | None]:
        return self.package.default_font()

    def sheets(self) -> Iterator[tuple[SheetDescriptor, Iterator[SourceRow]]]:
        """Yield each worksheet with a lazy iterator over its populated rows.

        The iterator for one sheet must be consumed before advancing to the
        next; sheets are never processed concurrently.
        """
        if self._consumed:
            raise RuntimeError("WorkbookStreamReader.sheets() can only be iterated once")
        self._consumed = True

        for part in self.package.sheets:
            descriptor = SheetDescriptor(
                id=sheet_id_for(part),
                name=part.name,
                position=part.position,
                hidden=part.hidden,
                part=part,
                layout=self.package.read_layout(part),
            )
            logger.debug("Reading sheet %r (%s)", part.name, descriptor.id)
            yield descriptor, self._iter_rows(descriptor)

    def _worksheets(self, name: str) -> tuple[Any, Any]:
        try:
            formula_ws = self._formula_wb[name]
            values_ws = self._values_wb[name]
        except KeyError as exc:
            raise CorruptWorkbookError(f"Sheet {name!r} is not readable", sheet_name=name) from exc
        # A stale <dimension> tag must not truncate iteration.
        formula_ws.reset_dimensions()
        values_ws.reset_dimensions()
        return formula_ws, values_ws

    def _iter_rows(self, sheet: SheetDescriptor) -> Iterator[SourceRow]:
        formula_ws, values_ws = self._worksheets(sheet.name)
        formula_rows = formula_ws.iter_rows()
        value_rows = values_ws.iter_rows()

        while True:
            try:
                formula_row = next(formula_rows, None)
                value_row = next(value_rows, None)
            except (ValueError, *CORRUPTION_ERRORS) as exc:
                raise CorruptWorkbookError(
                    f"Sheet {sheet.name!r} is truncated or malformed: {exc}",
                    sheet_name=sheet.name,
                ) from exc
            if formula_row is None:
                return

            row_index = None
            cells: list[SourceCell] = []
            for raw, cached in zip_longest(formula_row, value_row or ()):
                if raw is None or isinstance(raw, EmptyCell):
                    continue
                row_index = raw.row
                cells.append(
                    SourceCell(
                        column=raw.column,
                        value=raw.value,
                        cached_value=None if cached is None or isinstance(cached, EmptyCell) else cached.value,
                        font=raw.font,
                        fill=raw.fill,
                        border=raw.border,
                        alignment=raw.alignment,
                        number_format=raw.number_format,
                        data_type=raw.data_type,
                    )
                )
            if row_index is None:
                continue
            yield SourceRow(sheet_id=sheet.id, index=row_index, cells=tuple(cells))

    # ------------------------------------------------------------------
    # Column / value access for the asset extractor
    # ------------------------------------------------------------------

    def iter_values(self, sheet_name: str, max_col: int | None = None) -> Iterator[tuple[int, tuple]]:
        """Yield ``(row_number, values)`` using cached results, 1-based rows."""
        _, values_ws = self._worksheets(sheet_name)
        try:
            for row_number, values in enumerate(
                values_ws.iter_rows(max_col=max_col, values_only=True), start=1
            ):
                yield row_number, values
        except (ValueError, *CORRUPTION_ERRORS) as exc:
            raise CorruptWorkbookError(
                f"Sheet {sheet_name!r} is truncated or malformed: {exc}",
                sheet_name=sheet_name,
            ) from exc

    def column_values(self, sheet_name: str, column: int = 1) -> dict[int, Any]:
        """Return ``{row_number: value}`` for the populated cells of one column."""
        found: dict[int, Any] = {}
        for row_number, values in self.iter_values(sheet_name, max_col=column):
            if len(values) >= column and values[column - 1] not in (None, ""):
                found[row_number] = values[column - 1]
        return found
