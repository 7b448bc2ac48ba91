"""Read side of the chunked format.

:class:`ChunkReader` is stateless per call: it loads a manifest, selects the
chunks overlapping a row range, and fetches them on demand.  Every chunk is
checked against its index entry, so a reordered, truncated or mismatched
chunk surfaces as :class:`ChunkIntegrityError` instead of silently shifted
rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from pydantic import ValidationError

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import ChunkIntegrityError, ErrorCode
from ingestkit_workbook.manifest import chunk_index_problems
from ingestkit_workbook.models import Chunk, ChunkIndexEntry, ChunkRow, Manifest
from ingestkit_workbook.protocols import ObjectStore
from ingestkit_workbook.retry import read_with_retry

logger = logging.getLogger("ingestkit_workbook")


class ChunkReader:
    """Fetches manifests and chunks from an object store.

    Parameters
    ----------
    store:
        Object store holding the ingestion output.
    config:
        Retry policy for reads.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or WorkbookProcessorConfig()

    def read_raw(self, key: str) -> bytes:
        """Return the stored bytes of *key* unchanged."""
        return read_with_retry(self._store, key, self._config)

    def load_manifest(self, key: str) -> Manifest:
        """Load and validate the manifest stored at *key*.

        Raises
        ------
        ObjectNotFoundError
            If no manifest exists at *key*.
        ChunkIntegrityError
            If the body is not a valid manifest or its chunk index is out of
            sequence.
        """
        try:
            manifest = Manifest.model_validate_json(self.read_raw(key))
        except ValidationError as exc:
            raise ChunkIntegrityError(f"Manifest {key!r} is malformed: {exc}") from exc
        verify_chunk_sequence(manifest)
        return manifest

    @staticmethod
    def chunks_for_range(
        manifest: Manifest,
        sheet_id: str,
        start_row: int,
        end_row: int,
    ) -> list[ChunkIndexEntry]:
        """Index entries of *sheet_id* overlapping rows ``start_row..end_row`` (inclusive)."""
        return [
            entry
            for entry in manifest.chunks
            if entry.sheet_id == sheet_id
            and entry.start_row <= end_row
            and entry.end_row >= start_row
        ]

    def read_chunk(self, entry: ChunkIndexEntry) -> Chunk:
        """Fetch one chunk and check it against its index entry."""
        try:
            chunk = Chunk.model_validate_json(self.read_raw(entry.key))
        except ValidationError as exc:
            raise ChunkIntegrityError(f"Chunk {entry.key!r} is malformed: {exc}") from exc

        if chunk.sheet_id != entry.sheet_id or chunk.start_row != entry.start_row:
            raise ChunkIntegrityError(
                f"Chunk {entry.key!r} holds {chunk.sheet_id}@{chunk.start_row}, "
                f"index expects {entry.sheet_id}@{entry.start_row}"
            )
        if not chunk.rows or chunk.rows[0].r != entry.start_row or chunk.rows[-1].r != entry.end_row:
            raise ChunkIntegrityError(
                f"Chunk {entry.key!r} does not span rows {entry.start_row}-{entry.end_row}"
            )
        previous = -1
        for row in chunk.rows:
            if row.r <= previous:
                raise ChunkIntegrityError(
                    f"Chunk {entry.key!r} has row {row.r} after row {previous}",
                    code=ErrorCode.E_CHUNK_OUT_OF_ORDER,
                )
            previous = row.r
        return chunk

    def read_rows(
        self,
        manifest: Manifest,
        sheet_id: str,
        start_row: int,
        end_row: int,
    ) -> Iterator[ChunkRow]:
        """Yield the stored rows of *sheet_id* within ``start_row..end_row``."""
        for entry in self.chunks_for_range(manifest, sheet_id, start_row, end_row):
            for row in self.read_chunk(entry).rows:
                if start_row <= row.r <= end_row:
                    yield row

    def iter_sheet_rows(self, manifest: Manifest, sheet_id: str) -> Iterator[ChunkRow]:
        """Yield every stored row of *sheet_id* in order, chunk by chunk."""
        previous = -1
        for entry in manifest.chunks:
            if entry.sheet_id != sheet_id:
                continue
            for row in self.read_chunk(entry).rows:
                if row.r <= previous:
                    raise ChunkIntegrityError(
                        f"Row {row.r} of {sheet_id!r} repeats or precedes row {previous}",
                        code=ErrorCode.E_CHUNK_OUT_OF_ORDER,
                    )
                previous = row.r
                yield row


def verify_chunk_sequence(manifest: Manifest) -> None:
    """Raise :class:`ChunkIntegrityError` if the chunk index has gaps or reordering."""
    problems = chunk_index_problems(manifest.chunks, [meta.id for meta in manifest.sheets])
    if problems:
        raise ChunkIntegrityError(
            "; ".join(problems[:5]),
            code=ErrorCode.E_CHUNK_OUT_OF_ORDER,
        )
