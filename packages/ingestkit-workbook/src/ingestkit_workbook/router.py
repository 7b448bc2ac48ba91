"""WorkbookRouter -- orchestrator and public API for the ingestkit-workbook pipeline.

Drives one workbook through the full ingestion pipeline:

1. Open the source with :class:`WorkbookStreamReader` and derive the
   deterministic :class:`IngestKey`.
2. Convert each populated row with :class:`RowConverter`, interning styles.
3. Buffer rows into fixed-size chunks with :class:`ChunkWriter`.
4. Record per-sheet metadata with :class:`ManifestBuilder`.
5. Optionally extract sheet images with :class:`AssetExtractor`.
6. Finalize and write the manifest, strictly after every chunk.

Fatal errors propagate to the caller and no manifest is written, so a
partial run leaves only orphaned chunks that no reader can locate.
"""

from __future__ import annotations

import logging
import os
import time

from ingestkit_workbook.assets import AssetExtractionResult, AssetExtractor, asset_warning
from ingestkit_workbook.chunk_writer import JSON_CONTENT_TYPE, ChunkWriter
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.converter import RowConverter, StyleDefaults
from ingestkit_workbook.errors import ErrorCode, IngestError, MainSheetNotFoundError
from ingestkit_workbook.idempotency import ingest_key_for_hash
from ingestkit_workbook.manifest import ManifestBuilder
from ingestkit_workbook.models import CellRow, IngestionResult
from ingestkit_workbook.protocols import ObjectStore, ProgressCallback
from ingestkit_workbook.reader import WorkbookSource, WorkbookStreamReader
from ingestkit_workbook.retry import put_with_retry
from ingestkit_workbook.styles import StyleInterner

logger = logging.getLogger("ingestkit_workbook")

DEFAULT_FILE_NAME = "workbook.xlsx"


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class WorkbookRouter:
    """Orchestrator that turns one workbook into chunks plus a manifest.

    Parameters
    ----------
    store:
        Object store receiving chunks, manifests and assets.
    config:
        Pipeline configuration. Uses defaults when *None*.
    """

    def __init__(
        self,
        store: ObjectStore,
        config: WorkbookProcessorConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or WorkbookProcessorConfig()
        self._asset_extractor = AssetExtractor(store, self._config)

    @property
    def config(self) -> WorkbookProcessorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(
        self,
        source: WorkbookSource,
        file_name: str | None = None,
        output_prefix: str | None = None,
        on_progress: ProgressCallback | None = None,
        source_uri: str | None = None,
    ) -> IngestionResult:
        """Ingest a single workbook.

        Parameters
        ----------
        source:
            Filesystem path or readable binary stream of an ``.xlsx`` file.
        file_name:
            Name recorded in the manifest.  Defaults to the basename of a
            path source.
        output_prefix:
            Key prefix for every written object.  Defaults to
            ``processed/<first 16 hex chars of the ingest key>``.
        on_progress:
            Optional ``(percent, message)`` callback.
        source_uri:
            Optional override for the source URI stored in the ingest key.

        Returns
        -------
        IngestionResult
            Manifest, its storage key, the ingest key and any warnings.

        Raises
        ------
        WorkbookIngestException
            Any fatal error; the manifest is not written.
        """
        overall_start = time.monotonic()
        config = self._config
        is_path = isinstance(source, (str, os.PathLike))
        if file_name is None:
            file_name = os.path.basename(os.fspath(source)) if is_path else DEFAULT_FILE_NAME
        if source_uri is None:
            source_uri = os.path.abspath(os.fspath(source)) if is_path else file_name

        def report(percent: float, message: str) -> None:
            if on_progress is not None:
                on_progress(percent, message)

        # ----------------------------------------------------------
        # Step 1: Open the source and compute the ingest key
        # ----------------------------------------------------------
        report(5, "Opening workbook")
        with WorkbookStreamReader(source, config) as reader:
            ingest_key = ingest_key_for_hash(
                reader.content_hash,
                source_uri,
                config.parser_version,
                config.tenant_id,
            )
            prefix = (output_prefix or f"processed/{ingest_key.key[:16]}").rstrip("/")
            logger.info(
                "Ingesting %s (%d bytes, key=%s) into %s",
                file_name,
                reader.size,
                ingest_key.key[:16],
                prefix,
            )

            # ------------------------------------------------------
            # Step 2: Build the per-run components
            # ------------------------------------------------------
            interner = StyleInterner()
            converter = RowConverter(interner, StyleDefaults.from_font(*reader.default_font()))
            writer = ChunkWriter(self._store, prefix, config)
            builder = ManifestBuilder(file_name, config)

            # ------------------------------------------------------
            # Step 3: Stream rows sheet by sheet
            # ------------------------------------------------------
            report(10, "Parsing sheets")
            for sheet, rows in reader.sheets():
                data_rows = 0
                last_row = -1
                last_column = -1
                for source_row in rows:
                    cell_row = converter.convert(source_row)
                    if not cell_row:
                        continue
                    if data_rows == 0:
                        self._log_first_row(sheet.name, cell_row)
                    row_index = source_row.index - 1
                    if writer.append(sheet.id, row_index, cell_row) is not None:
                        report(
                            min(90, 10 + writer.rows_written / config.progress_rows_scale * 80),
                            f"Wrote {len(writer.entries)} chunks",
                        )
                    data_rows += 1
                    last_row = row_index
                    last_column = max(last_column, max(cell_row))
                writer.finish_sheet(sheet.id)
                builder.add_sheet(
                    sheet.id,
                    sheet.name,
                    sheet.layout,
                    data_row_count=data_rows,
                    last_row=last_row,
                    last_column=last_column,
                    hidden=sheet.hidden,
                )

            # ------------------------------------------------------
            # Step 4: Asset side pipeline
            # ------------------------------------------------------
            warnings: list[IngestError] = list(builder.warnings)
            assets: AssetExtractionResult | None = None
            if config.extract_assets:
                report(92, "Extracting assets")
                try:
                    assets = self._asset_extractor.extract(reader, prefix, file_name)
                    warnings.extend(asset_warning(error) for error in assets.manifest.errors)
                except MainSheetNotFoundError as exc:
                    logger.warning("Skipping asset extraction for %s: %s", file_name, exc.message)
                    warnings.append(
                        IngestError(
                            code=ErrorCode.W_ASSETS_SKIPPED,
                            message=exc.message,
                            stage="assets",
                            recoverable=True,
                        )
                    )

        # ----------------------------------------------------------
        # Step 5: Finalize and write the manifest last
        # ----------------------------------------------------------
        report(95, "Writing manifest")
        manifest = builder.finalize(
            writer.entries,
            interner.table(),
            referenced_styles=writer.referenced_styles,
            errors=assets.manifest.errors if assets else (),
            ingest_key=ingest_key.key,
            asset_manifest_key=assets.manifest_key if assets else None,
        )
        manifest_key = f"{prefix}/manifest.json"
        put_with_retry(self._store, manifest_key, manifest.to_json_bytes(), JSON_CONTENT_TYPE, config)

        elapsed = time.monotonic() - overall_start
        report(100, "Complete")
        logger.info(
            "Processed %s: key=%s sheets=%d rows=%d chunks=%d styles=%d time=%.3fs",
            file_name,
            ingest_key.key[:16],
            len(manifest.sheets),
            manifest.total_rows,
            len(manifest.chunks),
            len(manifest.styles),
            elapsed,
        )

        return IngestionResult(
            manifest_key=manifest_key,
            manifest=manifest,
            ingest_key=ingest_key,
            asset_manifest=assets.manifest if assets else None,
            asset_manifest_key=assets.manifest_key if assets else None,
            warnings=warnings,
            processing_time_seconds=elapsed,
        )

    def _log_first_row(self, sheet_name: str, cell_row: CellRow) -> None:
        if self._config.log_sample_data:
            sample = [cell.value for cell in cell_row.values()]
        else:
            # Structure only: never raw values
            sample = [cell.type.name for cell in cell_row.values()]
        logger.debug("Sheet %r first row: %s", sheet_name, sample)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_default_router(**overrides) -> WorkbookRouter:
    """Create a WorkbookRouter writing to a local filesystem store.

    Convenience factory for local development and testing.  Recognised
    keyword arguments:

    - ``store``: ObjectStore (default: FileSystemObjectStore)
    - ``base_path``: root directory for the default filesystem store
    - ``config``: WorkbookProcessorConfig (default: WorkbookProcessorConfig())

    Any other keyword arguments are passed to WorkbookProcessorConfig.
    """
    from ingestkit_workbook.backends import FileSystemObjectStore

    router_keys = {"store", "base_path", "config"}
    router_kwargs = {k: v for k, v in overrides.items() if k in router_keys}
    config_kwargs = {k: v for k, v in overrides.items() if k not in router_keys}

    config = router_kwargs.pop("config", None)
    if config is None:
        config = WorkbookProcessorConfig(**config_kwargs)

    store = router_kwargs.pop("store", None)
    if store is None:
        base_path = router_kwargs.pop("base_path", None)
        store = FileSystemObjectStore(base_path) if base_path else FileSystemObjectStore()

    return WorkbookRouter(store=store, config=config)
