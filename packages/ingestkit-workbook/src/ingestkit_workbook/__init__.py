"""ingestkit-workbook -- streaming spreadsheet ingestion for the ingestkit framework.

Public API exports for models, errors, configuration, the pipeline stages,
and the object-store protocol.  The FastAPI chunk proxy lives in
``ingestkit_workbook.api`` and needs the optional ``fastapi`` dependency.
"""

from ingestkit_workbook.assets import AssetExtractor, find_main_sheet, resolve_concept_code
from ingestkit_workbook.chunk_reader import ChunkReader
from ingestkit_workbook.chunk_writer import ChunkWriter
from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.converter import RowConverter, convert_row, extract_style
from ingestkit_workbook.errors import (
    ChunkIntegrityError,
    CorruptWorkbookError,
    EmptyWorkbookError,
    ErrorCode,
    IngestError,
    MainSheetNotFoundError,
    ManifestConsistencyError,
    ObjectNotFoundError,
    TransientStoreError,
    UnsupportedFormatError,
    WorkbookIngestException,
    WorkbookTooLargeError,
)
from ingestkit_workbook.idempotency import compute_ingest_key
from ingestkit_workbook.job import IngestionJob, run_ingestion_job
from ingestkit_workbook.manifest import ManifestBuilder
from ingestkit_workbook.models import (
    Asset,
    AssetManifest,
    Cell,
    CellType,
    Chunk,
    ChunkIndexEntry,
    IngestionResult,
    IngestKey,
    JobResult,
    Manifest,
    MergeRegion,
    ProcessingError,
    SheetMetadata,
    StyleDescriptor,
)
from ingestkit_workbook.protocols import ObjectStore, ProgressCallback
from ingestkit_workbook.reader import WorkbookStreamReader
from ingestkit_workbook.router import WorkbookRouter, create_default_router
from ingestkit_workbook.styles import StyleInterner

__all__ = [
    # Router
    "WorkbookRouter",
    "create_default_router",
    "IngestionJob",
    "run_ingestion_job",
    # Pipeline stages
    "WorkbookStreamReader",
    "RowConverter",
    "convert_row",
    "extract_style",
    "StyleInterner",
    "ChunkWriter",
    "ManifestBuilder",
    "ChunkReader",
    "AssetExtractor",
    "find_main_sheet",
    "resolve_concept_code",
    # Idempotency
    "IngestKey",
    "compute_ingest_key",
    # Models
    "Cell",
    "CellType",
    "StyleDescriptor",
    "MergeRegion",
    "SheetMetadata",
    "Chunk",
    "ChunkIndexEntry",
    "Manifest",
    "ProcessingError",
    "Asset",
    "AssetManifest",
    "IngestionResult",
    "JobResult",
    # Errors
    "ErrorCode",
    "IngestError",
    "WorkbookIngestException",
    "CorruptWorkbookError",
    "UnsupportedFormatError",
    "WorkbookTooLargeError",
    "EmptyWorkbookError",
    "ManifestConsistencyError",
    "ChunkIntegrityError",
    "MainSheetNotFoundError",
    "ObjectNotFoundError",
    "TransientStoreError",
    # Config
    "WorkbookProcessorConfig",
    # Protocols
    "ObjectStore",
    "ProgressCallback",
]
