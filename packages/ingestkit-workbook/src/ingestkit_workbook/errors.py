"""Normalized error codes, structured error model, and exceptions for ingestkit-workbook.

Fatal conditions (corrupt or unsupported source, empty workbook, manifest
inconsistency) are raised as :class:`WorkbookIngestException` subclasses and
abort the run.  Non-fatal conditions are accumulated as :class:`IngestError`
warnings or, for the asset side pipeline, as ``ProcessingError`` entries.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Normalized error codes for the ingestkit-workbook pipeline.

    Codes prefixed with ``E_`` are errors; codes prefixed with ``W_`` are
    non-fatal warnings.  Values equal their names so they are stable strings
    suitable for metrics and alerting.
    """

    # Parse errors
    E_PARSE_CORRUPT = "E_PARSE_CORRUPT"
    E_PARSE_UNSUPPORTED = "E_PARSE_UNSUPPORTED"
    E_PARSE_EMPTY = "E_PARSE_EMPTY"
    E_PARSE_TOO_LARGE = "E_PARSE_TOO_LARGE"

    # Manifest / chunk errors
    E_MANIFEST_INCONSISTENT = "E_MANIFEST_INCONSISTENT"
    E_CHUNK_CORRUPT = "E_CHUNK_CORRUPT"
    E_CHUNK_OUT_OF_ORDER = "E_CHUNK_OUT_OF_ORDER"

    # Asset errors
    E_ASSET_MAIN_SHEET_NOT_FOUND = "E_ASSET_MAIN_SHEET_NOT_FOUND"

    # Object store errors
    E_STORE_NOT_FOUND = "E_STORE_NOT_FOUND"
    E_STORE_TRANSIENT = "E_STORE_TRANSIENT"
    E_STORE_REJECTED = "E_STORE_REJECTED"
    E_STORE_INVALID_KEY = "E_STORE_INVALID_KEY"

    # Warnings (non-fatal)
    W_MERGE_OVERLAP_DROPPED = "W_MERGE_OVERLAP_DROPPED"
    W_MERGE_INVALID_RANGE = "W_MERGE_INVALID_RANGE"
    W_ASSETS_SKIPPED = "W_ASSETS_SKIPPED"
    W_ASSET_SHEET_PROCESSING = "W_ASSET_SHEET_PROCESSING"
    W_ASSET_IMAGE_EXTRACTION = "W_ASSET_IMAGE_EXTRACTION"
    W_ASSET_CONVERSION = "W_ASSET_CONVERSION"
    W_ASSET_UPLOAD = "W_ASSET_UPLOAD"
    W_STORE_RETRY = "W_STORE_RETRY"


class IngestError(BaseModel):
    """Structured error with code, message, and context.

    Each error carries an ``ErrorCode``, a human-readable message, and
    optional context about which sheet and processing stage produced it.
    """

    code: ErrorCode
    message: str
    sheet_name: str | None = None
    stage: str | None = None
    recoverable: bool = False


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WorkbookIngestException(Exception):
    """Raisable exception wrapping an :class:`IngestError` data model.

    Carries the structured error as the ``.error`` attribute for inspection
    and serialization.  Subclasses supply a default code and stage so call
    sites only need a message.
    """

    default_code: ErrorCode = ErrorCode.E_PARSE_CORRUPT
    default_stage: str | None = None
    default_recoverable: bool = False

    def __init__(self, message: str, **kwargs: object) -> None:
        kwargs.setdefault("code", self.default_code)
        kwargs.setdefault("stage", self.default_stage)
        kwargs.setdefault("recoverable", self.default_recoverable)
        self.error = IngestError(message=message, **kwargs)  # type: ignore[arg-type]
        super().__init__(self.error.message)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def stage(self) -> str | None:
        return self.error.stage

    @property
    def recoverable(self) -> bool:
        return self.error.recoverable


class CorruptWorkbookError(WorkbookIngestException):
    """The source bytes are not a well-formed workbook container."""

    default_code = ErrorCode.E_PARSE_CORRUPT
    default_stage = "parse"


class UnsupportedFormatError(WorkbookIngestException):
    """The container is a workbook format this reader does not parse."""

    default_code = ErrorCode.E_PARSE_UNSUPPORTED
    default_stage = "parse"


class WorkbookTooLargeError(WorkbookIngestException):
    default_code = ErrorCode.E_PARSE_TOO_LARGE
    default_stage = "parse"


class EmptyWorkbookError(WorkbookIngestException):
    """No sheet was processed, so there is nothing to describe."""

    default_code = ErrorCode.E_PARSE_EMPTY
    default_stage = "manifest"


class ManifestConsistencyError(WorkbookIngestException):
    """The chunk index or style references disagree with the manifest."""

    default_code = ErrorCode.E_MANIFEST_INCONSISTENT
    default_stage = "manifest"


class ChunkIntegrityError(WorkbookIngestException):
    """Chunk rows or sequence keys are out of order, duplicated, or missing."""

    default_code = ErrorCode.E_CHUNK_CORRUPT
    default_stage = "chunk"


class MainSheetNotFoundError(WorkbookIngestException):
    default_code = ErrorCode.E_ASSET_MAIN_SHEET_NOT_FOUND
    default_stage = "assets"


class ObjectStoreError(WorkbookIngestException):
    """Base class for failures surfaced by an ``ObjectStore`` backend."""

    default_code = ErrorCode.E_STORE_REJECTED
    default_stage = "store"


class ObjectNotFoundError(ObjectStoreError):
    """The requested key does not exist.  Never retried."""

    default_code = ErrorCode.E_STORE_NOT_FOUND


class TransientStoreError(ObjectStoreError):
    """A retryable transport or server-side failure."""

    default_code = ErrorCode.E_STORE_TRANSIENT
    default_recoverable = True


class StoreRejectedError(ObjectStoreError):
    """The store permanently refused the request (e.g. HTTP 403)."""

    default_code = ErrorCode.E_STORE_REJECTED


class InvalidObjectKeyError(ObjectStoreError):
    default_code = ErrorCode.E_STORE_INVALID_KEY
