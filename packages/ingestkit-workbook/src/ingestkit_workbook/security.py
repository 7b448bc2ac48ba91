"""Pre-flight checks for workbook sources and object-store keys.

The scanner inspects the leading bytes and total size of a source before any
parsing begins; the key validator guards the chunk proxy and the filesystem
backend against path traversal.
"""

from __future__ import annotations

import posixpath
import re

from ingestkit_workbook.config import WorkbookProcessorConfig
from ingestkit_workbook.errors import (
    CorruptWorkbookError,
    ErrorCode,
    IngestError,
    InvalidObjectKeyError,
    UnsupportedFormatError,
    WorkbookIngestException,
    WorkbookTooLargeError,
)

ZIP_MAGIC = b"PK\x03\x04"
EMPTY_ZIP_MAGIC = b"PK\x05\x06"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
HEADER_SIZE = 8

_KEY_PATTERN = re.compile(r"[\w.\-/ ]+")

_FATAL_EXCEPTIONS: dict[ErrorCode, type[WorkbookIngestException]] = {
    ErrorCode.E_PARSE_CORRUPT: CorruptWorkbookError,
    ErrorCode.E_PARSE_UNSUPPORTED: UnsupportedFormatError,
    ErrorCode.E_PARSE_TOO_LARGE: WorkbookTooLargeError,
}


def detect_container(header: bytes) -> str | None:
    """Classify a source by its magic bytes: ``"zip"``, ``"ole2"`` or *None*."""
    if header.startswith(ZIP_MAGIC) or header.startswith(EMPTY_ZIP_MAGIC):
        return "zip"
    if header.startswith(OLE2_MAGIC):
        return "ole2"
    return None


class WorkbookSecurityScanner:
    """Run pre-flight checks on a workbook source.

    Returns a list of errors.  Codes starting with ``E_`` are fatal and the
    source must not be parsed.
    """

    def __init__(self, config: WorkbookProcessorConfig) -> None:
        self.config = config

    def scan(self, header: bytes, size: int) -> list[IngestError]:
        errors: list[IngestError] = []

        # --- 1. Empty source ---
        if size == 0:
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_CORRUPT,
                    message="Source is empty (0 bytes)",
                    stage="security",
                )
            )
            return errors

        # --- 2. Size limit ---
        if size > self.config.max_file_size_bytes:
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_TOO_LARGE,
                    message=(
                        f"Source is {size / (1024 * 1024):.1f} MB, "
                        f"limit is {self.config.max_file_size_mb} MB"
                    ),
                    stage="security",
                )
            )
            return errors

        # --- 3. Container magic ---
        container = detect_container(header)
        if container == "ole2":
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_UNSUPPORTED,
                    message=(
                        "Source is an OLE2 compound document (legacy .xls or an "
                        "encrypted workbook), which is not supported"
                    ),
                    stage="security",
                )
            )
        elif container is None:
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_CORRUPT,
                    message=f"Source is not a workbook container (header {header[:4]!r})",
                    stage="security",
                )
            )
        return errors


def raise_for_fatal(errors: list[IngestError]) -> None:
    """Raise the exception matching the first fatal error in *errors*."""
    for error in errors:
        if error.code.value.startswith("E_"):
            exc_type = _FATAL_EXCEPTIONS.get(error.code, CorruptWorkbookError)
            raise exc_type(error.message, stage=error.stage)


def validate_object_key(key: str, allowed_prefixes: list[str] | None = None) -> str:
    """Return *key* normalized, or raise :class:`InvalidObjectKeyError`.

    Rejects absolute keys, parent-directory segments, unexpected characters,
    and keys outside *allowed_prefixes* (when given).
    """
    if not key or key.startswith("/") or "\\" in key:
        raise InvalidObjectKeyError(f"Invalid object key: {key!r}")
    if not _KEY_PATTERN.fullmatch(key):
        raise InvalidObjectKeyError(f"Object key contains disallowed characters: {key!r}")
    segments = key.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise InvalidObjectKeyError(f"Object key has an empty or relative segment: {key!r}")
    normalized = posixpath.normpath(key)
    if allowed_prefixes and not any(
        normalized == prefix.rstrip("/") or normalized.startswith(prefix.rstrip("/") + "/")
        for prefix in allowed_prefixes
    ):
        raise InvalidObjectKeyError(f"Object key is outside the allowed prefixes: {key!r}")
    return normalized
