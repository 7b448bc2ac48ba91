"""Deterministic ingest-key computation for deduplication.

:func:`compute_ingest_key` hashes a workbook on disk; :func:`ingest_key_for_hash`
builds the same key from a hash already computed while streaming a source.
Identical content, parser version and tenant always yield the same
:pyattr:`IngestKey.key` digest.

The key is provided, not enforced: deciding whether to skip a repeated
ingestion is the caller's job.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from ingestkit_workbook.models import IngestKey

_READ_BLOCK = 1024 * 1024


def compute_ingest_key(
    file_path: str,
    parser_version: str,
    tenant_id: str | None = None,
    source_uri: str | None = None,
) -> IngestKey:
    """Compute a deterministic ingest key for a workbook on disk.

    Parameters
    ----------
    file_path:
        Path to the workbook to hash.
    parser_version:
        Parser version string (e.g. ``"ingestkit_workbook:1.0.0"``).
    tenant_id:
        Optional tenant identifier for multi-tenant scenarios.
    source_uri:
        Optional override for the source URI stored in the key.  When
        *None*, the canonical absolute POSIX path of *file_path* is used.

    Raises
    ------
    FileNotFoundError
        If *file_path* does not exist.
    """
    digest = hashlib.sha256()
    with open(file_path, "rb") as fh:
        for block in iter(lambda: fh.read(_READ_BLOCK), b""):
            digest.update(block)

    if source_uri is None:
        source_uri = Path(file_path).resolve().as_posix()

    return ingest_key_for_hash(digest.hexdigest(), source_uri, parser_version, tenant_id)


def ingest_key_for_hash(
    content_hash: str,
    source_uri: str,
    parser_version: str,
    tenant_id: str | None = None,
) -> IngestKey:
    """Build an :class:`IngestKey` from an already computed SHA-256 content hash."""
    return IngestKey(
        content_hash=content_hash,
        source_uri=source_uri,
        parser_version=parser_version,
        tenant_id=tenant_id,
    )
