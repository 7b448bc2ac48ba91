"""Concrete object-store backends for ingestkit-workbook.

The filesystem and in-memory stores are stdlib only.  The HTTP store needs
the optional ``httpx`` dependency and is guarded with a lazy
``try/except ImportError`` so the package works without it.
"""

from __future__ import annotations

# --- Always-available backends (stdlib only) ---
from ingestkit_workbook.backends.filesystem import FileSystemObjectStore
from ingestkit_workbook.backends.memory import MemoryObjectStore

# --- Optional-dep backends (lazy import guards) ---
HttpObjectStore = None

try:
    from ingestkit_workbook.backends.http import HttpObjectStore  # type: ignore[assignment]
except ImportError:
    pass

__all__ = [
    "FileSystemObjectStore",
    "MemoryObjectStore",
    "HttpObjectStore",
]
