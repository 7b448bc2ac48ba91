"""In-process object store, used by the benchmark script and local runs."""

from __future__ import annotations

import io
import threading
from typing import BinaryIO

from ingestkit_workbook.errors import ObjectNotFoundError


class MemoryObjectStore:
    """Dict-backed ``ObjectStore``; safe for concurrent asset uploads."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self._lock = threading.Lock()

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self.objects[key] = bytes(data)
            self.content_types[key] = content_type

    def get_object(self, key: str) -> BinaryIO:
        with self._lock:
            data = self.objects.get(key)
        if data is None:
            raise ObjectNotFoundError(f"No object at key {key!r}")
        return io.BytesIO(data)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self.objects if k.startswith(prefix))
