"""Filesystem-backed object store.

Objects live at ``<base_path>/<key>``.  Writes go to a temporary sibling
and are moved into place with ``os.replace`` so readers never observe a
partially written chunk.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO

from ingestkit_workbook.errors import (
    InvalidObjectKeyError,
    ObjectNotFoundError,
    StoreRejectedError,
    TransientStoreError,
)
from ingestkit_workbook.security import validate_object_key

logger = logging.getLogger("ingestkit_workbook")


class FileSystemObjectStore:
    """Local-directory implementation of ``ObjectStore``.

    Parameters
    ----------
    base_path:
        Root directory; created on first use.
    """

    def __init__(self, base_path: str | os.PathLike = "./ingestkit_objects") -> None:
        self._base = Path(base_path).resolve()

    @property
    def base_path(self) -> Path:
        return self._base

    def _path(self, key: str) -> Path:
        normalized = validate_object_key(key)
        path = (self._base / normalized).resolve()
        if self._base != path and self._base not in path.parents:
            raise InvalidObjectKeyError(f"Object key escapes the store root: {key!r}")
        return path

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except PermissionError as exc:
            raise StoreRejectedError(f"Permission denied writing {key!r}: {exc}") from exc
        except OSError as exc:
            raise TransientStoreError(f"Failed to write {key!r}: {exc}") from exc
        finally:
            if tmp.exists():
                tmp.unlink()
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), content_type)

    def get_object(self, key: str) -> BinaryIO:
        path = self._path(key)
        try:
            return open(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise ObjectNotFoundError(f"No object at key {key!r}") from exc
        except PermissionError as exc:
            raise StoreRejectedError(f"Permission denied reading {key!r}: {exc}") from exc
        except OSError as exc:
            raise TransientStoreError(f"Failed to read {key!r}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()
