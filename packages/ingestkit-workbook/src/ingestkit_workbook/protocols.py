"""Collaborator protocols for the ingestkit-workbook pipeline.

Defines the structural-subtyping interfaces for the object store and the
progress callback.  ``ObjectStore`` is ``@runtime_checkable`` so callers can
optionally verify conformance with ``isinstance`` checks.
"""

from __future__ import annotations

from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class ObjectStore(Protocol):
    """Interface for object/content stores (filesystem, HTTP, S3 gateways).

    Implementations raise ``ObjectNotFoundError`` for missing keys and
    ``TransientStoreError`` for failures worth retrying; anything else is
    treated as permanent.
    """

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """Durably store *data* under *key*, replacing any previous object."""
        ...

    def get_object(self, key: str) -> BinaryIO:
        """Return a readable binary stream over the object at *key*."""
        ...


class ProgressCallback(Protocol):
    """Job progress sink: *percent* in ``0..100`` plus a short message."""

    def __call__(self, percent: float, message: str) -> None: ...
