"""Style deduplication for one conversion run.

:class:`StyleInterner` maps each distinct :class:`StyleDescriptor` to a short
synthetic key (``s0``, ``s1``, ...).  Equality is structural: two descriptors
share a key iff their canonical JSON serializations are identical.  The table
is append-only and scoped to a single output document.
"""

from __future__ import annotations

import threading

from openpyxl.styles.colors import COLOR_INDEX

from ingestkit_workbook.models import StyleDescriptor


class StyleInterner:
    """Document-scoped, append-only style table.

    Parameters
    ----------
    prefix:
        Prefix for generated keys.
    """

    def __init__(self, prefix: str = "s") -> None:
        self._prefix = prefix
        self._keys_by_canonical: dict[str, str] = {}
        self._table: dict[str, StyleDescriptor] = {}
        self._lock = threading.Lock()

    def intern(self, descriptor: StyleDescriptor) -> str:
        """Return the key for *descriptor*, allocating one on first sight."""
        canonical = descriptor.canonical_key()
        with self._lock:
            key = self._keys_by_canonical.get(canonical)
            if key is None:
                key = f"{self._prefix}{len(self._table)}"
                self._keys_by_canonical[canonical] = key
                self._table[key] = descriptor
            return key

    def table(self) -> dict[str, StyleDescriptor]:
        """Return a snapshot of the key -> descriptor table in allocation order."""
        with self._lock:
            return dict(self._table)

    def __contains__(self, key: object) -> bool:
        return key in self._table

    def __len__(self) -> int:
        return len(self._table)


# ---------------------------------------------------------------------------
# Color normalization
# ---------------------------------------------------------------------------


def argb_to_hex(argb: object) -> str | None:
    """Convert an ``AARRGGBB`` (or ``RRGGBB``) string to ``#RRGGBB``."""
    if not isinstance(argb, str):
        return None
    value = argb.strip().lstrip("#")
    if len(value) == 8:
        value = value[2:]
    if len(value) != 6:
        return None
    try:
        int(value, 16)
    except ValueError:
        return None
    return f"#{value.upper()}"


def indexed_to_hex(index: object) -> str | None:
    """Resolve a legacy palette index to ``#RRGGBB``; system colors resolve to *None*."""
    if not isinstance(index, int) or isinstance(index, bool):
        return None
    if 0 <= index < len(COLOR_INDEX):
        return argb_to_hex(COLOR_INDEX[index])
    return None
