"""In-process memo of parsed records.

The cache only saves re-reading files within one invocation. It is never
persisted and never used to coordinate between processes; writers must call
:meth:`RecordCache.clear` after changing a record.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class _Entry(Generic[T]):
    path: Path
    mtime_ns: int | None
    value: T | None


def _mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


class RecordCache(Generic[T]):
    """Per-name cache of loaded records keyed by the file they came from."""

    def __init__(self) -> None:
        """Start with an empty cache."""
        self._entries: dict[str, _Entry[T]] = {}

    def mark_cached(self, name: str, path: Path, value: T | None = None) -> None:
        """Remember that *name* was loaded from *path*."""
        self._entries[name] = _Entry(path=Path(path), mtime_ns=_mtime_ns(Path(path)), value=value)

    def is_cached(self, name: str) -> bool:
        """Return ``True`` when *name* has been marked as loaded."""
        return name in self._entries

    def is_stale(self, name: str) -> bool:
        """Return ``True`` when the backing file changed since it was cached."""
        entry = self._entries.get(name)
        if entry is None:
            return False
        return _mtime_ns(entry.path) != entry.mtime_ns

    def get(self, name: str) -> T | None:
        """Return the memoised value for *name*, dropping stale entries."""
        entry = self._entries.get(name)
        if entry is None:
            return None
        if self.is_stale(name):
            del self._entries[name]
            return None
        return entry.value

    def path_for(self, name: str) -> Path | None:
        """Return the path *name* was loaded from, if cached."""
        entry = self._entries.get(name)
        return entry.path if entry else None

    def clear(self, name: str) -> None:
        """Forget *name*."""
        self._entries.pop(name, None)

    def clear_all(self) -> None:
        """Forget every cached record."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["RecordCache"]
