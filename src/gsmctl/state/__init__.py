"""Persistent record helpers and the in-process record cache."""
from __future__ import annotations

from .cache import RecordCache
from .records import RecordFile, RecordFileError, parse_assignments, render_assignments

__all__ = [
    "RecordCache",
    "RecordFile",
    "RecordFileError",
    "parse_assignments",
    "render_assignments",
]
