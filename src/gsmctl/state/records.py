"""Flat ``key="value"`` record files.

Instance records and native blueprints share this format: one shell-style
assignment per line, ``#`` comments and blank lines ignored. Records are
written atomically so a reader never observes a partially written file.
"""
from __future__ import annotations

import os
import re
import shlex
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..errors import InvalidConfigError, from_os_error

_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RecordFileError(InvalidConfigError):
    """Raised when a record file cannot be parsed."""


def parse_assignments(text: str, *, source: str = "<record>") -> dict[str, str]:
    """Parse shell-style assignments from *text*."""
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, rest = line.partition("=")
        key = key.strip()
        if not sep or not _KEY.match(key):
            raise RecordFileError(f"{source}:{lineno}: expected key=value, got {raw!r}")
        try:
            tokens = shlex.split(rest, comments=True)
        except ValueError as exc:
            raise RecordFileError(f"{source}:{lineno}: {exc}") from exc
        values[key] = " ".join(tokens)
    return values


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_assignments(values: Mapping[str, object]) -> str:
    """Render *values* as ``key="value"`` lines."""
    lines = []
    for key, value in values.items():
        if not _KEY.match(key):
            raise RecordFileError(f"Invalid record key: {key!r}")
        lines.append(f"{key}={_quote('' if value is None else str(value))}")
    return "\n".join(lines) + "\n"


@dataclass(frozen=True, slots=True)
class RecordFile:
    """A single record file on disk."""

    path: Path

    def exists(self) -> bool:
        """Return ``True`` when the record file is present."""
        return self.path.is_file()

    def read(self) -> dict[str, str]:
        """Return the parsed record."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise from_os_error(exc, f"Failed to read record {self.path}") from exc
        return parse_assignments(text, source=str(self.path))

    def write(self, values: Mapping[str, object]) -> None:
        """Atomically replace the record with *values*."""
        payload = render_assignments(values)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}."
            )
        except OSError as exc:
            raise from_os_error(exc, f"Failed to prepare record {self.path}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.chmod(tmp_path, 0o640)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to write record {self.path}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def delete(self) -> bool:
        """Remove the record; return ``False`` when it was already absent."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise from_os_error(exc, f"Failed to remove record {self.path}") from exc
        return True


__all__ = ["RecordFile", "RecordFileError", "parse_assignments", "render_assignments"]
