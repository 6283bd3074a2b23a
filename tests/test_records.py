"""Tests for record files and the in-process record cache."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from gsmctl.state import RecordCache, RecordFile, RecordFileError, parse_assignments


def test_parse_assignments_handles_quotes_comments_and_export() -> None:
    """Shell-style assignments are parsed without evaluating anything."""
    text = (
        "# comment\n"
        "\n"
        'name="valheim"\n'
        "export version='1.2.0'\n"
        'arguments="-name \\"demo world\\" -port 2456"  # trailing\n'
    )

    values = parse_assignments(text, source="test")

    assert values == {
        "name": "valheim",
        "version": "1.2.0",
        "arguments": '-name "demo world" -port 2456',
    }


def test_parse_assignments_rejects_garbage() -> None:
    """Lines that are not assignments are reported with their location."""
    with pytest.raises(RecordFileError, match="test:2"):
        parse_assignments('name="ok"\nnot an assignment\n', source="test")


def test_record_file_write_is_atomic_and_readable(tmp_path: Path) -> None:
    """Records round-trip values containing quotes and shell characters."""
    record = RecordFile(tmp_path / "valheim" / "valheim.ini")
    values = {"name": "valheim", "arguments": 'say "hi" $HOME `id` \\o/'}

    record.write(values)

    assert record.exists()
    assert record.read() == values
    assert oct(record.path.stat().st_mode & 0o777) == "0o640"
    assert [path.name for path in record.path.parent.iterdir()] == ["valheim.ini"]


def test_record_file_delete_is_idempotent(tmp_path: Path) -> None:
    """Deleting a missing record reports ``False`` instead of failing."""
    record = RecordFile(tmp_path / "gone.ini")
    record.write({"name": "gone"})

    assert record.delete() is True
    assert record.delete() is False


def test_record_cache_detects_stale_entries(tmp_path: Path) -> None:
    """Changing the backing file invalidates the cached value."""
    path = tmp_path / "alpha.ini"
    path.write_text('name="alpha"\n')
    cache: RecordCache[str] = RecordCache()

    cache.mark_cached("alpha", path, "cached")
    assert cache.is_cached("alpha")
    assert cache.get("alpha") == "cached"

    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))

    assert cache.is_stale("alpha")
    assert cache.get("alpha") is None
    assert not cache.is_cached("alpha")


def test_record_cache_clear(tmp_path: Path) -> None:
    """Cleared names are forgotten; other entries survive until clear_all."""
    cache: RecordCache[int] = RecordCache()
    cache.mark_cached("a", tmp_path / "a.ini", 1)
    cache.mark_cached("b", tmp_path / "b.ini", 2)

    cache.clear("a")
    assert len(cache) == 1
    assert cache.path_for("b") == tmp_path / "b.ini"

    cache.clear_all()
    assert len(cache) == 0
