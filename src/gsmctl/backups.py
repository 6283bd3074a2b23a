"""Move install directories into named backups and back again.

A backup is the directory ``<instance>-<version>-<timestamp>.backup`` under
the instance's ``backups`` directory holding the complete previous contents
of ``install``. Contents are moved, not copied, so a backup is cheap and the
install directory is left empty afterwards.
"""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from .errors import InvalidArgumentError, IOFailureError, NotFoundError, from_os_error
from .instances import Instance

BACKUP_SUFFIX = ".backup"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"


class BackupError(IOFailureError):
    """Raised when backup operations fail."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class BackupEntry:
    """A backup directory belonging to one instance."""

    id: str
    path: Path
    instance: str
    version: str
    created_at: datetime | None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "path": str(self.path),
            "instance": self.instance,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Version brought back by a restore and the backup of what it replaced."""

    version: str
    displaced: BackupEntry | None = None


def backup_name(instance: str, version: str, when: datetime) -> str:
    """Return the directory name for a backup."""
    return f"{instance}-{version or '0'}-{when.strftime(TIMESTAMP_FORMAT)}{BACKUP_SUFFIX}"


def parse_backup_name(instance: str, name: str) -> tuple[str, datetime | None] | None:
    """Return ``(version, created_at)`` for a backup of *instance*, else ``None``."""
    prefix = f"{instance}-"
    if not name.startswith(prefix) or not name.endswith(BACKUP_SUFFIX):
        return None
    stem = name[len(prefix) : -len(BACKUP_SUFFIX)]
    version, sep, stamp = stem.rpartition("-")
    if not sep or not version:
        return None
    try:
        created = datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        created = None
    return version, created


def is_empty_dir(path: Path) -> bool:
    """Return ``True`` when *path* is missing or has no entries."""
    if not path.is_dir():
        return True
    return next(path.iterdir(), None) is None


def move_contents(source: Path, destination: Path) -> list[Path]:
    """Move every entry of *source* into *destination*.

    If a move fails, entries already moved are put back before the error is
    raised, so *source* ends up as it started.
    """
    moved: list[tuple[Path, Path]] = []
    try:
        for entry in sorted(source.iterdir()):
            target = destination / entry.name
            shutil.move(str(entry), str(target))
            moved.append((entry, target))
    except OSError as exc:
        for original, target in reversed(moved):
            shutil.move(str(target), str(original))
        raise from_os_error(exc, f"Failed to move {source} into {destination}") from exc
    return [target for _, target in moved]


def clear_directory(path: Path) -> None:
    """Remove every entry inside *path*, keeping the directory itself."""
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


@dataclass(slots=True)
class BackupManager:
    """Create, list and restore instance backups."""

    clock: Callable[[], datetime] = _utcnow

    def create(self, instance: Instance) -> BackupEntry | None:
        """Move ``install`` into a new backup; ``None`` when there is nothing to back up."""
        if is_empty_dir(instance.install_dir):
            return None

        when = self.clock()
        try:
            instance.backups_dir.mkdir(parents=True, exist_ok=True)
            while True:
                name = backup_name(instance.name, instance.version, when)
                path = instance.backups_dir / name
                try:
                    path.mkdir()
                    break
                except FileExistsError:
                    when += timedelta(seconds=1)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to prepare backup for {instance.name}") from exc

        try:
            move_contents(instance.install_dir, path)
        except Exception:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return BackupEntry(
            id=name,
            path=path,
            instance=instance.name,
            version=instance.version or "0",
            created_at=when.replace(microsecond=0),
        )

    def list(self, instance: Instance) -> list[BackupEntry]:
        """Return backups of *instance*, newest first."""
        if not instance.backups_dir.is_dir():
            return []
        entries: list[BackupEntry] = []
        for path in instance.backups_dir.iterdir():
            if not path.is_dir():
                continue
            parsed = parse_backup_name(instance.name, path.name)
            if parsed is None:
                continue
            version, created = parsed
            entries.append(BackupEntry(path.name, path, instance.name, version, created))
        epoch = datetime.min.replace(tzinfo=UTC)
        entries.sort(key=lambda entry: (entry.created_at or epoch, entry.id), reverse=True)
        return entries

    def find(self, instance: Instance, backup_id: str) -> BackupEntry:
        """Return the backup identified by its directory name (suffix optional)."""
        wanted = backup_id if backup_id.endswith(BACKUP_SUFFIX) else f"{backup_id}{BACKUP_SUFFIX}"
        for entry in self.list(instance):
            if entry.id == wanted:
                return entry
        raise NotFoundError(f"Backup '{backup_id}' not found for instance '{instance.name}'.")

    def restore(
        self, instance: Instance, entry: BackupEntry, *, overwrite: bool = False
    ) -> RestoreResult:
        """Move *entry* back into ``install`` and delete it.

        With *overwrite*, whatever currently sits in ``install`` is first moved
        into a new backup of its own, so nothing is discarded.
        """
        install_dir = instance.install_dir
        displaced = None
        if not is_empty_dir(install_dir):
            if not overwrite:
                raise InvalidArgumentError(
                    f"Install directory {install_dir} is not empty; "
                    "confirm the restore to overwrite it."
                )
            displaced = self.create(instance)
        try:
            install_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to create {install_dir}") from exc

        move_contents(entry.path, install_dir)
        try:
            entry.path.rmdir()
        except OSError as exc:
            raise BackupError(f"Restored but could not remove {entry.path}: {exc}") from exc
        return RestoreResult(version=entry.version, displaced=displaced)


__all__ = [
    "BACKUP_SUFFIX",
    "BackupEntry",
    "BackupError",
    "BackupManager",
    "RestoreResult",
    "backup_name",
    "clear_directory",
    "is_empty_dir",
    "move_contents",
    "parse_backup_name",
]
