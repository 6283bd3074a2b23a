"""Instance model and the record store that persists it.

The record file under ``<records_dir>/<blueprint>/<name>.ini`` is the single
source of truth for an instance's version and paths. Every sub-directory is
derived from ``working_dir``; nothing else about the layout is stored.
"""
from __future__ import annotations

import enum
import re
import secrets
import string
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path

from .blueprints import Blueprint, BlueprintKind
from .errors import (
    InvalidArgumentError,
    InvalidConfigError,
    NameExhaustedError,
    NotFoundError,
)
from .state import RecordCache, RecordFile

RECORD_SUFFIX = ".ini"
NOT_INSTALLED_VERSIONS = frozenset({"", "0"})
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_REQUIRED_KEYS = ("name", "blueprint", "blueprint_file", "working_dir", "supervision", "kind")


class SupervisionKind(str, enum.Enum):
    """Backend responsible for running an instance's process."""

    SYSTEMD = "systemd"
    STANDALONE = "standalone"
    CONTAINER = "container"


@dataclass(frozen=True, slots=True)
class Instance:
    """A single deployment of a blueprint."""

    name: str
    blueprint: str
    blueprint_path: Path
    working_dir: Path
    supervision: SupervisionKind
    kind: BlueprintKind
    version: str = "0"
    installed_at: str = ""

    @property
    def install_dir(self) -> Path:
        return self.working_dir / "install"

    @property
    def backups_dir(self) -> Path:
        return self.working_dir / "backups"

    @property
    def saves_dir(self) -> Path:
        return self.working_dir / "saves"

    @property
    def temp_dir(self) -> Path:
        return self.working_dir / "temp"

    @property
    def logs_dir(self) -> Path:
        return self.working_dir / "logs"

    @property
    def config_dir(self) -> Path:
        return self.working_dir / "config"

    @property
    def management_script(self) -> Path:
        return self.working_dir / f"{self.name}.manage.sh"

    @property
    def pid_file(self) -> Path:
        return self.working_dir / f".{self.name}.pid"

    @property
    def input_fifo(self) -> Path:
        return self.working_dir / f".{self.name}.stdin"

    @property
    def log_file(self) -> Path:
        return self.logs_dir / f"{self.name}.log"

    @property
    def directories(self) -> tuple[Path, ...]:
        """Every directory created for the instance, working directory first."""
        return (
            self.working_dir,
            self.install_dir,
            self.backups_dir,
            self.saves_dir,
            self.temp_dir,
            self.logs_dir,
            self.config_dir,
        )

    @property
    def is_installed(self) -> bool:
        """Return ``True`` when a server version has been deployed."""
        return self.version not in NOT_INSTALLED_VERSIONS

    def to_record(self) -> dict[str, object]:
        """Return the flat mapping written to the record file."""
        return {
            "name": self.name,
            "blueprint": self.blueprint,
            "blueprint_file": str(self.blueprint_path),
            "working_dir": str(self.working_dir),
            "supervision": self.supervision.value,
            "kind": self.kind.value,
            "version": self.version,
            "installed_at": self.installed_at,
        }

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable view including derived paths."""
        payload = self.to_record()
        payload.update(
            {
                "install_dir": str(self.install_dir),
                "backups_dir": str(self.backups_dir),
                "saves_dir": str(self.saves_dir),
                "temp_dir": str(self.temp_dir),
                "logs_dir": str(self.logs_dir),
                "config_dir": str(self.config_dir),
                "management_script": str(self.management_script),
            }
        )
        return payload

    @classmethod
    def from_record(cls, values: Mapping[str, str], *, source: str) -> Instance:
        """Validate and build an :class:`Instance` from a parsed record."""
        missing = [key for key in _REQUIRED_KEYS if not values.get(key)]
        if missing:
            joined = ", ".join(missing)
            raise InvalidConfigError(f"Record {source} is missing required keys: {joined}.")

        working_dir = Path(values["working_dir"])
        blueprint_path = Path(values["blueprint_file"])
        for label, path in (("working_dir", working_dir), ("blueprint_file", blueprint_path)):
            if not path.is_absolute():
                raise InvalidConfigError(
                    f"Record {source} has a relative {label}: {path}. Paths must be absolute."
                )

        try:
            supervision = SupervisionKind(values["supervision"])
            kind = BlueprintKind(values["kind"])
        except ValueError as exc:
            raise InvalidConfigError(f"Record {source}: {exc}") from exc

        return cls(
            name=values["name"],
            blueprint=values["blueprint"],
            blueprint_path=blueprint_path,
            working_dir=working_dir,
            supervision=supervision,
            kind=kind,
            version=values.get("version", "0") or "0",
            installed_at=values.get("installed_at", ""),
        )


def _random_digits(length: int) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def validate_instance_name(name: str) -> str:
    """Return *name* when it is usable as an instance name."""
    candidate = name.strip()
    if not _NAME_PATTERN.match(candidate):
        raise InvalidArgumentError(
            "Instance names must start with a letter or digit and contain only "
            "letters, digits, '.', '_' or '-'."
        )
    return candidate


class InstanceStore:
    """Create, load, update and delete instance records."""

    def __init__(
        self,
        records_dir: Path,
        *,
        cache: RecordCache[Instance] | None = None,
        suffix_length: int = 2,
        name_attempts: int = 20,
        suffix_factory: Callable[[int], str] = _random_digits,
    ) -> None:
        """Configure the record directory and name generation policy."""
        self.records_dir = Path(records_dir)
        self.cache: RecordCache[Instance] = cache if cache is not None else RecordCache()
        self.suffix_length = suffix_length
        self.name_attempts = name_attempts
        self._suffix_factory = suffix_factory

    def record_path(self, blueprint: str, name: str) -> Path:
        """Return the record location for instance *name* of *blueprint*."""
        return self.records_dir / blueprint / f"{name}{RECORD_SUFFIX}"

    def _locate(self, name: str) -> Path | None:
        cached = self.cache.path_for(name)
        if cached is not None and cached.is_file():
            return cached
        if not self.records_dir.is_dir():
            return None
        for path in sorted(self.records_dir.glob(f"*/{name}{RECORD_SUFFIX}")):
            if path.is_file():
                return path
        return None

    def exists(self, name: str) -> bool:
        """Return ``True`` when a record for *name* exists."""
        return self._locate(name) is not None

    def load(self, name: str) -> Instance:
        """Return the instance called *name*."""
        cached = self.cache.get(name)
        if cached is not None:
            return cached
        path = self._locate(name)
        if path is None:
            raise NotFoundError(f"Instance '{name}' not found.")
        instance = Instance.from_record(RecordFile(path).read(), source=str(path))
        self.cache.mark_cached(name, path, instance)
        return instance

    def list(self) -> list[Instance]:
        """Return every instance, sorted by name."""
        if not self.records_dir.is_dir():
            return []
        names = sorted(
            {path.stem for path in self.records_dir.glob(f"*/*{RECORD_SUFFIX}") if path.is_file()}
        )
        return [self.load(name) for name in names]

    def generate_name(self, blueprint: str) -> str:
        """Return a free instance name derived from *blueprint*."""
        base = validate_instance_name(blueprint)
        if not self.exists(base):
            return base
        for _ in range(self.name_attempts):
            candidate = f"{base}-{self._suffix_factory(self.suffix_length)}"
            if not self.exists(candidate):
                return candidate
        raise NameExhaustedError(
            f"Could not find a free instance name for '{blueprint}' after "
            f"{self.name_attempts} attempts."
        )

    def create(
        self,
        blueprint: Blueprint,
        *,
        install_root: Path,
        supervision: SupervisionKind,
        name: str | None = None,
    ) -> Instance:
        """Persist a new instance record for *blueprint*."""
        if not Path(install_root).is_absolute():
            raise InvalidArgumentError(f"Install directory must be absolute: {install_root}")
        if name is not None:
            resolved = validate_instance_name(name)
            if self.exists(resolved):
                raise InvalidArgumentError(f"Instance '{resolved}' already exists.")
        else:
            resolved = self.generate_name(blueprint.name)

        if blueprint.kind is BlueprintKind.CONTAINER:
            supervision = SupervisionKind.CONTAINER
        elif supervision is SupervisionKind.CONTAINER:
            raise InvalidArgumentError(
                f"Blueprint '{blueprint.name}' is native and cannot use the container backend."
            )

        instance = Instance(
            name=resolved,
            blueprint=blueprint.name,
            blueprint_path=blueprint.path.resolve(),
            working_dir=Path(install_root) / resolved,
            supervision=supervision,
            kind=blueprint.kind,
            version="0",
            installed_at=datetime.now(tz=UTC).isoformat(timespec="seconds"),
        )
        self._write(instance)
        return instance

    def set_version(self, instance: Instance, version: str) -> Instance:
        """Persist *version* as the installed version and return the new instance."""
        updated = replace(instance, version=version or "0")
        self._write(updated)
        return updated

    def delete(self, instance: Instance) -> bool:
        """Remove the record; return ``False`` when it was already gone."""
        removed = RecordFile(self.record_path(instance.blueprint, instance.name)).delete()
        self.cache.clear(instance.name)
        return removed

    def _write(self, instance: Instance) -> None:
        path = self.record_path(instance.blueprint, instance.name)
        RecordFile(path).write(instance.to_record())
        self.cache.clear(instance.name)


__all__ = [
    "Instance",
    "InstanceStore",
    "NOT_INSTALLED_VERSIONS",
    "SupervisionKind",
    "validate_instance_name",
]
