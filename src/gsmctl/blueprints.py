"""Blueprint discovery and parsing.

A blueprint is the read-only template an instance is created from. Native
blueprints are ``<name>.bp`` files of shell-style assignments describing a
server binary; container blueprints are ``<name>.docker-compose.yml``
descriptors. The custom blueprint directory shadows the default one.
"""
from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import InvalidConfigError, NotFoundError, from_os_error
from .ports import compose_to_firewall_ports, extract_blueprint_name
from .state import RecordCache, parse_assignments

NATIVE_SUFFIXES = (".bp",)
CONTAINER_SUFFIXES = (".docker-compose.yml", ".docker-compose.yaml")
_SUBDIRECTORIES = ("", "native", "container")
_TRUE_VALUES = {"1", "true", "yes", "on"}


class BlueprintKind(str, enum.Enum):
    """How an instance of the blueprint is run."""

    NATIVE = "native"
    CONTAINER = "container"


@dataclass(frozen=True, slots=True)
class Blueprint:
    """Parsed blueprint attributes."""

    name: str
    kind: BlueprintKind
    path: Path
    ports: str = ""
    display_name: str = ""
    executable_file: str = ""
    executable_subdirectory: str = ""
    executable_arguments: str = ""
    stop_command: str = ""
    save_command: str = ""
    steam_app_id: str | None = None
    steam_account_required: bool = False
    version_command: str | None = None
    download_command: str | None = None
    image: str | None = None
    compose: Mapping[str, object] = field(default_factory=dict)

    @property
    def title(self) -> str:
        """Human readable name."""
        return self.display_name or self.name

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "path": str(self.path),
            "ports": self.ports,
            "executable_file": self.executable_file,
            "steam_app_id": self.steam_app_id,
            "image": self.image,
        }


def _kind_for(path: Path) -> BlueprintKind | None:
    if path.name.endswith(CONTAINER_SUFFIXES):
        return BlueprintKind.CONTAINER
    if path.name.endswith(NATIVE_SUFFIXES):
        return BlueprintKind.NATIVE
    return None


def parse_native_blueprint(path: Path, text: str) -> Blueprint:
    """Build a native :class:`Blueprint` from ``.bp`` file contents."""
    raw = parse_assignments(text, source=str(path))
    values = {
        key[len("blueprint_") :] if key.startswith("blueprint_") else key: value
        for key, value in raw.items()
    }
    name = values.get("name") or extract_blueprint_name(path)
    return Blueprint(
        name=name,
        kind=BlueprintKind.NATIVE,
        path=path,
        ports=values.get("ports", ""),
        display_name=values.get("display_name", ""),
        executable_file=values.get("executable_file", ""),
        executable_subdirectory=values.get("executable_subdirectory", ""),
        executable_arguments=values.get("executable_arguments", ""),
        stop_command=values.get("stop_command", ""),
        save_command=values.get("save_command", ""),
        steam_app_id=values.get("steam_app_id") or None,
        steam_account_required=(
            values.get("is_steam_account_required", "").lower() in _TRUE_VALUES
        ),
        version_command=values.get("version_command") or None,
        download_command=values.get("download_command") or None,
    )


def parse_container_blueprint(path: Path, text: str) -> Blueprint:
    """Build a container :class:`Blueprint` from a compose document."""
    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise InvalidConfigError(f"Failed to parse compose file {path}: {exc}") from exc
    if not isinstance(document, Mapping):
        raise InvalidConfigError(f"Compose file {path} must contain a mapping.")
    services = document.get("services")
    if not isinstance(services, Mapping) or not services:
        raise InvalidConfigError(f"Compose file {path} declares no services.")

    image = None
    for service in services.values():
        if isinstance(service, Mapping) and isinstance(service.get("image"), str):
            image = str(service["image"])
            break

    return Blueprint(
        name=extract_blueprint_name(path),
        kind=BlueprintKind.CONTAINER,
        path=path,
        ports=compose_to_firewall_ports(document),
        image=image,
        compose=dict(document),
    )


class BlueprintCatalog:
    """Locate and load blueprints from the custom and default directories."""

    def __init__(
        self,
        default_dir: Path,
        custom_dir: Path | None = None,
        *,
        cache: RecordCache[Blueprint] | None = None,
    ) -> None:
        """Configure search directories; *cache* is shared for the invocation."""
        self.default_dir = Path(default_dir)
        self.custom_dir = Path(custom_dir) if custom_dir is not None else None
        self.cache: RecordCache[Blueprint] = cache if cache is not None else RecordCache()

    def _search_dirs(self) -> list[Path]:
        roots = [self.custom_dir, self.default_dir]
        return [root / sub if sub else root for root in roots if root for sub in _SUBDIRECTORIES]

    def find(self, name: str) -> Path:
        """Return the path of blueprint *name* (a name or a file path)."""
        candidate = Path(name)
        if candidate.is_absolute():
            if candidate.is_file() and _kind_for(candidate) is not None:
                return candidate
            raise NotFoundError(f"Blueprint file '{name}' not found.")

        bare = extract_blueprint_name(name)
        for directory in self._search_dirs():
            for suffix in NATIVE_SUFFIXES + CONTAINER_SUFFIXES:
                path = directory / f"{bare}{suffix}"
                if path.is_file():
                    return path
        raise NotFoundError(f"Blueprint '{bare}' not found.")

    def load(self, name: str) -> Blueprint:
        """Return the parsed blueprint *name*."""
        key = extract_blueprint_name(name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        path = self.find(name)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise from_os_error(exc, f"Failed to read blueprint {path}") from exc

        if _kind_for(path) is BlueprintKind.CONTAINER:
            blueprint = parse_container_blueprint(path, text)
        else:
            blueprint = parse_native_blueprint(path, text)
        self.cache.mark_cached(key, path, blueprint)
        return blueprint

    def list(self) -> list[str]:
        """Return the sorted names of every available blueprint."""
        names: set[str] = set()
        for directory in self._search_dirs():
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if path.is_file() and _kind_for(path) is not None:
                    names.add(extract_blueprint_name(path))
        return sorted(names)


__all__ = [
    "Blueprint",
    "BlueprintCatalog",
    "BlueprintKind",
    "parse_container_blueprint",
    "parse_native_blueprint",
]
