"""Configuration loader for gsmctl.

Values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/gsmctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``GSMCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export GSMCTL_INSTANCES__SUPERVISION=systemd
    export GSMCTL_EVENTS__WEBHOOK__ENABLED=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.

Toggles changed from the CLI (``events socket enable`` and friends) are
persisted back into the YAML file with :func:`set_config_value`.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import InvalidConfigError

ENV_PREFIX = "GSMCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

SUPERVISION_BACKENDS = ("systemd", "standalone", "container")


class ConfigError(InvalidConfigError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class InstancesConfig:
    """Defaults applied when creating and supervising instances."""

    root: Path = Path("/opt/gsm")
    supervision: str = "standalone"
    suffix_length: int = 2
    name_attempts: int = 20
    stop_timeout: float = 30.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "supervision": self.supervision,
            "suffix_length": self.suffix_length,
            "name_attempts": self.name_attempts,
            "stop_timeout": self.stop_timeout,
        }


@dataclass(frozen=True)
class BlueprintsConfig:
    """Where blueprint files are searched (custom before default)."""

    default_dir: Path = Path("/etc/gsmctl/blueprints/default")
    custom_dir: Path = Path("/etc/gsmctl/blueprints/custom")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"default_dir": str(self.default_dir), "custom_dir": str(self.custom_dir)}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    unit_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"unit_dir": str(self.unit_dir), "systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class FirewallConfig:
    """Firewall application profile generation."""

    enabled: bool = False
    rules_dir: Path = Path("/etc/ufw/applications.d")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"enabled": self.enabled, "rules_dir": str(self.rules_dir)}


@dataclass(frozen=True)
class ShortcutsConfig:
    """Command shortcut symlinks pointing at management scripts."""

    enabled: bool = False
    directory: Path = Path("/usr/local/bin")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"enabled": self.enabled, "directory": str(self.directory)}


@dataclass(frozen=True)
class ToolsConfig:
    """External executables invoked by downloaders and backends."""

    steamcmd_bin: str = "steamcmd"
    docker_bin: str = "docker"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"steamcmd_bin": self.steamcmd_bin, "docker_bin": self.docker_bin}


@dataclass(frozen=True)
class SocketEventsConfig:
    """Local Unix socket event transport."""

    enabled: bool = False
    paths: tuple[Path, ...] = ()
    timeout_seconds: float = 1.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "enabled": self.enabled,
            "paths": [str(path) for path in self.paths],
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass(frozen=True)
class WebhookEventsConfig:
    """HTTP webhook event transport."""

    enabled: bool = False
    url: str | None = None
    secondary_url: str | None = None
    secret: str | None = None
    timeout_seconds: float = 10.0
    retry_count: int = 2

    @property
    def urls(self) -> tuple[str, ...]:
        """Configured destinations, primary first."""
        return tuple(url for url in (self.url, self.secondary_url) if url)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the secret is masked)."""
        return {
            "enabled": self.enabled,
            "url": self.url,
            "secondary_url": self.secondary_url,
            "secret": "********" if self.secret else None,
            "timeout_seconds": self.timeout_seconds,
            "retry_count": self.retry_count,
        }


@dataclass(frozen=True)
class EventsConfig:
    """Aggregated event transport configuration."""

    socket: SocketEventsConfig = SocketEventsConfig()
    webhook: WebhookEventsConfig = WebhookEventsConfig()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"socket": self.socket.to_dict(), "webhook": self.webhook.to_dict()}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for gsmctl."""

    config_file: Path
    state_dir: Path
    records_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    instances: InstancesConfig
    blueprints: BlueprintsConfig
    systemd: SystemdConfig
    firewall: FirewallConfig
    shortcuts: ShortcutsConfig
    tools: ToolsConfig
    events: EventsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "records_dir": str(self.records_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "instances": self.instances.to_dict(),
            "blueprints": self.blueprints.to_dict(),
            "systemd": self.systemd.to_dict(),
            "firewall": self.firewall.to_dict(),
            "shortcuts": self.shortcuts.to_dict(),
            "tools": self.tools.to_dict(),
            "events": self.events.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/gsmctl/config.yml",
    "state_dir": "/var/lib/gsmctl",
    "records_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/gsmctl",
    "runtime_dir": "/run/gsmctl",
    "templates_dir": "/etc/gsmctl/templates",
    "lock_timeout": 30.0,
    "instances": {
        "root": "/opt/gsm",
        "supervision": "standalone",
        "suffix_length": 2,
        "name_attempts": 20,
        "stop_timeout": 30.0,
    },
    "blueprints": {
        "default_dir": "/etc/gsmctl/blueprints/default",
        "custom_dir": "/etc/gsmctl/blueprints/custom",
    },
    "systemd": {
        "unit_dir": "/etc/systemd/system",
        "systemctl_bin": "systemctl",
    },
    "firewall": {
        "enabled": False,
        "rules_dir": "/etc/ufw/applications.d",
    },
    "shortcuts": {
        "enabled": False,
        "directory": "/usr/local/bin",
    },
    "tools": {
        "steamcmd_bin": "steamcmd",
        "docker_bin": "docker",
    },
    "events": {
        "socket": {
            "enabled": False,
            "paths": None,  # derived from runtime_dir when absent
            "timeout_seconds": 1.0,
        },
        "webhook": {
            "enabled": False,
            "url": None,
            "secondary_url": None,
            "secret": None,
            "timeout_seconds": 10.0,
            "retry_count": 2,
        },
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    "instances": {"root", "supervision", "suffix_length", "name_attempts", "stop_timeout"},
    "blueprints": {"default_dir", "custom_dir"},
    "systemd": {"unit_dir", "systemctl_bin"},
    "firewall": {"enabled", "rules_dir"},
    "shortcuts": {"enabled", "directory"},
    "tools": {"steamcmd_bin", "docker_bin"},
    "events": {"socket", "webhook"},
    "events.socket": {"enabled", "paths", "timeout_seconds"},
    "events.webhook": {
        "enabled",
        "url",
        "secondary_url",
        "secret",
        "timeout_seconds",
        "retry_count",
    },
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def set_config_value(path: Path, dotted_key: str, value: object) -> None:
    """Persist ``dotted_key = value`` into the YAML file at *path*.

    The key is validated against the known configuration layout before the
    file is rewritten atomically.
    """
    segments = [segment for segment in dotted_key.split(".") if segment]
    if not segments:
        raise ConfigError("Configuration key must be a non-empty dotted path.")
    section = ".".join(segments[:-1])
    if section:
        allowed = SECTION_KEYS.get(section)
        if allowed is None or segments[-1] not in allowed:
            raise ConfigError(f"Unknown configuration key: {dotted_key}.")
    elif segments[0] not in ALLOWED_TOP_LEVEL_KEYS:
        raise ConfigError(f"Unknown configuration key: {dotted_key}.")

    data = _load_yaml_file(path)
    _assign_nested(data, segments, value)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(data, handle, sort_keys=False)
        os.replace(tmp_path, path)
        os.chmod(path, 0o640)
    except OSError as exc:
        raise ConfigError(f"Failed to write config file {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        mapping = _lookup_section(raw, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    supervision = _lookup_section(raw, "instances").get("supervision")
    if supervision is not None and str(supervision) not in SUPERVISION_BACKENDS:
        allowed_backends = ", ".join(SUPERVISION_BACKENDS)
        raise ConfigError(
            f"Unsupported supervision backend '{supervision}'. Allowed: {allowed_backends}."
        )


def _lookup_section(raw: Mapping[str, object], dotted: str) -> dict[str, object]:
    current: Mapping[str, object] = raw
    for segment in dotted.split("."):
        current = _as_dict(current.get(segment), dotted)
    return dict(current)


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    runtime_dir = _to_path(raw.get("runtime_dir"))
    templates_dir = _to_path(raw.get("templates_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    records_value = raw.get("records_dir")
    records_dir = _to_path(records_value) if records_value else state_dir / "instances"

    instances_map = _lookup_section(raw, "instances")
    suffix_length = _expect_int(
        instances_map.get("suffix_length"), "instances.suffix_length", default=2
    )
    name_attempts = _expect_int(
        instances_map.get("name_attempts"), "instances.name_attempts", default=20
    )
    if suffix_length <= 0 or name_attempts <= 0:
        raise ConfigError("instances.suffix_length and instances.name_attempts must be positive.")
    instances = InstancesConfig(
        root=_to_path(instances_map.get("root", "/opt/gsm")),
        supervision=str(instances_map.get("supervision", "standalone")),
        suffix_length=suffix_length,
        name_attempts=name_attempts,
        stop_timeout=_expect_positive_float(
            instances_map.get("stop_timeout"), "instances.stop_timeout", default=30.0
        ),
    )

    blueprints_map = _lookup_section(raw, "blueprints")
    blueprints = BlueprintsConfig(
        default_dir=_to_path(blueprints_map.get("default_dir", BlueprintsConfig.default_dir)),
        custom_dir=_to_path(blueprints_map.get("custom_dir", BlueprintsConfig.custom_dir)),
    )

    systemd_map = _lookup_section(raw, "systemd")
    systemd = SystemdConfig(
        unit_dir=_to_path(systemd_map.get("unit_dir", "/etc/systemd/system")),
        systemctl_bin=str(systemd_map.get("systemctl_bin", "systemctl")),
    )

    firewall_map = _lookup_section(raw, "firewall")
    firewall = FirewallConfig(
        enabled=_expect_bool(firewall_map.get("enabled"), "firewall.enabled", default=False),
        rules_dir=_to_path(firewall_map.get("rules_dir", "/etc/ufw/applications.d")),
    )

    shortcuts_map = _lookup_section(raw, "shortcuts")
    shortcuts = ShortcutsConfig(
        enabled=_expect_bool(shortcuts_map.get("enabled"), "shortcuts.enabled", default=False),
        directory=_to_path(shortcuts_map.get("directory", "/usr/local/bin")),
    )

    tools_map = _lookup_section(raw, "tools")
    tools = ToolsConfig(
        steamcmd_bin=str(tools_map.get("steamcmd_bin", "steamcmd")),
        docker_bin=str(tools_map.get("docker_bin", "docker")),
    )

    socket_map = _lookup_section(raw, "events.socket")
    paths_value = socket_map.get("paths")
    if paths_value in (None, "", []):
        socket_paths: tuple[Path, ...] = (runtime_dir / "events.sock",)
    elif isinstance(paths_value, str):
        socket_paths = (_to_path(paths_value),)
    else:
        socket_paths = tuple(
            _to_path(item) for item in _as_sequence(paths_value, "events.socket.paths")
        )
    socket = SocketEventsConfig(
        enabled=_expect_bool(socket_map.get("enabled"), "events.socket.enabled", default=False),
        paths=socket_paths,
        timeout_seconds=_expect_positive_float(
            socket_map.get("timeout_seconds"), "events.socket.timeout_seconds", default=1.0
        ),
    )

    webhook_map = _lookup_section(raw, "events.webhook")
    retry_count = _expect_int(
        webhook_map.get("retry_count"), "events.webhook.retry_count", default=2
    )
    if retry_count < 0:
        raise ConfigError("events.webhook.retry_count must be non-negative.")
    webhook = WebhookEventsConfig(
        enabled=_expect_bool(webhook_map.get("enabled"), "events.webhook.enabled", default=False),
        url=_optional_str(webhook_map.get("url")),
        secondary_url=_optional_str(webhook_map.get("secondary_url")),
        secret=_optional_str(webhook_map.get("secret")),
        timeout_seconds=_expect_positive_float(
            webhook_map.get("timeout_seconds"), "events.webhook.timeout_seconds", default=10.0
        ),
        retry_count=retry_count,
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        records_dir=records_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        instances=instances,
        blueprints=blueprints,
        systemd=systemd,
        firewall=firewall,
        shortcuts=shortcuts,
        tools=tools,
        events=EventsConfig(socket=socket, webhook=webhook),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            f"Configuration override conflicts with existing scalar value at {'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "on", "1"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "off", "0"}:
        return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BlueprintsConfig",
    "ConfigError",
    "EventsConfig",
    "FirewallConfig",
    "InstancesConfig",
    "ShortcutsConfig",
    "SocketEventsConfig",
    "SystemdConfig",
    "ToolsConfig",
    "WebhookEventsConfig",
    "load_config",
    "set_config_value",
]
