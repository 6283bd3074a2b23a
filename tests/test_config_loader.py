"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from gsmctl.config import AppConfig, ConfigError, load_config, set_config_value


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.state_dir == Path("/var/lib/gsmctl")
    assert config.records_dir == Path("/var/lib/gsmctl/instances")
    assert config.instances.root == Path("/opt/gsm")
    assert config.instances.supervision == "standalone"
    assert config.events.socket.enabled is False
    assert config.events.socket.paths == (Path("/run/gsmctl/events.sock"),)
    assert config.events.webhook.retry_count == 2
    assert config.events.webhook.urls == ()


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "gsmctl.yml"
    cfg.write_text(
        "state_dir: {state}\n"
        "instances:\n"
        "  root: /srv/games\n"
        "  supervision: systemd\n"
        "events:\n"
        "  webhook:\n"
        "    enabled: true\n"
        "    url: https://hooks.example.com/gsm\n"
        "    retry_count: 0\n".format(state=tmp_path / "state")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.records_dir == tmp_path / "state" / "instances"
    assert config.instances.root == Path("/srv/games")
    assert config.instances.supervision == "systemd"
    assert config.events.webhook.enabled is True
    assert config.events.webhook.urls == ("https://hooks.example.com/gsm",)
    assert config.events.webhook.retry_count == 0


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "gsmctl.yml"
    cfg.write_text("instances:\n  supervision: systemd\n")
    env = {
        "GSMCTL_CONFIG_FILE": str(cfg),
        "GSMCTL_INSTANCES__SUPERVISION": "standalone",
        "GSMCTL_RUNTIME_DIR": str(tmp_path / "run"),
        "GSMCTL_LOCK_TIMEOUT": "45",
        "GSMCTL_EVENTS__SOCKET__ENABLED": "true",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.instances.supervision == "standalone"
    assert config.lock_timeout == 45.0
    assert config.events.socket.enabled is True
    assert config.events.socket.paths == (tmp_path / "run" / "events.sock",)


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_supervision_backend_raises(tmp_path: Path) -> None:
    """Unsupported supervision backends raise ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("instances:\n  supervision: upstart\n")

    with pytest.raises(ConfigError, match="Unsupported supervision backend"):
        load_config(config_file=cfg, env={})


def test_negative_retry_count_raises(tmp_path: Path) -> None:
    """Webhook retry counts must not be negative."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("events:\n  webhook:\n    retry_count: -1\n")

    with pytest.raises(ConfigError, match="retry_count"):
        load_config(config_file=cfg, env={})


def test_webhook_secret_masked_in_dict(tmp_path: Path) -> None:
    """Serialised configuration never exposes the webhook secret."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("events:\n  webhook:\n    secret: hunter2\n")

    data = load_config(config_file=cfg, env={}).to_dict()

    assert "hunter2" not in str(data)


def test_set_config_value_persists_nested_key(tmp_path: Path) -> None:
    """Toggles are written back into the YAML file, preserving other keys."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("instances:\n  root: /srv/games\n")

    set_config_value(cfg, "events.socket.enabled", True)

    data = yaml.safe_load(cfg.read_text())
    assert data["instances"]["root"] == "/srv/games"
    assert data["events"]["socket"]["enabled"] is True
    assert load_config(config_file=cfg, env={}).events.socket.enabled is True


def test_set_config_value_rejects_unknown_key(tmp_path: Path) -> None:
    """Unknown dotted keys are rejected before the file is touched."""
    cfg = tmp_path / "config.yml"

    with pytest.raises(ConfigError, match="Unknown configuration key"):
        set_config_value(cfg, "events.socket.colour", "blue")
    assert not cfg.exists()
