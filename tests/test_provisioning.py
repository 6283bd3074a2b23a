"""Tests for instance provisioning."""
from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

import pytest

from gsmctl.blueprints import Blueprint
from gsmctl.config import FirewallConfig, ShortcutsConfig
from gsmctl.instances import Instance, SupervisionKind
from gsmctl.providers import Provisioner, SystemdProvider
from gsmctl.templates import TemplateEngine


def _provisioner(tmp_path: Path, *, firewall: bool = False, shortcuts: bool = False) -> Provisioner:
    templates = TemplateEngine.with_overrides(None)
    return Provisioner(
        templates=templates,
        systemd=SystemdProvider(templates=templates, systemd_dir=tmp_path / "systemd"),
        firewall=FirewallConfig(enabled=firewall, rules_dir=tmp_path / "ufw"),
        shortcuts=ShortcutsConfig(enabled=shortcuts, directory=tmp_path / "bin"),
    )


def test_create_directories_reports_new_ones(tmp_path: Path, instance: Instance) -> None:
    """Only directories that did not exist are reported."""
    provisioner = _provisioner(tmp_path)

    created = provisioner.create_directories(instance)

    assert created == list(instance.directories)
    assert all(path.is_dir() for path in instance.directories)
    assert provisioner.create_directories(instance) == []


def test_management_script_is_executable(
    tmp_path: Path, instance: Instance, native_blueprint: Blueprint
) -> None:
    """Native instances get an executable management script."""
    provisioner = _provisioner(tmp_path)
    provisioner.create_directories(instance)

    assert provisioner.create_management_script(instance, native_blueprint) is True

    script = instance.management_script
    content = script.read_text()
    assert content.startswith("#!/usr/bin/env bash")
    assert "exec ./valheim_server.x86_64 -name demo -port 2456" in content
    assert os.access(script, os.X_OK)
    assert provisioner.create_management_script(instance, native_blueprint) is False


def test_management_script_accepts_console_input(
    tmp_path: Path, instance: Instance, native_blueprint: Blueprint
) -> None:
    """The script feeds the server from a fifo and quotes the save command."""
    provisioner = _provisioner(tmp_path)
    provisioner.create_directories(instance)
    blueprint = replace(native_blueprint, save_command="say 'saving'")

    provisioner.create_management_script(instance, blueprint)

    content = instance.management_script.read_text()
    assert f"INPUT_FIFO={instance.input_fifo}" in content
    assert "SAVE_COMMAND='say '\"'\"'saving'\"'\"''" in content
    assert "--input)" in content
    assert "--save)" in content
    assert "<&3" in content


def test_create_files_with_firewall_and_shortcut(
    tmp_path: Path, instance: Instance, native_blueprint: Blueprint
) -> None:
    """Enabled extras are created and removed alongside the script."""
    provisioner = _provisioner(tmp_path, firewall=True, shortcuts=True)
    provisioner.create_directories(instance)

    changed = provisioner.create_files(instance, native_blueprint)

    assert changed == ["management_script", "firewall_rule", "shortcut"]
    rule = tmp_path / "ufw" / "gsm-valheim"
    assert "ports=2456:2458/udp" in rule.read_text()
    link = tmp_path / "bin" / "valheim"
    assert link.is_symlink()
    assert Path(os.readlink(link)) == instance.management_script
    assert provisioner.create_files(instance, native_blueprint) == []

    removed = provisioner.remove_files(instance)

    assert removed == ["shortcut", "firewall_rule", "management_script"]
    assert provisioner.remove_files(instance) == []


def test_disabled_extras_are_skipped(
    tmp_path: Path, instance: Instance, native_blueprint: Blueprint
) -> None:
    """Firewall rules and shortcuts are opt-in."""
    provisioner = _provisioner(tmp_path)
    provisioner.create_directories(instance)

    assert provisioner.create_files(instance, native_blueprint) == ["management_script"]
    assert not (tmp_path / "ufw").exists()
    assert not (tmp_path / "bin").exists()


def test_foreign_shortcut_is_left_alone(tmp_path: Path, instance: Instance) -> None:
    """Removal never deletes a file it did not create."""
    provisioner = _provisioner(tmp_path, shortcuts=True)
    foreign = tmp_path / "bin" / "valheim"
    foreign.parent.mkdir(parents=True)
    foreign.write_text("#!/bin/sh\n")

    assert provisioner.remove_shortcut(instance) is False
    assert foreign.exists()


def test_systemd_unit_only_for_systemd_instances(
    tmp_path: Path,
    instance: Instance,
    native_blueprint: Blueprint,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Units are rendered only when the instance is supervised by systemd."""
    provisioner = _provisioner(tmp_path)
    monkeypatch.setattr(
        SystemdProvider, "_reload_daemon", lambda self: None
    )

    assert provisioner.create_supervision_unit(instance, native_blueprint) is False

    systemd_instance = Instance(
        name=instance.name,
        blueprint=instance.blueprint,
        blueprint_path=instance.blueprint_path,
        working_dir=instance.working_dir,
        supervision=SupervisionKind.SYSTEMD,
        kind=instance.kind,
    )
    assert provisioner.create_supervision_unit(systemd_instance, native_blueprint) is True
    assert (tmp_path / "systemd" / "valheim.service").is_file()
    assert provisioner.remove_supervision_unit(systemd_instance) is True


def test_remove_directories_twice(tmp_path: Path, instance: Instance) -> None:
    """Directory removal is idempotent."""
    provisioner = _provisioner(tmp_path)
    provisioner.create_directories(instance)

    assert provisioner.remove_directories(instance) is True
    assert provisioner.remove_directories(instance) is False
