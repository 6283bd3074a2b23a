"""Create and remove the OS resources that belong to an instance.

Every operation is idempotent: creating something that already exists with
the same content and removing something that is already gone both succeed.
"""
from __future__ import annotations

import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..blueprints import Blueprint, BlueprintKind
from ..config import FirewallConfig, ShortcutsConfig
from ..errors import from_os_error
from ..instances import Instance, SupervisionKind
from ..templates import TemplateEngine
from .systemd import SystemdProvider

MANAGE_TEMPLATE = "scripts/manage.sh.j2"
FIREWALL_TEMPLATE = "firewall/ufw.j2"


@dataclass(slots=True)
class Provisioner:
    """Directories, management script, supervision unit, firewall rule and shortcut."""

    templates: TemplateEngine
    systemd: SystemdProvider
    firewall: FirewallConfig = FirewallConfig()
    shortcuts: ShortcutsConfig = ShortcutsConfig()

    # Directories --------------------------------------------------
    def create_directories(self, instance: Instance) -> list[Path]:
        """Create the working directory tree; return directories that were new."""
        created: list[Path] = []
        for directory in instance.directories:
            if directory.is_dir():
                continue
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise from_os_error(exc, f"Failed to create {directory}") from exc
            created.append(directory)
        return created

    def remove_directories(self, instance: Instance) -> bool:
        """Remove the working directory tree; ``False`` when already absent."""
        if not instance.working_dir.exists():
            return False
        try:
            shutil.rmtree(instance.working_dir)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise from_os_error(exc, f"Failed to remove {instance.working_dir}") from exc
        return True

    # Management script --------------------------------------------
    def create_management_script(self, instance: Instance, blueprint: Blueprint) -> bool:
        """Render the management script for native instances."""
        if blueprint.kind is not BlueprintKind.NATIVE:
            return False
        context = {
            "instance_name": instance.name,
            "blueprint": blueprint.name,
            "working_dir": str(instance.working_dir),
            "install_dir": str(instance.install_dir),
            "logs_dir": str(instance.logs_dir),
            "executable": blueprint.executable_file or "./start.sh",
            "executable_subdirectory": blueprint.executable_subdirectory,
            "arguments": blueprint.executable_arguments,
            "input_fifo": shlex.quote(str(instance.input_fifo)),
            "save_command": shlex.quote(blueprint.save_command),
        }
        try:
            return self.templates.render_to_path(
                MANAGE_TEMPLATE, instance.management_script, context, mode=0o750
            )
        except OSError as exc:
            raise from_os_error(exc, f"Failed to write {instance.management_script}") from exc

    def remove_management_script(self, instance: Instance) -> bool:
        """Delete the management script."""
        return _unlink(instance.management_script)

    # Supervision unit ---------------------------------------------
    def create_supervision_unit(
        self, instance: Instance, blueprint: Blueprint, *, overwrite: bool = False
    ) -> bool:
        """Render the systemd unit for systemd-supervised instances."""
        if instance.supervision is not SupervisionKind.SYSTEMD:
            return False
        try:
            return self.systemd.render_unit(instance, blueprint, overwrite=overwrite)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to write unit for {instance.name}") from exc

    def remove_supervision_unit(self, instance: Instance) -> bool:
        """Delete the systemd unit, if any."""
        try:
            return self.systemd.remove(instance.name)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to remove unit for {instance.name}") from exc

    # Firewall -----------------------------------------------------
    def firewall_rule_path(self, instance: Instance) -> Path:
        """Return the firewall application profile path."""
        return self.firewall.rules_dir / f"gsm-{instance.name}"

    def create_firewall_rule(self, instance: Instance, blueprint: Blueprint) -> bool:
        """Write the firewall profile when enabled and ports are declared."""
        if not self.firewall.enabled or not blueprint.ports:
            return False
        context = {
            "instance_name": instance.name,
            "blueprint": blueprint.name,
            "ports": blueprint.ports,
        }
        path = self.firewall_rule_path(instance)
        try:
            return self.templates.render_to_path(FIREWALL_TEMPLATE, path, context, mode=0o644)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to write {path}") from exc

    def remove_firewall_rule(self, instance: Instance) -> bool:
        """Delete the firewall profile when firewall management is enabled."""
        if not self.firewall.enabled:
            return False
        return _unlink(self.firewall_rule_path(instance))

    # Shortcut -----------------------------------------------------
    def shortcut_path(self, instance: Instance) -> Path:
        """Return the command shortcut path."""
        return self.shortcuts.directory / instance.name

    def create_shortcut(self, instance: Instance) -> bool:
        """Symlink the management script onto the shortcuts directory."""
        if not self.shortcuts.enabled or not instance.management_script.exists():
            return False
        link = self.shortcut_path(instance)
        if link.is_symlink() and Path(os.readlink(link)) == instance.management_script:
            return False
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(instance.management_script)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to create shortcut {link}") from exc
        return True

    def remove_shortcut(self, instance: Instance) -> bool:
        """Delete the command shortcut if it points at this instance's script."""
        link = self.shortcut_path(instance)
        if not link.is_symlink() or Path(os.readlink(link)) != instance.management_script:
            return False
        return _unlink(link)

    # Aggregates ---------------------------------------------------
    def create_files(
        self, instance: Instance, blueprint: Blueprint, *, overwrite: bool = False
    ) -> list[str]:
        """Create every generated file; return the names of those that changed."""
        changed: list[str] = []
        if self.create_management_script(instance, blueprint):
            changed.append("management_script")
        if self.create_supervision_unit(instance, blueprint, overwrite=overwrite):
            changed.append("supervision_unit")
        if self.create_firewall_rule(instance, blueprint):
            changed.append("firewall_rule")
        if self.create_shortcut(instance):
            changed.append("shortcut")
        return changed

    def remove_files(self, instance: Instance) -> list[str]:
        """Remove every generated file; return the names of those removed."""
        removed: list[str] = []
        if self.remove_shortcut(instance):
            removed.append("shortcut")
        if self.remove_firewall_rule(instance):
            removed.append("firewall_rule")
        if self.remove_supervision_unit(instance):
            removed.append("supervision_unit")
        if self.remove_management_script(instance):
            removed.append("management_script")
        return removed


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise from_os_error(exc, f"Failed to remove {path}") from exc
    return True


__all__ = ["Provisioner"]
