"""Systemd provider for managing instance service units."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..blueprints import Blueprint
from ..errors import DependencyMissingError, InvalidArgumentError, SupervisionError
from ..instances import Instance
from ..templates import TemplateEngine
from .commands import run_command

UNIT_TEMPLATE = "systemd/service.j2"


@dataclass(slots=True)
class SystemdProvider:
    """Render and drive systemd service units for gsmctl instances."""

    templates: TemplateEngine
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"
    stop_timeout: float = 30.0

    def unit_name(self, instance: str) -> str:
        """Return the systemd unit name for *instance*."""
        safe = instance.replace("/", "-")
        return f"{safe}.service"

    def unit_path(self, instance: str) -> Path:
        """Return the full path for the instance unit file."""
        return self.systemd_dir / self.unit_name(instance)

    def unit_context(self, instance: Instance, blueprint: Blueprint) -> dict[str, object]:
        """Build the template context for *instance*."""
        return {
            "instance_name": instance.name,
            "blueprint": blueprint.name,
            "working_directory": str(instance.working_dir),
            "exec_start": f"{instance.management_script} --run",
            "exec_stop": blueprint.stop_command,
            "stop_timeout": int(self.stop_timeout),
            "environment": [f"GSM_INSTANCE={instance.name}"],
        }

    def render_unit(
        self,
        instance: Instance,
        blueprint: Blueprint,
        *,
        overwrite: bool = False,
        context: Mapping[str, object] | None = None,
    ) -> bool:
        """Render the unit file; an existing different unit needs *overwrite*."""
        path = self.unit_path(instance.name)
        values = dict(context or self.unit_context(instance, blueprint))
        if path.exists() and not overwrite:
            rendered = self.templates.render_to_string(UNIT_TEMPLATE, values)
            if path.read_text(encoding="utf-8") != rendered:
                raise InvalidArgumentError(
                    f"Unit file {path} already exists; refusing to overwrite it."
                )
        changed = self.templates.render_to_path(UNIT_TEMPLATE, path, values, mode=0o644)
        if changed:
            self._reload_daemon()
        return changed

    def start(self, instance: Instance) -> subprocess.CompletedProcess[str]:
        """Start the instance unit."""
        return self._systemctl("start", self.unit_name(instance.name))

    def stop(self, instance: Instance) -> subprocess.CompletedProcess[str]:
        """Stop the instance unit."""
        return self._systemctl("stop", self.unit_name(instance.name))

    def is_active(self, instance: Instance) -> bool:
        """Return ``True`` when systemd reports the unit active."""
        result = self._systemctl("is-active", self.unit_name(instance.name), check=False)
        return result.returncode == 0

    def logs(self, instance: Instance, *, lines: int = 10, follow: bool = False) -> str:
        """Return recent journal lines for the unit, or follow the journal."""
        args = [
            self.journalctl_bin,
            "-u",
            self.unit_name(instance.name),
            "-n",
            str(lines),
            "--no-pager",
        ]
        if follow:
            args.append("-f")
        result = run_command(
            args,
            error=SupervisionError,
            error_prefix=f"{self.journalctl_bin} -u",
            capture_output=not follow,
        )
        return result.stdout or ""

    def remove(self, instance: str) -> bool:
        """Remove the unit file for *instance*; ``False`` when already absent."""
        path = self.unit_path(instance)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self._reload_daemon()
        return True

    # ------------------------------------------------------------------
    def _reload_daemon(self) -> None:
        try:
            self._systemctl("daemon-reload")
        except DependencyMissingError:
            # Allow tests and non-systemd environments to proceed without error.
            return

    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return run_command(
            args,
            error=SupervisionError,
            error_prefix=f"{self.systemctl_bin} {command}",
            check=check,
        )


__all__ = ["SystemdProvider"]
