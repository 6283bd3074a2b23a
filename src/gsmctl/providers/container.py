"""Run container instances through ``docker compose``."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import NotFoundError, SupervisionError
from ..instances import Instance
from .commands import run_command

COMPOSE_FILENAME = "docker-compose.yml"


def compose_file(instance: Instance) -> Path:
    """Return the deployed compose file for *instance*."""
    return instance.install_dir / COMPOSE_FILENAME


@dataclass(slots=True)
class ContainerProvider:
    """Start, stop and inspect compose projects named after the instance."""

    docker_bin: str = "docker"

    def _compose(
        self, instance: Instance, *args: str, check: bool = True, capture_output: bool = True
    ) -> subprocess.CompletedProcess[str]:
        path = compose_file(instance)
        if not path.is_file():
            raise NotFoundError(f"Compose file {path} not found; is the instance installed?")
        command = [self.docker_bin, "compose", "-f", str(path), "-p", instance.name, *args]
        return run_command(
            command,
            error=SupervisionError,
            error_prefix=f"docker compose {args[0]}",
            check=check,
            capture_output=capture_output,
            cwd=instance.install_dir,
        )

    def start(self, instance: Instance) -> subprocess.CompletedProcess[str]:
        """Bring the compose project up in the background."""
        return self._compose(instance, "up", "-d")

    def stop(self, instance: Instance) -> subprocess.CompletedProcess[str]:
        """Tear the compose project down."""
        return self._compose(instance, "down")

    def is_active(self, instance: Instance) -> bool:
        """Return ``True`` when the project has running containers."""
        if not compose_file(instance).is_file():
            return False
        result = self._compose(instance, "ps", "-q", check=False)
        return result.returncode == 0 and bool((result.stdout or "").strip())

    def logs(self, instance: Instance, *, lines: int = 10, follow: bool = False) -> str:
        """Return recent container output, or follow it."""
        args = ["logs", "--tail", str(lines)]
        if follow:
            args.append("-f")
        result = self._compose(instance, *args, capture_output=not follow)
        return result.stdout or ""


__all__ = ["COMPOSE_FILENAME", "ContainerProvider", "compose_file"]
