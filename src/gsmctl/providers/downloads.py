"""Fetch server files into an instance's staging directory."""
from __future__ import annotations

import os
import shlex
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ..blueprints import Blueprint, BlueprintKind
from ..errors import DownloadError, from_os_error
from ..instances import Instance
from .commands import run_command
from .container import COMPOSE_FILENAME
from .versions import steam_login


class Downloader(Protocol):
    """Place the files for *version* into *dest*."""

    def fetch(self, instance: Instance, blueprint: Blueprint, version: str, dest: Path) -> None:
        ...


def instance_variables(instance: Instance) -> dict[str, str]:
    """Variables available to compose files and download commands."""
    return {
        "instance_name": instance.name,
        "instance_working_dir": str(instance.working_dir),
        "instance_install_dir": str(instance.install_dir),
        "instance_backups_dir": str(instance.backups_dir),
        "instance_saves_dir": str(instance.saves_dir),
        "instance_temp_dir": str(instance.temp_dir),
        "instance_logs_dir": str(instance.logs_dir),
        "instance_config_dir": str(instance.config_dir),
        "instance_auto_update": "false",
    }


@dataclass(slots=True)
class CommandDownloader:
    """Run the blueprint's ``download_command`` inside the staging directory."""

    def fetch(self, instance: Instance, blueprint: Blueprint, version: str, dest: Path) -> None:
        if not blueprint.download_command:
            raise DownloadError(f"Blueprint '{blueprint.name}' has no download command.")
        env = {key.upper(): value for key, value in instance_variables(instance).items()}
        env.update({"GSM_VERSION": version, "GSM_DOWNLOAD_DIR": str(dest)})
        run_command(
            shlex.split(blueprint.download_command),
            error=DownloadError,
            error_prefix=f"download command for {blueprint.name}",
            cwd=dest,
            env=env,
        )


@dataclass(slots=True)
class SteamCmdDownloader:
    """Download with ``steamcmd +app_update``."""

    steamcmd_bin: str = "steamcmd"
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def fetch(self, instance: Instance, blueprint: Blueprint, version: str, dest: Path) -> None:
        if not blueprint.steam_app_id or blueprint.steam_app_id == "0":
            raise DownloadError(f"Blueprint '{blueprint.name}' has no Steam app id.")
        args = [
            self.steamcmd_bin,
            "+@sSteamCmdForcePlatformType",
            "linux",
            "+force_install_dir",
            str(dest),
            *steam_login(blueprint, self.env, DownloadError),
            "+app_update",
            blueprint.steam_app_id,
            "validate",
            "+quit",
        ]
        run_command(args, error=DownloadError, error_prefix="steamcmd app_update")


@dataclass(slots=True)
class ComposeDownloader:
    """Render the compose file into staging and pull its images."""

    docker_bin: str = "docker"
    pull: bool = True

    def fetch(self, instance: Instance, blueprint: Blueprint, version: str, dest: Path) -> None:
        try:
            template = string.Template(blueprint.path.read_text(encoding="utf-8"))
            target = dest / COMPOSE_FILENAME
            target.write_text(
                template.safe_substitute(instance_variables(instance)), encoding="utf-8"
            )
        except OSError as exc:
            raise from_os_error(exc, f"Failed to stage compose file for {instance.name}") from exc
        if self.pull:
            run_command(
                [self.docker_bin, "compose", "-f", str(target), "-p", instance.name, "pull"],
                error=DownloadError,
                error_prefix="docker compose pull",
                cwd=dest,
            )


@dataclass(slots=True)
class Downloaders:
    """Pick the downloader appropriate for a blueprint."""

    command: Downloader = field(default_factory=CommandDownloader)
    steamcmd: Downloader = field(default_factory=SteamCmdDownloader)
    compose: Downloader = field(default_factory=ComposeDownloader)

    def for_blueprint(self, blueprint: Blueprint) -> Downloader:
        """Return the downloader for *blueprint*."""
        if blueprint.download_command:
            return self.command
        if blueprint.kind is BlueprintKind.CONTAINER:
            return self.compose
        if blueprint.steam_app_id:
            return self.steamcmd
        raise DownloadError(f"Blueprint '{blueprint.name}' has no download method.")

    def fetch(self, instance: Instance, blueprint: Blueprint, version: str, dest: Path) -> None:
        """Download *version* of *blueprint* into *dest*."""
        self.for_blueprint(blueprint).fetch(instance, blueprint, version, dest)


__all__ = [
    "CommandDownloader",
    "ComposeDownloader",
    "Downloader",
    "Downloaders",
    "SteamCmdDownloader",
    "instance_variables",
]
