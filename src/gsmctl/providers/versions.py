"""Determine the latest available server version for a blueprint."""
from __future__ import annotations

import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from ..blueprints import Blueprint, BlueprintKind
from ..errors import VersionCheckError
from .commands import run_command

_STEAM_BUILDID = re.compile(r'"branches"\s*\{\s*"public"\s*\{\s*"buildid"\s*"(\d+)"')


class VersionSource(Protocol):
    """Report the newest version of a blueprint's server files."""

    def latest_version(self, blueprint: Blueprint) -> str: ...


def steam_login(
    blueprint: Blueprint, env: Mapping[str, str], error: type[Exception]
) -> list[str]:
    """Return the ``+login`` arguments for SteamCMD."""
    if not blueprint.steam_account_required:
        return ["+login", "anonymous"]
    username = env.get("STEAM_USERNAME")
    password = env.get("STEAM_PASSWORD")
    if not username or not password:
        raise error(
            f"Blueprint '{blueprint.name}' requires a Steam account; "
            "set STEAM_USERNAME and STEAM_PASSWORD."
        )
    return ["+login", username, password]


@dataclass(slots=True)
class CommandVersionSource:
    """Run the blueprint's ``version_command`` and use the last output line."""

    def latest_version(self, blueprint: Blueprint) -> str:
        if not blueprint.version_command:
            raise VersionCheckError(f"Blueprint '{blueprint.name}' has no version command.")
        result = run_command(
            shlex.split(blueprint.version_command),
            error=VersionCheckError,
            error_prefix=f"version command for {blueprint.name}",
        )
        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise VersionCheckError(f"Version command for '{blueprint.name}' printed nothing.")
        return lines[-1]


@dataclass(slots=True)
class SteamCmdVersionSource:
    """Read the public branch build id from ``steamcmd +app_info_print``."""

    steamcmd_bin: str = "steamcmd"
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def latest_version(self, blueprint: Blueprint) -> str:
        if not blueprint.steam_app_id or blueprint.steam_app_id == "0":
            raise VersionCheckError(f"Blueprint '{blueprint.name}' has no Steam app id.")
        args = [
            self.steamcmd_bin,
            *steam_login(blueprint, self.env, VersionCheckError),
            "+app_info_update",
            "1",
            "+app_info_print",
            blueprint.steam_app_id,
            "+quit",
        ]
        result = run_command(args, error=VersionCheckError, error_prefix="steamcmd app_info")
        match = _STEAM_BUILDID.search(" ".join((result.stdout or "").split()))
        if match is None:
            raise VersionCheckError(
                f"Could not find a public build id for app {blueprint.steam_app_id}."
            )
        return match.group(1)


@dataclass(slots=True)
class ContainerImageVersionSource:
    """Use the tag of the blueprint's container image."""

    def latest_version(self, blueprint: Blueprint) -> str:
        if not blueprint.image:
            raise VersionCheckError(f"Blueprint '{blueprint.name}' declares no image.")
        repository, _, digest = blueprint.image.partition("@")
        if digest:
            return digest
        last_segment = repository.rsplit("/", 1)[-1]
        if ":" in last_segment:
            return last_segment.rsplit(":", 1)[1]
        return "latest"


@dataclass(slots=True)
class VersionSources:
    """Pick the version source appropriate for a blueprint."""

    command: VersionSource = field(default_factory=CommandVersionSource)
    steamcmd: VersionSource = field(default_factory=SteamCmdVersionSource)
    container: VersionSource = field(default_factory=ContainerImageVersionSource)

    def for_blueprint(self, blueprint: Blueprint) -> VersionSource:
        """Return the source for *blueprint*, preferring an explicit command."""
        if blueprint.version_command:
            return self.command
        if blueprint.kind is BlueprintKind.CONTAINER:
            return self.container
        if blueprint.steam_app_id:
            return self.steamcmd
        raise VersionCheckError(
            f"Blueprint '{blueprint.name}' has no way to determine its latest version."
        )

    def latest_version(self, blueprint: Blueprint) -> str:
        """Return the latest version string for *blueprint*."""
        version = self.for_blueprint(blueprint).latest_version(blueprint).strip()
        if not version:
            raise VersionCheckError(f"Latest version for '{blueprint.name}' is empty.")
        return version


__all__ = [
    "CommandVersionSource",
    "ContainerImageVersionSource",
    "SteamCmdVersionSource",
    "VersionSource",
    "VersionSources",
    "steam_login",
]
