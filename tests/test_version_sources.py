"""Tests for latest-version discovery."""
from __future__ import annotations

from pathlib import Path

import pytest

from gsmctl.blueprints import Blueprint, BlueprintKind
from gsmctl.errors import VersionCheckError
from gsmctl.providers.versions import (
    CommandVersionSource,
    ContainerImageVersionSource,
    SteamCmdVersionSource,
    VersionSources,
)

APP_INFO = """
"896660"
{
    "common"
    {
        "name"      "Valheim Dedicated Server"
    }
    "depots"
    {
        "branches"
        {
            "public"
            {
                "buildid"       "15873402"
                "timeupdated"   "1728404180"
            }
        }
    }
}
"""


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _native(tmp_path: Path, **kwargs: object) -> Blueprint:
    return Blueprint(
        name="valheim",
        kind=BlueprintKind.NATIVE,
        path=tmp_path / "valheim.bp",
        **kwargs,  # type: ignore[arg-type]
    )


def test_command_source_uses_last_line(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Only the final non-empty line of the command output is the version."""
    seen: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        seen.append(list(args))
        return DummyResult(stdout="checking...\n1.4.2\n\n")

    monkeypatch.setattr("gsmctl.providers.commands.subprocess.run", fake_run)
    blueprint = _native(tmp_path, version_command="curl -s 'https://example.invalid/latest'")

    assert CommandVersionSource().latest_version(blueprint) == "1.4.2"
    assert seen == [["curl", "-s", "https://example.invalid/latest"]]


def test_command_source_empty_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A command that prints nothing cannot yield a version."""
    monkeypatch.setattr(
        "gsmctl.providers.commands.subprocess.run",
        lambda args, **kwargs: DummyResult(stdout="\n"),
    )

    with pytest.raises(VersionCheckError, match="printed nothing"):
        CommandVersionSource().latest_version(_native(tmp_path, version_command="true"))


def test_steamcmd_source_parses_public_buildid(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """The public branch build id is read from app_info_print output."""
    seen: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        seen.append(list(args))
        return DummyResult(stdout=APP_INFO)

    monkeypatch.setattr("gsmctl.providers.commands.subprocess.run", fake_run)
    source = SteamCmdVersionSource(steamcmd_bin="steamcmd", env={})

    assert source.latest_version(_native(tmp_path, steam_app_id="896660")) == "15873402"
    assert seen[0][:3] == ["steamcmd", "+login", "anonymous"]
    assert "896660" in seen[0]


def test_steamcmd_source_requires_credentials(tmp_path: Path) -> None:
    """Account-gated apps need credentials in the environment."""
    source = SteamCmdVersionSource(env={})
    blueprint = _native(tmp_path, steam_app_id="1", steam_account_required=True)

    with pytest.raises(VersionCheckError, match="STEAM_USERNAME"):
        source.latest_version(blueprint)


def test_steamcmd_source_without_buildid(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Output lacking a public branch is an error."""
    monkeypatch.setattr(
        "gsmctl.providers.commands.subprocess.run",
        lambda args, **kwargs: DummyResult(stdout='"1" { }'),
    )

    with pytest.raises(VersionCheckError, match="public build id"):
        SteamCmdVersionSource(env={}).latest_version(_native(tmp_path, steam_app_id="1"))


@pytest.mark.parametrize(
    ("image", "expected"),
    [
        ("itzg/minecraft-server:java21", "java21"),
        ("localhost:5000/minecraft", "latest"),
        ("ghcr.io/org/server@sha256:abc123", "sha256:abc123"),
    ],
)
def test_container_image_version(tmp_path: Path, image: str, expected: str) -> None:
    """Tags and digests of the image reference are the version."""
    blueprint = Blueprint(
        name="minecraft", kind=BlueprintKind.CONTAINER, path=tmp_path / "mc.yml", image=image
    )

    assert ContainerImageVersionSource().latest_version(blueprint) == expected


def test_sources_prefer_explicit_command(tmp_path: Path) -> None:
    """A version command wins over the Steam app id."""
    sources = VersionSources()

    both = _native(tmp_path, version_command="echo 1", steam_app_id="896660")
    steam = _native(tmp_path, steam_app_id="896660")

    assert sources.for_blueprint(both) is sources.command
    assert sources.for_blueprint(steam) is sources.steamcmd
    with pytest.raises(VersionCheckError, match="no way"):
        sources.for_blueprint(_native(tmp_path))
