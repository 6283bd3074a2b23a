"""Tests for the download providers."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from gsmctl.blueprints import Blueprint, BlueprintKind
from gsmctl.errors import DownloadError
from gsmctl.instances import Instance, SupervisionKind
from gsmctl.providers.downloads import (
    CommandDownloader,
    ComposeDownloader,
    Downloaders,
    SteamCmdDownloader,
)


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[list[str], dict[str, object]]]:
    """Capture subprocess invocations."""
    recorded: list[tuple[list[str], dict[str, object]]] = []

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        recorded.append((list(args), kwargs))
        return DummyResult()

    monkeypatch.setattr("gsmctl.providers.commands.subprocess.run", fake_run)
    return recorded


def _with_command(blueprint: Blueprint, command: str) -> Blueprint:
    return replace(blueprint, download_command=command)


def test_command_downloader_exports_variables(
    tmp_path: Path,
    calls: list[tuple[list[str], dict[str, object]]],
    instance: Instance,
    native_blueprint: Blueprint,
) -> None:
    """The download command runs in staging with the version in its environment."""
    dest = tmp_path / "staging"
    dest.mkdir()
    blueprint = _with_command(native_blueprint, "echo download")

    CommandDownloader().fetch(instance, blueprint, "1.3.0", dest)

    args, kwargs = calls[0]
    assert args == ["echo", "download"]
    assert kwargs["cwd"] == str(dest)
    env = kwargs["env"]
    assert isinstance(env, dict)
    assert env["GSM_VERSION"] == "1.3.0"
    assert env["INSTANCE_INSTALL_DIR"] == str(instance.install_dir)


def test_steamcmd_downloader_targets_staging(
    tmp_path: Path, calls: list[tuple[list[str], dict[str, object]]], instance: Instance
) -> None:
    """SteamCMD installs into the staging directory."""
    blueprint = Blueprint(
        name="valheim",
        kind=BlueprintKind.NATIVE,
        path=tmp_path / "valheim.bp",
        steam_app_id="896660",
    )

    SteamCmdDownloader(env={}).fetch(instance, blueprint, "15873402", tmp_path / "stage")

    args, _ = calls[0]
    index = args.index("+force_install_dir")
    assert args[index + 1] == str(tmp_path / "stage")
    assert args[-4:] == ["+app_update", "896660", "validate", "+quit"]


def test_compose_downloader_renders_variables(
    tmp_path: Path, calls: list[tuple[list[str], dict[str, object]]]
) -> None:
    """Instance variables are substituted into the staged compose file."""
    source = tmp_path / "minecraft.docker-compose.yml"
    source.write_text(
        "services:\n  server:\n    volumes:\n      - ${instance_saves_dir}:/data\n"
        "    environment:\n      PORT: ${SERVER_PORT}\n"
    )
    blueprint = Blueprint(name="minecraft", kind=BlueprintKind.CONTAINER, path=source)
    instance = Instance(
        name="minecraft",
        blueprint="minecraft",
        blueprint_path=source,
        working_dir=tmp_path / "games" / "minecraft",
        supervision=SupervisionKind.CONTAINER,
        kind=BlueprintKind.CONTAINER,
    )
    dest = tmp_path / "stage"
    dest.mkdir()

    ComposeDownloader(docker_bin="docker").fetch(instance, blueprint, "latest", dest)

    staged = (dest / "docker-compose.yml").read_text()
    assert f"- {instance.saves_dir}:/data" in staged
    assert "PORT: ${SERVER_PORT}" in staged
    assert calls[0][0][-3:] == ["-p", "minecraft", "pull"]


def test_downloaders_without_method(tmp_path: Path) -> None:
    """Blueprints with no download method are rejected."""
    blueprint = Blueprint(name="bare", kind=BlueprintKind.NATIVE, path=tmp_path / "bare.bp")

    with pytest.raises(DownloadError, match="no download method"):
        Downloaders().for_blueprint(blueprint)


def test_failed_download_command(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    instance: Instance,
    native_blueprint: Blueprint,
) -> None:
    """A failing command surfaces its stderr in a DownloadError."""
    monkeypatch.setattr(
        "gsmctl.providers.commands.subprocess.run",
        lambda args, **kwargs: DummyResult(returncode=1, stderr="mirror unreachable"),
    )

    with pytest.raises(DownloadError, match="mirror unreachable"):
        CommandDownloader().fetch(
            instance, _with_command(native_blueprint, "fetch-server"), "1.0", tmp_path
        )
