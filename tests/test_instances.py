"""Tests for the instance model and record store."""
from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from gsmctl.blueprints import Blueprint, BlueprintKind
from gsmctl.errors import (
    InvalidArgumentError,
    InvalidConfigError,
    NameExhaustedError,
    NotFoundError,
)
from gsmctl.exit_codes import ExitCode
from gsmctl.instances import Instance, InstanceStore, SupervisionKind
from gsmctl.state import RecordFile


def _store(tmp_path: Path, suffixes: Iterator[str] | None = None) -> InstanceStore:
    if suffixes is None:
        return InstanceStore(tmp_path / "records")
    return InstanceStore(
        tmp_path / "records",
        name_attempts=3,
        suffix_factory=lambda _length: next(suffixes),
    )


def test_instance_paths_derive_from_working_dir(instance: Instance) -> None:
    """Every sub-directory hangs off the working directory."""
    root = instance.working_dir

    assert instance.install_dir == root / "install"
    assert instance.backups_dir == root / "backups"
    assert instance.temp_dir == root / "temp"
    assert instance.management_script == root / "valheim.manage.sh"
    assert instance.directories[0] == root
    assert len(instance.directories) == 7
    assert instance.is_installed


def test_create_persists_record(tmp_path: Path, native_blueprint: Blueprint) -> None:
    """New instances get a record named after the blueprint with version ``0``."""
    store = _store(tmp_path)

    instance = store.create(
        native_blueprint,
        install_root=tmp_path / "games",
        supervision=SupervisionKind.SYSTEMD,
    )

    assert instance.name == "valheim"
    assert instance.version == "0"
    assert not instance.is_installed
    record = store.record_path("valheim", "valheim")
    assert record.is_file()
    assert RecordFile(record).read()["working_dir"] == str(tmp_path / "games" / "valheim")
    assert store.load("valheim") == instance


def test_generated_names_avoid_collisions(tmp_path: Path, native_blueprint: Blueprint) -> None:
    """Taken names get a random suffix; taken suffixes are retried."""
    store = _store(tmp_path, iter(["07", "07", "42"]))
    root = tmp_path / "games"

    standalone = SupervisionKind.STANDALONE

    first = store.create(native_blueprint, install_root=root, supervision=standalone)
    second = store.create(native_blueprint, install_root=root, supervision=standalone)
    third = store.create(native_blueprint, install_root=root, supervision=standalone)

    assert [first.name, second.name, third.name] == ["valheim", "valheim-07", "valheim-42"]


def test_name_generation_exhausts(tmp_path: Path, native_blueprint: Blueprint) -> None:
    """Running out of attempts raises a distinct error."""
    store = _store(tmp_path, iter(["01", "01", "01", "01", "01"]))
    root = tmp_path / "games"
    store.create(native_blueprint, install_root=root, supervision=SupervisionKind.STANDALONE)
    store.create(native_blueprint, install_root=root, supervision=SupervisionKind.STANDALONE)

    with pytest.raises(NameExhaustedError) as excinfo:
        store.create(native_blueprint, install_root=root, supervision=SupervisionKind.STANDALONE)
    assert excinfo.value.exit_code is ExitCode.NAME_EXHAUSTED


def test_explicit_name_collision_is_rejected(
    tmp_path: Path, native_blueprint: Blueprint
) -> None:
    """An explicit name that is already taken is an argument error."""
    store = _store(tmp_path)
    root = tmp_path / "games"
    store.create(native_blueprint, install_root=root, supervision=SupervisionKind.STANDALONE)

    with pytest.raises(InvalidArgumentError, match="already exists"):
        store.create(
            native_blueprint,
            install_root=root,
            supervision=SupervisionKind.STANDALONE,
            name="valheim",
        )


def test_relative_install_root_rejected(tmp_path: Path, native_blueprint: Blueprint) -> None:
    """Working directories must be absolute."""
    with pytest.raises(InvalidArgumentError, match="absolute"):
        _store(tmp_path).create(
            native_blueprint, install_root=Path("games"), supervision=SupervisionKind.STANDALONE
        )


def test_container_blueprint_forces_container_supervision(tmp_path: Path) -> None:
    """Container blueprints are always supervised by the container backend."""
    compose = tmp_path / "minecraft.docker-compose.yml"
    compose.write_text("services: {}\n")
    blueprint = Blueprint(name="minecraft", kind=BlueprintKind.CONTAINER, path=compose)

    instance = _store(tmp_path).create(
        blueprint, install_root=tmp_path / "games", supervision=SupervisionKind.SYSTEMD
    )

    assert instance.supervision is SupervisionKind.CONTAINER
    assert instance.kind is BlueprintKind.CONTAINER


def test_record_with_relative_path_is_invalid(tmp_path: Path) -> None:
    """Loading a record holding a relative path fails with InvalidConfig."""
    store = _store(tmp_path)
    RecordFile(store.record_path("valheim", "broken")).write(
        {
            "name": "broken",
            "blueprint": "valheim",
            "blueprint_file": "/etc/gsmctl/blueprints/default/valheim.bp",
            "working_dir": "games/broken",
            "supervision": "standalone",
            "kind": "native",
            "version": "0",
        }
    )

    with pytest.raises(InvalidConfigError, match="relative working_dir"):
        store.load("broken")


def test_record_missing_keys_is_invalid(tmp_path: Path) -> None:
    """Records missing required keys are rejected."""
    store = _store(tmp_path)
    RecordFile(store.record_path("valheim", "partial")).write({"name": "partial"})

    with pytest.raises(InvalidConfigError, match="missing required keys"):
        store.load("partial")


def test_set_version_and_delete(tmp_path: Path, native_blueprint: Blueprint) -> None:
    """Version updates are persisted and deletion is idempotent."""
    store = _store(tmp_path)
    instance = store.create(
        native_blueprint, install_root=tmp_path / "games", supervision=SupervisionKind.STANDALONE
    )

    store.load("valheim")
    updated = store.set_version(instance, "1.3.0")

    assert updated.version == "1.3.0"
    assert store.load("valheim").version == "1.3.0"
    assert [item.name for item in store.list()] == ["valheim"]

    assert store.delete(updated) is True
    assert store.delete(updated) is False
    with pytest.raises(NotFoundError):
        store.load("valheim")
