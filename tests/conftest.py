"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from gsmctl.blueprints import Blueprint, BlueprintKind
from gsmctl.instances import Instance, SupervisionKind

NATIVE_BLUEPRINT = """\
blueprint_name="valheim"
blueprint_display_name="Valheim"
blueprint_ports="2456:2458/udp"
blueprint_executable_file="./valheim_server.x86_64"
blueprint_executable_arguments="-name demo -port 2456"
blueprint_stop_command=""
blueprint_version_command="echo 1.0.0"
blueprint_download_command="echo download"
"""


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def blueprint_file(tmp_path: Path) -> Path:
    """Write a native blueprint into a default blueprint directory."""
    path = tmp_path / "blueprints" / "default" / "valheim.bp"
    path.parent.mkdir(parents=True)
    path.write_text(NATIVE_BLUEPRINT, encoding="utf-8")
    return path


@pytest.fixture
def native_blueprint(blueprint_file: Path) -> Blueprint:
    """Return a parsed native blueprint backed by ``blueprint_file``."""
    return Blueprint(
        name="valheim",
        kind=BlueprintKind.NATIVE,
        path=blueprint_file,
        ports="2456:2458/udp",
        executable_file="./valheim_server.x86_64",
        executable_arguments="-name demo -port 2456",
    )


@pytest.fixture
def instance(tmp_path: Path, blueprint_file: Path) -> Instance:
    """Return an unpersisted standalone instance rooted in ``tmp_path``."""
    return Instance(
        name="valheim",
        blueprint="valheim",
        blueprint_path=blueprint_file,
        working_dir=tmp_path / "games" / "valheim",
        supervision=SupervisionKind.STANDALONE,
        kind=BlueprintKind.NATIVE,
        version="1.2.0",
    )
