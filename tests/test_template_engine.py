"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from gsmctl.templates import TemplateEngine


def _unit_context(instance: str) -> dict[str, object]:
    return {
        "instance_name": instance,
        "blueprint": "valheim",
        "working_directory": f"/opt/gsm/{instance}",
        "exec_start": f"/opt/gsm/{instance}/{instance}.manage.sh --run",
        "exec_stop": "",
        "stop_timeout": 30,
        "environment": [f"GSM_INSTANCE={instance}"],
    }


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", _unit_context("alpha"))

    assert "Description=Game server alpha (valheim)" in output
    assert "Environment=GSM_INSTANCE=alpha" in output
    assert "ExecStop" not in output


def test_missing_variable_is_an_error() -> None:
    """StrictUndefined turns missing context keys into errors."""
    engine = TemplateEngine.with_overrides(None)
    context = _unit_context("alpha")
    del context["exec_start"]

    with pytest.raises(UndefinedError):
        engine.render_to_string("systemd/service.j2", context)


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "beta.service"

    changed = engine.render_to_path(
        "systemd/service.j2", destination, _unit_context("beta"), mode=0o600
    )

    assert changed is True
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    changed_again = engine.render_to_path(
        "systemd/service.j2", destination, _unit_context("beta"), mode=0o600
    )
    assert changed_again is False


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "systemd" / "service.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("override {{ instance_name }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string("systemd/service.j2", _unit_context("gamma")) == "override gamma"


def test_firewall_template_lists_ports() -> None:
    """The firewall profile carries the instance's port rule string."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "firewall/ufw.j2",
        {"instance_name": "alpha", "blueprint": "valheim", "ports": "2456:2458/udp"},
    )

    assert output.splitlines()[0] == "[alpha]"
    assert "ports=2456:2458/udp" in output
