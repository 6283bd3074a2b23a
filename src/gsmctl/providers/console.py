"""Deliver console commands to native instances through their management script."""
from __future__ import annotations

from ..blueprints import BlueprintKind
from ..errors import InvalidArgumentError, NotFoundError, SupervisionError
from ..instances import Instance
from .commands import run_command


def send_console(instance: Instance, *args: str) -> None:
    """Run the management script with *args* (``--input CMD`` or ``--save``)."""
    if instance.kind is not BlueprintKind.NATIVE:
        raise InvalidArgumentError(
            f"{instance.name} is a {instance.kind.value} instance and has no console input."
        )
    script = instance.management_script
    if not script.is_file():
        raise NotFoundError(f"Management script {script} not found.")
    run_command(
        [str(script), *args],
        error=SupervisionError,
        error_prefix=f"{script.name} {args[0]}",
        cwd=instance.working_dir,
        timeout=30,
    )


__all__ = ["send_console"]
