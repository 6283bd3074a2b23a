"""Select the supervision backend for an instance."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..instances import Instance, SupervisionKind
from .container import ContainerProvider
from .standalone import StandaloneProvider
from .systemd import SystemdProvider


class SupervisionBackend(Protocol):
    """Start, stop and query an instance's process."""

    def start(self, instance: Instance) -> object: ...

    def stop(self, instance: Instance) -> object: ...

    def is_active(self, instance: Instance) -> bool: ...

    def logs(self, instance: Instance, *, lines: int = 10, follow: bool = False) -> str: ...


@dataclass(slots=True)
class Supervisors:
    """The closed set of backends, one per :class:`SupervisionKind`."""

    systemd: SupervisionBackend
    standalone: SupervisionBackend
    container: SupervisionBackend

    def for_instance(self, instance: Instance) -> SupervisionBackend:
        """Return the backend configured for *instance*."""
        if instance.supervision is SupervisionKind.SYSTEMD:
            return self.systemd
        if instance.supervision is SupervisionKind.CONTAINER:
            return self.container
        return self.standalone


def build_supervisors(
    systemd: SystemdProvider,
    *,
    stop_timeout: float = 30.0,
    docker_bin: str = "docker",
) -> Supervisors:
    """Return the default backends."""
    return Supervisors(
        systemd=systemd,
        standalone=StandaloneProvider(stop_timeout=stop_timeout),
        container=ContainerProvider(docker_bin=docker_bin),
    )


__all__ = ["SupervisionBackend", "Supervisors", "build_supervisors"]
