"""Collaborators the lifecycle orchestrator delegates to."""
from __future__ import annotations

from .console import send_console
from .container import ContainerProvider
from .downloads import Downloader, Downloaders
from .provisioning import Provisioner
from .standalone import StandaloneProvider
from .supervision import SupervisionBackend, Supervisors, build_supervisors
from .systemd import SystemdProvider
from .versions import VersionSource, VersionSources

__all__ = [
    "ContainerProvider",
    "Downloader",
    "Downloaders",
    "Provisioner",
    "StandaloneProvider",
    "SupervisionBackend",
    "Supervisors",
    "SystemdProvider",
    "VersionSource",
    "VersionSources",
    "build_supervisors",
    "send_console",
]
