"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    CANCELLED = 1
    INVALID_ARGUMENT = 2
    INVALID_CONFIG = 3
    SUPERVISION = 4
    NOT_FOUND = 10
    PERMISSION_DENIED = 11
    IO_FAILURE = 12
    VERSION_CHECK = 13
    TRANSPORT_FAILURE = 14
    DEPENDENCY_MISSING = 15
    DOWNLOAD = 16
    NAME_EXHAUSTED = 17
    LOCK_TIMEOUT = 18
