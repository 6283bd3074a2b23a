"""Error taxonomy shared by the model, providers and lifecycle layers.

Every error carries the :class:`~gsmctl.exit_codes.ExitCode` the CLI reports
when it escapes a command.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class GsmError(RuntimeError):
    """Base class for failures surfaced to the CLI."""

    exit_code: ExitCode = ExitCode.IO_FAILURE


class NotFoundError(GsmError):
    """Raised when an instance, blueprint or backup does not exist."""

    exit_code = ExitCode.NOT_FOUND


class InvalidArgumentError(GsmError):
    """Raised when caller supplied input is rejected."""

    exit_code = ExitCode.INVALID_ARGUMENT


class InvalidConfigError(GsmError):
    """Raised when persisted records or configuration are malformed."""

    exit_code = ExitCode.INVALID_CONFIG


class PermissionDeniedError(GsmError):
    """Raised when the filesystem refuses an operation."""

    exit_code = ExitCode.PERMISSION_DENIED


class IOFailureError(GsmError):
    """Raised when a filesystem operation fails for other reasons."""

    exit_code = ExitCode.IO_FAILURE


class VersionCheckError(GsmError):
    """Raised when the latest available version cannot be determined."""

    exit_code = ExitCode.VERSION_CHECK


class TransportFailureError(GsmError):
    """Raised by event transports; never escapes the event bus during lifecycle work."""

    exit_code = ExitCode.TRANSPORT_FAILURE


class DependencyMissingError(GsmError):
    """Raised when an external tool required by a collaborator is absent."""

    exit_code = ExitCode.DEPENDENCY_MISSING


class DownloadError(GsmError):
    """Raised when fetching server files fails."""

    exit_code = ExitCode.DOWNLOAD


class SupervisionError(GsmError):
    """Raised when a supervision backend cannot start or stop an instance."""

    exit_code = ExitCode.SUPERVISION


class NameExhaustedError(GsmError):
    """Raised when no free instance name could be generated."""

    exit_code = ExitCode.NAME_EXHAUSTED


def from_os_error(exc: OSError, message: str) -> GsmError:
    """Map an :class:`OSError` onto the taxonomy."""
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"{message}: {exc}")
    return IOFailureError(f"{message}: {exc}")


__all__ = [
    "DependencyMissingError",
    "DownloadError",
    "GsmError",
    "IOFailureError",
    "InvalidArgumentError",
    "InvalidConfigError",
    "NameExhaustedError",
    "NotFoundError",
    "PermissionDeniedError",
    "SupervisionError",
    "TransportFailureError",
    "VersionCheckError",
    "from_os_error",
]
