"""Lifecycle event vocabulary and wire format."""
from __future__ import annotations

import enum
import json
import socket
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .. import __version__


class EventName(str, enum.Enum):
    """Closed set of events emitted by gsmctl."""

    INSTANCE_CREATED = "instance_created"
    INSTANCE_REMOVED = "instance_removed"
    INSTANCE_DIRECTORIES_CREATED = "instance_directories_created"
    INSTANCE_DIRECTORIES_REMOVED = "instance_directories_removed"
    INSTANCE_FILES_CREATED = "instance_files_created"
    INSTANCE_FILES_REMOVED = "instance_files_removed"
    INSTANCE_DOWNLOAD_STARTED = "instance_download_started"
    INSTANCE_DOWNLOAD_FINISHED = "instance_download_finished"
    INSTANCE_DOWNLOADED = "instance_downloaded"
    INSTANCE_DEPLOY_STARTED = "instance_deploy_started"
    INSTANCE_DEPLOY_FINISHED = "instance_deploy_finished"
    INSTANCE_DEPLOYED = "instance_deployed"
    INSTANCE_UPDATE_STARTED = "instance_update_started"
    INSTANCE_UPDATE_FINISHED = "instance_update_finished"
    INSTANCE_UPDATED = "instance_updated"
    INSTANCE_UPDATE_FAILED = "instance_update_failed"
    INSTANCE_VERSION_UPDATED = "instance_version_updated"
    INSTANCE_INSTALLATION_STARTED = "instance_installation_started"
    INSTANCE_INSTALLATION_FINISHED = "instance_installation_finished"
    INSTANCE_INSTALLED = "instance_installed"
    INSTANCE_STARTED = "instance_started"
    INSTANCE_STOPPED = "instance_stopped"
    INSTANCE_BACKUP_CREATED = "instance_backup_created"
    INSTANCE_BACKUP_RESTORED = "instance_backup_restored"
    INSTANCE_UNINSTALL_STARTED = "instance_uninstall_started"
    INSTANCE_UNINSTALL_FINISHED = "instance_uninstall_finished"
    INSTANCE_UNINSTALLED = "instance_uninstalled"
    SOCKET_TEST = "socket_test"
    WEBHOOK_TEST = "webhook_test"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Event:
    """An immutable lifecycle fact."""

    name: EventName
    instance: str
    payload: Mapping[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    hostname: str = field(default_factory=socket.gethostname)

    def to_payload(self) -> dict[str, object]:
        """Return the JSON object sent to every transport."""
        data: dict[str, object] = {"InstanceName": self.instance}
        data.update({str(key): value for key, value in self.payload.items()})
        return {
            "event": self.name.value,
            "instance": self.instance,
            "timestamp": self.timestamp.isoformat(timespec="seconds").replace("+00:00", "Z"),
            "hostname": self.hostname,
            "version": __version__,
            "data": data,
        }

    def to_json(self) -> bytes:
        """Serialise the payload as compact UTF-8 JSON."""
        return json.dumps(self.to_payload(), separators=(",", ":"), default=str).encode("utf-8")


__all__ = ["Event", "EventName"]
