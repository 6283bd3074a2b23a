"""Lifecycle orchestration for game server instances.

The orchestrator owns the instance state machine::

    ABSENT --install--> PROVISIONED <--start/stop--> RUNNING
    PROVISIONED --uninstall--> ABSENT

``update`` is allowed from PROVISIONED or RUNNING and always returns the
instance to the state it started in. Each mutating operation holds the
instance lock for its whole duration and emits lifecycle events as it goes.
Events are best effort; a failed delivery never fails the operation.

Update runs these steps in order:

1. version check (``VersionCheckError`` when the latest version is unknown;
   a no-op when already current unless forced),
2. download into ``temp`` (nothing live is touched on failure),
3. note whether the instance is running,
4. stop it if it was running (abort on failure, instance keeps running),
5. back up ``install`` and reset the recorded version to ``"0"``,
6. deploy the staged files into ``install`` (the backup stays on failure;
   there is no automatic rollback),
7. start it again if it was running (failure is only a warning),
8. record the new version (failure is only a warning).
"""
from __future__ import annotations

import enum
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .backups import BackupEntry, BackupManager, clear_directory, is_empty_dir
from .blueprints import Blueprint, BlueprintCatalog
from .errors import (
    DownloadError,
    GsmError,
    InvalidArgumentError,
    SupervisionError,
    from_os_error,
)
from .events import EventBus, EventName
from .instances import Instance, InstanceStore, SupervisionKind
from .locking import LockManager
from .logging import OperationScope
from .providers import Downloaders, Provisioner, Supervisors, VersionSources, send_console


class InstanceState(str, enum.Enum):
    """Observable lifecycle state of an instance."""

    ABSENT = "absent"
    PROVISIONED = "provisioned"
    RUNNING = "running"


class UpdateOutcome(str, enum.Enum):
    """Result of an update request."""

    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"


@dataclass(slots=True)
class UpdateResult:
    """What an update did."""

    outcome: UpdateOutcome
    instance: Instance
    previous_version: str
    latest_version: str
    backup: BackupEntry | None = None
    was_running: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class InstallResult:
    """What an installation did."""

    instance: Instance
    version: str
    warnings: list[str] = field(default_factory=list)


def versions_equal(installed: str, latest: str) -> bool:
    """Compare versions semantically when both parse, otherwise as strings."""
    try:
        return Version(installed) == Version(latest)
    except InvalidVersion:
        return installed.strip() == latest.strip()


def _deploy_entry(source: Path, target: Path) -> None:
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    elif target.exists() or target.is_symlink():
        target.unlink()
    try:
        os.replace(source, target)
    except OSError:
        shutil.move(str(source), str(target))


class LifecycleOrchestrator:
    """Run lifecycle operations against instances."""

    def __init__(
        self,
        *,
        store: InstanceStore,
        catalog: BlueprintCatalog,
        provisioner: Provisioner,
        supervisors: Supervisors,
        versions: VersionSources,
        downloaders: Downloaders,
        backups: BackupManager,
        events: EventBus,
        locks: LockManager | None = None,
        default_install_root: Path = Path("/opt/gsm"),
        default_supervision: SupervisionKind = SupervisionKind.STANDALONE,
    ) -> None:
        """Wire the orchestrator to its collaborators."""
        self.store = store
        self.catalog = catalog
        self.provisioner = provisioner
        self.supervisors = supervisors
        self.versions = versions
        self.downloaders = downloaders
        self.backups = backups
        self.events = events
        self.locks = locks
        self.default_install_root = default_install_root
        self.default_supervision = default_supervision

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _locked(self, names: list[str], op: OperationScope | None) -> Iterator[None]:
        if self.locks is None:
            yield
            return
        with self.locks.mutate_instances(names) as bundle:
            if op is not None:
                op.set_lock_wait_ms(bundle.wait_ms)
            yield

    @staticmethod
    def _step(
        op: OperationScope | None, name: str, status: str = "success", detail: object = None
    ) -> None:
        if op is not None:
            op.add_step(name, status=status, detail=detail)

    def _emit(self, name: EventName, instance: Instance | str, **payload: object) -> None:
        target = instance.name if isinstance(instance, Instance) else instance
        self.events.emit(name, target, **payload)

    def _blueprint_for(self, instance: Instance) -> Blueprint:
        return self.catalog.load(str(instance.blueprint_path))

    def is_running(self, instance: Instance) -> bool:
        """Return ``True`` when the supervision backend reports the instance active."""
        return self.supervisors.for_instance(instance).is_active(instance)

    def state(self, name: str) -> InstanceState:
        """Return the current lifecycle state of *name*."""
        if not self.store.exists(name):
            return InstanceState.ABSENT
        instance = self.store.load(name)
        return InstanceState.RUNNING if self.is_running(instance) else InstanceState.PROVISIONED

    # ------------------------------------------------------------------
    # Creation and installation
    # ------------------------------------------------------------------
    def create(
        self,
        blueprint_name: str,
        *,
        name: str | None = None,
        install_root: Path | None = None,
        supervision: SupervisionKind | None = None,
        install: bool = True,
        op: OperationScope | None = None,
    ) -> Instance:
        """Create an instance of *blueprint_name*, optionally installing it."""
        blueprint = self.catalog.load(blueprint_name)
        with self._locked([name] if name else [], op):
            instance = self.store.create(
                blueprint,
                name=name,
                install_root=install_root or self.default_install_root,
                supervision=supervision or self.default_supervision,
            )
            self._step(op, "record.create", detail=instance.name)
            self._emit(EventName.INSTANCE_CREATED, instance, Blueprint=blueprint.name)
            try:
                self._provision(instance, blueprint, op=op)
            except GsmError:
                self._discard(instance, op)
                raise
            if install:
                self._install(instance, blueprint, op=op)
        return self.store.load(instance.name)

    def _provision(
        self,
        instance: Instance,
        blueprint: Blueprint,
        *,
        overwrite: bool = False,
        op: OperationScope | None = None,
    ) -> None:
        created = self.provisioner.create_directories(instance)
        self._step(op, "directories.create", detail=f"{len(created)} created")
        if created:
            self._emit(EventName.INSTANCE_DIRECTORIES_CREATED, instance)
        changed = self.provisioner.create_files(instance, blueprint, overwrite=overwrite)
        self._step(op, "files.create", detail=", ".join(changed) or "unchanged")
        if changed:
            self._emit(EventName.INSTANCE_FILES_CREATED, instance, Files=changed)

    def _discard(self, instance: Instance, op: OperationScope | None) -> None:
        """Best-effort removal of a half-created instance."""
        for label, action in (
            ("files.cleanup", lambda: self.provisioner.remove_files(instance)),
            ("directories.cleanup", lambda: self.provisioner.remove_directories(instance)),
            ("record.cleanup", lambda: self.store.delete(instance)),
        ):
            try:
                action()
            except GsmError as exc:
                self._step(op, label, status="warning", detail=str(exc))
            else:
                self._step(op, label)

    def install(
        self, name: str, *, force: bool = False, op: OperationScope | None = None
    ) -> InstallResult:
        """Provision, download and deploy an existing instance."""
        with self._locked([name], op):
            instance = self.store.load(name)
            if instance.is_installed and not force:
                raise InvalidArgumentError(
                    f"Instance '{name}' already has version {instance.version} installed; "
                    "use update, or install --force to reinstall."
                )
            blueprint = self._blueprint_for(instance)
            self._provision(instance, blueprint, overwrite=force, op=op)
            return self._install(instance, blueprint, op=op)

    def _install(
        self, instance: Instance, blueprint: Blueprint, *, op: OperationScope | None
    ) -> InstallResult:
        self._emit(EventName.INSTANCE_INSTALLATION_STARTED, instance, Blueprint=blueprint.name)
        latest = self.versions.latest_version(blueprint)
        self._step(op, "version.check", detail=latest)
        self._download(instance, blueprint, latest, op)
        self._deploy(instance, op)
        warnings: list[str] = []
        instance = self._save_version(instance, latest, warnings, op)
        self._emit(EventName.INSTANCE_INSTALLATION_FINISHED, instance, Version=latest)
        self._emit(EventName.INSTANCE_INSTALLED, instance, Blueprint=blueprint.name)
        return InstallResult(instance=instance, version=latest, warnings=warnings)

    # ------------------------------------------------------------------
    # Download / deploy primitives
    # ------------------------------------------------------------------
    def _download(
        self, instance: Instance, blueprint: Blueprint, version: str, op: OperationScope | None
    ) -> None:
        staging = instance.temp_dir
        self._emit(EventName.INSTANCE_DOWNLOAD_STARTED, instance, Version=version)
        try:
            staging.mkdir(parents=True, exist_ok=True)
            clear_directory(staging)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to prepare staging directory {staging}") from exc
        self.downloaders.fetch(instance, blueprint, version, staging)
        if is_empty_dir(staging):
            raise DownloadError(f"Download for '{instance.name}' produced no files.")
        self._step(op, "download", detail=f"{version} -> {staging}")
        self._emit(EventName.INSTANCE_DOWNLOAD_FINISHED, instance, Version=version)
        self._emit(EventName.INSTANCE_DOWNLOADED, instance, Version=version)

    def _deploy(self, instance: Instance, op: OperationScope | None) -> None:
        staging = instance.temp_dir
        install_dir = instance.install_dir
        self._emit(EventName.INSTANCE_DEPLOY_STARTED, instance)
        try:
            install_dir.mkdir(parents=True, exist_ok=True)
            for entry in sorted(staging.iterdir()):
                _deploy_entry(entry, install_dir / entry.name)
        except OSError as exc:
            raise from_os_error(exc, f"Failed to deploy into {install_dir}") from exc
        self._step(op, "deploy", detail=str(install_dir))
        self._emit(EventName.INSTANCE_DEPLOY_FINISHED, instance)
        self._emit(EventName.INSTANCE_DEPLOYED, instance)

    def _save_version(
        self,
        instance: Instance,
        version: str,
        warnings: list[str],
        op: OperationScope | None,
    ) -> Instance:
        previous = instance.version
        try:
            updated = self.store.set_version(instance, version)
        except GsmError as exc:
            message = f"Deployed {version} but failed to record it: {exc}"
            warnings.append(message)
            self._step(op, "record.version", status="warning", detail=message)
            return instance
        self._step(op, "record.version", detail=version)
        self._emit(
            EventName.INSTANCE_VERSION_UPDATED,
            updated,
            OldVersion=previous,
            NewVersion=version,
        )
        return updated

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------
    def start(self, name: str, *, op: OperationScope | None = None) -> bool:
        """Start *name*; return ``False`` when it was already running."""
        with self._locked([name], op):
            instance = self.store.load(name)
            return self._start(instance, op)

    def _start(self, instance: Instance, op: OperationScope | None) -> bool:
        backend = self.supervisors.for_instance(instance)
        if backend.is_active(instance):
            self._step(op, "supervision.start", status="skipped", detail="already running")
            return False
        backend.start(instance)
        self._step(op, "supervision.start", detail=instance.supervision.value)
        self._emit(EventName.INSTANCE_STARTED, instance)
        return True

    def stop(self, name: str, *, op: OperationScope | None = None) -> bool:
        """Stop *name*; return ``False`` when it was not running."""
        with self._locked([name], op):
            instance = self.store.load(name)
            return self._stop(instance, op)

    def _stop(self, instance: Instance, op: OperationScope | None) -> bool:
        backend = self.supervisors.for_instance(instance)
        if not backend.is_active(instance):
            self._step(op, "supervision.stop", status="skipped", detail="not running")
            return False
        backend.stop(instance)
        self._step(op, "supervision.stop", detail=instance.supervision.value)
        self._emit(EventName.INSTANCE_STOPPED, instance)
        return True

    def restart(self, name: str, *, op: OperationScope | None = None) -> None:
        """Stop (if running) and start *name*."""
        with self._locked([name], op):
            instance = self.store.load(name)
            self._stop(instance, op)
            self._start(instance, op)

    def status(self, name: str) -> dict[str, object]:
        """Return a status summary for *name*."""
        instance = self.store.load(name)
        running = self.is_running(instance)
        return {
            "name": instance.name,
            "blueprint": instance.blueprint,
            "state": (InstanceState.RUNNING if running else InstanceState.PROVISIONED).value,
            "version": instance.version,
            "installed": instance.is_installed,
            "supervision": instance.supervision.value,
            "working_dir": str(instance.working_dir),
            "backups": len(self.backups.list(instance)),
        }

    def logs(self, name: str, *, lines: int = 10, follow: bool = False) -> str:
        """Return recent output of *name*; with *follow* stream it until interrupted."""
        if lines < 1:
            raise InvalidArgumentError("Line count must be at least 1.")
        instance = self.store.load(name)
        backend = self.supervisors.for_instance(instance)
        return backend.logs(instance, lines=lines, follow=follow)

    # ------------------------------------------------------------------
    # Console
    # ------------------------------------------------------------------
    def send_input(self, name: str, command: str, *, op: OperationScope | None = None) -> None:
        """Write *command* to the console of the running native instance *name*."""
        if not command.strip():
            raise InvalidArgumentError("Console command must not be empty.")
        instance = self.store.load(name)
        self._require_running(instance)
        send_console(instance, "--input", command)
        self._step(op, "console.input", detail=command)

    def save(self, name: str, *, op: OperationScope | None = None) -> None:
        """Ask the running native instance *name* to save its world."""
        instance = self.store.load(name)
        blueprint = self._blueprint_for(instance)
        if not blueprint.save_command:
            raise InvalidArgumentError(f"Blueprint {blueprint.name} defines no save command.")
        self._require_running(instance)
        send_console(instance, "--save")
        self._step(op, "console.save", detail=blueprint.save_command)

    def _require_running(self, instance: Instance) -> None:
        if not self.is_running(instance):
            raise SupervisionError(f"Instance {instance.name} is not running.")

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def check_update(self, name: str) -> tuple[Instance, str, bool]:
        """Return ``(instance, latest, up_to_date)`` without changing anything."""
        instance = self.store.load(name)
        latest = self.versions.latest_version(self._blueprint_for(instance))
        return instance, latest, versions_equal(instance.version, latest)

    def update(
        self, name: str, *, force: bool = False, op: OperationScope | None = None
    ) -> UpdateResult:
        """Update *name* to the latest available version."""
        with self._locked([name], op):
            instance = self.store.load(name)
            self._emit(EventName.INSTANCE_UPDATE_STARTED, instance)
            try:
                return self._update(instance, force=force, op=op)
            except GsmError as exc:
                self._emit(EventName.INSTANCE_UPDATE_FAILED, instance, Reason=str(exc))
                raise

    def _update(
        self, instance: Instance, *, force: bool, op: OperationScope | None
    ) -> UpdateResult:
        blueprint = self._blueprint_for(instance)
        previous = instance.version

        latest = self.versions.latest_version(blueprint)
        self._step(op, "version.check", detail=f"installed={previous} latest={latest}")
        if not force and versions_equal(previous, latest):
            self._emit(EventName.INSTANCE_UPDATE_FINISHED, instance, Version=previous)
            return UpdateResult(
                outcome=UpdateOutcome.UP_TO_DATE,
                instance=instance,
                previous_version=previous,
                latest_version=latest,
            )

        self._download(instance, blueprint, latest, op)

        backend = self.supervisors.for_instance(instance)
        was_running = backend.is_active(instance)
        self._step(op, "supervision.state", detail="running" if was_running else "stopped")
        if was_running:
            backend.stop(instance)
            self._step(op, "supervision.stop", detail=instance.supervision.value)
            self._emit(EventName.INSTANCE_STOPPED, instance)

        backup = self.backups.create(instance)
        if backup is None:
            self._step(op, "backup", status="skipped", detail="install directory empty")
        else:
            self._step(op, "backup", detail=backup.id)
            self._emit(
                EventName.INSTANCE_BACKUP_CREATED,
                instance,
                Source=str(instance.install_dir),
                Version=backup.version,
                Backup=backup.id,
            )
            instance = self.store.set_version(instance, "0")

        self._deploy(instance, op)

        warnings: list[str] = []
        if was_running:
            try:
                backend.start(instance)
            except GsmError as exc:
                message = f"Deployed {latest} but failed to start again: {exc}"
                warnings.append(message)
                self._step(op, "supervision.start", status="warning", detail=message)
            else:
                self._step(op, "supervision.start", detail=instance.supervision.value)
                self._emit(EventName.INSTANCE_STARTED, instance)

        instance = self._save_version(instance, latest, warnings, op)
        self._emit(EventName.INSTANCE_UPDATE_FINISHED, instance, Version=latest)
        self._emit(EventName.INSTANCE_UPDATED, instance, OldVersion=previous, NewVersion=latest)
        return UpdateResult(
            outcome=UpdateOutcome.UPDATED,
            instance=instance,
            previous_version=previous,
            latest_version=latest,
            backup=backup,
            was_running=was_running,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------
    def backup(self, name: str, *, op: OperationScope | None = None) -> BackupEntry | None:
        """Back up *name*'s install directory; ``None`` when it is empty."""
        with self._locked([name], op):
            instance = self.store.load(name)
            entry = self.backups.create(instance)
            if entry is None:
                self._step(op, "backup", status="skipped", detail="install directory empty")
                return None
            self._step(op, "backup", detail=entry.id)
            self.store.set_version(instance, "0")
            self._emit(
                EventName.INSTANCE_BACKUP_CREATED,
                instance,
                Source=str(instance.install_dir),
                Version=entry.version,
                Backup=entry.id,
            )
            return entry

    def list_backups(self, name: str) -> list[BackupEntry]:
        """Return *name*'s backups, newest first."""
        return self.backups.list(self.store.load(name))

    def restore(
        self,
        name: str,
        backup_id: str,
        *,
        overwrite: bool = False,
        op: OperationScope | None = None,
    ) -> Instance:
        """Restore *backup_id* into *name*'s install directory."""
        with self._locked([name], op):
            instance = self.store.load(name)
            entry = self.backups.find(instance, backup_id)
            result = self.backups.restore(instance, entry, overwrite=overwrite)
            if result.displaced is not None:
                self._step(op, "backup.displaced", detail=result.displaced.id)
                self._emit(
                    EventName.INSTANCE_BACKUP_CREATED,
                    instance,
                    Source=str(instance.install_dir),
                    Version=result.displaced.version,
                    Backup=result.displaced.id,
                )
            version = result.version
            self._step(op, "backup.restore", detail=entry.id)
            restored = self.store.set_version(instance, version)
            self._step(op, "record.version", detail=version)
            self._emit(
                EventName.INSTANCE_BACKUP_RESTORED,
                restored,
                Source=entry.id,
                Version=version,
            )
            return restored

    # ------------------------------------------------------------------
    # Uninstall
    # ------------------------------------------------------------------
    def uninstall(self, name: str, *, op: OperationScope | None = None) -> list[str]:
        """Stop *name*, remove everything it owns and delete its record."""
        with self._locked([name], op):
            instance = self.store.load(name)
            removed: list[str] = []
            self._emit(EventName.INSTANCE_UNINSTALL_STARTED, instance)
            if self._stop(instance, op):
                removed.append("process")

            files = self.provisioner.remove_files(instance)
            removed.extend(files)
            self._step(op, "files.remove", detail=", ".join(files) or "none present")
            self._emit(EventName.INSTANCE_FILES_REMOVED, instance)

            if self.provisioner.remove_directories(instance):
                removed.append("directories")
            self._step(op, "directories.remove", detail=str(instance.working_dir))
            self._emit(EventName.INSTANCE_DIRECTORIES_REMOVED, instance)

            if self.store.delete(instance):
                removed.append("record")
            self._step(op, "record.delete", detail=instance.name)
            self._emit(EventName.INSTANCE_REMOVED, instance)
            self._emit(EventName.INSTANCE_UNINSTALL_FINISHED, instance)
            self._emit(EventName.INSTANCE_UNINSTALLED, instance)
            return removed


__all__ = [
    "InstallResult",
    "InstanceState",
    "LifecycleOrchestrator",
    "UpdateOutcome",
    "UpdateResult",
    "versions_equal",
]
