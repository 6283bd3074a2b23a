"""Typer-powered command line interface for ``gsmctl``.

Every command runs inside a structured logging operation. Work is delegated
to :class:`~gsmctl.lifecycle.LifecycleOrchestrator`; failures from the error
taxonomy are reported with their stable exit codes.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import BackupEntry, BackupManager, is_empty_dir
from .blueprints import BlueprintCatalog
from .config import AppConfig, ConfigError, load_config, set_config_value
from .errors import GsmError
from .events import DeliveryResult, EventBus, SocketTransport, WebhookTransport
from .exit_codes import ExitCode
from .instances import Instance, InstanceStore, SupervisionKind
from .lifecycle import LifecycleOrchestrator, UpdateOutcome
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .ports import firewall_to_container_ports, firewall_to_router_ports
from .providers import (
    Downloaders,
    Provisioner,
    Supervisors,
    SystemdProvider,
    VersionSources,
    build_supervisors,
)
from .providers.downloads import ComposeDownloader, SteamCmdDownloader
from .providers.versions import SteamCmdVersionSource
from .state import RecordCache
from .templates import TemplateEngine

console = Console()

T = TypeVar("T")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to gsmctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Game server instance manager.

        Creates instances from blueprints, provisions their directories and
        service files, installs and updates server files with automatic
        backups, and notifies external listeners about lifecycle events.
        """
    ).strip(),
)

instances_app = typer.Typer(help="Create, run, update and remove instances.")
blueprints_app = typer.Typer(help="Inspect available blueprints.")
events_app = typer.Typer(help="Configure and test lifecycle event notifications.")
socket_app = typer.Typer(help="Local Unix socket event transport.")
webhook_app = typer.Typer(help="HTTP webhook event transport.")
config_app = typer.Typer(help="Inspect global configuration.")

app.add_typer(instances_app, name="instance")
app.add_typer(blueprints_app, name="blueprint")
app.add_typer(events_app, name="events")
app.add_typer(config_app, name="config")
events_app.add_typer(socket_app, name="socket")
events_app.add_typer(webhook_app, name="webhook")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    catalog: BlueprintCatalog
    store: InstanceStore
    socket_transport: SocketTransport
    webhook_transport: WebhookTransport
    events: EventBus
    systemd_provider: SystemdProvider
    provisioner: Provisioner
    supervisors: Supervisors
    backups: BackupManager
    lifecycle: LifecycleOrchestrator


def _build_runtime(config: AppConfig) -> RuntimeContext:
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    catalog = BlueprintCatalog(
        config.blueprints.default_dir,
        config.blueprints.custom_dir,
        cache=RecordCache(),
    )
    store = InstanceStore(
        config.records_dir,
        cache=RecordCache(),
        suffix_length=config.instances.suffix_length,
        name_attempts=config.instances.name_attempts,
    )
    socket_transport = SocketTransport(
        config.events.socket.paths,
        enabled=config.events.socket.enabled,
        timeout=config.events.socket.timeout_seconds,
    )
    webhook_transport = WebhookTransport(config.events.webhook)
    events = EventBus([socket_transport, webhook_transport])
    systemd_provider = SystemdProvider(
        templates=templates,
        systemd_dir=config.systemd.unit_dir,
        systemctl_bin=config.systemd.systemctl_bin,
        stop_timeout=config.instances.stop_timeout,
    )
    provisioner = Provisioner(
        templates=templates,
        systemd=systemd_provider,
        firewall=config.firewall,
        shortcuts=config.shortcuts,
    )
    supervisors = build_supervisors(
        systemd_provider,
        stop_timeout=config.instances.stop_timeout,
        docker_bin=config.tools.docker_bin,
    )
    backups = BackupManager()
    lifecycle = LifecycleOrchestrator(
        store=store,
        catalog=catalog,
        provisioner=provisioner,
        supervisors=supervisors,
        versions=VersionSources(steamcmd=SteamCmdVersionSource(config.tools.steamcmd_bin)),
        downloaders=Downloaders(
            steamcmd=SteamCmdDownloader(config.tools.steamcmd_bin),
            compose=ComposeDownloader(config.tools.docker_bin),
        ),
        backups=backups,
        events=events,
        locks=locks,
        default_install_root=config.instances.root,
        default_supervision=SupervisionKind(config.instances.supervision),
    )
    return RuntimeContext(
        config=config,
        locks=locks,
        logger=logger,
        templates=templates,
        catalog=catalog,
        store=store,
        socket_transport=socket_transport,
        webhook_transport=webhook_transport,
        events=events,
        systemd_provider=systemd_provider,
        provisioner=provisioner,
        supervisors=supervisors,
        backups=backups,
        lifecycle=lifecycle,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.INVALID_CONFIG)) from exc
    runtime = _build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the gsmctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"gsmctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.INVALID_ARGUMENT),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _run(op: OperationScope, action: Callable[[], T]) -> T:
    """Run *action*, turning taxonomy errors into a structured exit."""
    try:
        return action()
    except GsmError as exc:
        _command_error(op, str(exc), rc=int(exc.exit_code))


def _instance_row(
    runtime: RuntimeContext, instance: Instance, *, detailed: bool = False
) -> dict[str, object]:
    try:
        state = "running" if runtime.lifecycle.is_running(instance) else "stopped"
    except GsmError as exc:
        state = f"unknown ({exc})"
    row: dict[str, object] = {
        "name": instance.name,
        "blueprint": instance.blueprint,
        "version": instance.version,
        "supervision": instance.supervision.value,
        "state": state,
        "working_dir": str(instance.working_dir),
    }
    if detailed:
        row["installed_at"] = instance.installed_at or "-"
        row["install_dir"] = str(instance.install_dir)
        row["management_script"] = str(instance.management_script)
    return row


def _render_mapping(data: Mapping[str, object]) -> None:
    table = Table(show_header=False)
    for key, value in data.items():
        if value in (None, ""):
            continue
        if isinstance(value, (dict, list)):
            rendered = json.dumps(value, indent=2, sort_keys=True)
        else:
            rendered = str(value)
        table.add_row(key.replace("_", " ").title(), rendered)
    console.print(table)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


# ----------------------------------------------------------------------
# blueprints
# ----------------------------------------------------------------------
@blueprints_app.command("list")
def blueprint_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List blueprints from the custom and default directories."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "blueprint list",
        args={"json": json_output},
        target={"kind": "blueprint"},
    ) as op:
        names = runtime.catalog.list()
        if json_output:
            console.print_json(data={"blueprints": names})
        elif not names:
            console.print("No blueprints found.")
        else:
            for name in names:
                console.print(name)
        op.success("Listed blueprints.", changed=0, context={"count": len(names)})


@blueprints_app.command("show")
def blueprint_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Blueprint name or path."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the parsed attributes of a blueprint."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "blueprint show",
        args={"name": name, "json": json_output},
        target={"kind": "blueprint", "name": name},
    ) as op:
        blueprint = _run(op, lambda: runtime.catalog.load(name))
        data = blueprint.to_dict()
        data["router_ports"] = firewall_to_router_ports(blueprint.ports)
        data["container_ports"] = firewall_to_container_ports(blueprint.ports)
        if json_output:
            console.print_json(data=data)
        else:
            _render_mapping(data)
        op.success("Displayed blueprint.", changed=0)


# ----------------------------------------------------------------------
# instances
# ----------------------------------------------------------------------
@instances_app.command("create")
def instance_create(
    ctx: typer.Context,
    blueprint: str = typer.Argument(..., help="Blueprint to create the instance from."),
    name: str | None = typer.Option(
        None,
        "--name",
        help="Instance name (defaults to the blueprint name plus a suffix if taken).",
    ),
    install_dir: Path | None = typer.Option(
        None,
        "--install-dir",
        file_okay=False,
        help="Parent directory for the instance working directory.",
    ),
    supervision: SupervisionKind | None = typer.Option(
        None,
        "--supervision",
        case_sensitive=False,
        help="Supervision backend (defaults to instances.supervision).",
    ),
    no_install: bool = typer.Option(
        False,
        "--no-install",
        help="Create and provision the instance without downloading server files.",
    ),
) -> None:
    """Create a new instance from a blueprint."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance create",
        args={
            "blueprint": blueprint,
            "name": name,
            "install_dir": install_dir,
            "no_install": no_install,
        },
        target={"kind": "instance", "name": name or blueprint},
    ) as op:
        instance = _run(
            op,
            lambda: runtime.lifecycle.create(
                blueprint,
                name=name,
                install_root=install_dir.expanduser().absolute() if install_dir else None,
                supervision=supervision,
                install=not no_install,
                op=op,
            ),
        )
        console.print(
            f"[green]Instance '{instance.name}' created[/green] in {instance.working_dir}."
        )
        if instance.is_installed:
            console.print(f"Installed version {instance.version}.")
        op.success(
            "Instance created.",
            changed=1,
            context={"name": instance.name, "version": instance.version},
        )


@instances_app.command("install")
def instance_install(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to install."),
    force: bool = typer.Option(
        False,
        "--force",
        help="Reinstall even if a version is already installed.",
    ),
) -> None:
    """Download and deploy server files for an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance install",
        args={"name": name, "force": force},
        target={"kind": "instance", "name": name},
    ) as op:
        result = _run(op, lambda: runtime.lifecycle.install(name, force=force, op=op))
        console.print(f"[green]Instance '{name}' installed version {result.version}.[/green]")
        if result.warnings:
            for warning in result.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            op.warning("Instance installed with warnings.", warnings=result.warnings, changed=1)
            return
        op.success("Instance installed.", changed=1, context={"version": result.version})


@instances_app.command("remove")
def instance_remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to remove."),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Stop an instance and remove its files, directories and record."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance remove",
        args={"name": name, "yes": yes},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _run(op, lambda: runtime.store.load(name))
        if not yes and not typer.confirm(
            f"Remove instance '{name}' and delete {instance.working_dir}?", default=False
        ):
            op.add_step("confirm", status="skipped", detail="user-declined")
            _command_error(op, "Aborted.", rc=int(ExitCode.CANCELLED))
        removed = _run(op, lambda: runtime.lifecycle.uninstall(name, op=op))
        console.print(f"[green]Instance '{name}' removed.[/green]")
        op.success("Instance removed.", changed=len(removed), context={"removed": removed})


def _supervision_command(
    ctx: typer.Context,
    name: str,
    verb: str,
    action: Callable[[RuntimeContext, OperationScope], bool],
    done: str,
    noop: str,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"instance {verb}",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        changed = _run(op, lambda: action(runtime, op))
        if changed:
            console.print(f"[green]Instance '{name}' {done}.[/green]")
            op.success(f"Instance {done}.", changed=1)
        else:
            console.print(f"Instance '{name}' {noop}.")
            op.success(f"Instance {noop}.", changed=0)


@instances_app.command("start")
def instance_start(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to start."),
) -> None:
    """Start an instance through its supervision backend."""
    _supervision_command(
        ctx,
        name,
        "start",
        lambda runtime, op: runtime.lifecycle.start(name, op=op),
        "started",
        "is already running",
    )


@instances_app.command("stop")
def instance_stop(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to stop."),
) -> None:
    """Stop an instance through its supervision backend."""
    _supervision_command(
        ctx,
        name,
        "stop",
        lambda runtime, op: runtime.lifecycle.stop(name, op=op),
        "stopped",
        "is not running",
    )


@instances_app.command("restart")
def instance_restart(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to restart."),
) -> None:
    """Restart an instance."""

    def _restart(runtime: RuntimeContext, op: OperationScope) -> bool:
        runtime.lifecycle.restart(name, op=op)
        return True

    _supervision_command(ctx, name, "restart", _restart, "restarted", "was not restarted")


@instances_app.command("status")
def instance_status(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Report lifecycle state, version and backups for an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance status",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        status = _run(op, lambda: runtime.lifecycle.status(name))
        if json_output:
            console.print_json(data=status)
        else:
            _render_mapping(status)
        op.success("Reported instance status.", changed=0)


@instances_app.command("logs")
def instance_logs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    lines: int = typer.Option(10, "--lines", "-n", min=1, help="Number of lines to show."),
    follow: bool = typer.Option(
        False, "--follow", "-f", help="Keep streaming new output until interrupted."
    ),
) -> None:
    """Show recent server output from the instance's supervision backend."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance logs",
        args={"name": name, "lines": lines, "follow": follow},
        target={"kind": "instance", "name": name},
    ) as op:
        output = _run(op, lambda: runtime.lifecycle.logs(name, lines=lines, follow=follow))
        if output:
            console.print(output, end="", markup=False, highlight=False, soft_wrap=True)
        op.success("Displayed instance logs.", changed=0)


@instances_app.command("input")
def instance_input(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the running instance."),
    command: str = typer.Argument(..., help="Console command to send to the server."),
) -> None:
    """Send a console command to a running native instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance input",
        args={"name": name, "command": command},
        target={"kind": "instance", "name": name},
    ) as op:
        _run(op, lambda: runtime.lifecycle.send_input(name, command, op=op))
        console.print(f"[green]Sent input to {name}.[/green]")
        op.success("Sent console input.", changed=0)


@instances_app.command("save")
def instance_save(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the running instance."),
) -> None:
    """Ask a running native instance to save its world."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance save",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        _run(op, lambda: runtime.lifecycle.save(name, op=op))
        console.print(f"[green]Asked {name} to save.[/green]")
        op.success("Sent save command.", changed=0)


@instances_app.command("update")
def instance_update(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to update."),
    force: bool = typer.Option(
        False,
        "--force",
        help="Redeploy even when the installed version is current.",
    ),
    check: bool = typer.Option(
        False,
        "--check",
        help="Only report whether an update is available.",
    ),
) -> None:
    """Update an instance to the latest available version."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance update",
        args={"name": name, "force": force, "check": check},
        target={"kind": "instance", "name": name},
    ) as op:
        if check:
            instance, latest, current = _run(op, lambda: runtime.lifecycle.check_update(name))
            if current:
                console.print(f"Instance '{name}' is up to date ({instance.version}).")
            else:
                console.print(
                    f"Update available for '{name}': {instance.version} -> {latest}."
                )
            op.success(
                "Checked for updates.",
                changed=0,
                context={"installed": instance.version, "latest": latest},
            )
            return

        result = _run(op, lambda: runtime.lifecycle.update(name, force=force, op=op))
        if result.outcome is UpdateOutcome.UP_TO_DATE:
            console.print(
                f"Instance '{name}' is already up to date ({result.previous_version})."
            )
            op.success("Instance already up to date.", changed=0)
            return

        backups = [result.backup.id] if result.backup else []
        console.print(
            f"[green]Instance '{name}' updated {result.previous_version} -> "
            f"{result.latest_version}.[/green]"
        )
        if result.backup:
            console.print(f"Previous files saved in backup {result.backup.id}.")
        if result.warnings:
            for warning in result.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            op.warning(
                "Instance updated with warnings.",
                warnings=result.warnings,
                changed=1,
                backups=backups,
            )
            return
        op.success("Instance updated.", changed=1, backups=backups)


@instances_app.command("backup")
def instance_backup(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to back up."),
) -> None:
    """Move the install directory into a new backup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance backup",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        entry = _run(op, lambda: runtime.lifecycle.backup(name, op=op))
        if entry is None:
            console.print(f"Nothing to back up: install directory of '{name}' is empty.")
            op.success("Backup skipped; install directory empty.", changed=0)
            return
        console.print(f"[green]Backup created:[/green] {entry.id}")
        op.success("Backup created.", changed=1, backups=[entry.id])


def _render_backups(entries: Sequence[BackupEntry], *, numbered: bool = False) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    if numbered:
        table.add_column("#", justify="right")
    table.add_column("Backup", style="bold")
    table.add_column("Version")
    table.add_column("Created")
    for index, entry in enumerate(entries, start=1):
        created = entry.created_at.isoformat() if entry.created_at else ""
        row = [entry.id, entry.version, created]
        table.add_row(*([str(index)] if numbered else []), *row)
    console.print(table)


@instances_app.command("backups")
def instance_backups(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List an instance's backups, newest first."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance backups",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        entries = _run(op, lambda: runtime.lifecycle.list_backups(name))
        if json_output:
            console.print_json(data={"backups": [entry.to_dict() for entry in entries]})
        elif not entries:
            console.print(f"No backups for '{name}'.")
        else:
            _render_backups(entries)
        op.success("Listed backups.", changed=0, context={"count": len(entries)})


@instances_app.command("restore")
def instance_restore(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to restore."),
    backup_id: str | None = typer.Argument(
        None,
        help="Backup to restore (prompted for when omitted).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite a non-empty install directory without asking.",
    ),
) -> None:
    """Restore a backup into the instance's install directory."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance restore",
        args={"name": name, "backup": backup_id, "force": force},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _run(op, lambda: runtime.store.load(name))
        chosen = backup_id
        if chosen is None:
            entries = runtime.backups.list(instance)
            if not entries:
                _command_error(
                    op, f"No backups found for '{name}'.", rc=int(ExitCode.NOT_FOUND)
                )
            _render_backups(entries, numbered=True)
            selection = typer.prompt("Select a backup", type=int, default=1)
            if selection < 1 or selection > len(entries):
                _command_error(op, f"Invalid selection: {selection}.")
            chosen = entries[selection - 1].id
            op.add_step("backup.select", status="success", detail=chosen)

        overwrite = force
        if not overwrite and not is_empty_dir(instance.install_dir):
            overwrite = typer.confirm(
                f"Install directory {instance.install_dir} is not empty. "
                "Move its contents to a new backup and restore?",
                default=False,
            )
            if not overwrite:
                op.add_step("confirm", status="skipped", detail="user-declined")
                _command_error(op, "Aborted.", rc=int(ExitCode.CANCELLED))

        selected = chosen
        restored = _run(
            op,
            lambda: runtime.lifecycle.restore(name, selected, overwrite=overwrite, op=op),
        )
        console.print(
            f"[green]Restored {selected} into '{name}' (version {restored.version}).[/green]"
        )
        op.success("Backup restored.", changed=1, backups=[selected])


@instances_app.command("list")
def instance_list(
    ctx: typer.Context,
    blueprint: str | None = typer.Argument(
        None, help="Only list instances created from this blueprint."
    ),
    detailed: bool = typer.Option(
        False, "--detailed", "-d", help="Include directories and install time."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """List instances with their version and state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance list",
        args={"blueprint": blueprint, "detailed": detailed, "json": json_output},
        target={"kind": "instance", "scope": "records"},
    ) as op:
        instances = _run(op, runtime.store.list)
        if blueprint is not None:
            wanted = blueprint.removesuffix(".bp")
            instances = [instance for instance in instances if instance.blueprint == wanted]
        rows = [_instance_row(runtime, instance, detailed=detailed) for instance in instances]
        if json_output:
            console.print_json(data={"instances": rows})
            op.success("Reported instance list as JSON.", changed=0)
            return

        columns = ["name", "blueprint", "version", "supervision", "state"]
        if detailed:
            columns += ["working_dir", "installed_at"]
        table = Table(show_header=True, header_style="bold magenta")
        for column in columns:
            table.add_column(
                column.replace("_", " ").title(), style="bold" if column == "name" else None
            )
        if not rows:
            table.add_row("(none)", *[""] * (len(columns) - 1))
        for row in rows:
            table.add_row(*(str(row[column]) for column in columns))
        console.print(table)
        op.success("Reported instance list.", changed=0)


@instances_app.command("show")
def instance_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the instance to display."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the stored record and derived paths of an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance show",
        args={"name": name, "json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        instance = _run(op, lambda: runtime.store.load(name))
        data = instance.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            _render_mapping(data)
        op.success("Displayed instance details.", changed=0)


# ----------------------------------------------------------------------
# events
# ----------------------------------------------------------------------
def _toggle(ctx: typer.Context, key: str, value: object, label: str) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"events {label}",
        args={"key": key, "value": value},
        target={"kind": "config", "path": runtime.config.config_file},
    ) as op:
        _run(op, lambda: set_config_value(runtime.config.config_file, key, value))
        op.add_step("config.write", status="success", detail=f"{key}={value}")
        console.print(f"[green]{key} set to {value}[/green] in {runtime.config.config_file}")
        op.success("Configuration updated.", changed=1)


def _report_status(
    ctx: typer.Context, label: str, statuses: Callable[[RuntimeContext], object]
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(f"events {label}", target={"kind": "events"}) as op:
        console.print_json(data=statuses(runtime))
        op.success("Reported event transport status.", changed=0)


def _report_tests(
    ctx: typer.Context,
    label: str,
    run_tests: Callable[[RuntimeContext], list[DeliveryResult]],
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(f"events {label}", target={"kind": "events"}) as op:
        results = run_tests(runtime)
        if not results:
            _command_error(
                op,
                "No event transports are enabled.",
                rc=int(ExitCode.TRANSPORT_FAILURE),
            )
        failed = []
        for result in results:
            if result.delivered:
                console.print(f"[green]{result.transport}: ok[/green] {result.detail}")
            else:
                console.print(f"[red]{result.transport}: failed[/red] {result.detail}")
                failed.append(f"{result.transport}: {result.detail}")
        if failed:
            _command_error(
                op,
                "One or more event transports failed their test.",
                rc=int(ExitCode.TRANSPORT_FAILURE),
                errors=failed,
            )
        op.success("Event transports tested.", changed=0)


@events_app.command("status")
def events_status(ctx: typer.Context) -> None:
    """Show the status of every event transport."""
    _report_status(ctx, "status", lambda runtime: {"transports": runtime.events.status()})


@events_app.command("test-all")
def events_test_all(ctx: typer.Context) -> None:
    """Send a test event through every enabled transport."""
    _report_tests(ctx, "test-all", lambda runtime: list(runtime.events.test_all()))


@socket_app.command("enable")
def socket_enable(ctx: typer.Context) -> None:
    """Enable the Unix socket transport."""
    _toggle(ctx, "events.socket.enabled", True, "socket enable")


@socket_app.command("disable")
def socket_disable(ctx: typer.Context) -> None:
    """Disable the Unix socket transport."""
    _toggle(ctx, "events.socket.enabled", False, "socket disable")


@socket_app.command("status")
def socket_status(ctx: typer.Context) -> None:
    """Show socket transport configuration."""
    _report_status(ctx, "socket status", lambda runtime: runtime.socket_transport.status())


@socket_app.command("test")
def socket_test(ctx: typer.Context) -> None:
    """Send a ``socket_test`` event to the configured sockets."""
    _report_tests(ctx, "socket test", lambda runtime: [runtime.socket_transport.test()])


@webhook_app.command("enable")
def webhook_enable(ctx: typer.Context) -> None:
    """Enable the webhook transport."""
    _toggle(ctx, "events.webhook.enabled", True, "webhook enable")


@webhook_app.command("disable")
def webhook_disable(ctx: typer.Context) -> None:
    """Disable the webhook transport."""
    _toggle(ctx, "events.webhook.enabled", False, "webhook disable")


@webhook_app.command("configure")
def webhook_configure(
    ctx: typer.Context,
    url: str | None = typer.Option(None, "--url", help="Primary webhook URL."),
    secondary_url: str | None = typer.Option(
        None, "--secondary-url", help="Secondary webhook URL."
    ),
    secret: str | None = typer.Option(None, "--secret", help="HMAC signing secret."),
    timeout: float | None = typer.Option(None, "--timeout", help="Per-attempt timeout."),
    retries: int | None = typer.Option(None, "--retries", help="Retries per URL."),
) -> None:
    """Persist webhook settings."""
    runtime = _get_runtime(ctx)
    updates = {
        "events.webhook.url": url,
        "events.webhook.secondary_url": secondary_url,
        "events.webhook.secret": secret,
        "events.webhook.timeout_seconds": timeout,
        "events.webhook.retry_count": retries,
    }
    selected = {key: value for key, value in updates.items() if value is not None}
    logged = {
        key: "********" if key.endswith("secret") else value for key, value in selected.items()
    }
    with runtime.logger.operation(
        "events webhook configure",
        args=logged,
        target={"kind": "config", "path": runtime.config.config_file},
    ) as op:
        if not selected:
            _command_error(op, "Nothing to configure; pass at least one option.")
        if retries is not None and retries < 0:
            _command_error(op, "--retries must be zero or greater.")
        if timeout is not None and timeout <= 0:
            _command_error(op, "--timeout must be greater than zero.")
        for key, value in selected.items():
            try:
                set_config_value(runtime.config.config_file, key, value)
            except GsmError as exc:
                _command_error(op, str(exc), rc=int(exc.exit_code))
            op.add_step("config.write", status="success", detail=key)
        console.print(f"[green]Webhook settings saved[/green] to {runtime.config.config_file}")
        op.success("Webhook configured.", changed=len(selected))


@webhook_app.command("status")
def webhook_status(ctx: typer.Context) -> None:
    """Show webhook transport configuration."""
    _report_status(ctx, "webhook status", lambda runtime: runtime.webhook_transport.status())


@webhook_app.command("test")
def webhook_test(ctx: typer.Context) -> None:
    """POST a ``webhook_test`` payload to each configured URL."""
    _report_tests(ctx, "webhook test", lambda runtime: [runtime.webhook_transport.test()])


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
