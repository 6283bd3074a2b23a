"""Run instances as detached processes tracked by a pid file."""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass

from ..errors import NotFoundError, SupervisionError, from_os_error
from ..instances import Instance
from .commands import run_command

LOGGER = logging.getLogger(__name__)


def _read_pid(instance: Instance) -> int | None:
    try:
        text = instance.pid_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise from_os_error(exc, f"Failed to read pid file {instance.pid_file}") from exc
    return int(text) if text.isdigit() else None


def _alive(pid: int) -> bool:
    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        reaped = 0
    if reaped == pid:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass(slots=True)
class StandaloneProvider:
    """Start the management script in its own session and signal it to stop."""

    stop_timeout: float = 30.0
    poll_interval: float = 0.2

    def start(self, instance: Instance) -> int:
        """Launch the instance; return its pid."""
        pid = _read_pid(instance)
        if pid is not None and _alive(pid):
            return pid
        log_path = instance.log_file
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("ab") as log_handle:
                process = subprocess.Popen(  # noqa: S603
                    [str(instance.management_script), "--run"],
                    cwd=str(instance.working_dir),
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            raise SupervisionError(f"Failed to start {instance.name}: {exc}") from exc
        try:
            instance.pid_file.write_text(f"{process.pid}\n", encoding="utf-8")
        except OSError as exc:
            raise from_os_error(exc, f"Failed to write pid file {instance.pid_file}") from exc
        LOGGER.info("Started %s with pid %d", instance.name, process.pid)
        return process.pid

    def stop(self, instance: Instance) -> None:
        """Send SIGTERM, escalating to SIGKILL once the stop timeout expires."""
        pid = _read_pid(instance)
        if pid is None or not _alive(pid):
            instance.pid_file.unlink(missing_ok=True)
            return
        self._signal(pid, signal.SIGTERM)
        deadline = time.monotonic() + self.stop_timeout
        while time.monotonic() < deadline:
            if not _alive(pid):
                break
            time.sleep(self.poll_interval)
        else:
            LOGGER.warning("%s did not exit after SIGTERM; sending SIGKILL", instance.name)
            self._signal(pid, signal.SIGKILL)
        instance.pid_file.unlink(missing_ok=True)

    def is_active(self, instance: Instance) -> bool:
        """Return ``True`` when the recorded pid is alive."""
        pid = _read_pid(instance)
        return pid is not None and _alive(pid)

    def logs(self, instance: Instance, *, lines: int = 10, follow: bool = False) -> str:
        """Return the last *lines* of the instance log, or stream it with *follow*."""
        path = instance.log_file
        if not path.is_file():
            raise NotFoundError(f"Log file {path} not found; has {instance.name} been started?")
        args = ["tail", "-n", str(lines)]
        if follow:
            args.append("-F")
        args.append(str(path))
        result = run_command(args, error=SupervisionError, capture_output=not follow)
        return result.stdout or ""

    @staticmethod
    def _signal(pid: int, signum: int) -> None:
        try:
            os.killpg(pid, signum)
        except ProcessLookupError:
            return
        except PermissionError as exc:
            raise SupervisionError(f"Not permitted to signal pid {pid}: {exc}") from exc


__all__ = ["StandaloneProvider"]
