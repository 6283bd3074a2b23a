"""Subprocess helper shared by the providers."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..errors import DependencyMissingError, GsmError


def run_command(
    args: Sequence[str],
    *,
    error: type[GsmError],
    error_prefix: str | None = None,
    check: bool = True,
    capture_output: bool = True,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args*, mapping failures onto *error*.

    A missing executable raises :class:`DependencyMissingError` regardless of
    *error*.
    """
    merged_env = None
    if env is not None:
        merged_env = dict(os.environ)
        merged_env.update(env)
    prefix = error_prefix or " ".join(args[:2])
    try:
        result = subprocess.run(  # noqa: S603, S607
            list(args),
            capture_output=capture_output,
            text=True,
            check=False,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise DependencyMissingError(f"{args[0]} not found: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise error(f"{prefix} timed out after {timeout}s") from exc
    except OSError as exc:
        raise error(f"{prefix} could not be executed: {exc}") from exc
    if check and result.returncode != 0:
        stdout = result.stdout or ""
        stderr = result.stderr or ""
        message = stderr.strip() or stdout.strip() or "no output"
        raise error(f"{prefix} failed (exit {result.returncode}): {message}")
    return result


__all__ = ["run_command"]
