"""Process launching: the capability the body of work uses to run commands.

``ProcessLauncher`` is the minimal contract (launch, kill). ``LocalLauncher``
runs commands directly on this machine; container sessions wrap it by
delegation (see :mod:`pipeside.container.decorator`).
"""

from __future__ import annotations

import os
import signal
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from pipeside.logger import logger
from pipeside.types import KillFilter, ProcessLaunchRequest


@dataclass
class LaunchedProcess:
    """A started process. ``join`` waits for it and captures piped output."""

    proc: subprocess.Popen[bytes]
    output: bytes = field(default=b"", repr=False)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def join(self, timeout: float | None = None) -> int:
        """Wait for exit and return the exit code.

        Raises ``subprocess.TimeoutExpired`` after killing the process if it
        does not finish within *timeout* seconds.
        """
        try:
            out, _ = self.proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.proc.kill()
            self.proc.communicate()
            raise
        self.output = out or b""
        return self.proc.returncode


@runtime_checkable
class ProcessLauncher(Protocol):
    """Launcher contract implemented by the local launcher and decorators."""

    def launch(self, request: ProcessLaunchRequest) -> LaunchedProcess: ...
    def kill(self, match_env: Mapping[str, str]) -> None: ...


class LocalLauncher:
    """Runs processes on the agent itself."""

    def __init__(self, log: structlog.stdlib.BoundLogger | None = None) -> None:
        self.log = log or logger

    def launch(self, request: ProcessLaunchRequest) -> LaunchedProcess:
        if not request.quiet:
            self.log.info(f"$ {request.printable_command()}")
        proc = subprocess.Popen(
            request.cmds,
            env=request.env_dict() if request.env else None,
            cwd=request.pwd,
            stdin=subprocess.DEVNULL,
            stdout=request.stdout,
            stderr=request.stderr,
        )
        return LaunchedProcess(proc)

    def kill(self, match_env: Mapping[str, str]) -> None:
        """Send SIGTERM to every local process whose environment has all pairs."""
        if not match_env:
            return
        wanted = set(KillFilter.from_env(match_env).required)
        for pid in _matching_pids(wanted):
            self.log.debug("Killing local process", pid=pid)
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                continue


def _matching_pids(wanted: set[str]) -> list[int]:
    pids: list[int] = []
    for entry in Path("/proc").iterdir():
        if not entry.name.isdigit() or int(entry.name) == os.getpid():
            continue
        try:
            raw = (entry / "environ").read_bytes()
        except OSError:
            # Exited, or owned by another user
            continue
        environ = {item.decode(errors="replace") for item in raw.split(b"\0") if item}
        if wanted <= environ:
            pids.append(int(entry.name))
    return pids
