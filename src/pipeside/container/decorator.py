"""Command decorator — reroutes every process launch through ``docker exec``.

:class:`CommandDecorator` holds plain data only (container id, env snapshot,
capability flags) so an engine that suspends the body of work can persist it
with :meth:`CommandDecorator.to_dict` and rebuild it after a resume.
:class:`ContainerLauncher` is the live wrapper handed to the body; it
delegates to the inner launcher after rewriting each request.
"""

from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from pipeside.container.environment import reduce_environment, to_entries
from pipeside.errors import ExecError
from pipeside.launcher import LaunchedProcess, ProcessLauncher
from pipeside.logger import logger
from pipeside.types import ContainerHandle, KillFilter, ProcessLaunchRequest


@dataclass(frozen=True)
class CommandDecorator:
    container_id: str
    executable: str
    host_env: tuple[str, ...]
    workdir: str | None
    supports_exec_env: bool = False
    supports_exec_workdir: bool = False
    client_timeout: float = 180

    @classmethod
    def for_handle(
        cls, handle: ContainerHandle, executable: str, client_timeout: float = 180
    ) -> CommandDecorator:
        return cls(
            container_id=handle.container_id,
            executable=executable,
            host_env=handle.host_env,
            workdir=handle.workdir,
            supports_exec_env=handle.supports_exec_env,
            supports_exec_workdir=handle.supports_exec_workdir,
            client_timeout=client_timeout,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["host_env"] = list(self.host_env)
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CommandDecorator:
        return cls(**{**raw, "host_env": tuple(raw.get("host_env", ()))})

    def decorate(
        self, inner: ProcessLauncher, log: structlog.stdlib.BoundLogger | None = None
    ) -> ContainerLauncher:
        return ContainerLauncher(inner, self, log=log)

    def exec_prefix(
        self, request: ProcessLaunchRequest, log: structlog.stdlib.BoundLogger | None = None
    ) -> list[str]:
        """Arguments to put in front of ``request.cmds``."""
        log = log or logger
        prefix = [self.executable, "exec"]
        # workdir is None only for decorators restored from incomplete state
        if self.workdir is not None and request.pwd is not None and request.pwd != self.workdir:
            if self.supports_exec_workdir:
                prefix += ["--workdir", request.pwd]
            else:
                log.warning(
                    f"Docker version is older than 17.12, working directory will be "
                    f"{self.workdir} not {request.pwd}",
                    container=self.container_id,
                )

        reduced = to_entries(reduce_environment(self.host_env, request.env))
        log.debug("(exec) reduced environment", env=reduced)
        if self.supports_exec_env:
            for entry in reduced:
                prefix += ["--env", entry]
            prefix.append(self.container_id)
        else:
            prefix += [self.container_id, "env", *reduced]
        return prefix

    def ps_command(self) -> list[str]:
        # trailing "e" makes ps print each process environment after its argv
        return [self.executable, "exec", self.container_id, "ps", "-A", "-o", "pid,command", "e"]

    def kill_command(self, pids: list[str]) -> list[str]:
        return [self.executable, "exec", self.container_id, "kill", *pids]


def select_pids(ps_output: str, kill_filter: KillFilter) -> list[str]:
    """Pids of the ``ps -o pid,command e`` lines matching every required pair."""
    pids: list[str] = []
    for line in ps_output.splitlines():
        if not kill_filter.matches(line):
            continue
        pid, sep, _ = line.strip().partition(" ")
        if not sep or not pid.isdigit():
            continue
        pids.append(pid)
    return pids


class ContainerLauncher:
    """Launcher that runs everything inside the session's container."""

    def __init__(
        self,
        inner: ProcessLauncher,
        decorator: CommandDecorator,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self.inner = inner
        self.decorator = decorator
        self.log = log or logger

    def launch(self, request: ProcessLaunchRequest) -> LaunchedProcess:
        prefix = self.decorator.exec_prefix(request, self.log)
        request.cmds[0:0] = prefix
        if request.masks is not None:
            request.masks = [False] * len(prefix) + list(request.masks)
        return self.inner.launch(request)

    def kill(self, match_env: Mapping[str, str]) -> None:
        """Best-effort termination of in-container processes carrying *match_env*.

        Selection matches ``KEY=VALUE`` text against the ps line, so a process
        whose arguments merely contain that text is selected too.
        """
        ps = self._exec(self.decorator.ps_command(), capture=True)
        if ps.returncode != 0:
            raise ExecError("failed to run ps")
        pids = select_pids(ps.output, KillFilter.from_env(match_env))
        self.log.debug("killing", pids=pids, container=self.decorator.container_id)
        if not pids:
            return
        if self._exec(self.decorator.kill_command(pids)).returncode != 0:
            raise ExecError("failed to run kill")

    def _exec(self, cmds: list[str], capture: bool = False) -> _ExecResult:
        request = ProcessLaunchRequest(
            cmds=cmds,
            stdout=subprocess.PIPE if capture else subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            quiet=True,
        )
        proc = self.inner.launch(request)
        try:
            returncode = proc.join(timeout=self.decorator.client_timeout)
        except subprocess.TimeoutExpired as exc:
            raise ExecError(f"{' '.join(cmds[1:4])} timed out") from exc
        return _ExecResult(returncode, proc.output.decode(errors="replace"))


@dataclass(frozen=True)
class _ExecResult:
    returncode: int
    output: str
