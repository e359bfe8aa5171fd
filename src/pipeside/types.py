"""Data models for pipeside."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pipeside.launcher import ProcessLauncher

MASK = "********"


@dataclass(frozen=True)
class VolumeMount:
    host_path: str
    container_path: str  # Always equal to host_path; no path translation

    @classmethod
    def same_path(cls, path: str) -> VolumeMount:
        return cls(host_path=path, container_path=path)

    def as_arg(self) -> str:
        """Value for ``docker run -v`` (read-write, shared SELinux label)."""
        return f"{self.host_path}:{self.container_path}:rw,z"


@dataclass(frozen=True)
class ResolvedVolumes:
    """Mount plan computed once before ``docker run``."""

    mounts: tuple[VolumeMount, ...] = ()
    volumes_from: tuple[str, ...] = ()  # container ids whose volumes are inherited


@dataclass(frozen=True)
class ContainerHandle:
    container_id: str
    tool_name: str | None
    workdir: str
    host_env: tuple[str, ...]  # KEY=VALUE snapshot of the agent env at start
    supports_exec_env: bool = False  # docker exec --env (1.13+)
    supports_exec_workdir: bool = False  # docker exec --workdir (17.12+)


@dataclass
class ProcessLaunchRequest:
    """A single process launch issued by the body of work.

    Launcher decorators rewrite ``cmds`` and ``masks`` in place before
    delegating.
    """

    cmds: list[str]
    env: list[str] = field(default_factory=list)  # KEY=VALUE entries
    pwd: str | None = None
    stdout: IO[Any] | int | None = None
    stderr: IO[Any] | int | None = None
    masks: list[bool] | None = None  # True = redact this argument when printed
    quiet: bool = False

    def env_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for entry in self.env:
            key, _, value = entry.partition("=")
            result[key] = value
        return result

    def printable_command(self) -> str:
        """The command line with masked arguments redacted."""
        if self.masks is None:
            return " ".join(self.cmds)
        return " ".join(
            MASK if i < len(self.masks) and self.masks[i] else arg
            for i, arg in enumerate(self.cmds)
        )


@dataclass(frozen=True)
class KillFilter:
    """Required ``KEY=VALUE`` substrings identifying processes to terminate."""

    required: tuple[str, ...]

    @classmethod
    def from_env(cls, match_env: Mapping[str, str]) -> KillFilter:
        return cls(tuple(f"{k}={v}" for k, v in match_env.items()))

    def matches(self, line: str) -> bool:
        # Imprecise: an argv that happens to contain KEY=VALUE also matches.
        return all(pair in line for pair in self.required)


@dataclass(frozen=True)
class ContainerRecord:
    """Provenance of a running container, as reported by ``docker inspect``."""

    host: str
    container_id: str
    image_id: str
    container_name: str
    created: str
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionContext:
    """Everything an operation needs from the enclosing pipeline.

    Threaded explicitly through every call instead of being looked up from
    globals.
    """

    workspace: Path
    env: Mapping[str, str]  # environment of the running step
    host_env: Mapping[str, str]  # the agent's own environment
    launcher: ProcessLauncher

    @classmethod
    def local(cls, workspace: Path | str, env: Mapping[str, str] | None = None) -> ExecutionContext:
        """Context for running directly on this machine."""
        from pipeside.launcher import LocalLauncher

        host_env = dict(os.environ)
        return cls(
            workspace=Path(workspace).absolute(),
            env={**host_env, **(env or {})},
            host_env=host_env,
            launcher=LocalLauncher(),
        )
