"""Docker CLI client — subprocess wrappers for the engine operations a session needs.

Every call is a single blocking ``docker`` invocation bounded by the client
timeout. Output is parsed as the CLI's own line-oriented text (or JSON for
``docker inspect``). Failures surface as :class:`DockerCommandError`; nothing
is retried.
"""

from __future__ import annotations

import json
import os
import re
import shlex
import socket
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pipeside.config import Settings, get_settings
from pipeside.docker.version import EngineVersion
from pipeside.errors import AbortError, DockerCommandError, require_success
from pipeside.logger import logger
from pipeside.types import ContainerRecord, VolumeMount

# /proc/self/cgroup: "12:memory:/docker/<id>" or ".../docker-<id>.scope"
_CGROUP_RE = re.compile(r"[:/]docker[-/]([0-9a-f]{64})(?:\.scope)?$")
# /proc/self/mountinfo under cgroup v2: the root of the /etc/hostname bind mount is
# ".../docker/containers/<id>/hostname". A plain docker host also lists every
# container's shm mount, so only these mount points count.
_MOUNTINFO_RE = re.compile(r"/docker/containers/([0-9a-f]{64})/")
_CONTAINER_MOUNT_POINTS = frozenset({"/etc/hostname", "/etc/hosts", "/etc/resolv.conf"})


@runtime_checkable
class EngineClient(Protocol):
    """Engine operations consumed by container sessions."""

    @property
    def executable(self) -> str: ...
    def version(self) -> EngineVersion | None: ...
    def whoami(self) -> str: ...
    def container_id_if_containerized(self) -> str | None: ...
    def volumes(self, env: Mapping[str, str], container_id: str) -> list[str]: ...
    def run(
        self,
        env: Mapping[str, str],
        image: str,
        args: str | None,
        workdir: str,
        volumes: Sequence[VolumeMount],
        volumes_from: Sequence[str],
        container_env: Mapping[str, str],
        user: str | None,
        *command: str,
    ) -> str: ...
    def list_processes(
        self, env: Mapping[str, str], container_id: str
    ) -> list[tuple[str, str]]: ...
    def inspect(self, env: Mapping[str, str], target: str, field: str) -> str | None: ...
    def inspect_required_field(self, env: Mapping[str, str], target: str, field: str) -> str: ...
    def container_record(self, env: Mapping[str, str], container_id: str) -> ContainerRecord: ...
    def stop(self, env: Mapping[str, str], container_id: str) -> None: ...


def container_id_from_cgroup(text: str) -> str | None:
    """Find the id of the container this process runs in, from /proc/self/cgroup."""
    for line in text.splitlines():
        match = _CGROUP_RE.search(line.strip())
        if match:
            return match.group(1)
    return None


def container_id_from_mountinfo(text: str) -> str | None:
    for line in text.splitlines():
        # id parent major:minor root mount-point options ...
        fields = line.split()
        if len(fields) < 5 or fields[4] not in _CONTAINER_MOUNT_POINTS:
            continue
        match = _MOUNTINFO_RE.search(fields[3])
        if match:
            return match.group(1)
    return None


class DockerClient:
    """Concrete :class:`EngineClient` backed by the docker CLI."""

    def __init__(
        self,
        executable: str = "docker",
        *,
        timeout: float = 180,
        stop_timeout: int = 1,
        proc_dir: Path = Path("/proc/self"),
    ) -> None:
        self._executable = executable
        self.timeout = timeout
        self.stop_timeout = stop_timeout
        self.proc_dir = proc_dir

    @classmethod
    def for_tool(cls, tool_name: str | None, settings: Settings | None = None) -> DockerClient:
        """Client for a named docker installation (None = default executable)."""
        s = settings or get_settings()
        return cls(
            s.resolve_executable(tool_name),
            timeout=s.docker.client_timeout,
            stop_timeout=s.docker.stop_timeout,
        )

    @property
    def executable(self) -> str:
        return self._executable

    def _run(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command (blocking, single attempt)."""
        try:
            return subprocess.run(
                [self._executable, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=dict(env) if env is not None else None,
            )
        except subprocess.TimeoutExpired as exc:
            raise DockerCommandError(args[0], f"no answer within {self.timeout}s", None) from exc

    # --- Queries ---

    def version(self) -> EngineVersion | None:
        try:
            result = self._run("-v")
        except (OSError, DockerCommandError) as exc:
            logger.debug("docker -v failed", error=str(exc))
            return None
        if result.returncode != 0:
            logger.debug("docker -v failed", stderr=result.stderr.strip())
            return None
        return EngineVersion.parse(result.stdout)

    def whoami(self) -> str:
        """``uid:gid`` of the agent, so files created in the workspace stay ours."""
        return f"{os.getuid()}:{os.getgid()}"

    def container_id_if_containerized(self) -> str | None:
        for name, parse in (
            ("cgroup", container_id_from_cgroup),
            ("mountinfo", container_id_from_mountinfo),
        ):
            try:
                text = (self.proc_dir / name).read_text()
            except OSError:
                continue
            container_id = parse(text)
            if container_id:
                return container_id
        return None

    def volumes(self, env: Mapping[str, str], container_id: str) -> list[str]:
        """Destinations of every mount of *container_id*, as seen inside it."""
        result = self._run(
            "inspect",
            "-f",
            "{{range .Mounts}}{{.Destination}}\n{{end}}",
            container_id,
            env=env,
        )
        out = require_success(result, "inspect")
        return [line.strip() for line in out.splitlines() if line.strip()]

    def list_processes(self, env: Mapping[str, str], container_id: str) -> list[tuple[str, str]]:
        """``(pid, command)`` for each process in the container, in ``docker top`` order."""
        out = require_success(self._run("top", container_id, "-eo", "pid,comm", env=env), "top")
        processes: list[tuple[str, str]] = []
        for line in out.splitlines()[1:]:  # header
            fields = line.strip().split(None, 1)
            if len(fields) == 2:
                processes.append((fields[0], fields[1].strip()))
        return processes

    def inspect(self, env: Mapping[str, str], target: str, field: str) -> str | None:
        """Value of a Go template *field* (e.g. ``.Config.Image``), None if unavailable."""
        result = self._run("inspect", "-f", "{{" + field + "}}", target, env=env)
        if result.returncode != 0:
            return None
        value = result.stdout.strip()
        return value or None

    def inspect_required_field(self, env: Mapping[str, str], target: str, field: str) -> str:
        value = self.inspect(env, target, field)
        if value is None:
            raise AbortError(f"Cannot retrieve {field} from 'docker inspect {target}'")
        return value

    def container_record(self, env: Mapping[str, str], container_id: str) -> ContainerRecord:
        out = require_success(self._run("inspect", container_id, env=env), "inspect")
        try:
            data = json.loads(out)[0]
            record_id, image_id = data["Id"], data["Image"]
        except (json.JSONDecodeError, IndexError, KeyError) as exc:
            raise AbortError(f"Unparseable 'docker inspect {container_id}' output") from exc
        return ContainerRecord(
            host=socket.gethostname(),
            container_id=record_id,
            image_id=image_id,
            container_name=data.get("Name", "").lstrip("/"),
            created=data.get("Created", ""),
            tags=dict((data.get("Config") or {}).get("Labels") or {}),
        )

    # --- Lifecycle ---

    def run(
        self,
        env: Mapping[str, str],
        image: str,
        args: str | None,
        workdir: str,
        volumes: Sequence[VolumeMount],
        volumes_from: Sequence[str],
        container_env: Mapping[str, str],
        user: str | None,
        *command: str,
    ) -> str:
        """Start a detached container and return its id."""
        argv = ["run", "-t", "-d"]
        if user:
            argv += ["-u", user]
        if args:
            argv += shlex.split(args)
        argv += ["-w", workdir]
        for mount in volumes:
            argv += ["-v", mount.as_arg()]
        for container in volumes_from:
            argv += ["--volumes-from", container]
        for key, value in container_env.items():
            argv += ["-e", f"{key}={value}"]
        argv.append(image)
        argv.extend(command)

        logger.info("Starting container", image=image, workdir=workdir)
        out = require_success(self._run(*argv, env=env), "run")
        if not out:
            raise DockerCommandError("run", "no container id printed", 0)
        # pull progress or warnings may precede the id
        return out.splitlines()[-1].strip()

    def stop(self, env: Mapping[str, str], container_id: str) -> None:
        """Stop then remove a container. Errors propagate to the caller."""
        require_success(
            self._run("stop", f"--time={self.stop_timeout}", container_id, env=env),
            "stop",
        )
        require_success(self._run("rm", "-f", container_id, env=env), "rm")
