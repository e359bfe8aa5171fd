"""Container sessions — run a body of work inside a container that hangs alive.

A session starts ``docker run ... cat`` (``cat`` with a TTY never exits),
then hands the body an :class:`ExecutionContext` whose launcher reroutes
every command through ``docker exec``. The teardown guard stops the
container on every exit path: normal return, exception, or cancellation.

Startup, in order:
  1. version gating (abort below 1.7, warn below 1.8 or when unparseable)
  2. mount resolution (bind mounts, or --volumes-from when nested)
  3. docker run, after which the container id is armed for teardown
  4. sanity check that the hang command is actually running
  5. provenance recording
"""

from __future__ import annotations

import dataclasses
import posixpath
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import structlog

from pipeside.config import Settings, get_settings
from pipeside.container.decorator import CommandDecorator, ContainerLauncher
from pipeside.container.environment import reduce_environment, to_entries
from pipeside.container.teardown import TeardownGuard
from pipeside.container.volumes import resolve_volumes, uncovered_dirs
from pipeside.docker.client import DockerClient, EngineClient
from pipeside.docker.version import (
    MIN_EXEC_VERSION,
    MIN_NESTED_VERSION,
    EngineVersion,
    supports_exec_env,
    supports_exec_workdir,
)
from pipeside.errors import AbortError
from pipeside.logger import logger
from pipeside.provenance import BuildRecord, FingerprintRecorder
from pipeside.types import ContainerHandle, ExecutionContext, ResolvedVolumes

T = TypeVar("T")

# Expected to hang until killed
HANG_COMMAND = "cat"

_ENTRYPOINT_WARNING = (
    "The container started but didn't run the expected command. "
    "Please double check your ENTRYPOINT does execute the command passed as docker run "
    "argument, as required by official docker images (see "
    "https://github.com/docker-library/official-images#consistency for entrypoint "
    "consistency requirements). Alternatively you can force image entrypoint to be "
    "disabled by adding option `--entrypoint=''`."
)


class ContainerSession:
    """Owns one container for the lifetime of one body of work."""

    def __init__(
        self,
        ctx: ExecutionContext,
        client: EngineClient,
        *,
        tool_name: str | None = None,
        recorder: FingerprintRecorder | None = None,
        log: structlog.stdlib.BoundLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.ctx = ctx
        self.client = client
        self.tool_name = tool_name
        self.recorder = recorder if recorder is not None else BuildRecord()
        self.log = log or logger
        self.settings = settings or get_settings()
        self.guard = TeardownGuard(tool_name=tool_name)
        self.handle: ContainerHandle | None = None
        self.version: EngineVersion | None = None

    @property
    def container_id(self) -> str | None:
        return self.guard.container_id

    @property
    def workspace(self) -> Path:
        return self.ctx.workspace

    @property
    def temp_dir(self) -> Path:
        return self.settings.temp_dir_for(self.ctx.workspace)

    def start(self, image: str, args: str | None = None) -> ContainerHandle:
        """Start the container. Raises :class:`AbortError` if docker is too old."""
        if self.handle is not None:
            raise RuntimeError(f"Session already started container {self.container_id}")
        self.version = self._check_version()

        # Created up front, otherwise docker creates them root-owned for -v
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        ws, tmp = str(self.workspace), str(self.temp_dir)

        container_env = reduce_environment(self.ctx.host_env, self.ctx.env)
        self.log.debug("reduced environment", env=to_entries(container_env))
        volumes = self._resolve_volumes([ws, tmp])

        container_id = self.client.run(
            self.ctx.env,
            image,
            args,
            ws,
            volumes.mounts,
            volumes.volumes_from,
            container_env,
            self.client.whoami(),
            HANG_COMMAND,
        )
        self.guard.arm(container_id)
        self.log.info("Container started", container=container_id, image=image)

        self._sanity_check(container_id)

        self.recorder.add_run_facet(self.client.container_record(self.ctx.env, container_id))
        self.recorder.add_image(image)

        self.handle = ContainerHandle(
            container_id=container_id,
            tool_name=self.tool_name,
            workdir=ws,
            host_env=tuple(to_entries(self.ctx.host_env)),
            supports_exec_env=supports_exec_env(self.version),
            supports_exec_workdir=supports_exec_workdir(self.version),
        )
        return self.handle

    def decorator(self) -> CommandDecorator:
        if self.handle is None:
            raise RuntimeError("Session has not started a container")
        return CommandDecorator.for_handle(
            self.handle,
            self.client.executable,
            client_timeout=self.settings.docker.client_timeout,
        )

    def launcher(self) -> ContainerLauncher:
        return self.decorator().decorate(self.ctx.launcher, log=self.log)

    def close(self) -> None:
        """Tear the container down (no-op if it never started or is already gone)."""
        self.guard.finish(self.client, self.ctx.env)

    # --- Startup steps ---

    def _check_version(self) -> EngineVersion | None:
        version = self.client.version()
        if version is None:
            self.log.warning(
                "Failed to parse docker version. Please note there is a minimum docker "
                "version requirement of v1.7."
            )
        elif version < MIN_EXEC_VERSION:
            raise AbortError(
                "The docker version is less than v1.7. Pipeline functions requiring "
                "'docker exec' (e.g. 'docker.inside') or SELinux labeling will not work."
            )
        elif version < MIN_NESTED_VERSION:
            self.log.warning(
                "The docker version is less than v1.8. Running a 'docker.inside' from "
                "inside a container will not work.",
                version=str(version),
            )
        return version

    def _resolve_volumes(self, required_dirs: list[str]) -> ResolvedVolumes:
        outer = self.client.container_id_if_containerized()
        if outer is None:
            self.log.info("Agent does not seem to be running inside a container")
            return resolve_volumes(required_dirs)

        self.log.info("Agent seems to be running inside container", container=outer)
        mounted = self.client.volumes(self.ctx.env, outer)
        resolved = resolve_volumes(required_dirs, mounted, outer)
        for directory in uncovered_dirs(required_dirs, resolved):
            self.log.info(f"but {directory} could not be found among {mounted}")
        return resolved

    def _sanity_check(self, container_id: str) -> None:
        processes = self.client.list_processes(self.ctx.env, container_id)
        commands = [posixpath.basename(cmd.split()[0]) for _, cmd in processes if cmd.strip()]
        if HANG_COMMAND not in commands:
            self.log.warning(_ENTRYPOINT_WARNING, container=container_id)


@contextmanager
def inside_container(
    ctx: ExecutionContext,
    image: str,
    *,
    args: str | None = None,
    tool_name: str | None = None,
    client: EngineClient | None = None,
    recorder: FingerprintRecorder | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
    settings: Settings | None = None,
) -> Iterator[ExecutionContext]:
    """Run the enclosed block with every launch rerouted into *image*.

    Yields a copy of *ctx* whose launcher executes inside the container::

        with inside_container(ctx, "maven:3-jdk-11") as inner:
            inner.launcher.launch(ProcessLaunchRequest(["mvn", "verify"])).join()

    The container is stopped exactly once when the block exits, however it
    exits. A failing stop is raised, chained to any error from the block.
    """
    s = settings or get_settings()
    session = ContainerSession(
        ctx,
        client or DockerClient.for_tool(tool_name, s),
        tool_name=tool_name,
        recorder=recorder,
        log=log,
        settings=s,
    )
    try:
        session.start(image, args)
        yield dataclasses.replace(ctx, launcher=session.launcher())
    finally:
        session.close()


def run_inside(
    ctx: ExecutionContext,
    image: str,
    body: Callable[[ExecutionContext], T],
    **kwargs: Any,
) -> T:
    """Call ``body(inner_ctx)`` inside a container session and return its result."""
    with inside_container(ctx, image, **kwargs) as inner:
        return body(inner)
