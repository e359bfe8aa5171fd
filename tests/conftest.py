"""Shared test fixtures for pipeside."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from pipeside.docker.version import EngineVersion
from pipeside.errors import DockerCommandError
from pipeside.types import ContainerRecord, ExecutionContext, ProcessLaunchRequest, VolumeMount

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------

CONTAINER_ID = "4f1e2d3c" * 8


def make_settings(**overrides):
    """Create a Settings object from pure defaults, without reading config.toml or .env.

    Usage::

        s = make_settings(docker=DockerConfig(client_timeout=5))
    """
    from pipeside.config import DockerConfig, LoggingConfig, Settings, WorkspaceConfig

    defaults = {
        "docker": DockerConfig(),
        "workspace": WorkspaceConfig(),
        "logging": LoggingConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


def version(text: str) -> EngineVersion:
    parsed = EngineVersion.parse(text)
    assert parsed is not None
    return parsed


@dataclass
class FakeProcess:
    returncode: int = 0
    output: bytes = b""
    timeout: bool = False

    def join(self, timeout: float | None = None) -> int:
        if self.timeout:
            raise subprocess.TimeoutExpired(cmd="docker", timeout=timeout or 0)
        return self.returncode


@dataclass
class FakeLauncher:
    """Records launch requests; answers each with the first matching scripted result.

    ``results`` maps a command word (e.g. ``"ps"``) to the FakeProcess returned
    for any request whose argv contains it.
    """

    results: dict[str, FakeProcess] = field(default_factory=dict)
    launched: list[ProcessLaunchRequest] = field(default_factory=list)
    killed: list[Mapping[str, str]] = field(default_factory=list)

    def launch(self, request: ProcessLaunchRequest) -> FakeProcess:
        self.launched.append(request)
        for word, result in self.results.items():
            if word in request.cmds:
                return result
        return FakeProcess()

    def kill(self, match_env: Mapping[str, str]) -> None:
        self.killed.append(match_env)


class FakeEngineClient:
    """In-memory EngineClient that records every call."""

    executable = "docker"

    def __init__(
        self,
        engine_version: EngineVersion | None = None,
        *,
        outer_container: str | None = None,
        mounted_volumes: Sequence[str] = (),
        processes: Sequence[tuple[str, str]] = (("1", "cat"),),
        container_id: str = CONTAINER_ID,
        run_error: Exception | None = None,
        stop_error: Exception | None = None,
    ) -> None:
        self.engine_version = engine_version if engine_version is not None else version("20.10.7")
        self.outer_container = outer_container
        self.mounted_volumes = list(mounted_volumes)
        self.processes = list(processes)
        self.container_id = container_id
        self.run_error = run_error
        self.stop_error = stop_error
        self.calls: list[str] = []
        self.run_calls: list[dict] = []
        self.stop_calls: list[str] = []

    def version(self) -> EngineVersion | None:
        self.calls.append("version")
        return self.engine_version

    def whoami(self) -> str:
        return "1000:1000"

    def container_id_if_containerized(self) -> str | None:
        self.calls.append("containerized")
        return self.outer_container

    def volumes(self, env: Mapping[str, str], container_id: str) -> list[str]:
        self.calls.append("volumes")
        return self.mounted_volumes

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
        self.calls.append("run")
        self.run_calls.append(
            {
                "image": image,
                "args": args,
                "workdir": workdir,
                "volumes": list(volumes),
                "volumes_from": list(volumes_from),
                "container_env": dict(container_env),
                "user": user,
                "command": command,
            }
        )
        if self.run_error is not None:
            raise self.run_error
        return self.container_id

    def list_processes(self, env: Mapping[str, str], container_id: str) -> list[tuple[str, str]]:
        self.calls.append("list_processes")
        return self.processes

    def inspect(self, env: Mapping[str, str], target: str, field: str) -> str | None:
        return None

    def inspect_required_field(self, env: Mapping[str, str], target: str, field: str) -> str:
        return f"sha256:{target}"

    def container_record(self, env: Mapping[str, str], container_id: str) -> ContainerRecord:
        self.calls.append("container_record")
        return ContainerRecord(
            host="agent-1",
            container_id=container_id,
            image_id="sha256:abc",
            container_name="eager_turing",
            created="2026-10-18T09:00:00Z",
        )

    def stop(self, env: Mapping[str, str], container_id: str) -> None:
        self.calls.append("stop")
        self.stop_calls.append(container_id)
        if self.stop_error is not None:
            raise self.stop_error


def stop_failure() -> DockerCommandError:
    return DockerCommandError("stop", "Error response from daemon: No such container", 1)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Each test starts from default settings, isolated from any config.toml."""
    monkeypatch.setattr("pipeside.config._settings", make_settings())


@pytest.fixture
def log():
    """A logging sink whose calls can be asserted on."""
    return MagicMock()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    return tmp_path / "jobs" / "build"


@pytest.fixture
def ctx(workspace: Path, launcher: FakeLauncher) -> ExecutionContext:
    host_env = {"PATH": "/usr/bin:/bin", "HOME": "/home/agent", "LANG": "C.UTF-8"}
    return ExecutionContext(
        workspace=workspace,
        env={**host_env, "BUILD_NUMBER": "7", "PATH": "/opt/jdk/bin:/usr/bin:/bin"},
        host_env=host_env,
        launcher=launcher,
    )
