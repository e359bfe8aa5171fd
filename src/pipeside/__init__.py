"""pipeside — run pipeline commands inside a Docker container."""

from pipeside.container import ContainerSession, inside_container, run_inside
from pipeside.errors import AbortError, DockerCommandError, ExecError, PipesideError
from pipeside.types import ExecutionContext, ProcessLaunchRequest

__all__ = [
    "AbortError",
    "ContainerSession",
    "DockerCommandError",
    "ExecError",
    "ExecutionContext",
    "PipesideError",
    "ProcessLaunchRequest",
    "inside_container",
    "run_inside",
]
