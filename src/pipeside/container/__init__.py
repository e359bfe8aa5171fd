"""Container sessions — run a body of work inside a hanging container.

Submodules:
  volumes      — bind mounts vs. volumes inherited from an outer container
  environment  — minimal environment delta for in-container commands
  decorator    — docker exec rewriting of launches, in-container kill
  teardown     — exactly-once container stop
  session      — startup orchestration and the inside_container() entry point
"""

from pipeside.container.decorator import CommandDecorator, ContainerLauncher
from pipeside.container.environment import reduce_environment
from pipeside.container.session import ContainerSession, inside_container, run_inside
from pipeside.container.teardown import TeardownGuard
from pipeside.container.volumes import resolve_volumes

__all__ = [
    "CommandDecorator",
    "ContainerLauncher",
    "ContainerSession",
    "TeardownGuard",
    "inside_container",
    "reduce_environment",
    "resolve_volumes",
    "run_inside",
]
