"""Docker engine access: CLI client and version handling."""

from pipeside.docker.client import DockerClient, EngineClient
from pipeside.docker.version import EngineVersion

__all__ = ["DockerClient", "EngineClient", "EngineVersion"]
