"""Teardown guard: stops the session's container exactly once."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from pipeside.docker.client import EngineClient
from pipeside.logger import logger


@dataclass
class TeardownGuard:
    """Plain, persistable record of which container must be stopped.

    ``container_id`` stays None until ``docker run`` succeeds, so a session
    that failed earlier has nothing to tear down.
    """

    tool_name: str | None = None
    container_id: str | None = None
    fired: bool = False

    def arm(self, container_id: str) -> None:
        self.container_id = container_id

    def finish(self, client: EngineClient, env: Mapping[str, str]) -> None:
        """Stop the container if one was started and not yet stopped.

        A failing stop propagates; it is marked fired first so a second call
        never issues another stop.
        """
        if self.container_id is None or self.fired:
            return
        self.fired = True
        logger.debug("Stopping container", container=self.container_id)
        client.stop(env, self.container_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> TeardownGuard:
        return cls(**raw)
