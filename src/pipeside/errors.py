"""Exception hierarchy.

Everything here is terminal for the call that raised it: nothing in
pipeside retries a docker invocation.
"""

from __future__ import annotations

import subprocess


class PipesideError(Exception):
    """Base class for pipeside errors."""


class AbortError(PipesideError):
    """Fatal condition that aborts the step before (or without) running the body."""


class DockerCommandError(PipesideError):
    """Raised when a docker CLI command fails or times out."""

    def __init__(self, command: str, stderr: str, returncode: int | None) -> None:
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        if returncode is None:
            super().__init__(f"docker {command} timed out: {stderr}")
        else:
            super().__init__(f"docker {command} failed (exit {returncode}): {stderr}")


class ExecError(PipesideError):
    """Raised when an in-container helper (ps, kill) cannot be run."""


def require_success(result: subprocess.CompletedProcess[str], command: str) -> str:
    """Assert that a docker command succeeded, raising DockerCommandError otherwise.

    Returns the stripped stdout on success.
    """
    if result.returncode != 0:
        raise DockerCommandError(command, result.stderr.strip(), result.returncode)
    return result.stdout.strip()
