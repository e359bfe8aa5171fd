"""Bind mounts vs. volumes inherited from an outer container."""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Sequence

from pipeside.types import ResolvedVolumes, VolumeMount


def _normalize(path: str) -> str:
    return posixpath.normpath(posixpath.join("/", path))


def resolve_volumes(
    required_dirs: Sequence[str],
    mounted_volumes: Iterable[str] = (),
    outer_container: str | None = None,
) -> ResolvedVolumes:
    """Decide how each required directory becomes visible in the new container.

    Without an outer container every directory is bind-mounted at the same
    path. When the agent itself runs in ``outer_container``, a directory that
    lives under one of that container's mounts is inherited with
    ``--volumes-from`` instead (a bind mount would name a path that does not
    exist on the docker host). The prefix test is a plain string prefix.
    """
    if outer_container is None:
        return ResolvedVolumes(mounts=tuple(VolumeMount.same_path(d) for d in required_dirs))

    volumes = [_normalize(v) for v in mounted_volumes]
    mounts: list[VolumeMount] = []
    volumes_from: list[str] = []
    for directory in required_dirs:
        if any(_normalize(directory).startswith(v) for v in volumes):
            if outer_container not in volumes_from:
                volumes_from.append(outer_container)
        else:
            mounts.append(VolumeMount.same_path(directory))
    return ResolvedVolumes(mounts=tuple(mounts), volumes_from=tuple(volumes_from))


def uncovered_dirs(required_dirs: Sequence[str], resolved: ResolvedVolumes) -> list[str]:
    """Directories that had to be bind-mounted (for diagnostics)."""
    bound = {m.host_path for m in resolved.mounts}
    return [d for d in required_dirs if d in bound]
