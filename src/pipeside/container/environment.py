"""Environment diff — the minimal delta to inject into in-container commands."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

# Must resolve against the container's filesystem, never the agent's
PATH_VARIABLE = "PATH"

EnvLike = Mapping[str, str] | Iterable[str]


def to_pairs(env: EnvLike) -> dict[str, str]:
    """Normalize a mapping or ``KEY=VALUE`` entries into a dict.

    Entries without ``=`` name no value and are skipped.
    """
    if isinstance(env, Mapping):
        return dict(env)
    pairs: dict[str, str] = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if not sep:
            continue
        pairs[key] = value
    return pairs


def to_entries(env: Mapping[str, str]) -> list[str]:
    return [f"{key}={value}" for key, value in env.items()]


def reduce_environment(host_env: EnvLike, requested_env: EnvLike) -> dict[str, str]:
    """Entries of *requested_env* not identically present in *host_env*, sorted.

    The empty key and ``PATH`` are always dropped, whether or not they differ.
    """
    host = to_pairs(host_env)
    reduced: dict[str, str] = {}
    for key, value in sorted(to_pairs(requested_env).items()):
        if key in ("", PATH_VARIABLE):
            continue
        if key in host and host[key] == value:
            continue
        reduced[key] = value
    return reduced
