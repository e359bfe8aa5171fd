"""Docker engine version parsing and feature thresholds."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)+)")


@total_ordering
@dataclass(frozen=True, eq=False)
class EngineVersion:
    """Numeric docker version; suffixes such as ``-ce`` are ignored for ordering."""

    parts: tuple[int, ...]
    raw: str = ""

    @classmethod
    def parse(cls, text: str) -> EngineVersion | None:
        """Extract the first dotted version from ``docker -v`` style output.

        ``"Docker version 17.12.1-ce, build 7390fc6"`` -> ``17.12.1``.
        Returns None when no version can be found.
        """
        match = _VERSION_RE.search(text)
        if match is None:
            return None
        return cls(tuple(int(p) for p in match.group(1).split(".")), raw=text.strip())

    def _padded(self, other: EngineVersion) -> tuple[tuple[int, ...], tuple[int, ...]]:
        width = max(len(self.parts), len(other.parts))
        return (
            self.parts + (0,) * (width - len(self.parts)),
            other.parts + (0,) * (width - len(other.parts)),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EngineVersion):
            return NotImplemented
        a, b = self._padded(other)
        return a == b

    def __lt__(self, other: EngineVersion) -> bool:
        a, b = self._padded(other)
        return a < b

    def __hash__(self) -> int:
        parts = list(self.parts)
        while parts and parts[-1] == 0:
            parts.pop()
        return hash(tuple(parts))

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.parts)


def _v(text: str) -> EngineVersion:
    version = EngineVersion.parse(text)
    assert version is not None
    return version


# docker exec exists (and SELinux labeling works) from here on
MIN_EXEC_VERSION = _v("1.7")
# docker.inside from inside a container needs --volumes-from fixes
MIN_NESTED_VERSION = _v("1.8")
# docker exec --env
EXEC_ENV_VERSION = _v("1.13.0")
# docker exec --workdir
EXEC_WORKDIR_VERSION = _v("17.12")


def supports_exec_env(version: EngineVersion | None) -> bool:
    return version is not None and version >= EXEC_ENV_VERSION


def supports_exec_workdir(version: EngineVersion | None) -> bool:
    return version is not None and version >= EXEC_WORKDIR_VERSION
