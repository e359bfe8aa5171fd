"""Which images and containers a build used.

The recorder is a collaborator: sessions report to it but never depend on
what it does with the information. :class:`BuildRecord` is the in-memory
implementation; pipelines that persist fingerprints elsewhere provide their
own :class:`FingerprintRecorder`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from pipeside.docker.client import EngineClient
from pipeside.errors import AbortError
from pipeside.logger import logger
from pipeside.types import ContainerRecord, ExecutionContext

_MACRO_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")


@runtime_checkable
class FingerprintRecorder(Protocol):
    def add_run_facet(self, record: ContainerRecord) -> None: ...
    def add_from_facet(self, ancestor_image_id: str | None, descendant_image_id: str) -> None: ...
    def add_image(self, image: str) -> None: ...


@dataclass
class BuildRecord:
    run_facets: dict[str, list[ContainerRecord]] = field(default_factory=dict)  # by image id
    from_facets: list[tuple[str | None, str]] = field(default_factory=list)
    images: list[str] = field(default_factory=list)

    def add_run_facet(self, record: ContainerRecord) -> None:
        self.run_facets.setdefault(record.image_id, []).append(record)

    def add_from_facet(self, ancestor_image_id: str | None, descendant_image_id: str) -> None:
        self.from_facets.append((ancestor_image_id, descendant_image_id))

    def add_image(self, image: str) -> None:
        if image not in self.images:
            self.images.append(image)


def expand_macros(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``$VAR`` and ``${VAR}``; unknown variables are left untouched."""

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        return variables.get(name, match.group(0))

    return _MACRO_RE.sub(_sub, text)


def parse_from_image(dockerfile_text: str) -> str | None:
    """Image named by the last ``FROM`` instruction, without flags or stage alias."""
    from_image: str | None = None
    for raw_line in dockerfile_text.splitlines():
        line = raw_line.strip()
        if line.startswith("#") or not line.startswith("FROM "):
            continue
        tokens = [t for t in line[5:].split() if not t.startswith("--")]
        if tokens:
            from_image = tokens[0]
    return from_image


def record_run(
    client: EngineClient,
    ctx: ExecutionContext,
    container_id: str,
    recorder: FingerprintRecorder,
) -> None:
    """Record a container started outside a session (e.g. ``docker run`` in a script)."""
    recorder.add_run_facet(client.container_record(ctx.env, container_id))
    image = client.inspect(ctx.env, container_id, ".Config.Image")
    if image is not None:
        recorder.add_image(image)


def record_from(
    client: EngineClient,
    ctx: ExecutionContext,
    dockerfile: str,
    image: str,
    recorder: FingerprintRecorder,
    build_args: Mapping[str, str] | None = None,
) -> None:
    """Record that *image* was built from the ``FROM`` image of *dockerfile*.

    *dockerfile* is relative to the workspace.
    """
    path = ctx.workspace / dockerfile
    from_image = parse_from_image(path.read_text(encoding="latin-1"))
    if from_image is None:
        raise AbortError(f"could not find FROM instruction in {path}")
    if build_args:
        from_image = expand_macros(from_image, build_args)

    descendant = client.inspect_required_field(ctx.env, image, ".Id")
    if from_image == "scratch":
        # a base image was just built
        recorder.add_from_facet(None, descendant)
        return
    ancestor = client.inspect_required_field(ctx.env, from_image, ".Id")
    recorder.add_from_facet(ancestor, descendant)
    recorder.add_image(from_image)
    logger.debug("Recorded image ancestry", image=image, from_image=from_image)
