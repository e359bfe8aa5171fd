"""Centralized configuration — Pydantic BaseSettings with TOML + dotenv sources.

Settings live in config.toml. Environment variables override it using the
``PIPESIDE_`` prefix and ``__`` as the nested delimiter (e.g.
``PIPESIDE_DOCKER__CLIENT_TIMEOUT=60``). The prefix keeps pipeline variables
such as ``WORKSPACE`` from being mistaken for config sections.

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from pipeside.config import get_settings

    s = get_settings()
    print(s.docker.executable)
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from pipeside.errors import AbortError
from pipeside.logger import set_level

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models; reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class DockerConfig(_StrictModel):
    executable: str = "docker"
    # tool name -> docker installation home; the CLI is <home>/bin/docker
    tools: dict[str, str] = {}
    client_timeout: float = 180  # seconds, applies to every CLI call and exec
    stop_timeout: int = 1  # seconds passed to `docker stop --time`

    @field_validator("client_timeout")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("client_timeout must be positive")
        return v


class WorkspaceConfig(_StrictModel):
    # temp dir for workspace /a/b is /a/b<sep>tmp
    tmp_separator: str = "@"


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_prefix="PIPESIDE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    docker: DockerConfig = DockerConfig()
    workspace: WorkspaceConfig = WorkspaceConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def resolve_executable(self, tool_name: str | None) -> str:
        """Return the docker CLI for a named tool installation.

        ``None`` selects the default executable. Unknown names abort rather
        than silently falling back to a different docker.
        """
        if tool_name is None:
            return self.docker.executable
        home = self.docker.tools.get(tool_name)
        if home is None:
            raise AbortError(f"No Docker tool named {tool_name} found")
        return str(Path(home) / "bin" / "docker")

    def temp_dir_for(self, workspace: Path) -> Path:
        """Sibling temp directory of a workspace, e.g. ``/ws/job@tmp``."""
        return workspace.with_name(workspace.name + self.workspace.tmp_separator + "tmp")


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
        set_level(_settings.logging.level)
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
