"""Configuration for the docker executor service.

Settings are read from environment variables prefixed with ``DOCKER_EXECUTOR_``
(or a ``.env`` file). Example:

    DOCKER_EXECUTOR_LOCAL_STATE_DIRECTORY=/state
    DOCKER_EXECUTOR_HOST_STATE_DIRECTORY=/srv/docker-executor/state
"""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="DOCKER_EXECUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # State directories
    # The local directory is what this process opens. The host directory is the
    # same location as seen by the Docker daemon, used as the bind-mount source.
    # They only differ when the executor itself runs inside a container.
    local_state_directory: Path = Field(
        default=Path("state"),
        description="Root of per-deployment state directories (as seen by this process)",
    )
    host_state_directory: Path | None = Field(
        default=None,
        description="Same root as seen by the Docker host (defaults to local_state_directory)",
    )

    # Docker
    docker_base_url: str | None = Field(
        default=None,
        description="Docker daemon URL (defaults to DOCKER_HOST / local socket)",
        examples=["unix:///var/run/docker.sock"],
    )
    docker_max_workers: int = Field(default=5, ge=1)
    extra_labels: dict[str, str] = Field(
        default_factory=dict,
        description="Additional labels applied to every deployment container (JSON)",
    )

    # Completion detection
    completion_strategy: Literal["polling", "events"] = "polling"
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    completion_timeout_seconds: float = Field(default=30 * 60, gt=0)

    # Template catalog
    templates_file: Path | None = Field(
        default=None,
        description="JSON file containing the template catalog",
    )

    # Logging
    service_name: str = "docker-executor"
    log_format: Literal["json", "console"] = "console"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @property
    def resolved_local_state_directory(self) -> Path:
        return _full_path(self.local_state_directory)

    @property
    def resolved_host_state_directory(self) -> Path:
        host = self.host_state_directory or self.local_state_directory
        return _full_path(host)


def _full_path(path: Path) -> Path:
    # Normalized, not resolved: a host path must not be rewritten through local symlinks.
    return Path(os.path.normpath(Path.cwd() / path))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
