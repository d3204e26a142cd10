"""Configuration management for the Docker task runner.

This module provides a unified Settings class with flat fields (one per
environment variable) and grouped views organized by concern.

Usage:
    from dockertask.config import settings

    # Access grouped settings
    settings.docker.get_base_url()

    # Or the flat fields
    settings.docker_host
    settings.stop_timeout
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .docker import DockerConfig
from .runner import RunnerConfig
from .logging import LoggingConfig


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Docker engine
    docker_host: Optional[str] = Field(default=None)
    docker_cert_path: Optional[str] = Field(default=None)
    client_timeout: int = Field(default=60, ge=1)
    stop_timeout: int = Field(default=60, ge=0)
    stream_timeout: float = Field(default=10.0, gt=0)
    pull_timeout: int = Field(default=600, ge=1)
    pull_via_cli: bool = Field(default=False)
    docker_binary: str = Field(default="docker")

    # Task defaults
    task_timeout: float = Field(default=3600.0, gt=0)
    cpu_shares: int = Field(default=1024, ge=2, le=262144)
    memory_mb: int = Field(default=512, ge=6)

    # Runner script injection
    runner_script_path: Optional[str] = Field(default=None)
    runner_container_path: str = Field(default="/runner.py")
    runner_invoker: List[str] = Field(default_factory=lambda: ["/usr/bin/python"])

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    debug: bool = Field(default=False)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only the json and console renderers exist."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @field_validator("runner_container_path")
    @classmethod
    def validate_runner_container_path(cls, v):
        """Container-side mount points must be absolute."""
        if not v.startswith("/"):
            raise ValueError("runner_container_path must be an absolute path")
        return v

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def docker(self) -> DockerConfig:
        """Access Docker engine configuration group."""
        return DockerConfig(
            docker_host=self.docker_host,
            docker_cert_path=self.docker_cert_path,
            client_timeout=self.client_timeout,
            pull_timeout=self.pull_timeout,
            pull_via_cli=self.pull_via_cli,
            docker_binary=self.docker_binary,
        )

    @property
    def runner(self) -> RunnerConfig:
        """Access runner script configuration group."""
        return RunnerConfig(
            runner_script_path=self.runner_script_path,
            runner_container_path=self.runner_container_path,
            runner_invoker=self.runner_invoker,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            debug=self.debug,
        )


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "DockerConfig",
    "RunnerConfig",
    "LoggingConfig",
]
