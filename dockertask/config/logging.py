"""Logging configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Log level and rendering settings."""

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    debug: bool = Field(default=False)

    def get_effective_level(self) -> str:
        """Debug mode always wins over the configured level."""
        return "DEBUG" if self.debug else self.log_level.upper()

    class Config:
        env_prefix = ""
        extra = "ignore"
