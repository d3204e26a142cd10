"""Docker engine connection configuration."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class DockerConfig(BaseSettings):
    """Docker engine endpoint and timeout settings."""

    docker_host: Optional[str] = Field(default=None)
    docker_cert_path: Optional[str] = Field(default=None)
    client_timeout: int = Field(default=60, ge=1)
    pull_timeout: int = Field(default=600, ge=1)
    pull_via_cli: bool = Field(default=False)
    docker_binary: str = Field(default="docker")

    def get_base_url(self) -> Optional[str]:
        """Build the engine URL.

        Bare host:port endpoints are reached over https, matching a
        TLS-protected remote daemon. Explicit schemes are kept as given.
        """
        if not self.docker_host:
            return None
        if "://" in self.docker_host:
            return self.docker_host
        return f"https://{self.docker_host}"

    class Config:
        env_prefix = ""
        extra = "ignore"
