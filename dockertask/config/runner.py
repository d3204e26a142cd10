"""Task runner script injection configuration."""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class RunnerConfig(BaseSettings):
    """Settings for the runner script mounted into every task container."""

    runner_script_path: Optional[str] = Field(default=None, alias="runner_script_path")
    runner_container_path: str = Field(default="/runner.py", alias="runner_container_path")
    runner_invoker: List[str] = Field(
        default_factory=lambda: ["/usr/bin/python"], alias="runner_invoker"
    )

    class Config:
        env_prefix = ""
        extra = "ignore"
