"""Container management services.

This package provides Docker container task management split into:
- client.py: Docker client factory and engine facade
- tailer.py: Relay of container stdout/stderr to the host
- waiter.py: Background wait for container exit
- manager.py: Task lifecycle orchestration
- utils.py: Shared utilities for container operations
"""

from .manager import ContainerTaskRunner
from .client import DockerClientFactory, DockerEngine, is_stop_race
from .tailer import LogTailer
from .waiter import ExitWaiter
from .utils import build_run_command, LineSplitter

__all__ = [
    "ContainerTaskRunner",
    "DockerClientFactory",
    "DockerEngine",
    "is_stop_race",
    "LogTailer",
    "ExitWaiter",
    "build_run_command",
    "LineSplitter",
]
