"""Data models for the Docker task runner."""

from .errors import (
    ExitCode,
    ErrorType,
    TaskRunnerException,
    PullFailedError,
    CreateFailedError,
    StartFailedError,
    IllegalArgumentError,
    TaskCancelledError,
)
from .lifecycle import LifecycleState, StreamState, ExitRecord, NOT_OBSERVED
from .task import TaskSpec, VolumeBinding, parse_volume_bindings

__all__ = [
    # Errors
    "ExitCode",
    "ErrorType",
    "TaskRunnerException",
    "PullFailedError",
    "CreateFailedError",
    "StartFailedError",
    "IllegalArgumentError",
    "TaskCancelledError",
    # Lifecycle
    "LifecycleState",
    "StreamState",
    "ExitRecord",
    "NOT_OBSERVED",
    # Task input
    "TaskSpec",
    "VolumeBinding",
    "parse_volume_bindings",
]
