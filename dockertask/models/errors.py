"""Error types and exception classes for the Docker task runner."""

from enum import Enum, IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit codes reported to the embedding scheduler.

    Any other value is the container's own exit code passed through.
    """

    SUCCESS = 0
    FAIL = 1
    ILLEGAL_ARGUMENT = 2
    TIMEOUT = 124


class ErrorType(str, Enum):
    """Error type enumeration."""

    PULL_FAILED = "pull_failed"
    CREATE_FAILED = "create_failed"
    START_FAILED = "start_failed"
    ILLEGAL_ARGUMENT = "illegal_argument"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class TaskRunnerException(Exception):
    """Base exception for the Docker task runner."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL,
        exit_code: int = ExitCode.FAIL,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.exit_code = int(exit_code)
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert exception to a loggable mapping."""
        data = {
            "error": self.message,
            "error_type": self.error_type.value,
            "exit_code": self.exit_code,
        }
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data


class PullFailedError(TaskRunnerException):
    """Image could not be fetched (registry, network or auth failure)."""

    def __init__(self, image: str, message: str = None, **kwargs):
        super().__init__(
            message=message or f"Failed to pull image {image}",
            error_type=ErrorType.PULL_FAILED,
            **kwargs,
        )
        self.image = image


class CreateFailedError(TaskRunnerException):
    """Engine rejected the container configuration."""

    def __init__(self, message: str = "Failed to create container", **kwargs):
        super().__init__(message=message, error_type=ErrorType.CREATE_FAILED, **kwargs)


class StartFailedError(TaskRunnerException):
    """Engine refused to start the created container."""

    def __init__(self, message: str = "Failed to start container", **kwargs):
        super().__init__(message=message, error_type=ErrorType.START_FAILED, **kwargs)


class IllegalArgumentError(TaskRunnerException):
    """Malformed task input."""

    def __init__(self, message: str = "Illegal argument", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.ILLEGAL_ARGUMENT,
            exit_code=ExitCode.ILLEGAL_ARGUMENT,
            **kwargs,
        )


class TaskCancelledError(TaskRunnerException):
    """Shutdown was requested before the container could be started."""

    def __init__(self, message: str = "Task cancelled by shutdown request", **kwargs):
        super().__init__(message=message, error_type=ErrorType.CANCELLED, **kwargs)
