"""Lifecycle state and exit record models."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional


class LifecycleState(str, Enum):
    """States of a single task run."""

    UNSTARTED = "unstarted"
    PULLING = "pulling"
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[LifecycleState] = frozenset(
    {LifecycleState.REMOVED, LifecycleState.FAILED}
)

# States in which a container exists on the engine and may be removed
REMOVABLE_STATES: FrozenSet[LifecycleState] = frozenset(
    {LifecycleState.CREATED, LifecycleState.STOPPED}
)


@dataclass(frozen=True)
class ExitRecord:
    """Exit code observed for the container.

    ``code`` is None when the exit was never observed (still running,
    wait timed out, or the container vanished before exiting).
    """

    code: Optional[int] = None

    @property
    def observed(self) -> bool:
        return self.code is not None

    def exit_code_or(self, default: int) -> int:
        return self.code if self.code is not None else default


# Sentinel for "timed out / never observed"
NOT_OBSERVED = ExitRecord()


class StreamState(str, Enum):
    """Run state of a single log tailer."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
