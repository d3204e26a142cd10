"""Utility modules for the Docker task runner."""

from .logging import setup_logging, bind_context
from .shutdown import CancellationToken, TerminationHook

__all__ = [
    "setup_logging",
    "bind_context",
    "CancellationToken",
    "TerminationHook",
]
