"""Runs a single Docker container task on behalf of a cluster scheduler."""

__version__ = "1.0.0"
