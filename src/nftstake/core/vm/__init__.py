"""Execution-layer primitives shared by the in-process contracts."""

from .exceptions import VMExecutionError

__all__ = ["VMExecutionError"]
