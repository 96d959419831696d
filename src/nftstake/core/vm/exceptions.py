"""
Contract execution errors.

Every contract in this package reverts by raising ``VMExecutionError`` (or a
subclass). Callers that only care whether a call succeeded can catch this
one type.
"""

from __future__ import annotations


class VMExecutionError(Exception):
    """Raised when a contract call reverts."""
    pass
