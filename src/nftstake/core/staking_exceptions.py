"""
Staking-pool exception hierarchy.

Provides typed exceptions for pool operations so callers can tell an
authorization failure from a custody failure without parsing messages.
All of them are contract reverts and therefore inherit from
``VMExecutionError``.
"""

from __future__ import annotations
from typing import Optional, Any, Dict

from .vm.exceptions import VMExecutionError


class StakingError(VMExecutionError):
    """Base exception for all staking-pool errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller may retry with a later call
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Lifecycle Errors ====================


class AlreadyInitializedError(StakingError):
    """Raised when initialize() is called on a pool that is already bound."""
    pass


class NotInitializedError(StakingError):
    """Raised when a pool is used before initialize()."""
    pass


class InvalidConfigurationError(StakingError):
    """Raised for a zero emission rate or a clock that moved backwards."""
    pass


# ==================== Caller Errors ====================


class UnauthorizedError(StakingError):
    """Raised when a non-admin calls an admin-only operation."""
    pass


class OwnershipMismatchError(StakingError):
    """Raised when a depositor tries to withdraw an asset they did not stake."""

    def __init__(
        self,
        message: str,
        asset_id: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.asset_id = asset_id


class AssetAlreadyStakedError(StakingError):
    """Raised when depositing an asset that is already in the pool."""
    pass


class ClaimsDisabledError(StakingError):
    """Raised when claiming while the administrator has claims switched off."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class InvalidScoreError(StakingError):
    """Raised when the oracle returns a negative or non-integer score."""
    pass


# ==================== Execution Errors ====================


class CustodyTransferError(StakingError):
    """Raised when moving an asset in or out of the pool fails.

    The enclosing operation has been rolled back when this is raised.
    """
    pass


class ReentrancyError(StakingError):
    """Raised when a mutating call arrives while another is still running."""
    pass


class AccountingError(StakingError):
    """Raised when ledger bookkeeping would violate a balance invariant."""
    pass


class PoolAlreadyDeployedError(StakingError):
    """Raised when the factory is asked to reuse a deployment salt."""
    pass
