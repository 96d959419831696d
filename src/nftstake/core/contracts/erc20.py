"""
ERC20 reward token.

The fungible token staking pools pay out. Only what a pool touches is
modelled: balances, transfers, owner minting to fund pools, and a pause
switch that makes every balance change revert. Pools snapshot and restore
the token around each of their operations.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from ..vm.exceptions import VMExecutionError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1


@dataclass
class TokenEvent:
    """Transfer record; mints come from the zero address."""

    event_type: str
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    Reward token with integer balances in the smallest unit.

    ``locked_by`` names the pool currently running an operation that moves
    this token; other pools refuse to start while it is set.
    """

    name: str
    symbol: str
    decimals: int = 18
    address: str = ""
    owner: str = ""

    total_supply: int = 0
    balances: dict[str, int] = field(default_factory=dict)
    events: list[TokenEvent] = field(default_factory=list)

    paused: bool = False
    locked_by: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        if not self.address:
            seed = f"erc20:{self.symbol}:{uuid.uuid4()}".encode()
            self.address = f"0x{hashlib.sha3_256(seed).digest()[-20:].hex()}"
        self.address = self.address.lower()
        self.owner = self.owner.lower()

    def balance_of(self, account: str) -> int:
        return self.balances.get(account.lower(), 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from sender to recipient.

        Raises:
            VMExecutionError: While paused, for the zero address as
                recipient, for a malformed amount, or when the sender's
                balance is too low
        """
        self._require_not_paused()
        source = sender.lower()
        target = recipient.lower()
        self._require_nonzero(target)
        self._require_valid_amount(amount)

        available = self.balances.get(source, 0)
        if amount > available:
            raise VMExecutionError(
                f"ERC20: transfer amount exceeds balance ({amount} > {available})"
            )

        self.balances[source] = available - amount
        self.balances[target] = self.balances.get(target, 0) + amount
        self.events.append(TokenEvent("Transfer", source, target, amount))

        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": source[:10],
                "to": target[:10],
                "amount": amount,
            },
        )
        return True

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """Create new supply (owner only). This is how pools get funded."""
        self._require_not_paused()
        self._require_owner(minter)
        target = to.lower()
        self._require_nonzero(target)
        self._require_valid_amount(amount)

        self.total_supply += amount
        self.balances[target] = self.balances.get(target, 0) + amount
        self.events.append(TokenEvent("Transfer", ZERO_ADDRESS, target, amount))

        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": target[:10],
                "amount": amount,
                "total_supply": self.total_supply,
            },
        )
        return True

    def pause(self, caller: str) -> bool:
        self._require_owner(caller)
        self.paused = True
        return True

    def unpause(self, caller: str) -> bool:
        self._require_owner(caller)
        self.paused = False
        return True

    # ==================== Rollback Support ====================

    def snapshot(self) -> Dict[str, Any]:
        return {
            "balances": dict(self.balances),
            "total_supply": self.total_supply,
            "events": len(self.events),
            "paused": self.paused,
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.balances = dict(snapshot["balances"])
        self.total_supply = snapshot["total_supply"]
        del self.events[snapshot["events"]:]
        self.paused = snapshot["paused"]

    # ==================== Checks ====================

    def _require_nonzero(self, address: str) -> None:
        if not address or address == ZERO_ADDRESS:
            raise VMExecutionError("ERC20: recipient is zero address")

    def _require_valid_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise VMExecutionError("ERC20: amount must be an integer")
        if not 0 <= amount <= UINT256_MAX:
            raise VMExecutionError(f"ERC20: amount {amount} out of range")

    def _require_owner(self, caller: str) -> None:
        if caller.lower() != self.owner:
            raise VMExecutionError("ERC20: caller is not owner")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise VMExecutionError("ERC20: token is paused")
