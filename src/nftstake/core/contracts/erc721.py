"""
ERC721 collection holding the assets that get staked.

Ownership, per-token and operator approvals, owner minting, pause, and
``safe_transfer_from`` with receiver hooks. Receivers are in-process
objects registered against an address; the move is undone unless the
receiver acknowledges it with ERC721_RECEIVED. Addresses without a
registered receiver accept tokens unconditionally.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

from ..vm.exceptions import VMExecutionError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

# bytes4(keccak256("onERC721Received(address,address,uint256,bytes)"))
ERC721_RECEIVED = "150b7a02"


class ERC721Receiver(Protocol):
    """Contract able to take custody of tokens through safe_transfer_from."""

    def on_erc721_received(
        self, operator: str, from_addr: str, token_id: int, data: bytes
    ) -> str:
        ...


@dataclass
class NFTEvent:
    event_type: str  # "Transfer", "Approval", "ApprovalForAll"
    from_address: str
    to_address: str
    token_id: int
    approved: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC721Token:
    """
    Collection whose tokens can be staked.

    ``locked_by`` names the pool currently running an operation that moves
    tokens of this collection; other pools refuse to start while it is set.
    """

    name: str
    symbol: str
    address: str = ""
    owner: str = ""

    owners: dict[int, str] = field(default_factory=dict)  # tokenId -> holder
    balances: dict[str, int] = field(default_factory=dict)  # holder -> count
    token_approvals: dict[int, str] = field(default_factory=dict)
    operator_approvals: dict[str, dict[str, bool]] = field(default_factory=dict)
    receivers: dict[str, ERC721Receiver] = field(default_factory=dict, repr=False)
    events: list[NFTEvent] = field(default_factory=list)

    paused: bool = False
    locked_by: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        if not self.address:
            seed = f"erc721:{self.symbol}:{uuid.uuid4()}".encode()
            self.address = f"0x{hashlib.sha3_256(seed).digest()[-20:].hex()}"
        self.address = self.address.lower()
        self.owner = self.owner.lower()

    # ==================== Views ====================

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder.lower(), 0)

    def owner_of(self, token_id: int) -> str:
        """
        Raises:
            VMExecutionError: If the token was never minted
        """
        holder = self.owners.get(token_id)
        if holder is None:
            raise VMExecutionError(f"ERC721: token {token_id} does not exist")
        return holder

    def get_approved(self, token_id: int) -> str:
        self.owner_of(token_id)
        return self.token_approvals.get(token_id, ZERO_ADDRESS)

    def is_approved_for_all(self, holder: str, operator: str) -> bool:
        return self.operator_approvals.get(holder.lower(), {}).get(operator.lower(), False)

    # ==================== Approvals ====================

    def approve(self, caller: str, spender: str, token_id: int) -> bool:
        """Let ``spender`` move one token (holder or holder's operator only)."""
        self._require_not_paused()
        holder = self.owner_of(token_id)
        caller_norm = caller.lower()
        spender_norm = spender.lower()
        if spender_norm == holder:
            raise VMExecutionError("ERC721: approval to current owner")
        if caller_norm != holder and not self.is_approved_for_all(holder, caller_norm):
            raise VMExecutionError("ERC721: approve caller is not owner nor approved")

        self.token_approvals[token_id] = spender_norm
        self.events.append(NFTEvent("Approval", holder, spender_norm, token_id))
        return True

    def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> bool:
        """Let ``operator`` move every token the caller holds."""
        self._require_not_paused()
        holder = caller.lower()
        operator_norm = operator.lower()
        if operator_norm == holder:
            raise VMExecutionError("ERC721: approve to caller")

        self.operator_approvals.setdefault(holder, {})[operator_norm] = approved
        self.events.append(NFTEvent("ApprovalForAll", holder, operator_norm, 0, approved=approved))
        return True

    # ==================== Transfers ====================

    def safe_transfer_from(
        self,
        caller: str,
        from_addr: str,
        to_addr: str,
        token_id: int,
        data: bytes = b"",
    ) -> bool:
        """
        Move a token and let a registered receiver accept or refuse it.

        The move is undone if the receiver raises (its exception propagates)
        or answers with anything but ERC721_RECEIVED.
        """
        self._require_not_paused()
        snapshot = self.snapshot()
        self._move(caller.lower(), from_addr.lower(), to_addr.lower(), token_id)

        receiver = self.receivers.get(to_addr.lower())
        if receiver is None:
            return True

        try:
            answer = receiver.on_erc721_received(caller.lower(), from_addr.lower(), token_id, data)
        except Exception:
            self.restore(snapshot)
            raise
        if answer != ERC721_RECEIVED:
            self.restore(snapshot)
            raise VMExecutionError("ERC721: transfer to non ERC721Receiver implementer")
        return True

    def register_receiver(self, address: str, receiver: ERC721Receiver) -> None:
        if not callable(getattr(receiver, "on_erc721_received", None)):
            raise VMExecutionError("ERC721: receiver lacks on_erc721_received")
        self.receivers[address.lower()] = receiver

    def _move(self, caller: str, source: str, target: str, token_id: int) -> None:
        holder = self.owner_of(token_id)
        if holder != source:
            raise VMExecutionError("ERC721: transfer from incorrect owner")
        if not (
            caller == holder
            or self.token_approvals.get(token_id) == caller
            or self.is_approved_for_all(holder, caller)
        ):
            raise VMExecutionError("ERC721: caller is not owner nor approved")
        if target == ZERO_ADDRESS:
            raise VMExecutionError("ERC721: transfer to zero address")

        self.token_approvals.pop(token_id, None)
        self.balances[source] -= 1
        self.balances[target] = self.balances.get(target, 0) + 1
        self.owners[token_id] = target
        self.events.append(NFTEvent("Transfer", source, target, token_id))

        logger.debug(
            "ERC721 transfer",
            extra={
                "event": "erc721.transfer",
                "collection": self.symbol,
                "token_id": token_id,
                "from": source[:10],
                "to": target[:10],
            },
        )

    # ==================== Admin ====================

    def mint(self, minter: str, to: str, token_id: int) -> int:
        """Create ``token_id`` for ``to`` (owner only)."""
        self._require_not_paused()
        self._require_owner(minter)
        target = to.lower()
        if target == ZERO_ADDRESS:
            raise VMExecutionError("ERC721: mint to zero address")
        if token_id in self.owners:
            raise VMExecutionError(f"ERC721: token {token_id} already minted")

        self.owners[token_id] = target
        self.balances[target] = self.balances.get(target, 0) + 1
        self.events.append(NFTEvent("Transfer", ZERO_ADDRESS, target, token_id))

        logger.info(
            "ERC721 mint",
            extra={
                "event": "erc721.mint",
                "collection": self.symbol,
                "token_id": token_id,
                "to": target[:10],
            },
        )
        return token_id

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
            "owners": dict(self.owners),
            "balances": dict(self.balances),
            "token_approvals": dict(self.token_approvals),
            "operator_approvals": {k: dict(v) for k, v in self.operator_approvals.items()},
            "events": len(self.events),
            "paused": self.paused,
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.owners = dict(snapshot["owners"])
        self.balances = dict(snapshot["balances"])
        self.token_approvals = dict(snapshot["token_approvals"])
        self.operator_approvals = {k: dict(v) for k, v in snapshot["operator_approvals"].items()}
        del self.events[snapshot["events"]:]
        self.paused = snapshot["paused"]

    def _require_owner(self, caller: str) -> None:
        if caller.lower() != self.owner:
            raise VMExecutionError("ERC721: caller is not owner")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise VMExecutionError("ERC721: token is paused")
