"""
Contribution-Weighted NFT Staking Pool.

Depositors lock ERC721 assets in the pool and accrue an ERC20 reward token
in proportion to each asset's contribution score, read from an oracle at
deposit time. Rewards are emitted at a fixed rate per second and shared
pro rata across everything staked.

Every state-changing operation follows the same order:
1. checkpoint the global accumulator (time -> points)
2. checkpoint the caller's ledger entry (points -> earned reward)
3. change weights and asset ownership
4. move custody of the asset

Security features:
- Reentrancy guard on every mutating entry point
- Full rollback (pool, reward token and collection) when any step reverts
- Oracle results validated before use
- Payouts capped at the pool's reward balance and rounded down
"""

from __future__ import annotations

import copy
import hashlib
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator

from .. import config
from ..contracts.erc20 import ERC20Token
from ..contracts.erc721 import ERC721_RECEIVED, ZERO_ADDRESS, ERC721Token
from ..staking_exceptions import (
    AlreadyInitializedError,
    AssetAlreadyStakedError,
    ClaimsDisabledError,
    CustodyTransferError,
    InvalidConfigurationError,
    InvalidScoreError,
    NotInitializedError,
    OwnershipMismatchError,
    ReentrancyError,
    UnauthorizedError,
)
from ..vm.exceptions import VMExecutionError
from .contribution_oracle import ContributionOracle
from .reward_accumulator import GlobalAccumulatorState
from .staker_ledger import StakerLedger, StakerRecord

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Bindings fixed at initialization plus the admin-tunable settings."""

    reward_token: ERC20Token
    collection: ERC721Token
    oracle: ContributionOracle
    emission_rate: int  # reward units per second
    admin: str
    claims_enabled: bool = False


@dataclass
class PoolEvent:
    """Notification emitted by the pool."""

    event_type: str  # "Staked", "Unstaked", "EmergencyUnstake", "RewardPaid", ...
    user: str = ""
    amount: int = 0
    token_id: int | None = None
    value: Any = None  # new setting for configuration events
    timestamp: int = 0


@dataclass
class NFTStakingPool:
    """
    Staking pool bound to one reward token, collection, oracle and rate.

    A pool is created empty and becomes usable after ``initialize``; the
    factory does both in one step.
    """

    address: str = ""
    time_provider: Callable[[], int] | None = field(default=None, repr=False)

    config: PoolConfig | None = None
    accumulator: GlobalAccumulatorState = field(default_factory=GlobalAccumulatorState)
    ledger: StakerLedger = field(default_factory=StakerLedger)

    # assetId -> depositor, present only while the asset is staked
    token_owner: dict[int, str] = field(default_factory=dict)

    events: list[PoolEvent] = field(default_factory=list)

    # Reentrancy guard
    _locked: bool = False

    def __post_init__(self) -> None:
        if not self.address:
            addr_hash = hashlib.sha3_256(f"nft-staking-pool:{uuid.uuid4()}".encode()).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"
        self.address = self.address.lower()
        if self.time_provider is None:
            self.time_provider = lambda: int(time.time())

    # ==================== Initialization ====================

    def initialize(
        self,
        caller: str,
        reward_token: ERC20Token,
        collection: ERC721Token,
        oracle: ContributionOracle,
        emission_rate: int,
        admin: str | None = None,
    ) -> bool:
        """
        Bind the pool to its reward token, collection, oracle and rate.

        Args:
            caller: Deployer (becomes admin unless ``admin`` is given)
            reward_token: Token rewards are paid in
            collection: Collection whose assets can be staked
            oracle: Source of contribution scores
            emission_rate: Reward units emitted per second, must be positive
            admin: Administrator address

        Raises:
            AlreadyInitializedError: If the pool is already bound
            InvalidConfigurationError: For a non-positive rate or a bad oracle
        """
        self._require_not_locked()
        if self.config is not None:
            raise AlreadyInitializedError(
                "Pool: already initialized", details={"pool": self.address}
            )
        self._validate_emission_rate(emission_rate)
        if not callable(getattr(oracle, "get_score", None)):
            raise InvalidConfigurationError("Pool: oracle must provide get_score()")

        admin_norm = (admin or caller).lower()
        if admin_norm == ZERO_ADDRESS:
            raise InvalidConfigurationError("Pool: admin is zero address")

        collection.register_receiver(self.address, self)
        self.config = PoolConfig(
            reward_token=reward_token,
            collection=collection,
            oracle=oracle,
            emission_rate=emission_rate,
            admin=admin_norm,
            claims_enabled=config.CLAIMS_ENABLED_ON_INIT,
        )
        self.accumulator.last_checkpoint_time = self._now()

        self._emit(PoolEvent("RewardsTokenUpdated", value=reward_token.address))

        logger.info(
            "Staking pool initialized",
            extra={
                "event": "staking.initialized",
                "pool": self.address,
                "reward_token": reward_token.symbol,
                "collection": collection.symbol,
                "emission_rate": emission_rate,
                "admin": admin_norm[:10],
            },
        )
        return True

    # ==================== Staking Operations ====================

    def deposit(self, depositor: str, asset_id: int) -> int:
        """
        Stake one asset.

        The depositor must have approved the pool on the collection.

        Returns:
            The stake weight the asset was credited with

        Raises:
            AssetAlreadyStakedError: If the asset is already in the pool
            InvalidScoreError: If the oracle returns an unusable score
            CustodyTransferError: If the asset cannot be moved into the pool
        """
        pool_config = self._require_initialized()
        depositor_norm = depositor.lower()

        with self._guarded("deposit"):
            if asset_id in self.token_owner:
                raise AssetAlreadyStakedError(
                    f"Pool: asset {asset_id} is already staked",
                    details={"asset_id": asset_id},
                )

            points = self._checkpoint_global()
            record = self.ledger.get_or_create(depositor_norm, points)
            self.ledger.checkpoint(depositor_norm, points)

            weight = self._read_score(pool_config.oracle, asset_id)
            record.add_asset(asset_id, weight)
            self.accumulator.add_weight(weight)
            self.token_owner[asset_id] = depositor_norm

            self._move_custody(depositor_norm, self.address, asset_id)
            self._emit(PoolEvent("Staked", user=depositor_norm, amount=weight, token_id=asset_id))

        logger.info(
            "Asset staked",
            extra={
                "event": "staking.deposit",
                "pool": self.address[:10],
                "depositor": depositor_norm[:10],
                "asset_id": asset_id,
                "weight": weight,
                "total_weight": self.accumulator.total_staked_weight,
            },
        )
        return weight

    def withdraw(self, depositor: str, asset_id: int) -> int:
        """
        Unstake one asset after paying out everything earned so far.

        Returns:
            Reward paid out as part of the withdrawal

        Raises:
            OwnershipMismatchError: If the depositor did not stake the asset
            ClaimsDisabledError: If claims are switched off
            CustodyTransferError: If the asset cannot be returned
        """
        self._require_initialized()
        depositor_norm = depositor.lower()

        with self._guarded("withdraw"):
            record = self._require_stake_owner(depositor_norm, asset_id)

            paid = self._claim(record)

            self.ledger.checkpoint(depositor_norm, self._checkpoint_global())
            weight = record.remove_asset(asset_id)
            self.accumulator.remove_weight(weight)
            del self.token_owner[asset_id]
            self.ledger.discard_if_settled(depositor_norm)

            self._move_custody(self.address, depositor_norm, asset_id)
            self._emit(PoolEvent("Unstaked", user=depositor_norm, amount=weight, token_id=asset_id))

        logger.info(
            "Asset unstaked",
            extra={
                "event": "staking.withdraw",
                "pool": self.address[:10],
                "depositor": depositor_norm[:10],
                "asset_id": asset_id,
                "weight": weight,
                "reward_paid": paid,
            },
        )
        return paid

    def emergency_withdraw(self, depositor: str, asset_id: int) -> int:
        """
        Unstake one asset without settling rewards.

        Escape hatch for when reward computation or the reward token is
        broken. Reward accrued by this asset since the depositor's last
        checkpoint is forfeited; reward already credited stays claimable.

        Returns:
            The stake weight removed
        """
        self._require_initialized()
        depositor_norm = depositor.lower()

        with self._guarded("emergency_withdraw"):
            record = self._require_stake_owner(depositor_norm, asset_id)

            # Global checkpoint only, so other stakers keep their share up to now
            self._checkpoint_global()
            weight = record.remove_asset(asset_id)
            self.accumulator.remove_weight(weight)
            del self.token_owner[asset_id]
            self.ledger.discard_if_settled(depositor_norm)

            self._move_custody(self.address, depositor_norm, asset_id)
            self._emit(
                PoolEvent("EmergencyUnstake", user=depositor_norm, amount=weight, token_id=asset_id)
            )

        logger.warning(
            "Emergency unstake",
            extra={
                "event": "staking.emergency_withdraw",
                "pool": self.address[:10],
                "depositor": depositor_norm[:10],
                "asset_id": asset_id,
                "weight": weight,
            },
        )
        return weight

    def claim_reward(self, depositor: str) -> int:
        """
        Pay out everything the depositor has earned.

        Returns:
            Amount actually transferred, which is less than what was earned
            when the pool holds too little reward token

        Raises:
            ClaimsDisabledError: If claims are switched off
        """
        self._require_initialized()
        depositor_norm = depositor.lower()

        with self._guarded("claim"):
            record = self.ledger.get(depositor_norm)
            if record is None:
                self._require_claims_enabled()
                return 0
            paid = self._claim(record)
            # A record kept only for its unpaid history can go now
            self.ledger.discard_if_settled(depositor_norm)
        return paid

    # ==================== Admin Functions ====================

    def set_emission_rate(self, caller: str, emission_rate: int) -> bool:
        """
        Change the reward emission rate (admin only).

        The accumulator is checkpointed under the old rate first, so the new
        rate applies from this instant onward only.
        """
        pool_config = self._require_admin(caller)
        self._validate_emission_rate(emission_rate)

        with self._guarded("set_emission_rate"):
            self._checkpoint_global()
            previous = pool_config.emission_rate
            pool_config.emission_rate = emission_rate
            self._emit(PoolEvent("EmissionRateUpdated", value=emission_rate))

        logger.info(
            "Emission rate updated",
            extra={
                "event": "staking.emission_rate_updated",
                "pool": self.address[:10],
                "previous": previous,
                "emission_rate": emission_rate,
            },
        )
        return True

    def set_claims_enabled(self, caller: str, enabled: bool) -> bool:
        """Switch claiming on or off (admin only)."""
        pool_config = self._require_admin(caller)
        with self._guarded("set_claims_enabled"):
            pool_config.claims_enabled = bool(enabled)
            self._emit(PoolEvent("ClaimableStatusUpdated", value=pool_config.claims_enabled))

        logger.info(
            "Claimable status updated",
            extra={
                "event": "staking.claims_toggled",
                "pool": self.address[:10],
                "enabled": pool_config.claims_enabled,
            },
        )
        return True

    def transfer_ownership(self, caller: str, new_admin: str) -> bool:
        """Hand the admin role to another address (admin only)."""
        pool_config = self._require_admin(caller)
        new_admin_norm = new_admin.lower()
        if not new_admin_norm or new_admin_norm == ZERO_ADDRESS:
            raise InvalidConfigurationError("Pool: new admin is zero address")

        with self._guarded("transfer_ownership"):
            previous = pool_config.admin
            pool_config.admin = new_admin_norm
            self._emit(PoolEvent("OwnershipTransferred", user=previous, value=new_admin_norm))

        logger.info(
            "Pool ownership transferred",
            extra={
                "event": "staking.ownership_transferred",
                "pool": self.address[:10],
                "from": previous[:10],
                "to": new_admin_norm[:10],
            },
        )
        return True

    # ==================== View Functions ====================

    def staked_assets_of(self, depositor: str) -> list[int]:
        """Assets currently staked by a depositor."""
        record = self.ledger.get(depositor)
        return list(record.staked_asset_ids) if record else []

    def score_of(self, asset_id: int) -> int:
        """Current oracle score of an asset."""
        pool_config = self._require_initialized()
        return self._read_score(pool_config.oracle, asset_id)

    def owner_of_stake(self, asset_id: int) -> str | None:
        """Depositor that staked an asset, or None if it is not staked."""
        return self.token_owner.get(asset_id)

    def pending_reward(self, depositor: str) -> int:
        """
        Reward the depositor could claim right now.

        Nothing is committed; the accrual since the last checkpoint is
        previewed at the current time. Reports 0 while nothing is staked in
        the pool, even for a record that still holds unclaimed reward.
        """
        pool_config = self._require_initialized()
        record = self.ledger.get(depositor)
        if record is None:
            return 0
        if self.accumulator.total_staked_weight == 0:
            return 0
        points = self.accumulator.preview_points(self._now(), pool_config.emission_rate)
        return self.ledger.pending(depositor, points)

    def stake_info(self, depositor: str) -> Dict[str, Any]:
        """Summary of a depositor's position."""
        record = self.ledger.get(depositor)
        if record is None:
            return {
                "depositor": depositor.lower(),
                "staked_asset_ids": [],
                "weight": 0,
                "earned": 0,
                "released": 0,
                "pending": 0,
            }
        return {
            "depositor": record.depositor,
            "staked_asset_ids": list(record.staked_asset_ids),
            "weight": record.weight,
            "earned": record.earned_cumulative,
            "released": record.released_cumulative,
            "pending": self.pending_reward(depositor),
        }

    def check_invariants(self) -> None:
        """Raise AccountingError if the ledger disagrees with the global tables."""
        self.ledger.assert_consistent(self.accumulator.total_staked_weight, self.token_owner)

    # ==================== ERC721 Receiver ====================

    def on_erc721_received(
        self, operator: str, from_addr: str, token_id: int, data: bytes
    ) -> str:
        """
        Accept custody of an asset the pool itself is pulling in.

        Transfers started by anyone else would leave the asset stranded
        without a stake record, so they are refused.
        """
        if self.config is None:
            raise NotInitializedError("Pool: not initialized")
        if operator.lower() != self.address:
            raise VMExecutionError("Pool: direct transfers are not accepted, use deposit()")
        if self.config.collection.owners.get(token_id) != self.address:
            raise VMExecutionError(f"Pool: asset {token_id} was not received from the bound collection")
        return ERC721_RECEIVED

    # ==================== Internals ====================

    def _claim(self, record: StakerRecord) -> int:
        """Settle and pay a record. Caller must hold the guard."""
        pool_config = self._require_claims_enabled()

        record.settle(self._checkpoint_global())
        payable = record.release_all()

        reward_token = pool_config.reward_token
        available = reward_token.balance_of(self.address)
        paid = min(payable, available)
        if paid < payable:
            logger.warning(
                "Reward payout truncated to pool balance",
                extra={
                    "event": "staking.payout_truncated",
                    "pool": self.address[:10],
                    "depositor": record.depositor[:10],
                    "owed": payable,
                    "paid": paid,
                },
            )
        if paid > 0:
            reward_token.transfer(self.address, record.depositor, paid)

        self._emit(PoolEvent("RewardPaid", user=record.depositor, amount=paid))
        return paid

    def _checkpoint_global(self) -> int:
        return self.accumulator.checkpoint(self._now(), self.config.emission_rate)

    def _move_custody(self, from_addr: str, to_addr: str, asset_id: int) -> None:
        try:
            self.config.collection.safe_transfer_from(self.address, from_addr, to_addr, asset_id)
        except Exception as exc:
            raise CustodyTransferError(
                f"Pool: custody transfer of asset {asset_id} failed: {exc}",
                details={"asset_id": asset_id, "from": from_addr, "to": to_addr},
            ) from exc

    def _read_score(self, oracle: ContributionOracle, asset_id: int) -> int:
        score = oracle.get_score(asset_id)
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise InvalidScoreError(
                f"Pool: oracle returned invalid score {score!r} for asset {asset_id}",
                details={"asset_id": asset_id},
            )
        return score

    def _require_stake_owner(self, depositor: str, asset_id: int) -> StakerRecord:
        owner = self.token_owner.get(asset_id)
        record = self.ledger.get(depositor)
        if owner != depositor or record is None:
            raise OwnershipMismatchError(
                f"Pool: asset {asset_id} is not staked by {depositor[:10]}",
                asset_id=asset_id,
            )
        return record

    def _require_initialized(self) -> PoolConfig:
        if self.config is None:
            raise NotInitializedError("Pool: not initialized", details={"pool": self.address})
        return self.config

    def _require_admin(self, caller: str) -> PoolConfig:
        pool_config = self._require_initialized()
        if caller.lower() != pool_config.admin:
            raise UnauthorizedError(
                "Pool: caller is not admin", details={"caller": caller.lower()}
            )
        return pool_config

    def _require_claims_enabled(self) -> PoolConfig:
        pool_config = self._require_initialized()
        if not pool_config.claims_enabled:
            raise ClaimsDisabledError("Pool: claims are disabled")
        return pool_config

    def _require_not_locked(self) -> None:
        if self._locked:
            raise ReentrancyError("Pool: reentrant call")
        # Another pool sharing a contract is mid-operation; its rollback
        # would also undo anything done here
        for contract in self._bound_contracts():
            if contract.locked_by:
                raise ReentrancyError(
                    f"Pool: {contract.symbol} is in use by pool {contract.locked_by[:10]}",
                    details={"contract": contract.address, "locked_by": contract.locked_by},
                )

    def _bound_contracts(self) -> list:
        if self.config is None:
            return []
        return [self.config.reward_token, self.config.collection]

    def _validate_emission_rate(self, emission_rate: int) -> None:
        if isinstance(emission_rate, bool) or not isinstance(emission_rate, int) or emission_rate <= 0:
            raise InvalidConfigurationError(
                "Pool: emission rate must be a positive integer",
                details={"emission_rate": emission_rate},
            )

    def _now(self) -> int:
        timestamp = self.time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise InvalidConfigurationError("time_provider must return an integer timestamp") from exc

    def _emit(self, event: PoolEvent) -> None:
        event.timestamp = self._now()
        self.events.append(event)

    @contextmanager
    def _guarded(self, operation: str) -> Iterator[None]:
        """
        Run a mutating operation under the reentrancy guard.

        The reward token and collection are marked as held by this pool for
        the duration, so no other pool bound to them can run an operation
        that this one might later roll back. Pool, reward token and
        collection state are restored if the operation raises.
        """
        self._require_not_locked()
        snapshot = self.snapshot()
        self._locked = True
        for contract in self._bound_contracts():
            contract.locked_by = self.address
        try:
            yield
        except Exception as exc:
            self.restore(snapshot)
            logger.warning(
                "Pool operation reverted",
                extra={
                    "event": "staking.reverted",
                    "pool": self.address[:10],
                    "operation": operation,
                    "error": type(exc).__name__,
                },
            )
            raise
        finally:
            self._locked = False
            for contract in self._bound_contracts():
                contract.locked_by = ""

    # ==================== Rollback Support ====================

    def snapshot(self) -> Dict[str, Any]:
        """Capture pool state plus the state of the contracts it moves funds in."""
        state: Dict[str, Any] = {
            "accumulator": self.accumulator.to_dict(),
            "ledger": copy.deepcopy(self.ledger.records),
            "token_owner": dict(self.token_owner),
            "events": len(self.events),
        }
        if self.config is not None:
            state["config"] = {
                "emission_rate": self.config.emission_rate,
                "admin": self.config.admin,
                "claims_enabled": self.config.claims_enabled,
            }
            state["reward_token"] = self.config.reward_token.snapshot()
            state["collection"] = self.config.collection.snapshot()
        return state

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Restore state captured by snapshot()."""
        self.accumulator = GlobalAccumulatorState.from_dict(snapshot["accumulator"])
        self.ledger = StakerLedger(records=snapshot["ledger"])
        self.token_owner = dict(snapshot["token_owner"])
        del self.events[snapshot["events"]:]
        if self.config is not None and "config" in snapshot:
            self.config.emission_rate = snapshot["config"]["emission_rate"]
            self.config.admin = snapshot["config"]["admin"]
            self.config.claims_enabled = snapshot["config"]["claims_enabled"]
            self.config.reward_token.restore(snapshot["reward_token"])
            self.config.collection.restore(snapshot["collection"])

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        """Serialize pool state; contract bindings are stored by address."""
        pool_config = self._require_initialized()
        return {
            "address": self.address,
            "config": {
                "reward_token": pool_config.reward_token.address,
                "collection": pool_config.collection.address,
                "emission_rate": pool_config.emission_rate,
                "admin": pool_config.admin,
                "claims_enabled": pool_config.claims_enabled,
            },
            "accumulator": self.accumulator.to_dict(),
            "ledger": self.ledger.to_dict(),
            "token_owner": {str(k): v for k, v in self.token_owner.items()},
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        reward_token: ERC20Token,
        collection: ERC721Token,
        oracle: ContributionOracle,
        time_provider: Callable[[], int] | None = None,
    ) -> "NFTStakingPool":
        """
        Rebuild a pool from to_dict() output and its live contract objects.

        Raises:
            InvalidConfigurationError: If the contracts do not match the
                addresses recorded in ``data``
        """
        stored = data["config"]
        if reward_token.address != stored["reward_token"] or collection.address != stored["collection"]:
            raise InvalidConfigurationError(
                "Pool: contract bindings do not match serialized state",
                details={"reward_token": stored["reward_token"], "collection": stored["collection"]},
            )

        pool = cls(address=data["address"], time_provider=time_provider)
        collection.register_receiver(pool.address, pool)
        pool.config = PoolConfig(
            reward_token=reward_token,
            collection=collection,
            oracle=oracle,
            emission_rate=int(stored["emission_rate"]),
            admin=stored["admin"],
            claims_enabled=bool(stored.get("claims_enabled", False)),
        )
        pool.accumulator = GlobalAccumulatorState.from_dict(data["accumulator"])
        pool.ledger = StakerLedger.from_dict(data.get("ledger", {}))
        pool.token_owner = {int(k): v for k, v in data.get("token_owner", {}).items()}
        return pool
