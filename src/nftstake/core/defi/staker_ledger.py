"""
Per-depositor staking ledger.

Each depositor has one StakerRecord holding the assets they have staked,
their total weight and their reward history. Records are created on first
deposit and dropped once the depositor has no weight left and nothing
unclaimed.

Asset lists use swap-with-last removal, so every record keeps an explicit
``asset_id -> position`` index next to the list; both are updated together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

from ..staking_exceptions import AccountingError
from .safe_math import POINT_SCALE, mul_div

logger = logging.getLogger(__name__)


@dataclass
class StakerRecord:
    """Staking position and reward history of one depositor."""

    depositor: str
    staked_asset_ids: list[int] = field(default_factory=list)
    asset_index: dict[int, int] = field(default_factory=dict)  # assetId -> position
    asset_weights: dict[int, int] = field(default_factory=dict)  # assetId -> score at deposit
    weight: int = 0
    last_reward_snapshot: int = 0
    earned_cumulative: int = 0
    released_cumulative: int = 0

    @property
    def unclaimed(self) -> int:
        return self.earned_cumulative - self.released_cumulative

    def accrued_since_snapshot(self, points: int) -> int:
        """Reward earned by the current weight between the snapshot and ``points``."""
        if points < self.last_reward_snapshot:
            raise AccountingError(
                "Ledger: reward points went backwards",
                details={"depositor": self.depositor, "points": points},
            )
        return mul_div(points - self.last_reward_snapshot, self.weight, POINT_SCALE)

    def settle(self, points: int) -> int:
        """Credit accrued reward and move the snapshot to ``points``."""
        owed = self.accrued_since_snapshot(points)
        self.earned_cumulative += owed
        self.last_reward_snapshot = points
        return owed

    def release_all(self) -> int:
        """Mark everything earned as paid and return the amount released."""
        payable = self.unclaimed
        self.released_cumulative = self.earned_cumulative
        return payable

    def add_asset(self, asset_id: int, weight: int) -> None:
        if asset_id in self.asset_index:
            raise AccountingError(
                f"Ledger: asset {asset_id} already recorded for {self.depositor}"
            )
        self.asset_index[asset_id] = len(self.staked_asset_ids)
        self.staked_asset_ids.append(asset_id)
        self.asset_weights[asset_id] = weight
        self.weight += weight

    def remove_asset(self, asset_id: int) -> int:
        """
        Remove an asset by swapping the last entry into its slot.

        Returns:
            The weight the asset contributed
        """
        position = self.asset_index.pop(asset_id, None)
        if position is None:
            raise AccountingError(
                f"Ledger: asset {asset_id} not recorded for {self.depositor}"
            )
        last_asset = self.staked_asset_ids.pop()
        if last_asset != asset_id:
            self.staked_asset_ids[position] = last_asset
            self.asset_index[last_asset] = position

        weight = self.asset_weights.pop(asset_id)
        self.weight -= weight
        return weight

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depositor": self.depositor,
            "staked_asset_ids": list(self.staked_asset_ids),
            "asset_weights": {str(k): v for k, v in self.asset_weights.items()},
            "weight": self.weight,
            "last_reward_snapshot": self.last_reward_snapshot,
            "earned_cumulative": self.earned_cumulative,
            "released_cumulative": self.released_cumulative,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StakerRecord":
        asset_ids = [int(a) for a in data.get("staked_asset_ids", [])]
        return cls(
            depositor=data["depositor"],
            staked_asset_ids=asset_ids,
            asset_index={asset_id: i for i, asset_id in enumerate(asset_ids)},
            asset_weights={int(k): int(v) for k, v in data.get("asset_weights", {}).items()},
            weight=int(data.get("weight", 0)),
            last_reward_snapshot=int(data.get("last_reward_snapshot", 0)),
            earned_cumulative=int(data.get("earned_cumulative", 0)),
            released_cumulative=int(data.get("released_cumulative", 0)),
        )


@dataclass
class StakerLedger:
    """Table of StakerRecords keyed by normalized depositor address."""

    records: dict[str, StakerRecord] = field(default_factory=dict)

    def __contains__(self, depositor: str) -> bool:
        return depositor.lower() in self.records

    def __iter__(self) -> Iterator[StakerRecord]:
        return iter(self.records.values())

    def __len__(self) -> int:
        return len(self.records)

    def get(self, depositor: str) -> StakerRecord | None:
        return self.records.get(depositor.lower())

    def get_or_create(self, depositor: str, points: int) -> StakerRecord:
        """
        Return the depositor's record, creating it with its snapshot at
        ``points`` so growth before the first deposit is never credited.
        """
        key = depositor.lower()
        record = self.records.get(key)
        if record is None:
            record = StakerRecord(depositor=key, last_reward_snapshot=points)
            self.records[key] = record
        return record

    def checkpoint(self, depositor: str, points: int) -> int:
        """Credit a depositor up to ``points``; unknown depositors earn nothing."""
        record = self.get(depositor)
        if record is None:
            return 0
        return record.settle(points)

    def pending(self, depositor: str, points: int) -> int:
        """Unpaid reward as of ``points`` without committing anything."""
        record = self.get(depositor)
        if record is None:
            return 0
        return record.accrued_since_snapshot(points) + record.unclaimed

    def discard_if_settled(self, depositor: str) -> bool:
        """
        Drop a zero-weight record once nothing remains unclaimed.

        Records still owed reward are kept so the history is not lost.

        Returns:
            True if the record was removed
        """
        record = self.get(depositor)
        if record is None or record.weight != 0 or record.staked_asset_ids:
            return False
        if record.unclaimed != 0:
            logger.warning(
                "Keeping zero-weight staker record with unclaimed reward",
                extra={
                    "event": "staking.record_retained",
                    "depositor": record.depositor[:10],
                    "unclaimed": record.unclaimed,
                },
            )
            return False
        del self.records[record.depositor]
        return True

    def total_weight(self) -> int:
        return sum(record.weight for record in self.records.values())

    def assert_consistent(self, total_staked_weight: int, token_owner: dict[int, str]) -> None:
        """
        Verify the ledger against the pool's global tables.

        Raises:
            AccountingError: On the first violated invariant
        """
        if self.total_weight() != total_staked_weight:
            raise AccountingError(
                "Ledger: staker weights do not sum to total staked weight",
                details={"ledger": self.total_weight(), "total": total_staked_weight},
            )
        seen: set[int] = set()
        for record in self.records.values():
            if record.released_cumulative > record.earned_cumulative:
                raise AccountingError(f"Ledger: {record.depositor} released more than earned")
            if record.weight != sum(record.asset_weights.values()):
                raise AccountingError(f"Ledger: {record.depositor} weight drifted from assets")
            if len(record.asset_index) != len(record.staked_asset_ids):
                raise AccountingError(f"Ledger: {record.depositor} index size mismatch")
            for position, asset_id in enumerate(record.staked_asset_ids):
                if record.asset_index.get(asset_id) != position:
                    raise AccountingError(
                        f"Ledger: {record.depositor} index wrong for asset {asset_id}"
                    )
                if token_owner.get(asset_id) != record.depositor:
                    raise AccountingError(f"Ledger: owner table disagrees for asset {asset_id}")
                seen.add(asset_id)
        if seen != set(token_owner):
            raise AccountingError("Ledger: owner table lists assets no staker holds")

    def to_dict(self) -> Dict[str, Any]:
        return {depositor: record.to_dict() for depositor, record in self.records.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StakerLedger":
        return cls(records={k: StakerRecord.from_dict(v) for k, v in data.items()})
