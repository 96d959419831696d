"""
Global reward accumulator.

Tracks cumulative reward points per unit of staked weight. Points grow with
elapsed time at the pool's emission rate divided by the total weight staked
at the time; intervals with nothing staked accrue nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from ..staking_exceptions import AccountingError, InvalidConfigurationError
from .safe_math import POINT_SCALE, mul_div

logger = logging.getLogger(__name__)


@dataclass
class GlobalAccumulatorState:
    """Pool-wide reward state. Only ``checkpoint`` raises the points value."""

    total_staked_weight: int = 0
    reward_points_per_weight: int = 0  # scaled by POINT_SCALE
    last_checkpoint_time: int = 0

    def preview_points(self, now: int, emission_rate: int) -> int:
        """Return the points value checkpoint(now) would produce, without mutating."""
        elapsed = self._elapsed(now)
        if self.total_staked_weight == 0 or elapsed == 0:
            return self.reward_points_per_weight
        emitted = elapsed * emission_rate
        return self.reward_points_per_weight + mul_div(
            emitted, POINT_SCALE, self.total_staked_weight
        )

    def checkpoint(self, now: int, emission_rate: int) -> int:
        """
        Fold elapsed time into the points accumulator.

        Time that passed while nothing was staked is absorbed without accrual.
        A second call at the same timestamp changes nothing.

        Returns:
            The updated reward_points_per_weight
        """
        points = self.preview_points(now, emission_rate)
        if points != self.reward_points_per_weight:
            logger.debug(
                "Reward accumulator advanced",
                extra={
                    "event": "staking.accumulator_checkpoint",
                    "elapsed": now - self.last_checkpoint_time,
                    "total_weight": self.total_staked_weight,
                    "points": points,
                },
            )
        self.reward_points_per_weight = points
        self.last_checkpoint_time = now
        return points

    def add_weight(self, weight: int) -> None:
        self.total_staked_weight += weight

    def remove_weight(self, weight: int) -> None:
        if weight > self.total_staked_weight:
            raise AccountingError(
                "Accumulator: removing more weight than is staked",
                details={"weight": weight, "total": self.total_staked_weight},
            )
        self.total_staked_weight -= weight

    def _elapsed(self, now: int) -> int:
        if now < self.last_checkpoint_time:
            raise InvalidConfigurationError(
                "Accumulator: clock moved backwards",
                details={"now": now, "last_checkpoint_time": self.last_checkpoint_time},
            )
        return now - self.last_checkpoint_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_staked_weight": self.total_staked_weight,
            "reward_points_per_weight": self.reward_points_per_weight,
            "last_checkpoint_time": self.last_checkpoint_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalAccumulatorState":
        return cls(
            total_staked_weight=int(data.get("total_staked_weight", 0)),
            reward_points_per_weight=int(data.get("reward_points_per_weight", 0)),
            last_checkpoint_time=int(data.get("last_checkpoint_time", 0)),
        )
