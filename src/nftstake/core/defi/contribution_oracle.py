"""
Contribution scoring oracles.

A pool asks its oracle for the stake weight of an asset when it is
deposited. The pool treats the oracle as untrusted: results are validated
before they touch any balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..vm.exceptions import VMExecutionError

logger = logging.getLogger(__name__)


@runtime_checkable
class ContributionOracle(Protocol):
    """Maps an asset identifier to a non-negative stake weight."""

    def get_score(self, asset_id: int) -> int:
        ...


@dataclass
class StaticContributionOracle:
    """
    Oracle backed by a score table maintained by its owner.

    Assets missing from the table score ``default_score``.
    """

    owner: str = ""
    scores: dict[int, int] = field(default_factory=dict)
    default_score: int = 0

    def __post_init__(self) -> None:
        self.owner = self.owner.lower()
        if self.default_score < 0:
            raise VMExecutionError("Oracle: default score cannot be negative")

    def get_score(self, asset_id: int) -> int:
        return self.scores.get(asset_id, self.default_score)

    def set_score(self, caller: str, asset_id: int, score: int) -> None:
        """Set the score of one asset (owner only)."""
        if caller.lower() != self.owner:
            raise VMExecutionError("Oracle: caller is not owner")
        if not isinstance(score, int) or score < 0:
            raise VMExecutionError("Oracle: score must be a non-negative integer")
        self.scores[asset_id] = score
        logger.info(
            "Contribution score updated",
            extra={"event": "oracle.score_set", "asset_id": asset_id, "score": score},
        )
