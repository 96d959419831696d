"""
nftstake DeFi Protocols.

This module provides the staking pool and its accounting components:
- Reward Accumulator: time-weighted reward points per unit of stake
- Staker Ledger: per-depositor weight, assets and reward history
- NFT Staking Pool: deposit / withdraw / emergency exit / claim
- Pool Factory: deterministic pool deployment
- Contribution Oracle: per-asset stake weights
"""

from .contribution_oracle import ContributionOracle, StaticContributionOracle
from .nft_staking_pool import NFTStakingPool, PoolConfig, PoolEvent
from .pool_factory import NFTStakingPoolFactory
from .reward_accumulator import GlobalAccumulatorState
from .safe_math import POINT_SCALE, mul_div
from .staker_ledger import StakerLedger, StakerRecord

__all__ = [
    # Staking
    "NFTStakingPool",
    "NFTStakingPoolFactory",
    "PoolConfig",
    "PoolEvent",
    # Accounting
    "GlobalAccumulatorState",
    "StakerLedger",
    "StakerRecord",
    "POINT_SCALE",
    "mul_div",
    # Oracle
    "ContributionOracle",
    "StaticContributionOracle",
]
