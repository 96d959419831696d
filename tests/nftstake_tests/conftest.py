"""
Shared fixtures for pool, token and collection tests.
"""

import pytest

from nftstake.core.contracts.erc20 import ERC20Token
from nftstake.core.contracts.erc721 import ERC721Token
from nftstake.core.defi.contribution_oracle import StaticContributionOracle
from nftstake.core.defi.nft_staking_pool import NFTStakingPool


ADMIN = "0x" + "a" * 40
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
POOL_ADDRESS = "0x" + "5" * 40

# asset id -> (holder, contribution score)
ASSETS = {
    1: (ALICE, 100),
    2: (ALICE, 100),
    3: (ALICE, 50),
    4: (BOB, 100),
    5: (BOB, 300),
    6: (BOB, 0),
}

POOL_FUNDING = 10**15


class ManualClock:
    """Deterministic time provider for pools."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def reward_token():
    return ERC20Token(name="Contribution Reward", symbol="CRWD", owner=ADMIN, address="0x" + "e" * 40)


@pytest.fixture
def collection():
    nft = ERC721Token(name="Contributors", symbol="CTRB", owner=ADMIN, address="0x" + "c" * 40)
    for asset_id, (holder, _score) in ASSETS.items():
        nft.mint(ADMIN, holder, asset_id)
    return nft


@pytest.fixture
def oracle():
    return StaticContributionOracle(
        owner=ADMIN,
        scores={asset_id: score for asset_id, (_holder, score) in ASSETS.items()},
    )


@pytest.fixture
def bare_pool(clock):
    """Pool that has not been initialized."""
    return NFTStakingPool(address=POOL_ADDRESS, time_provider=clock)


@pytest.fixture
def pool(bare_pool, reward_token, collection, oracle):
    """Initialized, funded pool with claims enabled and holders' approvals set."""
    bare_pool.initialize(ADMIN, reward_token, collection, oracle, emission_rate=10)
    bare_pool.set_claims_enabled(ADMIN, True)
    reward_token.mint(ADMIN, bare_pool.address, POOL_FUNDING)
    for holder in (ALICE, BOB):
        collection.set_approval_for_all(holder, bare_pool.address, True)
    return bare_pool
