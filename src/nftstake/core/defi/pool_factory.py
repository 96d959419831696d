"""
Deterministic staking-pool factory.

Pool addresses are derived CREATE2-style from the factory address, a
caller-chosen salt and a fixed pool code tag, so anyone can compute where a
pool will live before it is deployed.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Callable, Dict

from .. import config
from ..contracts.erc20 import ERC20Token
from ..contracts.erc721 import ERC721Token
from ..staking_exceptions import PoolAlreadyDeployedError
from ..vm.exceptions import VMExecutionError
from .contribution_oracle import ContributionOracle
from .nft_staking_pool import NFTStakingPool

logger = logging.getLogger(__name__)

POOL_CODE_HASH = hashlib.sha3_256(b"nftstake.NFTStakingPool.v1").digest()


class NFTStakingPoolFactory:
    """Factory for deploying and tracking NFTStakingPool instances."""

    def __init__(
        self,
        address: str = "",
        time_provider: Callable[[], int] | None = None,
    ) -> None:
        if not address:
            addr_hash = hashlib.sha3_256(f"nft-staking-factory:{uuid.uuid4()}".encode()).digest()
            address = f"0x{addr_hash[-20:].hex()}"
        self.address = address.lower()
        self._time_provider = time_provider
        self.deployed_pools: dict[str, NFTStakingPool] = {}

    def predict_address(self, salt: str | bytes) -> str:
        """
        Compute the address a pool deployed with ``salt`` will have.

        Args:
            salt: Any string or bytes; it is hashed to 32 bytes

        Returns:
            0x-prefixed 20-byte address
        """
        salt_bytes = salt.encode() if isinstance(salt, str) else bytes(salt)
        salt32 = hashlib.sha3_256(salt_bytes).digest()
        digest = hashlib.sha3_256(b"\xff" + self.address.encode() + salt32 + POOL_CODE_HASH).digest()
        return f"0x{digest[-20:].hex()}"

    def create_pool(
        self,
        creator: str,
        salt: str | bytes,
        reward_token: ERC20Token,
        collection: ERC721Token,
        oracle: ContributionOracle,
        emission_rate: int | None = None,
    ) -> NFTStakingPool:
        """
        Deploy and initialize a pool at its deterministic address.

        Args:
            creator: Deployer; becomes the pool admin
            salt: Deployment salt; each salt can be used once
            reward_token: Token rewards are paid in
            collection: Collection whose assets can be staked
            oracle: Contribution score oracle
            emission_rate: Reward units per second (configured default if None)

        Returns:
            The initialized pool

        Raises:
            PoolAlreadyDeployedError: If the salt was already used
        """
        if not creator:
            raise VMExecutionError("PoolFactory: creator cannot be empty")

        address = self.predict_address(salt)
        if address in self.deployed_pools:
            raise PoolAlreadyDeployedError(
                f"PoolFactory: pool already deployed at {address}",
                details={"address": address},
            )

        rate = config.DEFAULT_EMISSION_RATE if emission_rate is None else emission_rate
        pool = NFTStakingPool(address=address, time_provider=self._time_provider)
        pool.initialize(creator, reward_token, collection, oracle, rate, admin=creator)

        self.deployed_pools[address] = pool

        logger.info(
            "Staking pool created",
            extra={
                "event": "factory.pool_created",
                "address": address,
                "reward_token": reward_token.symbol,
                "collection": collection.symbol,
                "emission_rate": rate,
                "creator": creator[:10],
            },
        )
        return pool

    def get_pool(self, address: str) -> NFTStakingPool | None:
        """Get a deployed pool by address."""
        return self.deployed_pools.get(address.lower())

    def list_pools(self) -> list[Dict]:
        """List all deployed pools."""
        return [
            {
                "address": address,
                "reward_token": pool.config.reward_token.address,
                "collection": pool.config.collection.address,
                "emission_rate": pool.config.emission_rate,
                "admin": pool.config.admin,
                "total_staked_weight": pool.accumulator.total_staked_weight,
            }
            for address, pool in self.deployed_pools.items()
        ]
