"""
nftstake - contribution-weighted NFT staking pools.

Depositors lock collectibles into a pool and accrue a fungible reward
token in proportion to each asset's oracle-assigned contribution score.
"""

__version__ = "0.1.0"
