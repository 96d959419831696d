"""
nftstake Contract Standards.

This module provides the token contracts a staking pool works with:
- ERC20: Fungible reward token
- ERC721: Non-fungible collection with safe-transfer receiver hooks
"""

from .erc20 import ERC20Token, TokenEvent
from .erc721 import ERC721_RECEIVED, ERC721Receiver, ERC721Token, NFTEvent

__all__ = [
    "ERC20Token",
    "TokenEvent",
    "ERC721Token",
    "ERC721Receiver",
    "ERC721_RECEIVED",
    "NFTEvent",
]
