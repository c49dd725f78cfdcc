"""
Upstream data providers normalised to HolderRecord / SocialIdentity.
"""

from .base import (
    BalanceProvider,
    HolderListingProvider,
    SocialProfileProvider,
    TokenOwnerProvider,
    format_token_balance,
)
from .alchemy import AlchemyProvider, create_alchemy_provider
from .arena import ArenaProfileProvider, create_arena_provider
from .moralis import MoralisProvider, create_moralis_provider
from .snowtrace import SnowtraceProvider, create_snowtrace_provider

__all__ = [
    "BalanceProvider",
    "HolderListingProvider",
    "SocialProfileProvider",
    "TokenOwnerProvider",
    "format_token_balance",
    "AlchemyProvider",
    "ArenaProfileProvider",
    "MoralisProvider",
    "SnowtraceProvider",
    "create_alchemy_provider",
    "create_arena_provider",
    "create_moralis_provider",
    "create_snowtrace_provider",
]
