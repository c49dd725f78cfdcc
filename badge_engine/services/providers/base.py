"""
Provider interfaces consumed by the holder pipeline.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

import structlog

from ..types import AssetSpec, HolderPage, HolderRecord, SocialIdentity


logger = structlog.get_logger(__name__)


class HolderListingProvider(Protocol):
    """Balance-descending holder listing, one page per call."""

    page_size: int

    async def fetch_page(self, asset: AssetSpec, cursor: Optional[str]) -> HolderPage:
        ...


class BalanceProvider(Protocol):

    async def fetch_balance(self, asset: AssetSpec, address: str) -> HolderRecord:
        ...


class TokenOwnerProvider(Protocol):
    """ownerOf lookup. Raises NotFoundError for token IDs that do not exist."""

    async def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        ...


class SocialProfileProvider(Protocol):

    async def lookup(self, address: str) -> Optional[SocialIdentity]:
        ...


def format_token_balance(raw: str, decimals: int) -> Decimal:
    """
    Convert a raw integer balance string to a token amount.

    A malformed value falls back to float division; if that fails too the
    holder counts as zero. Neither case aborts the batch.
    """
    try:
        return Decimal(int(raw)) / (Decimal(10) ** decimals)
    except (TypeError, ValueError):
        pass

    try:
        value = float(raw) / (10 ** decimals)
        logger.warning("Malformed raw balance, used float division", raw=raw, decimals=decimals)
        return Decimal(str(value))
    except (TypeError, ValueError, OverflowError, InvalidOperation):
        logger.error("Unparseable raw balance, counted as zero", raw=raw, decimals=decimals)
        return Decimal(0)
