"""
Paginated holder fetcher.

Walks balance-descending holder listings page by page and stops as soon
as a run of sub-threshold holders proves no later page can qualify. NFT
collections without a holder listing are enumerated by token ID.
"""

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import structlog

from ..core.config import settings
from ..core.exceptions import ConfigurationError, NotFoundError
from .concurrency import gather_or_cancel, run_in_batches
from .providers.base import BalanceProvider, HolderListingProvider, TokenOwnerProvider
from .types import AssetKind, AssetSpec, HolderRecord


logger = structlog.get_logger(__name__)


class HolderFetcher:
    """Fetches qualifying holders of one token or NFT collection at a time."""

    def __init__(
        self,
        listing: Optional[HolderListingProvider] = None,
        owners: Optional[TokenOwnerProvider] = None,
        balances: Optional[BalanceProvider] = None,
        stop_after_below: int = 3,
        max_missing_tokens: int = 5,
        nft_batch_size: Optional[int] = None,
        balance_batch_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.listing = listing
        self.owners = owners
        self.balances = balances
        self.stop_after_below = stop_after_below
        self.max_missing_tokens = max_missing_tokens
        self.nft_batch_size = nft_batch_size or settings.nft_batch_size
        self.balance_batch_size = balance_batch_size or settings.balance_batch_size
        self.max_pages = max_pages or getattr(listing, "max_pages", None)
        self.page_delay = settings.batch_delay if page_delay is None else page_delay
        self._sleep = sleep
        self.logger = logger.bind(service="holder_fetcher")

    async def fetch_holders(self, asset: AssetSpec, min_balance: Decimal) -> List[HolderRecord]:
        """Holders of asset with balance >= min_balance, descending by balance."""
        if asset.kind == AssetKind.NFT:
            return await self.fetch_nft_holders(asset, min_balance)
        return await self.fetch_token_holders(asset, min_balance)

    async def fetch_token_holders(self, asset: AssetSpec, min_balance: Decimal) -> List[HolderRecord]:
        if self.listing is None:
            raise ConfigurationError("No holder listing provider configured", {"asset": asset.address})

        holders: List[HolderRecord] = []
        cursor: Optional[str] = None
        below_streak = 0
        pages = 0

        while True:
            page = await self.listing.fetch_page(asset, cursor)
            pages += 1

            tripped = False
            for holder in page.holders:
                if holder.balance >= min_balance:
                    holders.append(holder)
                    below_streak = 0
                    continue
                below_streak += 1
                if below_streak >= self.stop_after_below:
                    tripped = True
                    break

            if tripped:
                self.logger.debug(
                    "Consecutive holders below minimum, stopping pagination",
                    asset=asset.symbol or asset.address,
                    page=pages,
                    min_balance=str(min_balance)
                )
                break

            if not page.holders or not page.next_cursor:
                break
            if page.page_size and len(page.holders) < page.page_size:
                break
            if self.max_pages and pages >= self.max_pages:
                self.logger.warning("Page cap reached", asset=asset.address, max_pages=self.max_pages)
                break

            cursor = page.next_cursor
            if self.page_delay:
                await self._sleep(self.page_delay)

        holders.sort(key=lambda h: h.balance, reverse=True)

        self.logger.info(
            "Fetched token holders",
            asset=asset.symbol or asset.address,
            holders=len(holders),
            pages=pages,
            min_balance=str(min_balance)
        )
        return holders

    async def _owner_or_missing(self, collection: str, token_id: int):
        try:
            return token_id, await self.owners.owner_of(collection, token_id), True
        except NotFoundError:
            return token_id, None, False

    async def fetch_nft_holders(self, asset: AssetSpec, min_balance: Decimal) -> List[HolderRecord]:
        """
        Enumerate ownerOf from token ID 0 in concurrent batches.

        The missing-token streak is evaluated in token ID order, whatever
        order the lookups complete in.
        """
        if self.owners is None:
            raise ConfigurationError("No token owner provider configured", {"asset": asset.address})

        counts: Dict[str, int] = {}
        missing_streak = 0
        next_id = 0
        finished = False

        while not finished:
            batch_end = next_id + self.nft_batch_size
            if asset.collection_size is not None:
                batch_end = min(batch_end, asset.collection_size)
            if batch_end <= next_id:
                break

            results = await gather_or_cancel(
                self._owner_or_missing(asset.address, token_id)
                for token_id in range(next_id, batch_end)
            )

            for token_id, owner, exists in sorted(results, key=lambda r: r[0]):
                if not exists:
                    missing_streak += 1
                    if missing_streak >= self.max_missing_tokens:
                        self.logger.debug(
                            "Missing token streak, assuming end of collection",
                            asset=asset.address,
                            last_token_id=token_id
                        )
                        finished = True
                        break
                    continue
                missing_streak = 0
                if owner:
                    owner = owner.lower()
                    counts[owner] = counts.get(owner, 0) + 1

            next_id = batch_end
            if not finished and self.page_delay:
                await self._sleep(self.page_delay)

        holders = [
            HolderRecord(
                address=owner,
                balance=Decimal(count),
                raw_balance=str(count),
                token_or_nft_id=asset.address,
                symbol=asset.symbol,
            )
            for owner, count in counts.items()
            if Decimal(count) >= min_balance
        ]
        holders.sort(key=lambda h: h.balance, reverse=True)

        self.logger.info(
            "Enumerated NFT holders",
            asset=asset.symbol or asset.address,
            unique_owners=len(counts),
            holders=len(holders),
            scanned_up_to=next_id
        )
        return holders

    async def fetch_balances(self, asset: AssetSpec, addresses: Sequence[str]) -> List[HolderRecord]:
        """Per-wallet balance lookups, batched. Used to top up mapped sibling wallets."""
        if self.balances is None:
            raise ConfigurationError("No balance provider configured", {"asset": asset.address})

        unique = list(dict.fromkeys(a.lower() for a in addresses))
        return await run_in_batches(
            unique,
            lambda address: self.balances.fetch_balance(asset, address),
            self.balance_batch_size,
            delay=self.page_delay,
            sleep=self._sleep,
        )
