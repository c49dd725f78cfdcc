"""
Tests for paginated holder fetching and NFT enumeration.
"""

from decimal import Decimal

import pytest

from badge_engine.core.exceptions import RetriesExhaustedError, FailureKind
from badge_engine.services.holder_fetcher import HolderFetcher
from badge_engine.services.providers.base import format_token_balance
from badge_engine.services.types import AssetKind, AssetSpec

from .conftest import FakeBalances, FakeListing, FakeOwners, holder


TOKEN = AssetSpec(address="0xToken", kind=AssetKind.TOKEN, symbol="TKN", decimals=18)
NFT = AssetSpec(address="0xNft", kind=AssetKind.NFT, symbol="PUNK")


def fetcher_for(listing=None, owners=None, balances=None, **kwargs):
    kwargs.setdefault("page_delay", 0)
    return HolderFetcher(listing=listing, owners=owners, balances=balances, **kwargs)


@pytest.mark.asyncio
async def test_stops_after_three_consecutive_below_minimum():
    balances = [100, 100, 100, 50, 40, 30, 20, 10, 5, 1]
    page = [holder(f"0x{i:040x}", b) for i, b in enumerate(balances)]
    listing = FakeListing([page, [holder("0xlate", 500)]], page_size=10)

    holders = await fetcher_for(listing).fetch_holders(TOKEN, Decimal(60))

    assert [h.balance for h in holders] == [100, 100, 100]
    assert listing.fetched == [None]


@pytest.mark.asyncio
async def test_below_streak_carries_across_pages():
    pages = [
        [holder("0xa", 100), holder("0xb", 90), holder("0xc", 50), holder("0xd", 40)],
        [holder("0xe", 30), holder("0xf", 20), holder("0x1", 10), holder("0x2", 5)],
        [holder("0x3", 1)],
    ]
    listing = FakeListing(pages, page_size=4)

    holders = await fetcher_for(listing).fetch_holders(TOKEN, Decimal(60))

    assert [h.address for h in holders] == ["0xa", "0xb"]
    assert listing.fetched == [None, "1"]


@pytest.mark.asyncio
async def test_qualifying_holder_resets_streak():
    page = [
        holder("0xa", 100), holder("0xb", 50), holder("0xc", 40),
        holder("0xd", 90), holder("0xe", 30), holder("0xf", 20), holder("0x1", 10),
    ]
    listing = FakeListing([page], page_size=10)

    holders = await fetcher_for(listing).fetch_holders(TOKEN, Decimal(60))

    assert [h.address for h in holders] == ["0xa", "0xd"]


@pytest.mark.asyncio
async def test_short_page_ends_pagination():
    pages = [[holder("0xa", 100), holder("0xb", 90)], [holder("0xc", 80)]]
    listing = FakeListing(pages, page_size=5)

    holders = await fetcher_for(listing).fetch_holders(TOKEN, Decimal(60))

    assert len(holders) == 2
    assert listing.fetched == [None]


@pytest.mark.asyncio
async def test_empty_cursor_ends_pagination():
    pages = [[holder("0xa", 100), holder("0xb", 90)]]
    listing = FakeListing(pages, page_size=2)

    await fetcher_for(listing).fetch_holders(TOKEN, Decimal(60))

    assert listing.fetched == [None]


@pytest.mark.asyncio
async def test_page_cap():
    pages = [[holder(f"0x{p}{i}", 100) for i in range(2)] for p in range(5)]
    listing = FakeListing(pages, page_size=2)

    holders = await fetcher_for(listing, max_pages=2).fetch_holders(TOKEN, Decimal(60))

    assert len(holders) == 4
    assert listing.fetched == [None, "1"]


@pytest.mark.asyncio
async def test_pages_are_paced(sleep_recorder):
    pages = [[holder("0xa", 100), holder("0xb", 90)], [holder("0xc", 80)]]
    listing = FakeListing(pages, page_size=2)

    await HolderFetcher(listing=listing, page_delay=0.5, sleep=sleep_recorder).fetch_holders(TOKEN, Decimal(60))

    assert sleep_recorder.delays == [0.5]


@pytest.mark.asyncio
async def test_terminal_error_propagates():
    listing = FakeListing([], page_size=5, error=RetriesExhaustedError("moralis", FailureKind.RATE_LIMITED, 3, "HTTP 429"))

    with pytest.raises(RetriesExhaustedError):
        await fetcher_for(listing).fetch_holders(TOKEN, Decimal(1))


@pytest.mark.asyncio
async def test_nft_enumeration_counts_owners():
    owners = FakeOwners({0: "0xAAA", 1: "0xbbb", 2: "0xaaa", 3: None, 4: "0xaaa"})

    holders = await fetcher_for(owners=owners, nft_batch_size=2).fetch_holders(NFT, Decimal(1))

    assert [(h.address, h.balance) for h in holders] == [("0xaaa", 3), ("0xbbb", 1)]
    assert all(h.token_or_nft_id == "0xnft" for h in holders)
    # five missing IDs after token 4 end the collection
    assert max(owners.requested) == 9


@pytest.mark.asyncio
async def test_missing_streak_counts_in_token_id_order():
    # IDs 2-5 missing, 6 exists: the streak of four never reaches five
    owners = FakeOwners({0: "0xa", 1: "0xa", 6: "0xb"})

    holders = await fetcher_for(owners=owners, nft_batch_size=25).fetch_holders(NFT, Decimal(1))

    assert {h.address for h in holders} == {"0xa", "0xb"}


@pytest.mark.asyncio
async def test_collection_size_caps_enumeration():
    owners = FakeOwners({i: "0xa" for i in range(10)})
    asset = AssetSpec(address="0xnft", kind=AssetKind.NFT, collection_size=3)

    holders = await fetcher_for(owners=owners, nft_batch_size=2).fetch_holders(asset, Decimal(1))

    assert sorted(owners.requested) == [0, 1, 2]
    assert holders[0].balance == 3


@pytest.mark.asyncio
async def test_nft_minimum_filters_small_holders():
    owners = FakeOwners({0: "0xa", 1: "0xa", 2: "0xb"})

    holders = await fetcher_for(owners=owners).fetch_holders(NFT, Decimal(2))

    assert [h.address for h in holders] == ["0xa"]


@pytest.mark.asyncio
async def test_fetch_balances_deduplicates():
    balances = FakeBalances({"0xa": 5, "0xb": 7})

    records = await fetcher_for(balances=balances).fetch_balances(TOKEN, ["0xA", "0xa", "0xb"])

    assert balances.requested == ["0xa", "0xb"]
    assert [r.balance for r in records] == [5, 7]


def test_format_token_balance():
    assert format_token_balance("1500000000000000000", 18) == Decimal("1.5")
    assert format_token_balance("1.5e18", 18) == Decimal("1.5")
    assert format_token_balance("not-a-number", 18) == Decimal(0)
