"""
Snowtrace (Etherscan-compatible) token holder listing.

Page-numbered rather than cursor-based: the cursor handed back to the
fetcher is simply the next page number.
"""

from typing import Optional

import structlog

from ...core.config import settings
from ...core.exceptions import FailureKind
from ..fetch_client import FetchClient, FetchRequest, FetchResponse, ProviderKeyPool
from ..types import AssetSpec, HolderPage, HolderRecord
from .base import format_token_balance


logger = structlog.get_logger(__name__)

MAX_PAGES = 5


def classify_snowtrace_body(response: FetchResponse) -> Optional[FailureKind]:
    """Etherscan-style APIs answer 200 with status "0" on failure."""
    data = response.data
    if not isinstance(data, dict) or str(data.get("status")) != "0":
        return None

    detail = f"{data.get('message', '')} {data.get('result', '')}".lower()
    if "rate limit" in detail:
        return FailureKind.RATE_LIMITED
    if "invalid api key" in detail:
        return FailureKind.AUTH_EXHAUSTED
    # "No data found" is an empty page, not a failure
    return None


class SnowtraceProvider:
    """Implements HolderListingProvider."""

    def __init__(
        self,
        client: FetchClient,
        base_url: Optional[str] = None,
        page_size: int = 100,
    ):
        self.client = client
        self.base_url = base_url or settings.snowtrace_base_url
        self.page_size = page_size
        self.max_pages = MAX_PAGES

    async def fetch_page(self, asset: AssetSpec, cursor: Optional[str]) -> HolderPage:
        page = int(cursor) if cursor else 1
        request = FetchRequest(
            url=self.base_url,
            params={
                "module": "token",
                "action": "tokenholderlist",
                "contractaddress": asset.address,
                "page": page,
                "offset": self.page_size,
            },
            auth_param="apikey" if self.client.key_pool else None,
            classify=classify_snowtrace_body,
        )
        response = await self.client.request(request)

        data = response.data if isinstance(response.data, dict) else {}
        results = data.get("result") if str(data.get("status")) == "1" else None
        if not isinstance(results, list):
            results = []

        holders = []
        for item in results:
            address = item.get("TokenHolderAddress") or item.get("address")
            raw = item.get("TokenHolderQuantity") or item.get("value")
            if not address or raw is None:
                continue
            holders.append(HolderRecord(
                address=address,
                balance=format_token_balance(str(raw), asset.decimals),
                raw_balance=str(raw),
                token_or_nft_id=asset.address,
                symbol=asset.symbol,
            ))

        next_cursor = str(page + 1) if len(results) >= self.page_size else None
        return HolderPage(holders=holders, next_cursor=next_cursor, page_size=self.page_size)


def create_snowtrace_provider(transport=None) -> SnowtraceProvider:
    key_pool = None
    if settings.snowtrace_api_key:
        key_pool = ProviderKeyPool("snowtrace", [settings.snowtrace_api_key])
    else:
        logger.warning("No SNOWTRACE_API_KEY configured, rate limits may be lower")

    return SnowtraceProvider(FetchClient("snowtrace", transport=transport, key_pool=key_pool))
