"""
Moralis-style ERC-20 holder listing and wallet balance lookups.

Holder listing is cursor-paginated and ordered by balance descending.
Every call goes through one FetchClient whose key pool rotates on 401.
"""

from typing import Optional

import structlog

from ...core.config import settings
from ..fetch_client import FetchClient, FetchRequest, ProviderKeyPool
from ..types import AssetSpec, HolderPage, HolderRecord
from .base import format_token_balance


logger = structlog.get_logger(__name__)


class MoralisProvider:
    """Implements HolderListingProvider and BalanceProvider."""

    def __init__(
        self,
        client: FetchClient,
        base_url: Optional[str] = None,
        chain: Optional[str] = None,
        page_size: Optional[int] = None,
    ):
        self.client = client
        self.base_url = (base_url or settings.moralis_base_url).rstrip("/")
        self.chain = chain or settings.moralis_chain
        self.page_size = page_size or settings.holder_page_size
        self.logger = logger.bind(service="moralis_provider")

    def _request(self, path: str, params: dict) -> FetchRequest:
        return FetchRequest(
            url=f"{self.base_url}{path}",
            params={"chain": self.chain, **params},
            headers={"Accept": "application/json"},
            auth_header="X-API-Key",
        )

    async def fetch_page(self, asset: AssetSpec, cursor: Optional[str]) -> HolderPage:
        params = {"limit": self.page_size, "order": "DESC"}
        if cursor:
            params["cursor"] = cursor

        response = await self.client.request(self._request(f"/erc20/{asset.address}/owners", params))
        data = response.data if isinstance(response.data, dict) else {}

        results = data.get("result") or []
        if isinstance(results, dict):
            results = [results]

        holders = []
        for item in results:
            owner = item.get("owner_address")
            raw = item.get("balance")
            if not owner or raw is None:
                continue
            holders.append(HolderRecord(
                address=owner,
                balance=format_token_balance(str(raw), asset.decimals),
                raw_balance=str(raw),
                token_or_nft_id=asset.address,
                symbol=asset.symbol,
            ))

        return HolderPage(
            holders=holders,
            next_cursor=data.get("cursor") or None,
            page_size=self.page_size,
        )

    async def fetch_balance(self, asset: AssetSpec, address: str) -> HolderRecord:
        response = await self.client.request(self._request(f"/{address.lower()}/erc20", {}))

        raw = "0"
        if isinstance(response.data, list):
            for entry in response.data:
                if str(entry.get("token_address", "")).lower() == asset.address:
                    raw = str(entry.get("balance", "0"))
                    break

        return HolderRecord(
            address=address,
            balance=format_token_balance(raw, asset.decimals),
            raw_balance=raw,
            token_or_nft_id=asset.address,
            symbol=asset.symbol,
        )


def create_moralis_provider(transport=None) -> Optional[MoralisProvider]:
    """Build a provider from MORALIS_API_KEYS, or None when no key is configured."""
    keys = settings.moralis_key_list
    if not keys:
        logger.warning("No Moralis API keys configured")
        return None

    client = FetchClient(
        "moralis",
        transport=transport,
        key_pool=ProviderKeyPool("moralis", keys),
    )
    return MoralisProvider(client)
