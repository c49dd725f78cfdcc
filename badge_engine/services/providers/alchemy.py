"""
JSON-RPC adapter (Alchemy-style endpoint).

Used for NFT enumeration through ERC-721 ownerOf and for per-wallet
ERC-20 balances through alchemy_getTokenBalances.
"""

import itertools
from typing import Any, List, Optional

import structlog

from ...core.config import settings
from ...core.exceptions import FailureKind, UpstreamServerError
from ..fetch_client import FetchClient, FetchRequest, FetchResponse
from ..types import AssetSpec, HolderRecord
from .base import format_token_balance


logger = structlog.get_logger(__name__)

OWNER_OF_SELECTOR = "0x6352211e"
ZERO_ADDRESS = "0x" + "0" * 40

# Revert reasons ERC-721 contracts use for token IDs that were never minted
MISSING_TOKEN_MARKERS = (
    "invalid token id",
    "nonexistent token",
    "does not exist",
    "owner query for nonexistent",
)


def classify_rpc_body(response: FetchResponse) -> Optional[FailureKind]:
    data = response.data
    if not isinstance(data, dict) or "error" not in data:
        return None

    error = data["error"] or {}
    message = str(error.get("message", "")).lower()
    if any(marker in message for marker in MISSING_TOKEN_MARKERS):
        return FailureKind.NOT_FOUND
    if error.get("code") == 429 or "rate limit" in message or "exceeded" in message:
        return FailureKind.RATE_LIMITED
    return FailureKind.SERVER_ERROR


def encode_owner_of(token_id: int) -> str:
    return OWNER_OF_SELECTOR + format(token_id, "064x")


def decode_address(word: str) -> Optional[str]:
    """Last 20 bytes of a 32-byte ABI word, or None for the zero address."""
    if not word or word == "0x":
        return None
    address = "0x" + word[-40:].lower()
    if address == ZERO_ADDRESS:
        return None
    return address


class AlchemyProvider:
    """Implements TokenOwnerProvider and BalanceProvider."""

    def __init__(self, client: FetchClient, rpc_url: str):
        self.client = client
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: List[Any]) -> Any:
        request = FetchRequest(
            url=self.rpc_url,
            method="POST",
            json={"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params},
            headers={"Content-Type": "application/json"},
            classify=classify_rpc_body,
        )
        response = await self.client.request(request)
        if not isinstance(response.data, dict) or "result" not in response.data:
            raise UpstreamServerError(
                f"Malformed JSON-RPC response for {method}",
                {"body": str(response.data)[:200]}
            )
        return response.data["result"]

    async def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        result = await self._call(
            "eth_call",
            [{"to": collection.lower(), "data": encode_owner_of(token_id)}, "latest"],
        )
        return decode_address(result)

    async def fetch_balance(self, asset: AssetSpec, address: str) -> HolderRecord:
        result = await self._call("alchemy_getTokenBalances", [address.lower(), [asset.address]])

        raw = "0"
        for entry in (result or {}).get("tokenBalances", []):
            if str(entry.get("contractAddress", "")).lower() != asset.address:
                continue
            if entry.get("error"):
                logger.warning("Token balance lookup error", address=address, error=entry["error"])
                break
            hex_balance = entry.get("tokenBalance") or "0x0"
            try:
                raw = str(int(hex_balance, 16))
            except ValueError:
                raw = str(hex_balance)
            break

        return HolderRecord(
            address=address,
            balance=format_token_balance(raw, asset.decimals),
            raw_balance=raw,
            token_or_nft_id=asset.address,
            symbol=asset.symbol,
        )


def create_alchemy_provider(transport=None) -> Optional[AlchemyProvider]:
    if not settings.alchemy_api_key:
        logger.warning("No ALCHEMY_API_KEY configured")
        return None

    rpc_url = f"{settings.alchemy_rpc_url.rstrip('/')}/{settings.alchemy_api_key}"
    return AlchemyProvider(FetchClient("alchemy", transport=transport), rpc_url)
