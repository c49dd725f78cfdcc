"""
Types shared by the holder pipeline.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple


class AssetKind(Enum):
    TOKEN = "token"
    NFT = "nft"


@dataclass(frozen=True)
class HolderRecord:
    """One address holding one token or NFT collection."""
    address: str
    balance: Decimal
    raw_balance: str
    token_or_nft_id: str
    symbol: str = ""

    def __post_init__(self):
        object.__setattr__(self, "address", self.address.lower())
        object.__setattr__(self, "token_or_nft_id", self.token_or_nft_id.lower())


@dataclass(frozen=True)
class SocialIdentity:
    """Social profile an address resolved to."""
    handle: Optional[str]
    profile_image_url: Optional[str] = None

    def __post_init__(self):
        if self.handle:
            object.__setattr__(self, "handle", self.handle.strip().lower())


@dataclass(frozen=True)
class CombinedHolderRecord:
    """Balances of one identity summed across its wallets."""
    identity_key: str
    total_balance: Decimal
    source_addresses: Tuple[str, ...]
    meets_basic: bool
    meets_upgraded: bool
    token_or_nft_id: str = ""
    symbol: str = ""


@dataclass(frozen=True)
class AssetSpec:
    """What to fetch for one requirement."""
    address: str
    kind: AssetKind
    symbol: str = ""
    decimals: int = 0
    collection_size: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "address", self.address.lower())


@dataclass
class HolderPage:
    """One page returned by a holder listing provider."""
    holders: List[HolderRecord]
    next_cursor: Optional[str] = None
    page_size: int = 0


@dataclass
class EligibilityResult:
    """Outcome of classifying holders into badge tiers."""
    basic_handles: Set[str] = field(default_factory=set)
    upgraded_handles: Set[str] = field(default_factory=set)
    basic_addresses: List[str] = field(default_factory=list)
    upgraded_addresses: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    has_upgraded_tier: bool = False

    def to_dict(self) -> Dict:
        return {
            "basic": {
                "handles": sorted(self.basic_handles),
                "addresses": list(self.basic_addresses),
            },
            "upgraded": {
                "handles": sorted(self.upgraded_handles),
                "addresses": list(self.upgraded_addresses),
            },
            "hasUpgradedTier": self.has_upgraded_tier,
            "timestamp": self.timestamp.isoformat(),
        }


def ordered_unique(items) -> List[str]:
    """De-duplicate while keeping first-seen order."""
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
