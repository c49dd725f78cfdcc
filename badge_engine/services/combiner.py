"""
Cross-wallet combiner.

Groups holder records of one asset by social identity and sums balances,
so an identity whose wallets individually fall short can still qualify.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from .types import CombinedHolderRecord, HolderRecord, SocialIdentity


logger = structlog.get_logger(__name__)


def identity_key_for(address: str, identities: Mapping[str, Optional[SocialIdentity]]) -> str:
    """Resolved handle, or the address itself when unresolved."""
    address = address.lower()
    identity = identities.get(address)
    if identity is not None and identity.handle:
        return identity.handle
    return address


def prefilter_threshold(min_balance: Decimal) -> Decimal:
    """Wallets below half the minimum are dropped before summing. Exact, no rounding."""
    return Decimal(min_balance) / 2


def _meets(total: Decimal, threshold: Optional[Decimal]) -> bool:
    return threshold is not None and total >= threshold


def combine(
    records: Iterable[HolderRecord],
    identities: Mapping[str, Optional[SocialIdentity]],
    min_balance: Decimal,
    enable_combining: bool,
    *,
    basic_min: Optional[Decimal] = None,
    upgraded_min: Optional[Decimal] = None,
    exempt_addresses: Iterable[str] = (),
) -> List[CombinedHolderRecord]:
    """
    Combine one asset's holder records into qualifying identities.

    Args:
        records: Holder records of a single token or NFT collection
        identities: address -> resolved identity (None when unresolved)
        min_balance: Threshold a record (or summed identity) must meet to be kept
        enable_combining: Sum balances across an identity's wallets
        basic_min: Basic tier threshold for meets_basic (defaults to min_balance)
        upgraded_min: Upgraded tier threshold; None means meets_upgraded is False
        exempt_addresses: Wallets summed whatever their balance (statically mapped
            wallets, whose balances were looked up directly)

    Returns:
        Qualifying records, total descending, ties in first-appearance order
    """
    min_balance = Decimal(min_balance)
    basic_threshold = min_balance if basic_min is None else Decimal(basic_min)
    upgraded_threshold = None if upgraded_min is None else Decimal(upgraded_min)

    combined: List[CombinedHolderRecord] = []

    if not enable_combining:
        for record in records:
            if record.balance < min_balance:
                continue
            combined.append(CombinedHolderRecord(
                identity_key=identity_key_for(record.address, identities),
                total_balance=record.balance,
                source_addresses=(record.address,),
                meets_basic=_meets(record.balance, basic_threshold),
                meets_upgraded=_meets(record.balance, upgraded_threshold),
                token_or_nft_id=record.token_or_nft_id,
                symbol=record.symbol,
            ))
    else:
        floor = prefilter_threshold(min_balance)
        exempt = {a.lower() for a in exempt_addresses}
        groups: Dict[str, List[HolderRecord]] = {}
        for record in records:
            if record.balance < floor and record.address not in exempt:
                continue
            groups.setdefault(identity_key_for(record.address, identities), []).append(record)

        for key, members in groups.items():
            total = sum((m.balance for m in members), Decimal(0))
            if total < min_balance:
                continue
            first = members[0]
            addresses = tuple(dict.fromkeys(m.address for m in members))
            if len(addresses) > 1:
                logger.debug("Combined wallets", identity=key, wallets=len(addresses), total=str(total))
            combined.append(CombinedHolderRecord(
                identity_key=key,
                total_balance=total,
                source_addresses=addresses,
                meets_basic=_meets(total, basic_threshold),
                meets_upgraded=_meets(total, upgraded_threshold),
                token_or_nft_id=first.token_or_nft_id,
                symbol=first.symbol,
            ))

    # sort() is stable, so equal totals keep first-appearance order
    combined.sort(key=lambda c: c.total_balance, reverse=True)
    return combined
