"""
Eligibility classifier for the Basic and Upgraded badge tiers.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from ..core.config import TierRequirements
from .combiner import combine
from .identity_resolver import IdentityResolver
from .types import CombinedHolderRecord, EligibilityResult, HolderRecord, ordered_unique


logger = structlog.get_logger(__name__)


def tier_minimums(tier: Optional[TierRequirements]) -> Dict[str, Decimal]:
    """asset address -> minimum for a tier; the stricter one wins on duplicates."""
    minimums: Dict[str, Decimal] = {}
    if tier is None:
        return minimums
    for requirement in [*tier.tokens, *tier.nfts]:
        current = minimums.get(requirement.address)
        if current is None or requirement.min_balance > current:
            minimums[requirement.address] = requirement.min_balance
    return minimums


def apply_tier_policy(
    basic_handles: Iterable[str],
    upgraded_handles: Iterable[str],
    permanent_accounts: Iterable[str] = (),
    exclude_basic_for_upgraded: bool = False,
    excluded_accounts: Iterable[str] = (),
) -> Tuple[Set[str], Set[str]]:
    """
    Apply exclusivity, permanent accounts and excluded accounts, in that order.

    Permanent accounts stay in Basic even when exclusivity would drop them.
    """
    basic = {h.lower() for h in basic_handles}
    upgraded = {h.lower() for h in upgraded_handles}
    permanent = {h.lower() for h in permanent_accounts}
    excluded = {h.lower() for h in excluded_accounts}

    if exclude_basic_for_upgraded:
        basic = {h for h in basic if h not in upgraded or h in permanent}

    basic |= permanent
    upgraded |= permanent

    basic -= excluded
    upgraded -= excluded

    return basic, upgraded


class EligibilityClassifier:
    """
    Builds the Basic/Upgraded sets for one run.

    Holds no state beyond the run's identity resolver.
    """

    def __init__(self, resolver: IdentityResolver, enable_combining: bool = False):
        self.resolver = resolver
        self.enable_combining = enable_combining
        self.logger = logger.bind(service="eligibility_classifier")

    def _combine_assets(
        self,
        holders: Mapping[str, Sequence[HolderRecord]],
        identities,
        basic_min: Dict[str, Decimal],
        upgraded_min: Dict[str, Decimal],
    ) -> Dict[str, List[CombinedHolderRecord]]:
        # Mapped wallets were looked up directly, so every one of them counts
        mapped = self.resolver.static_mapping.keys()
        combined: Dict[str, List[CombinedHolderRecord]] = {}
        for asset in set(basic_min) | set(upgraded_min):
            thresholds = [m for m in (basic_min.get(asset), upgraded_min.get(asset)) if m is not None]
            combined[asset] = combine(
                holders.get(asset, ()),
                identities,
                min(thresholds),
                self.enable_combining,
                basic_min=basic_min.get(asset),
                upgraded_min=upgraded_min.get(asset),
                exempt_addresses=mapped,
            )
        return combined

    @staticmethod
    def _tier_members(
        combined: Dict[str, List[CombinedHolderRecord]],
        assets: Iterable[str],
        upgraded: bool,
        within: Optional[Set[str]] = None,
    ) -> Tuple[Set[str], List[Tuple[str, str]]]:
        """Identity keys meeting every requirement of a tier, plus (key, address) rows."""
        assets = list(assets)
        if not assets:
            return set(), []

        per_requirement: List[List[CombinedHolderRecord]] = []
        for asset in assets:
            per_requirement.append([
                c for c in combined.get(asset, [])
                if (c.meets_upgraded if upgraded else c.meets_basic)
            ])

        keys = set.intersection(*({c.identity_key for c in records} for records in per_requirement))
        if within is not None:
            keys &= within

        rows = [
            (c.identity_key, address)
            for records in per_requirement
            for c in records if c.identity_key in keys
            for address in c.source_addresses
        ]
        return keys, rows

    def _tier_addresses(
        self,
        rows: Iterable[Tuple[str, str]],
        final_handles: Set[str],
        resolved_handles: Set[str],
        permanent_accounts: Iterable[str],
    ) -> List[str]:
        """
        Addresses matching a tier's final handle set.

        Rows of handles dropped by policy go; unresolved rows stay. Mapped
        wallets of permanent accounts are appended.
        """
        addresses = [
            address for key, address in rows
            if key not in resolved_handles or key in final_handles
        ]
        wallets = self.resolver.handle_to_addresses()
        for handle in permanent_accounts:
            handle = handle.lower()
            if handle in final_handles:
                addresses.extend(wallets.get(handle, []))
        return ordered_unique(addresses)

    async def classify(
        self,
        token_holders: Mapping[str, Sequence[HolderRecord]],
        nft_holders: Mapping[str, Sequence[HolderRecord]],
        basic: TierRequirements,
        upgraded: Optional[TierRequirements],
        permanent_accounts: Iterable[str],
        exclude_basic_for_upgraded: bool,
        *,
        excluded_accounts: Iterable[str] = (),
    ) -> EligibilityResult:
        """
        Classify fetched holders into badge tiers.

        Args:
            token_holders: token address -> holder records
            nft_holders: collection address -> holder records
            basic: Basic tier requirements
            upgraded: Upgraded tier requirements, or None
            permanent_accounts: Handles always granted both tiers
            exclude_basic_for_upgraded: Drop Upgraded handles from Basic
            excluded_accounts: Handles never granted any tier

        Raises:
            IdentityResolutionAborted: the social provider failed terminally
        """
        holders: Dict[str, Sequence[HolderRecord]] = {}
        for mapping in (token_holders, nft_holders):
            for asset, records in mapping.items():
                holders[asset.lower()] = records

        # One resolution pass over every fetched address
        addresses = ordered_unique(r.address for records in holders.values() for r in records)
        identities = await self.resolver.resolve_many(addresses)
        handles = {i.handle for i in identities.values() if i is not None and i.handle}

        basic_min = tier_minimums(basic)
        upgraded_min = tier_minimums(upgraded)
        combined = self._combine_assets(holders, identities, basic_min, upgraded_min)

        basic_keys, basic_rows = self._tier_members(combined, basic_min, upgraded=False)
        # Upgraded builds on Basic: an identity must hold both
        upgraded_keys, upgraded_rows = self._tier_members(
            combined, upgraded_min, upgraded=True, within=basic_keys
        )

        permanent_accounts = list(permanent_accounts)
        basic_handles, upgraded_handles = apply_tier_policy(
            (k for k in basic_keys if k in handles),
            (k for k in upgraded_keys if k in handles),
            permanent_accounts,
            exclude_basic_for_upgraded,
            excluded_accounts,
        )
        basic_addresses = self._tier_addresses(basic_rows, basic_handles, handles, permanent_accounts)
        upgraded_addresses = self._tier_addresses(upgraded_rows, upgraded_handles, handles, permanent_accounts)

        result = EligibilityResult(
            basic_handles=basic_handles,
            upgraded_handles=upgraded_handles,
            basic_addresses=basic_addresses,
            upgraded_addresses=upgraded_addresses,
            has_upgraded_tier=upgraded is not None and not upgraded.is_empty,
        )

        self.logger.info(
            "Classified holders",
            basic_handles=len(result.basic_handles),
            upgraded_handles=len(result.upgraded_handles),
            basic_addresses=len(result.basic_addresses),
            upgraded_addresses=len(result.upgraded_addresses),
            combining=self.enable_combining
        )
        return result
