"""
Badge pipeline: fetch -> resolve -> combine -> classify -> send.

run_once() wraps one pipeline run and reports a tagged RunOutcome; the
scheduler picks the next interval from it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from ..core.config import ProjectConfig, TierRequirements
from ..core.exceptions import FailureKind, ProviderError
from .eligibility import EligibilityClassifier
from .fetch_client import FetchClient
from .holder_fetcher import HolderFetcher
from .identity_resolver import IdentityResolver
from .providers import (
    create_alchemy_provider,
    create_arena_provider,
    create_moralis_provider,
    create_snowtrace_provider,
)
from .providers.base import (
    BalanceProvider,
    HolderListingProvider,
    SocialProfileProvider,
    TokenOwnerProvider,
)
from .result_sender import ResultSender, SendOptions, SendStatus
from .types import AssetKind, AssetSpec, EligibilityResult, HolderRecord


logger = structlog.get_logger(__name__)


@dataclass
class ProviderSet:
    """
    Upstream providers for a pipeline.

    Lives as long as the process so key pools keep their rotation state
    between runs.
    """
    listing: Optional[HolderListingProvider] = None
    owners: Optional[TokenOwnerProvider] = None
    balances: Optional[BalanceProvider] = None
    social: Optional[SocialProfileProvider] = None
    clients: List[FetchClient] = field(default_factory=list)

    @classmethod
    def from_settings(cls, transport=None) -> "ProviderSet":
        moralis = create_moralis_provider(transport)
        alchemy = create_alchemy_provider(transport)
        arena = create_arena_provider(transport)
        listing = moralis or create_snowtrace_provider(transport)

        providers = [p for p in (listing, alchemy, arena) if p is not None]
        return cls(
            listing=listing,
            owners=alchemy,
            balances=moralis or alchemy,
            social=arena,
            clients=[p.client for p in providers],
        )

    def stats(self) -> List[Dict[str, Any]]:
        return [client.get_stats() for client in self.clients]

    async def close(self) -> None:
        for client in self.clients:
            await client.close()


class RunStatus(Enum):
    SUCCESS = "success"
    RETRY_FAILURE = "retry_failure"
    ERROR = "error"


@dataclass(frozen=True)
class RunOutcome:
    status: RunStatus
    result: Optional[EligibilityResult] = None
    send_status: Optional[SendStatus] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "send_status": self.send_status.value if self.send_status else None,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
            "basic_handles": len(self.result.basic_handles) if self.result else 0,
            "upgraded_handles": len(self.result.upgraded_handles) if self.result else 0,
        }


def collect_assets(config: ProjectConfig) -> List[tuple]:
    """
    Every asset either tier needs, with the threshold to fetch it at.

    The threshold is the lowest minimum across tiers, halved when balances
    are summed across wallets.
    """
    tiers: List[TierRequirements] = [config.badges.basic]
    if config.badges.upgraded is not None:
        tiers.append(config.badges.upgraded)

    assets: Dict[str, AssetSpec] = {}
    thresholds: Dict[str, Decimal] = {}

    for tier in tiers:
        for token in tier.tokens:
            assets.setdefault(token.address, AssetSpec(
                address=token.address,
                kind=AssetKind.TOKEN,
                symbol=token.symbol,
                decimals=token.decimals,
            ))
            current = thresholds.get(token.address)
            thresholds[token.address] = token.min_balance if current is None else min(current, token.min_balance)
        for nft in tier.nfts:
            assets.setdefault(nft.address, AssetSpec(
                address=nft.address,
                kind=AssetKind.NFT,
                symbol=nft.name,
                collection_size=nft.collection_size,
            ))
            current = thresholds.get(nft.address)
            thresholds[nft.address] = nft.min_balance if current is None else min(current, nft.min_balance)

    if config.sum_of_balances:
        thresholds = {address: value / 2 for address, value in thresholds.items()}

    return [(assets[address], thresholds[address]) for address in assets]


class BadgePipeline:
    """One run's worth of fetching and classification."""

    def __init__(self, config: ProjectConfig, providers: ProviderSet, fetcher: Optional[HolderFetcher] = None):
        self.config = config
        self.providers = providers
        self.fetcher = fetcher or HolderFetcher(
            listing=providers.listing,
            owners=providers.owners,
            balances=providers.balances,
        )
        self.logger = logger.bind(service="badge_pipeline", project=config.project_name)

    async def _top_up_mapped_wallets(
        self,
        asset: AssetSpec,
        holders: List[HolderRecord],
        resolver: IdentityResolver,
    ) -> List[HolderRecord]:
        """Fetch balances of statically mapped sibling wallets missing from a listing."""
        present = {h.address for h in holders}
        missing: List[str] = []
        for wallets in resolver.handle_to_addresses().values():
            if len(wallets) > 1 and present.intersection(wallets):
                missing.extend(w for w in wallets if w not in present)

        if not missing:
            return holders

        extra = [r for r in await self.fetcher.fetch_balances(asset, missing) if r.balance > 0]
        self.logger.debug("Topped up mapped wallets", asset=asset.address, looked_up=len(missing), found=len(extra))
        return holders + extra

    async def run(self) -> EligibilityResult:
        config = self.config
        resolver = IdentityResolver(self.providers.social, config.wallet_mapping)

        token_holders: Dict[str, List[HolderRecord]] = {}
        nft_holders: Dict[str, List[HolderRecord]] = {}

        for asset, threshold in collect_assets(config):
            holders = await self.fetcher.fetch_holders(asset, threshold)
            if asset.kind == AssetKind.NFT:
                nft_holders[asset.address] = holders
                continue
            if config.sum_of_balances and self.providers.balances is not None and config.wallet_mapping:
                holders = await self._top_up_mapped_wallets(asset, holders, resolver)
            token_holders[asset.address] = holders

        classifier = EligibilityClassifier(resolver, enable_combining=config.sum_of_balances)
        return await classifier.classify(
            token_holders,
            nft_holders,
            config.badges.basic,
            config.badges.upgraded,
            config.permanent_accounts,
            config.exclude_basic_for_upgraded,
            excluded_accounts=config.excluded_accounts,
        )


async def run_once(
    config: ProjectConfig,
    providers: Optional[ProviderSet] = None,
    sender: Optional[ResultSender] = None,
    options: Optional[SendOptions] = None,
) -> RunOutcome:
    """
    Run the pipeline once and send the result.

    Zero Basic addresses, any ProviderError while fetching or resolving,
    and a rate-limited send all yield RETRY_FAILURE without sending. Other
    send failures and anything else unexpected yield ERROR. Providers and sender created here are closed before returning.
    """
    run_logger = logger.bind(service="badge_pipeline", project=config.project_name)
    owns_providers = providers is None
    owns_sender = sender is None
    providers = providers or ProviderSet.from_settings()
    sender = sender or ResultSender(config.api, config.project_name)

    try:
        result = await BadgePipeline(config, providers).run()

        if not result.basic_addresses:
            run_logger.warning("No basic badge holders found, skipping send")
            return RunOutcome(
                status=RunStatus.RETRY_FAILURE,
                result=result,
                error="No basic badge holders found",
            )

        try:
            send_status = await sender.send(result, options)
        except ProviderError as e:
            # Rate limits fall through to the RETRY_FAILURE handler below
            if e.kind == FailureKind.RATE_LIMITED:
                raise
            run_logger.error("Send failed", kind=e.kind.value, error=e.message)
            return RunOutcome(status=RunStatus.ERROR, result=result, failure_kind=e.kind, error=e.message)

        run_logger.info(
            "Run completed",
            send_status=send_status.value,
            basic_handles=len(result.basic_handles),
            upgraded_handles=len(result.upgraded_handles)
        )
        return RunOutcome(status=RunStatus.SUCCESS, result=result, send_status=send_status)

    except ProviderError as e:
        run_logger.error("Run failed with provider error", kind=e.kind.value, error=e.message)
        return RunOutcome(status=RunStatus.RETRY_FAILURE, failure_kind=e.kind, error=e.message)
    except Exception as e:
        run_logger.exception("Run failed with unexpected error", error=str(e))
        return RunOutcome(status=RunStatus.ERROR, error=str(e))
    finally:
        if owns_providers:
            await providers.close()
        if owns_sender:
            await sender.close()
