"""
Identity resolver: wallet address -> social identity.

Static mapping first, then the social-profile provider. Results, including
"no profile", are cached for the lifetime of the resolver, which is one run.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import structlog

from ..core.config import settings
from ..core.exceptions import IdentityResolutionAborted, ProviderError
from .concurrency import run_in_batches
from .providers.base import SocialProfileProvider
from .types import SocialIdentity


logger = structlog.get_logger(__name__)


class IdentityResolver:

    def __init__(
        self,
        provider: Optional[SocialProfileProvider] = None,
        static_mapping: Optional[Mapping[str, str]] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.static_mapping = {
            address.lower(): handle.lower()
            for address, handle in (static_mapping or {}).items()
        }
        self.batch_size = batch_size or settings.social_batch_size
        self.batch_delay = settings.batch_delay if batch_delay is None else batch_delay
        self._sleep = sleep
        self._cache: Dict[str, Optional[SocialIdentity]] = {}
        self.lookups = 0
        self.logger = logger.bind(service="identity_resolver")

    async def resolve(self, address: str) -> Optional[SocialIdentity]:
        """
        Raises:
            IdentityResolutionAborted: the provider failed terminally
        """
        key = address.lower()

        if key in self.static_mapping:
            return SocialIdentity(handle=self.static_mapping[key])

        if key in self._cache:
            return self._cache[key]

        if self.provider is None:
            self._cache[key] = None
            return None

        self.lookups += 1
        try:
            identity = await self.provider.lookup(key)
        except IdentityResolutionAborted:
            raise
        except ProviderError as e:
            self.logger.error(
                "Social profile provider failed, aborting resolution",
                address=key,
                kind=e.kind.value,
                error=e.message
            )
            raise IdentityResolutionAborted(key, e) from e

        self._cache[key] = identity
        return identity

    async def resolve_many(self, addresses: Iterable[str]) -> Dict[str, Optional[SocialIdentity]]:
        """Resolve unique addresses in paced concurrent batches."""
        unique: List[str] = list(dict.fromkeys(a.lower() for a in addresses))

        identities = await run_in_batches(
            unique,
            self.resolve,
            self.batch_size,
            delay=self.batch_delay,
            sleep=self._sleep,
        )
        resolved = dict(zip(unique, identities))

        self.logger.info(
            "Resolved identities",
            addresses=len(unique),
            with_handle=sum(1 for i in identities if i and i.handle),
            provider_lookups=self.lookups
        )
        return resolved

    def handle_to_addresses(self) -> Dict[str, List[str]]:
        """Reverse of the static mapping: handle -> every wallet mapped to it."""
        reverse: Dict[str, List[str]] = {}
        for address, handle in self.static_mapping.items():
            reverse.setdefault(handle, []).append(address)
        return reverse
