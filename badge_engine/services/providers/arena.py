"""
Arena social-profile provider: wallet address -> twitter handle.
"""

from typing import Optional

import structlog

from ...core.config import settings
from ...core.exceptions import NotFoundError
from ..fetch_client import FetchClient, FetchRequest
from ..types import SocialIdentity


logger = structlog.get_logger(__name__)


class ArenaProfileProvider:
    """Implements SocialProfileProvider."""

    def __init__(self, client: FetchClient, profile_url: Optional[str] = None):
        self.client = client
        self.profile_url = profile_url or settings.arena_profile_url

    async def lookup(self, address: str) -> Optional[SocialIdentity]:
        """
        Return the profile linked to an address, or None if there is none.

        Terminal errors other than 404 propagate; the identity resolver turns
        them into an aborted resolution.
        """
        request = FetchRequest(
            url=self.profile_url,
            params={"user_address": f"eq.{address.lower()}"},
        )
        try:
            response = await self.client.request(request)
        except NotFoundError:
            return None

        rows = response.data if isinstance(response.data, list) else []
        if not rows:
            return None

        profile = rows[0] or {}
        handle = profile.get("twitter_handle")
        if not handle:
            return None

        return SocialIdentity(handle=handle, profile_image_url=profile.get("twitter_pfp_url"))


def create_arena_provider(transport=None) -> ArenaProfileProvider:
    return ArenaProfileProvider(FetchClient("arena", transport=transport))
