"""
Result sender: delivers eligibility results to the badges API.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import structlog

from ..core.config import BadgeApiConfig, settings
from ..core.exceptions import ConfigurationError, RateLimitedError, UpstreamServerError
from .fetch_client import AiohttpTransport, FetchRequest, HttpTransport
from .types import EligibilityResult


logger = structlog.get_logger(__name__)


class SendStatus(Enum):
    SENT = "sent"
    NO_CHANGES = "no_changes"
    DRY_RUN = "dry_run"
    EXPORTED = "exported"


@dataclass
class SendOptions:
    dry_run: bool = False
    export_only: bool = False


class ResultSender:
    """
    POSTs {"handles": [...], "timestamp": ...} per tier to
    {base_url}/{endpoint}?key=<api key>.
    """

    def __init__(
        self,
        api: BadgeApiConfig,
        project_name: str,
        api_key: Optional[str] = None,
        transport: Optional[HttpTransport] = None,
        export_dir: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api = api
        self.project_name = project_name
        self.api_key = api_key if api_key is not None else settings.api_key
        self.transport = transport or AiohttpTransport()
        self.export_dir = Path(export_dir or settings.export_dir)
        self.timeout = timeout or settings.api_timeout
        self.logger = logger.bind(service="result_sender", project=project_name)

    def _tiers(self, result: EligibilityResult) -> List[tuple]:
        tiers = [("basic", self.api.basic_endpoint, result.basic_handles, result.basic_addresses)]
        if result.has_upgraded_tier:
            tiers.append(("upgraded", self.api.upgraded_endpoint, result.upgraded_handles, result.upgraded_addresses))
        return tiers

    async def send(self, result: EligibilityResult, options: Optional[SendOptions] = None) -> SendStatus:
        """
        Deliver one run's result.

        Raises:
            RateLimitedError: the API answered 429
            UpstreamServerError: any other error status
            ConfigurationError: no API key for a real send
        """
        options = options or SendOptions()
        timestamp = result.timestamp.isoformat()

        if options.export_only:
            self.export(result)
            return SendStatus.EXPORTED

        if options.dry_run:
            for tier, endpoint, handles, _ in self._tiers(result):
                self.logger.info(
                    "Dry run, not sending",
                    tier=tier,
                    endpoint=endpoint,
                    handles=len(handles),
                    timestamp=timestamp
                )
            return SendStatus.DRY_RUN

        if not self.api_key:
            raise ConfigurationError("API_KEY is required to send results")

        statuses = []
        for tier, endpoint, handles, _ in self._tiers(result):
            statuses.append(await self._post(tier, endpoint, sorted(handles), timestamp))

        if all(status == SendStatus.NO_CHANGES for status in statuses):
            return SendStatus.NO_CHANGES
        return SendStatus.SENT

    async def _post(self, tier: str, endpoint: str, handles: List[str], timestamp: str) -> SendStatus:
        request = FetchRequest(
            url=f"{self.api.base_url.rstrip('/')}/{endpoint}",
            method="POST",
            params={"key": self.api_key},
            json={"handles": handles, "timestamp": timestamp},
            headers={"Content-Type": "application/json"},
        )
        response = await self.transport.send(request, self.timeout)

        if response.status == 304:
            self.logger.info("No changes detected, update skipped", tier=tier)
            return SendStatus.NO_CHANGES
        if response.status == 429:
            raise RateLimitedError(f"Badges API rate limited the {tier} update", {"tier": tier})
        if response.status >= 400:
            raise UpstreamServerError(
                f"Badges API rejected the {tier} update with {response.status}",
                {"tier": tier, "status": response.status, "body": str(response.data)[:200]}
            )

        self.logger.info("Results sent", tier=tier, handles=len(handles), status=response.status)
        return SendStatus.SENT

    def export(self, result: EligibilityResult) -> List[Path]:
        """Write each tier's handles and addresses to JSON files."""
        self.export_dir.mkdir(parents=True, exist_ok=True)
        file_timestamp = result.timestamp.isoformat().replace(":", "-")

        written = []
        for tier, _, handles, addresses in self._tiers(result):
            path = self.export_dir / f"{self.project_name}_{tier}_{file_timestamp}.json"
            path.write_text(json.dumps({
                "project": self.project_name,
                "type": tier,
                "timestamp": result.timestamp.isoformat(),
                "handles": sorted(handles),
                "addresses": addresses,
                "count": len(handles),
            }, indent=2))
            written.append(path)

        self.logger.info("Exported results", files=[str(p) for p in written])
        return written

    async def close(self) -> None:
        await self.transport.close()
