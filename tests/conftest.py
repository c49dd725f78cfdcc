"""
Shared fakes for the badge engine tests. Nothing here touches the network.
"""

import asyncio
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Union

import pytest

from badge_engine.core.config import ProjectConfig
from badge_engine.core.exceptions import NotFoundError
from badge_engine.services.fetch_client import FetchRequest, FetchResponse
from badge_engine.services.result_sender import SendStatus
from badge_engine.services.types import AssetSpec, HolderPage, HolderRecord, SocialIdentity


Scripted = Union[FetchResponse, Exception]


class FakeTransport:
    """
    Replays scripted responses.

    `script` is either a list consumed in order or a callable taking the
    prepared request and returning a response (or an exception to raise).
    """

    def __init__(self, script: Union[List[Scripted], Callable[[FetchRequest], Scripted]]):
        self.script = script
        self.requests: List[FetchRequest] = []
        self.closed = False

    async def send(self, request: FetchRequest, timeout: float) -> FetchResponse:
        self.requests.append(request)
        await asyncio.sleep(0)
        if callable(self.script):
            outcome = self.script(request)
        else:
            outcome = self.script.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def holder(address: str, balance, asset: str = "0xtoken", symbol: str = "TKN") -> HolderRecord:
    return HolderRecord(
        address=address,
        balance=Decimal(str(balance)),
        raw_balance=str(balance),
        token_or_nft_id=asset,
        symbol=symbol,
    )


class FakeListing:
    """Cursor listing over pre-built pages; the cursor is the page index."""

    def __init__(self, pages: List[List[HolderRecord]], page_size: int, error: Optional[Exception] = None):
        self.pages = pages
        self.page_size = page_size
        self.error = error
        self.fetched: List[Optional[str]] = []

    async def fetch_page(self, asset: AssetSpec, cursor: Optional[str]) -> HolderPage:
        self.fetched.append(cursor)
        if self.error is not None:
            raise self.error
        index = int(cursor) if cursor else 0
        records = self.pages[index] if index < len(self.pages) else []
        next_cursor = str(index + 1) if index + 1 < len(self.pages) else None
        return HolderPage(holders=list(records), next_cursor=next_cursor, page_size=self.page_size)


class FakeOwners:
    """ownerOf over a dict; token IDs not in the dict do not exist."""

    def __init__(self, owners: Dict[int, Optional[str]]):
        self.owners = owners
        self.requested: List[int] = []

    async def owner_of(self, collection: str, token_id: int) -> Optional[str]:
        self.requested.append(token_id)
        await asyncio.sleep(0)
        if token_id not in self.owners:
            raise NotFoundError(f"token {token_id} does not exist")
        return self.owners[token_id]


class FakeBalances:
    def __init__(self, balances: Dict[str, Decimal]):
        self.balances = {a.lower(): Decimal(str(b)) for a, b in balances.items()}
        self.requested: List[str] = []

    async def fetch_balance(self, asset: AssetSpec, address: str) -> HolderRecord:
        self.requested.append(address)
        value = self.balances.get(address.lower(), Decimal(0))
        return HolderRecord(address, value, str(value), asset.address, asset.symbol)


class FakeSocial:
    def __init__(self, handles: Dict[str, str], error: Optional[Exception] = None):
        self.handles = {a.lower(): h for a, h in handles.items()}
        self.error = error
        self.calls: List[str] = []

    async def lookup(self, address: str) -> Optional[SocialIdentity]:
        self.calls.append(address)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        handle = self.handles.get(address.lower())
        return SocialIdentity(handle=handle) if handle else None


class FakeSender:
    def __init__(self, status: SendStatus = SendStatus.SENT, error: Optional[Exception] = None):
        self.status = status
        self.error = error
        self.calls = []

    async def send(self, result, options=None) -> SendStatus:
        self.calls.append((result, options))
        if self.error is not None:
            raise self.error
        return self.status

    async def close(self) -> None:
        pass


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def project_config() -> ProjectConfig:
    return ProjectConfig.model_validate({
        "projectName": "testproject",
        "badges": {
            "basic": {"tokens": [{"address": "0xTOKEN", "symbol": "TKN", "decimals": 18, "minBalance": 60}]},
            "upgraded": {"tokens": [{"address": "0xTOKEN", "symbol": "TKN", "decimals": 18, "minBalance": 100}]},
        },
        "scheduler": {"intervalHours": 6, "retryIntervalHours": 2},
        "api": {"baseUrl": "https://badges.example/api", "basic": "basic-badge", "upgraded": "upgraded-badge"},
    })
