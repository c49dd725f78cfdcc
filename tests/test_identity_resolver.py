"""
Tests for address -> identity resolution.
"""

import pytest

from badge_engine.core.exceptions import (
    FailureKind,
    IdentityResolutionAborted,
    RetriesExhaustedError,
)
from badge_engine.services.identity_resolver import IdentityResolver

from .conftest import FakeSocial


def resolver_for(provider=None, mapping=None, **kwargs):
    kwargs.setdefault("batch_delay", 0)
    return IdentityResolver(provider, mapping, **kwargs)


@pytest.mark.asyncio
async def test_static_mapping_wins_over_provider():
    social = FakeSocial({"0xabc": "from_provider"})
    resolver = resolver_for(social, {"0xABC": "Mapped_Handle"})

    identity = await resolver.resolve("0xAbC")

    assert identity.handle == "mapped_handle"
    assert social.calls == []


@pytest.mark.asyncio
async def test_provider_lookup_is_cached():
    social = FakeSocial({"0xabc": "Alice"})
    resolver = resolver_for(social)

    first = await resolver.resolve("0xabc")
    second = await resolver.resolve("0xABC")

    assert first.handle == second.handle == "alice"
    assert social.calls == ["0xabc"]


@pytest.mark.asyncio
async def test_missing_profile_is_cached_too():
    social = FakeSocial({})
    resolver = resolver_for(social)

    assert await resolver.resolve("0xdead") is None
    assert await resolver.resolve("0xdead") is None
    assert social.calls == ["0xdead"]


@pytest.mark.asyncio
async def test_provider_failure_aborts_resolution():
    cause = RetriesExhaustedError("arena", FailureKind.RATE_LIMITED, 3, "HTTP 429")
    resolver = resolver_for(FakeSocial({}, error=cause))

    with pytest.raises(IdentityResolutionAborted) as exc_info:
        await resolver.resolve("0xabc")

    assert exc_info.value.kind == FailureKind.IDENTITY_RESOLUTION_ABORTED
    assert exc_info.value.cause is cause


@pytest.mark.asyncio
async def test_resolve_many_deduplicates_and_keys_by_address():
    social = FakeSocial({"0xa": "alice", "0xb": "bob"})
    resolver = resolver_for(social, {"0xc": "carol"}, batch_size=2)

    resolved = await resolver.resolve_many(["0xA", "0xa", "0xb", "0xc", "0xd"])

    assert list(resolved) == ["0xa", "0xb", "0xc", "0xd"]
    assert resolved["0xa"].handle == "alice"
    assert resolved["0xc"].handle == "carol"
    assert resolved["0xd"] is None
    assert sorted(social.calls) == ["0xa", "0xb", "0xd"]


@pytest.mark.asyncio
async def test_resolve_many_paces_batches(sleep_recorder):
    resolver = IdentityResolver(FakeSocial({}), batch_size=2, batch_delay=0.5, sleep=sleep_recorder)

    await resolver.resolve_many(["0x1", "0x2", "0x3", "0x4", "0x5"])

    assert sleep_recorder.delays == [0.5, 0.5]


@pytest.mark.asyncio
async def test_resolve_many_aborts_whole_batch():
    cause = RetriesExhaustedError("arena", FailureKind.RATE_LIMITED, 3, "HTTP 429")
    resolver = resolver_for(FakeSocial({}, error=cause))

    with pytest.raises(IdentityResolutionAborted):
        await resolver.resolve_many(["0x1", "0x2"])


@pytest.mark.asyncio
async def test_without_provider_everything_unmapped_is_unresolved():
    resolver = resolver_for(None, {"0xa": "alice"})

    resolved = await resolver.resolve_many(["0xa", "0xb"])

    assert resolved["0xa"].handle == "alice"
    assert resolved["0xb"] is None


def test_handle_to_addresses():
    resolver = resolver_for(None, {"0xA": "Alice", "0xb": "alice", "0xc": "bob"})

    assert resolver.handle_to_addresses() == {"alice": ["0xa", "0xb"], "bob": ["0xc"]}
