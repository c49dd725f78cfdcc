"""
Tests for run outcomes and scheduling decisions.
"""

import asyncio

import pytest

from badge_engine.core.config import ProjectConfig
from badge_engine.core.exceptions import FailureKind, RateLimitedError, RetriesExhaustedError, UpstreamServerError
from badge_engine.scheduler.badge_scheduler import BadgeScheduler, SchedulerStatus
from badge_engine.services.pipeline import BadgePipeline, ProviderSet, RunOutcome, RunStatus, collect_assets, run_once
from badge_engine.services.result_sender import SendStatus

from .conftest import FakeBalances, FakeListing, FakeSender, FakeSocial, holder


class StopLoop(Exception):
    pass


def providers_for(pages, handles=None, error=None):
    return ProviderSet(
        listing=FakeListing(pages, page_size=10, error=error),
        social=FakeSocial(handles or {}),
    )


@pytest.mark.asyncio
async def test_successful_run_sends(project_config):
    sender = FakeSender(SendStatus.SENT)
    providers = providers_for([[holder("0xa", 150), holder("0xb", 80)]], {"0xa": "alice", "0xb": "bob"})

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.SUCCESS
    assert outcome.send_status == SendStatus.SENT
    assert outcome.result.basic_handles == {"alice", "bob"}
    assert outcome.result.upgraded_handles == {"alice"}
    assert len(sender.calls) == 1


@pytest.mark.asyncio
async def test_zero_basic_addresses_is_retry_failure(project_config):
    sender = FakeSender()
    providers = providers_for([[holder("0xa", 10), holder("0xb", 5), holder("0xc", 1)]])

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.RETRY_FAILURE
    assert sender.calls == []


@pytest.mark.asyncio
async def test_provider_failure_skips_send(project_config):
    sender = FakeSender()
    error = RetriesExhaustedError("moralis", FailureKind.RATE_LIMITED, 3, "HTTP 429")
    providers = providers_for([], error=error)

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.RETRY_FAILURE
    assert outcome.failure_kind == FailureKind.RATE_LIMITED
    assert sender.calls == []


@pytest.mark.asyncio
async def test_rate_limited_send_is_retry_failure(project_config):
    sender = FakeSender(error=RateLimitedError("badges api rate limited"))
    providers = providers_for([[holder("0xa", 150)]], {"0xa": "alice"})

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.RETRY_FAILURE
    assert outcome.failure_kind == FailureKind.RATE_LIMITED


@pytest.mark.asyncio
async def test_unexpected_error_is_error(project_config):
    sender = FakeSender(error=RuntimeError("boom"))
    providers = providers_for([[holder("0xa", 150)]], {"0xa": "alice"})

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.ERROR
    assert outcome.error == "boom"


def test_collect_assets_uses_lowest_threshold(project_config):
    assets = collect_assets(project_config)

    assert len(assets) == 1
    asset, threshold = assets[0]
    assert asset.address == "0xtoken"
    assert threshold == 60


def test_collect_assets_halves_threshold_when_summing(project_config):
    project_config.sum_of_balances = True

    (_, threshold), = collect_assets(project_config)

    assert threshold == 30


def test_next_delay_follows_outcome(project_config):
    scheduler = BadgeScheduler(project_config, providers=ProviderSet(), sender=FakeSender())

    assert scheduler.next_delay(RunOutcome(status=RunStatus.SUCCESS)) == 6 * 3600
    assert scheduler.next_delay(RunOutcome(status=RunStatus.RETRY_FAILURE)) == 2 * 3600
    assert scheduler.next_delay(RunOutcome(status=RunStatus.ERROR)) == 6 * 3600


@pytest.mark.asyncio
async def test_retry_failure_schedules_retry_interval(project_config):
    sender = FakeSender()
    delays = []
    scheduled = []

    async def sleep(delay):
        delays.append(delay)
        raise StopLoop()

    scheduler = BadgeScheduler(
        project_config,
        providers=providers_for([[holder("0xa", 1), holder("0xb", 1), holder("0xc", 1)]]),
        sender=sender,
        on_schedule=scheduled.append,
        sleep=sleep,
    )

    with pytest.raises(StopLoop):
        await scheduler._scheduler_loop()

    assert delays == [7200]
    assert len(scheduled) == 1
    assert sender.calls == []
    assert scheduler.stats.retry_failures == 1


@pytest.mark.asyncio
async def test_loop_runs_immediately_then_on_interval(project_config):
    outcomes = [RunOutcome(status=RunStatus.SUCCESS), RunOutcome(status=RunStatus.RETRY_FAILURE)]
    runs = []
    delays = []

    async def runner(*args):
        return outcomes[len(runs) - 1]

    async def sleep(delay):
        delays.append(delay)
        if len(delays) == 2:
            raise StopLoop()

    scheduler = BadgeScheduler(
        project_config,
        providers=ProviderSet(),
        sender=FakeSender(),
        on_run=lambda: runs.append(1),
        runner=runner,
        sleep=sleep,
    )

    with pytest.raises(StopLoop):
        await scheduler._scheduler_loop()

    assert len(runs) == 2
    assert delays == [6 * 3600, 2 * 3600]
    assert scheduler.stats.successful_runs == 1
    assert scheduler.stats.retry_failures == 1


@pytest.mark.asyncio
async def test_hook_errors_do_not_stop_runs(project_config):
    def broken_hook():
        raise ValueError("hook failed")

    async def runner(*args):
        return RunOutcome(status=RunStatus.SUCCESS)

    scheduler = BadgeScheduler(
        project_config, providers=ProviderSet(), sender=FakeSender(), on_run=broken_hook, runner=runner
    )

    outcome = await scheduler.run_now()

    assert outcome.is_success


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_run(project_config):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def runner(*args):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    scheduler = BadgeScheduler(project_config, providers=ProviderSet(), sender=FakeSender(), runner=runner)

    await scheduler.start()
    await asyncio.wait_for(started.wait(), timeout=1)
    assert scheduler.is_running

    await scheduler.stop()

    assert cancelled.is_set()
    assert scheduler.status == SchedulerStatus.STOPPED
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_trigger_refuses_while_running(project_config):
    release = asyncio.Event()

    async def runner(*args):
        await release.wait()
        return RunOutcome(status=RunStatus.SUCCESS)

    scheduler = BadgeScheduler(project_config, providers=ProviderSet(), sender=FakeSender(), runner=runner)

    assert scheduler.trigger()
    await asyncio.sleep(0)
    assert not scheduler.trigger()

    release.set()
    await scheduler._trigger_task

    assert scheduler.get_status()["total_runs"] == 1
    assert scheduler.get_status()["last_outcome"]["status"] == "success"


@pytest.mark.asyncio
async def test_failed_send_is_error_not_retry(project_config):
    sender = FakeSender(error=UpstreamServerError("Badges API rejected the basic update with 500"))
    providers = providers_for([[holder("0xa", 150)]], {"0xa": "alice"})

    outcome = await run_once(project_config, providers, sender)

    assert outcome.status == RunStatus.ERROR
    assert outcome.failure_kind == FailureKind.SERVER_ERROR
    assert outcome.result.basic_handles == {"alice"}


@pytest.mark.asyncio
async def test_mapped_sibling_wallets_are_topped_up_and_summed():
    config = ProjectConfig.model_validate({
        "projectName": "summed",
        "badges": {"basic": {"tokens": [{"address": "0xtoken", "symbol": "TKN", "minBalance": 100}]}},
        "sumOfBalances": True,
        "walletMapping": {"0xw1": "alice", "0xw2": "alice"},
    })
    listing = FakeListing([[holder("0xw1", 60), holder("0xx1", 40), holder("0xx2", 30), holder("0xx3", 20)]], page_size=10)
    balances = FakeBalances({"0xw2": 45})

    result = await BadgePipeline(config, ProviderSet(listing=listing, balances=balances)).run()

    assert balances.requested == ["0xw2"]
    assert result.basic_handles == {"alice"}
    assert result.basic_addresses == ["0xw1", "0xw2"]
