"""
Badge scheduler.

This service provides:
- An immediate run on start, then runs on a timer
- The normal interval after a success, the shorter retry interval after a
  retry failure (the send is skipped for that run)
- Manual triggers and status reporting for the status API
"""

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..core.config import ProjectConfig
from ..services.pipeline import ProviderSet, RunOutcome, RunStatus, run_once
from ..services.result_sender import ResultSender, SendOptions


logger = structlog.get_logger(__name__)


class SchedulerStatus(Enum):
    STOPPED = "stopped"
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class SchedulerStats:
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    retry_failures: int = 0
    errors: int = 0
    last_outcome: Optional[RunOutcome] = None
    uptime_start: Optional[datetime] = None


async def _notify(hook: Optional[Callable], *args) -> None:
    if hook is None:
        return
    try:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning("Scheduler hook failed", hook=getattr(hook, "__name__", repr(hook)), error=str(e))


class BadgeScheduler:
    """
    Drives run_once() for one project.

    Providers (and so their key pools) are created once and reused by every
    run; resolver and classifier state is rebuilt per run.
    """

    def __init__(
        self,
        config: ProjectConfig,
        providers: Optional[ProviderSet] = None,
        sender: Optional[ResultSender] = None,
        options: Optional[SendOptions] = None,
        on_schedule: Optional[Callable[[datetime], Any]] = None,
        on_run: Optional[Callable[[], Any]] = None,
        runner: Callable[..., Awaitable[RunOutcome]] = run_once,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.logger = logger.bind(service="badge_scheduler", project=config.project_name)

        self._owns_providers = providers is None
        self._owns_sender = sender is None
        self.providers = providers or ProviderSet.from_settings()
        self.sender = sender or ResultSender(config.api, config.project_name)
        self.options = options or SendOptions()

        self.on_schedule = on_schedule
        self.on_run = on_run
        self._runner = runner
        self._sleep = sleep

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=datetime.now(timezone.utc))
        self._run_lock = asyncio.Lock()
        self._scheduler_task: Optional[asyncio.Task] = None
        self._trigger_task: Optional[asyncio.Task] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def next_delay(self, outcome: RunOutcome) -> float:
        """Seconds until the next run, chosen by the outcome's tag."""
        if outcome.status == RunStatus.RETRY_FAILURE:
            return self.config.retry_interval_seconds
        return self.config.interval_seconds

    async def run_now(self) -> RunOutcome:
        """Run the pipeline once; concurrent callers wait for the run in progress."""
        async with self._run_lock:
            self.status = SchedulerStatus.RUNNING
            self.stats.total_runs += 1
            await _notify(self.on_run)

            self.logger.info("Starting badge run", run=self.stats.total_runs)
            try:
                outcome = await self._runner(self.config, self.providers, self.sender, self.options)
            finally:
                self.stats.last_run = datetime.now(timezone.utc)
                if self.status == SchedulerStatus.RUNNING:
                    self.status = SchedulerStatus.IDLE

            self.stats.last_outcome = outcome
            if outcome.status == RunStatus.SUCCESS:
                self.stats.successful_runs += 1
            elif outcome.status == RunStatus.RETRY_FAILURE:
                self.stats.retry_failures += 1
            else:
                self.stats.errors += 1

            self.logger.info(
                "Badge run finished",
                status=outcome.status.value,
                send_status=outcome.send_status.value if outcome.send_status else None,
                error=outcome.error
            )
            return outcome

    async def _scheduler_loop(self):
        self.logger.info("Scheduler loop started")
        while True:
            outcome = await self.run_now()

            delay = self.next_delay(outcome)
            self.stats.next_run = datetime.now(timezone.utc) + timedelta(seconds=delay)
            self.logger.info(
                "Next run scheduled",
                next_run=self.stats.next_run.isoformat(),
                retry=outcome.status == RunStatus.RETRY_FAILURE
            )
            await _notify(self.on_schedule, self.stats.next_run)

            await self._sleep(delay)

    async def start(self):
        """Run immediately, then keep running on the configured intervals."""
        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self.logger.info(
            "Starting badge scheduler",
            interval_hours=self.config.scheduler.interval_hours,
            retry_interval_hours=self.config.scheduler.retry_interval_hours
        )
        self.status = SchedulerStatus.IDLE
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

    async def stop(self):
        """Stop the loop, cancelling any in-flight run."""
        for task in (self._scheduler_task, self._trigger_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._owns_providers:
            await self.providers.close()
        if self._owns_sender:
            await self.sender.close()

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Badge scheduler stopped")

    def trigger(self) -> bool:
        """Start an out-of-schedule run in the background. False if one is already running."""
        if self.is_running or (self._trigger_task and not self._trigger_task.done()):
            return False
        self._trigger_task = asyncio.create_task(self.run_now())
        return True

    def get_status(self) -> Dict[str, Any]:
        last = self.stats.last_outcome
        return {
            "project": self.config.project_name,
            "status": self.status.value,
            "is_running": self.is_running,
            "last_run": self.stats.last_run.isoformat() if self.stats.last_run else None,
            "next_run": self.stats.next_run.isoformat() if self.stats.next_run else None,
            "total_runs": self.stats.total_runs,
            "successful_runs": self.stats.successful_runs,
            "retry_failures": self.stats.retry_failures,
            "errors": self.stats.errors,
            "last_outcome": last.to_dict() if last else None,
            "providers": self.providers.stats(),
        }


async def start_scheduler(
    config: ProjectConfig,
    on_schedule: Optional[Callable[[datetime], Any]] = None,
    on_run: Optional[Callable[[], Any]] = None,
    **kwargs,
) -> BadgeScheduler:
    """Create and start a scheduler for a project."""
    scheduler = BadgeScheduler(config, on_schedule=on_schedule, on_run=on_run, **kwargs)
    await scheduler.start()
    return scheduler
