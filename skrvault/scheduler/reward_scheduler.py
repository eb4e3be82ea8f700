"""
Reward distribution scheduler.

Runs unattended reward distribution for every creator on a cron schedule
(UTC, ``reward_distribution_cron``). Each creator is paid independently: a
failure for one is logged and counted and never undoes or blocks the others.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from apscheduler.triggers.cron import CronTrigger

from skrvault.core.config import settings as default_settings
from skrvault.core.database import SessionFactory, get_async_session
from skrvault.core.exceptions import SkrVaultException
from skrvault.models.account import AccountRole
from skrvault.repositories import AccountRepository


logger = structlog.get_logger(__name__)


class SchedulerStatus(Enum):
    """Status of the reward scheduler."""
    STOPPED = "stopped"
    WAITING = "waiting"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass
class DistributionStats:
    """Result of one distribution run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    triggered_by: str = "scheduler"
    creators: int = 0
    paid: int = 0
    skipped: int = 0
    failed: int = 0
    total_paid: Decimal = Decimal("0")
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["total_paid"] = str(self.total_paid)
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass
class SchedulerStats:
    """Statistics for scheduler operations."""
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_distribution: Optional[DistributionStats] = None
    uptime_start: Optional[datetime] = None


class RewardScheduler:
    """Cron-driven loop around RewardEngine.distribute."""

    def __init__(
        self,
        engine,
        session_factory: SessionFactory = get_async_session,
        settings=None,
        cron: Optional[str] = None,
        max_workers: Optional[int] = None
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.enabled = self.settings.scheduler_enabled
        self.cron = cron or self.settings.reward_distribution_cron
        self.max_workers = max(1, max_workers or self.settings.scheduler_max_workers)
        self.trigger = CronTrigger.from_crontab(self.cron, timezone="UTC")

        self.status = SchedulerStatus.STOPPED
        self.stats = SchedulerStats(uptime_start=datetime.now(timezone.utc))
        self._should_stop = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()

        self.logger = logger.bind(service="reward_scheduler")
        self.logger.info(
            "Reward scheduler initialized",
            enabled=self.enabled,
            cron=self.cron,
            max_workers=self.max_workers
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def next_fire_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        now = now or datetime.now(timezone.utc)
        return self.trigger.get_next_fire_time(None, now)

    async def start(self) -> None:
        """Start the background loop."""
        if not self.enabled:
            self.logger.info("Reward scheduler is disabled")
            return

        if self.status != SchedulerStatus.STOPPED:
            self.logger.warning("Scheduler already running", current_status=self.status.value)
            return

        self._should_stop = False
        self.status = SchedulerStatus.WAITING
        self.stats.next_run = self.next_fire_time()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

        self.logger.info(
            "Reward scheduler started",
            next_run=self.stats.next_run.isoformat() if self.stats.next_run else None
        )

    async def stop(self) -> None:
        """Stop the background loop."""
        if self.status == SchedulerStatus.STOPPED:
            return

        self.logger.info("Stopping reward scheduler")
        self._should_stop = True

        if self._scheduler_task and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass

        self.status = SchedulerStatus.STOPPED
        self.logger.info("Reward scheduler stopped")

    async def _scheduler_loop(self) -> None:
        self.logger.info("Scheduler loop started")

        while not self._should_stop:
            next_run = self.next_fire_time()
            self.stats.next_run = next_run
            if next_run is None:
                self.logger.warning("Cron expression has no future fire time", cron=self.cron)
                break

            delay = (next_run - datetime.now(timezone.utc)).total_seconds()
            try:
                if delay > 0:
                    await asyncio.sleep(delay)
                await self.run_once()
            except asyncio.CancelledError:
                self.logger.info("Scheduler loop cancelled")
                raise
            except Exception as e:
                self.logger.error("Error in scheduler loop", error=str(e))
                self.status = SchedulerStatus.ERROR
                await asyncio.sleep(60)
                self.status = SchedulerStatus.WAITING

        self.logger.info("Scheduler loop stopped")

    async def _creator_ids(self) -> List[str]:
        async with self.session_factory() as session:
            creators = await AccountRepository(session).list_by_role(AccountRole.CREATOR.value)
        return [account.id for account in creators]

    async def run_once(self, triggered_by: str = "scheduler") -> DistributionStats:
        """
        Distribute rewards to every creator once.

        Runs never overlap within a process; across processes the ledger's
        (account, period) constraint keeps payments single.
        """
        async with self._run_lock:
            previous_status = self.status
            self.status = SchedulerStatus.PROCESSING
            self.stats.total_runs += 1
            stats = DistributionStats(
                started_at=datetime.now(timezone.utc),
                triggered_by=triggered_by
            )

            try:
                account_ids = await self._creator_ids()
            except Exception:
                self.stats.failed_runs += 1
                self.status = SchedulerStatus.ERROR
                self.logger.exception("Failed to list creators for distribution")
                raise

            stats.creators = len(account_ids)
            self.logger.info(
                "Reward distribution started",
                creators=stats.creators,
                triggered_by=triggered_by
            )

            semaphore = asyncio.Semaphore(self.max_workers)
            await asyncio.gather(*(
                self._distribute_one(account_id, stats, semaphore)
                for account_id in account_ids
            ))

            stats.finished_at = datetime.now(timezone.utc)
            self.stats.last_run = stats.finished_at
            self.stats.last_distribution = stats
            self.stats.successful_runs += 1
            self.status = (
                SchedulerStatus.STOPPED
                if previous_status == SchedulerStatus.STOPPED
                else SchedulerStatus.WAITING
            )

            self.logger.info(
                "Reward distribution finished",
                creators=stats.creators,
                paid=stats.paid,
                skipped=stats.skipped,
                failed=stats.failed,
                total_paid=str(stats.total_paid),
                duration=f"{stats.duration_seconds:.2f}s"
            )
            if stats.failed:
                self.logger.warning(
                    "Some creators failed distribution",
                    failed_count=stats.failed,
                    failed_accounts=list(stats.failures)[:10]
                )
            return stats

    async def _distribute_one(
        self,
        account_id: str,
        stats: DistributionStats,
        semaphore: asyncio.Semaphore
    ) -> None:
        async with semaphore:
            try:
                result = await self.engine.distribute(account_id)
            except SkrVaultException as e:
                stats.failed += 1
                stats.failures[account_id] = e.code
                self.logger.error(
                    "Distribution failed for creator",
                    account_id=account_id,
                    code=e.code,
                    error=e.message
                )
                return
            except Exception as e:
                stats.failed += 1
                stats.failures[account_id] = "INTERNAL_ERROR"
                self.logger.exception(
                    "Unexpected distribution error for creator",
                    account_id=account_id,
                    error=str(e)
                )
                return

        if result is None:
            stats.skipped += 1
        else:
            stats.paid += 1
            stats.total_paid += result.amount_paid

    async def trigger_manual_run(self) -> DistributionStats:
        self.logger.info("Manual distribution triggered")
        return await self.run_once(triggered_by="manual")

    def get_status(self) -> Dict[str, Any]:
        last = self.stats.last_distribution
        return {
            "enabled": self.enabled,
            "status": self.status.value,
            "cron": self.cron,
            "next_run": self.stats.next_run.isoformat() if self.stats.next_run else None,
            "last_run": self.stats.last_run.isoformat() if self.stats.last_run else None,
            "total_runs": self.stats.total_runs,
            "successful_runs": self.stats.successful_runs,
            "failed_runs": self.stats.failed_runs,
            "last_distribution": last.to_dict() if last else None,
        }
