"""
Reward engine - turns engagement counters into paid reward-token balance,
at most once per account per settlement period.

Accrual is incremental: the gross value of an account's likes and comments
minus everything the ledger already holds for that account. A payment runs
as short units of work under the account lock:

1. reserve a ``pending`` ledger row for (account, period)
2. sign the mint and store its signature on the row before broadcast
3. send and confirm on chain (no database transaction held)
4. mark the row ``minted``
5. flip to ``settled`` and credit the balance in one transaction

A definite chain rejection deletes the reservation; an uncertain outcome
keeps it as ``uncertain`` so the period cannot be paid again until
``reconcile`` resolves it from the stored signature.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import structlog

from skrvault.core.config import settings as default_settings
from skrvault.core.database import SessionFactory, get_async_session
from skrvault.core.exceptions import (
    AlreadyClaimedError,
    ChainError,
    ForbiddenError,
    NoWalletError,
    NothingToClaimError,
)
from skrvault.models.reward import LedgerStatus, RewardLedgerEntry, RewardTrigger
from skrvault.repositories import (
    AccountRepository,
    EngagementTotals,
    PostRepository,
    RewardLedgerRepository,
)
from skrvault.services.account_locks import AccountLocks
from skrvault.utils.validation import from_base_units, to_base_units


logger = structlog.get_logger(__name__)


@dataclass
class ClaimResult:
    """Outcome of one settled reward payment."""
    account_id: str
    period: str
    amount_paid: Decimal
    amount_units: int
    tx_signature: str
    new_balance: Decimal


@dataclass
class RewardSummary:
    account_id: str
    skr_balance: Decimal
    pending_rewards: Decimal
    total_paid: Decimal
    total_posts: int
    total_likes: int
    total_comments: int
    per_like: Decimal
    per_comment: Decimal
    current_period: str
    claimed_this_period: bool


@dataclass
class ReconcileReport:
    settled: List[int] = field(default_factory=list)
    released: List[int] = field(default_factory=list)
    unresolved: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "settled": self.settled,
            "released": self.released,
            "unresolved": self.unresolved,
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def period_key(moment: datetime, period_seconds: int) -> str:
    """Start of the settlement period containing ``moment``, as ISO UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    epoch = int(moment.timestamp())
    start = epoch - (epoch % period_seconds)
    return datetime.fromtimestamp(start, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RewardEngine:
    """Computes, pays and reconciles creator rewards."""

    def __init__(
        self,
        gateway,
        locks: Optional[AccountLocks] = None,
        session_factory: SessionFactory = get_async_session,
        settings=None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.gateway = gateway
        self.locks = locks or AccountLocks()
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.clock = clock
        self.logger = logger.bind(service="reward_engine")

    @property
    def decimals(self) -> int:
        return self.settings.reward_token_decimals

    @property
    def period_seconds(self) -> int:
        return self.settings.reward_period_hours * 3600

    def current_period(self, as_of: Optional[datetime] = None) -> str:
        return period_key(as_of or self.clock(), self.period_seconds)

    def gross_units(self, totals: EngagementTotals) -> int:
        gross = (
            Decimal(totals.likes) * Decimal(self.settings.reward_per_like)
            + Decimal(totals.comments) * Decimal(self.settings.reward_per_comment)
        )
        return to_base_units(gross, self.decimals)

    async def _accrued_units(self, session, account_id: str) -> int:
        totals = await PostRepository(session).engagement_for_author(account_id)
        committed = await RewardLedgerRepository(session).total_committed(account_id)
        return max(self.gross_units(totals) - committed, 0)

    async def compute_accrued(self, account_id: str, as_of: Optional[datetime] = None) -> Decimal:
        """
        Reward owed to an account from its current counters.

        ``as_of`` is only used for logging context; counters are always read
        as they are now.
        """
        async with self.session_factory() as session:
            await AccountRepository(session).get_or_raise(account_id)
            units = await self._accrued_units(session, account_id)

        amount = from_base_units(units, self.decimals)
        self.logger.debug(
            "Accrued rewards computed",
            account_id=account_id,
            as_of=(as_of or self.clock()).isoformat(),
            amount=str(amount)
        )
        return amount

    async def claim(self, account_id: str) -> ClaimResult:
        """
        Pay an account's accrued rewards for the current period.

        Raises:
            ForbiddenError: Role is not creator or admin
            NoWalletError: Account has no wallet address
            AlreadyClaimedError: Period already has a ledger row
            NothingToClaimError: Nothing accrued
            NotConfiguredError: Reward token not configured
            ChainError: Mint failed or its outcome is unknown
        """
        return await self._pay(account_id, RewardTrigger.CLAIM)

    async def distribute(self, account_id: str) -> Optional[ClaimResult]:
        """Scheduler-initiated payment; returns None when there is nothing to pay."""
        try:
            return await self._pay(account_id, RewardTrigger.SCHEDULER)
        except (AlreadyClaimedError, NothingToClaimError, NoWalletError) as e:
            self.logger.debug("Nothing to distribute", account_id=account_id, reason=e.code)
            return None

    async def _pay(self, account_id: str, trigger: RewardTrigger) -> ClaimResult:
        async with self.locks.for_account(account_id):
            period = self.current_period()
            entry_id, units, destination = await self._reserve(account_id, period, trigger)

            log = self.logger.bind(
                account_id=account_id,
                period=period,
                entry_id=entry_id,
                trigger=trigger.value
            )
            amount = from_base_units(units, self.decimals)
            signed: List[str] = []

            async def record_signature(signature: str) -> None:
                async with self.session_factory() as session:
                    await RewardLedgerRepository(session).record_signature(entry_id, signature)
                signed.append(signature)

            try:
                signature = await self.gateway.reward_mint(
                    destination, amount, on_signed=record_signature
                )
            except ChainError as e:
                if e.broadcast_uncertain:
                    await self._mark_uncertain(entry_id, e.message, e.signature)
                    log.error(
                        "Reward mint outcome unknown, held for reconciliation",
                        signature=e.signature,
                        error=e.message
                    )
                else:
                    await self._release(entry_id)
                    log.warning("Reward mint rejected, reservation released", error=e.message)
                raise
            except Exception as e:
                if not signed:
                    await self._release(entry_id)
                    raise
                # A signed transaction may have been sent
                await self._mark_uncertain(entry_id, str(e) or type(e).__name__, signed[0])
                log.error(
                    "Reward mint interrupted after signing, held for reconciliation",
                    signature=signed[0],
                    error=str(e) or type(e).__name__
                )
                raise

            async with self.session_factory() as session:
                await RewardLedgerRepository(session).mark_minted(entry_id, signature)

            new_units = await self._credit(entry_id, account_id, units)

            log.info("Rewards paid", amount=str(amount), signature=signature)
            return ClaimResult(
                account_id=account_id,
                period=period,
                amount_paid=amount,
                amount_units=units,
                tx_signature=signature,
                new_balance=from_base_units(new_units, self.decimals)
            )

    async def _reserve(self, account_id: str, period: str, trigger: RewardTrigger):
        async with self.session_factory() as session:
            account = await AccountRepository(session).get_or_raise(account_id)
            if not account.can_claim_rewards:
                raise ForbiddenError(
                    "Only creators can claim rewards",
                    {"account_id": account_id, "role": account.role}
                )
            if not account.wallet_address:
                raise NoWalletError(account_id)

            ledger = RewardLedgerRepository(session)
            if await ledger.find(account_id, period) is not None:
                raise AlreadyClaimedError(account_id, period)

            units = await self._accrued_units(session, account_id)
            if units <= 0:
                raise NothingToClaimError(account_id)

            entry = await ledger.insert(RewardLedgerEntry(
                account_id=account_id,
                period=period,
                amount_units=units,
                status=LedgerStatus.PENDING.value,
                trigger=trigger.value,
                destination_address=account.wallet_address
            ))
            return entry.id, units, account.wallet_address

    async def _credit(self, entry_id: int, account_id: str, units: int) -> int:
        """Settle a minted entry and credit the balance atomically."""
        async with self.session_factory() as session:
            accounts = AccountRepository(session)
            if not await RewardLedgerRepository(session).settle(entry_id):
                account = await accounts.get_or_raise(account_id)
                return account.skr_balance_units
            return await accounts.increment_balance(account_id, "skr_balance_units", units)

    async def _release(self, entry_id: int) -> None:
        async with self.session_factory() as session:
            await RewardLedgerRepository(session).release(entry_id)

    async def _mark_uncertain(self, entry_id: int, error: str, signature: Optional[str]) -> None:
        async with self.session_factory() as session:
            await RewardLedgerRepository(session).mark_uncertain(entry_id, error, signature)

    async def get_summary(self, account_id: str) -> RewardSummary:
        period = self.current_period()
        async with self.session_factory() as session:
            account = await AccountRepository(session).get_or_raise(account_id)
            ledger = RewardLedgerRepository(session)
            totals = await PostRepository(session).engagement_for_author(account_id)
            committed = await ledger.total_committed(account_id)
            settled = await ledger.total_settled(account_id)
            claimed = await ledger.find(account_id, period) is not None

        return RewardSummary(
            account_id=account_id,
            skr_balance=from_base_units(account.skr_balance_units, self.decimals),
            pending_rewards=from_base_units(
                max(self.gross_units(totals) - committed, 0), self.decimals
            ),
            total_paid=from_base_units(settled, self.decimals),
            total_posts=totals.posts,
            total_likes=totals.likes,
            total_comments=totals.comments,
            per_like=Decimal(self.settings.reward_per_like),
            per_comment=Decimal(self.settings.reward_per_comment),
            current_period=period,
            claimed_this_period=claimed
        )

    async def reconcile(self) -> ReconcileReport:
        """
        Resolve ledger rows left between mint and credit.

        ``minted`` rows are credited. ``uncertain`` rows, and ``pending`` rows
        whose signature was recorded before broadcast, are checked on chain:
        confirmed ones are credited, failed ones released. Anything else stays
        for manual review.
        """
        report = ReconcileReport()
        async with self.session_factory() as session:
            entries = await RewardLedgerRepository(session).list_by_status([
                LedgerStatus.MINTED.value,
                LedgerStatus.UNCERTAIN.value,
                LedgerStatus.PENDING.value,
            ])

        for entry_id, account_id in [(entry.id, entry.account_id) for entry in entries]:
            try:
                async with self.locks.for_account(account_id):
                    # Reload under the lock; a claim may have finished meanwhile
                    async with self.session_factory() as session:
                        entry = await RewardLedgerRepository(session).get(entry_id)
                    if entry is None or entry.status == LedgerStatus.SETTLED.value:
                        continue
                    await self._reconcile_entry(entry, report)
            except ChainError as e:
                self.logger.error(
                    "Reconciliation lookup failed",
                    entry_id=entry_id,
                    account_id=account_id,
                    error=e.message
                )
                report.unresolved.append(entry_id)

        self.logger.info(
            "Reconciliation finished",
            settled=len(report.settled),
            released=len(report.released),
            unresolved=len(report.unresolved)
        )
        return report

    async def _reconcile_entry(self, entry: RewardLedgerEntry, report: ReconcileReport) -> None:
        if entry.status == LedgerStatus.MINTED.value:
            await self._credit(entry.id, entry.account_id, entry.amount_units)
            report.settled.append(entry.id)
            return

        if not entry.tx_signature:
            report.unresolved.append(entry.id)
            return

        status = await self.gateway.get_signature_status(entry.tx_signature)
        if status.confirmed:
            async with self.session_factory() as session:
                await RewardLedgerRepository(session).mark_minted(entry.id, entry.tx_signature)
            await self._credit(entry.id, entry.account_id, entry.amount_units)
            report.settled.append(entry.id)
            self.logger.info(
                "Unsettled reward confirmed on chain", entry_id=entry.id, status=entry.status
            )
        elif status.failed:
            await self._release(entry.id)
            report.released.append(entry.id)
            self.logger.info(
                "Unsettled reward failed on chain, released", entry_id=entry.id, status=entry.status
            )
        else:
            report.unresolved.append(entry.id)
