"""
Repository for the reward ledger.

The (account_id, period) unique constraint is what makes a period payable at
most once, across processes as well as within one.
"""

from datetime import datetime
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skrvault.core.exceptions import AlreadyClaimedError
from skrvault.models.reward import RewardLedgerEntry, LedgerStatus, COMMITTED_STATUSES


logger = structlog.get_logger(__name__)


class RewardLedgerRepository:
    """Reward ledger reads and writes within one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = logger.bind(service="reward_ledger_repository")

    async def find(self, account_id: str, period: str) -> Optional[RewardLedgerEntry]:
        result = await self.session.execute(
            select(RewardLedgerEntry).where(
                RewardLedgerEntry.account_id == account_id,
                RewardLedgerEntry.period == period
            )
        )
        return result.scalar_one_or_none()

    async def get(self, entry_id: int) -> Optional[RewardLedgerEntry]:
        return await self.session.get(RewardLedgerEntry, entry_id, populate_existing=True)

    async def insert(self, entry: RewardLedgerEntry) -> RewardLedgerEntry:
        """
        Insert a reservation.

        Raises:
            AlreadyClaimedError: If the (account, period) row already exists
        """
        self.session.add(entry)
        try:
            await self.session.flush()
        except SAIntegrityError as e:
            raise AlreadyClaimedError(entry.account_id, entry.period) from e
        return entry

    async def record_signature(self, entry_id: int, signature: str) -> None:
        """Store the mint signature on a pending reservation before broadcast."""
        await self.session.execute(
            update(RewardLedgerEntry)
            .where(
                RewardLedgerEntry.id == entry_id,
                RewardLedgerEntry.status == LedgerStatus.PENDING.value
            )
            .values(tx_signature=signature)
        )

    async def mark_minted(self, entry_id: int, signature: str) -> bool:
        """Returns False unless the entry was pending or uncertain."""
        result = await self.session.execute(
            update(RewardLedgerEntry)
            .where(
                RewardLedgerEntry.id == entry_id,
                RewardLedgerEntry.status.in_([
                    LedgerStatus.PENDING.value,
                    LedgerStatus.UNCERTAIN.value,
                ])
            )
            .values(status=LedgerStatus.MINTED.value, tx_signature=signature, error=None)
        )
        return result.rowcount == 1

    async def mark_uncertain(
        self,
        entry_id: int,
        error: str,
        signature: Optional[str] = None
    ) -> None:
        values = {"status": LedgerStatus.UNCERTAIN.value, "error": error}
        if signature is not None:
            values["tx_signature"] = signature
        await self.session.execute(
            update(RewardLedgerEntry)
            .where(RewardLedgerEntry.id == entry_id)
            .values(**values)
        )

    async def settle(self, entry_id: int) -> bool:
        """
        Flip a minted entry to settled.

        Returns False if it was not in the minted state, so callers credit the
        balance only when this returns True.
        """
        result = await self.session.execute(
            update(RewardLedgerEntry)
            .where(
                RewardLedgerEntry.id == entry_id,
                RewardLedgerEntry.status == LedgerStatus.MINTED.value
            )
            .values(status=LedgerStatus.SETTLED.value, settled_at=datetime.utcnow())
        )
        return result.rowcount == 1

    async def release(self, entry_id: int) -> None:
        """Delete a reservation whose mint definitely did not happen."""
        await self.session.execute(
            delete(RewardLedgerEntry).where(RewardLedgerEntry.id == entry_id)
        )

    async def total_committed(self, account_id: str) -> int:
        """Base units paid or possibly paid to the account."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(RewardLedgerEntry.amount_units), 0)).where(
                RewardLedgerEntry.account_id == account_id,
                RewardLedgerEntry.status.in_(COMMITTED_STATUSES)
            )
        )
        return int(result.scalar_one())

    async def total_settled(self, account_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(RewardLedgerEntry.amount_units), 0)).where(
                RewardLedgerEntry.account_id == account_id,
                RewardLedgerEntry.status == LedgerStatus.SETTLED.value
            )
        )
        return int(result.scalar_one())

    async def list_by_status(self, statuses: Sequence[str]) -> List[RewardLedgerEntry]:
        result = await self.session.execute(
            select(RewardLedgerEntry)
            .where(RewardLedgerEntry.status.in_(list(statuses)))
            .order_by(RewardLedgerEntry.id)
        )
        return list(result.scalars().all())

    async def list_for_account(self, account_id: str) -> List[RewardLedgerEntry]:
        result = await self.session.execute(
            select(RewardLedgerEntry)
            .where(RewardLedgerEntry.account_id == account_id)
            .order_by(RewardLedgerEntry.id)
        )
        return list(result.scalars().all())
