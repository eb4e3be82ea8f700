"""
Reward ledger - application-level record of reward payments per settlement period.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, Text, ForeignKey, Index, UniqueConstraint, DateTime
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class LedgerStatus(str, Enum):
    """Lifecycle of a ledger entry."""
    PENDING = "pending"        # reserved, chain call in flight
    MINTED = "minted"          # chain confirmed, signature stored, not yet credited
    SETTLED = "settled"        # balance credited
    UNCERTAIN = "uncertain"    # broadcast outcome unknown, needs reconciliation


# Statuses whose amount counts as paid (or possibly paid) for accrual purposes
COMMITTED_STATUSES = (
    LedgerStatus.PENDING.value,
    LedgerStatus.MINTED.value,
    LedgerStatus.SETTLED.value,
    LedgerStatus.UNCERTAIN.value,
)


class RewardTrigger(str, Enum):
    CLAIM = "claim"
    SCHEDULER = "scheduler"


class RewardLedgerEntry(BaseModel, TimestampMixin):
    """One reward payment per (account, period)."""

    __tablename__ = "reward_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        comment="Paid account"
    )

    period: Mapped[str] = mapped_column(
        String(32),
        comment="Settlement period key (period start, ISO UTC)"
    )

    amount_units: Mapped[int] = mapped_column(
        BigInteger,
        comment="Reward amount in token base units"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=LedgerStatus.PENDING.value
    )

    trigger: Mapped[str] = mapped_column(
        String(20),
        default=RewardTrigger.CLAIM.value,
        comment="claim or scheduler"
    )

    destination_address: Mapped[str] = mapped_column(String(44))

    tx_signature: Mapped[Optional[str]] = mapped_column(
        String(88),
        comment="Mint transaction signature"
    )

    error: Mapped[Optional[str]] = mapped_column(Text)

    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("account_id", "period", name="uq_reward_ledger_account_period"),
        Index("idx_reward_ledger_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardLedgerEntry(account={self.account_id}, period={self.period}, "
            f"amount={self.amount_units}, status={self.status})>"
        )
