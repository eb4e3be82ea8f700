"""
Security models: private key export audit trail and re-authentication codes.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Boolean, ForeignKey, Index, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class ExportOutcome(str, Enum):
    SUCCESS = "success"
    BAD_PROOF = "bad_proof"
    RATE_LIMITED = "rate_limited"
    INTEGRITY_FAILURE = "integrity_failure"


class KeyExportEvent(BaseModel, TimestampMixin):
    """One row per private key export attempt."""

    __tablename__ = "key_export_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE")
    )

    outcome: Mapped[str] = mapped_column(String(20))

    proof_type: Mapped[str] = mapped_column(
        String(20),
        comment="password or code"
    )

    client_ip: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index("idx_key_export_account_time", "account_id", "created_at"),
    )


class OneTimeCode(BaseModel, TimestampMixin):
    """Hashed one-time re-authentication code."""

    __tablename__ = "one_time_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE")
    )

    code_hash: Mapped[str] = mapped_column(String(64))

    expires_at: Mapped[datetime] = mapped_column(DateTime)

    attempts: Mapped[int] = mapped_column(Integer, default=0)

    consumed: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_one_time_codes_account", "account_id", "consumed"),
    )

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at
