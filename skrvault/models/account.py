"""
Account model - a user with a custodial Solana wallet.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import String, Integer, BigInteger, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class AccountRole(str, Enum):
    """Account roles."""
    STANDARD = "standard"
    CREATOR = "creator"
    ADMIN = "admin"


REWARD_CLAIM_ROLES = (AccountRole.CREATOR.value, AccountRole.ADMIN.value)


def new_account_id() -> str:
    return uuid.uuid4().hex


class Account(BaseModel, TimestampMixin):
    """User account with an encrypted custodial key."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        default=new_account_id,
        comment="Account identifier"
    )

    handle: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        index=True,
        comment="Public username"
    )

    email: Mapped[str] = mapped_column(
        String(254),
        unique=True,
        index=True,
        comment="Contact address, lower-cased"
    )

    password_hash: Mapped[str] = mapped_column(
        String(128),
        comment="bcrypt password hash"
    )

    role: Mapped[str] = mapped_column(
        String(20),
        default=AccountRole.STANDARD.value,
        comment="standard, creator or admin"
    )

    # Wallet (write-once at provisioning)
    wallet_address: Mapped[Optional[str]] = mapped_column(
        String(44),
        unique=True,
        index=True,
        comment="Solana wallet public key"
    )

    encrypted_private_key: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="AES-256-GCM sealed private key token"
    )

    # Balances in base units
    sol_balance_lamports: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="SOL balance in lamports"
    )

    skr_balance_units: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="SKR balance in token base units"
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        comment="Incremented on every balance or profile mutation"
    )

    __table_args__ = (
        Index("idx_accounts_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, handle={self.handle}, role={self.role})>"

    @property
    def can_claim_rewards(self) -> bool:
        return self.role in REWARD_CLAIM_ROLES

    def balances(self, skr_decimals: int) -> Dict[str, Decimal]:
        """Human-readable balances."""
        return {
            "SOL": Decimal(self.sol_balance_lamports or 0).scaleb(-9),
            "SKR": Decimal(self.skr_balance_units or 0).scaleb(-skr_decimals),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Projection without credentials or key material."""
        return {
            "id": self.id,
            "handle": self.handle,
            "email": self.email,
            "role": self.role,
            "wallet_address": self.wallet_address,
            "created_at": self.created_at,
        }
