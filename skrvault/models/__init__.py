"""
Database models for SKR Vault backend.

Accounts with custodial wallets, the engagement counters rewards are computed
from, the reward ledger and token/NFT records.
"""

from .base import Base, BaseModel, TimestampMixin
from .account import Account, AccountRole
from .post import Post
from .reward import RewardLedgerEntry, LedgerStatus, RewardTrigger
from .token import Token, TokenType
from .security import KeyExportEvent, ExportOutcome, OneTimeCode

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Account",
    "AccountRole",
    "Post",
    "RewardLedgerEntry",
    "LedgerStatus",
    "RewardTrigger",
    "Token",
    "TokenType",
    "KeyExportEvent",
    "ExportOutcome",
    "OneTimeCode",
]
