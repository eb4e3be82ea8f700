"""
Persistence interface: session-scoped repositories over the SQLAlchemy models.
"""

from .accounts import AccountRepository, BALANCE_FIELDS
from .ledger import RewardLedgerRepository
from .content import PostRepository, TokenRepository, EngagementTotals
from .security import KeyExportRepository, OneTimeCodeRepository

__all__ = [
    "AccountRepository",
    "BALANCE_FIELDS",
    "RewardLedgerRepository",
    "PostRepository",
    "TokenRepository",
    "EngagementTotals",
    "KeyExportRepository",
    "OneTimeCodeRepository",
]
