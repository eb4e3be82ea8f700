"""
Repository for account persistence.

Balance mutations are single UPDATE statements (atomic increment at the
database) and profile patches are optimistic: they only apply when the stored
``version`` still matches what the caller read.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skrvault.core.exceptions import (
    AccountNotFoundError,
    ConcurrencyError,
    ConflictError,
    InsufficientFundsError,
    ValidationError,
)
from skrvault.models.account import Account


logger = structlog.get_logger(__name__)

BALANCE_FIELDS = ("sol_balance_lamports", "skr_balance_units")

# Columns that may never be changed through a patch
PROTECTED_FIELDS = ("id", "version", "encrypted_private_key", "wallet_address") + BALANCE_FIELDS


class AccountRepository:
    """Account reads and writes within one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = logger.bind(service="account_repository")

    async def get(self, account_id: str) -> Optional[Account]:
        return await self.session.get(Account, account_id, populate_existing=True)

    async def get_or_raise(self, account_id: str) -> Account:
        account = await self.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def get_by_email(self, email: str) -> Optional[Account]:
        result = await self.session.execute(
            select(Account).where(Account.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_by_wallet(self, wallet_address: str) -> Optional[Account]:
        result = await self.session.execute(
            select(Account).where(Account.wallet_address == wallet_address)
        )
        return result.scalar_one_or_none()

    async def exists(self, email: str, handle: str) -> Optional[str]:
        """Return which unique field ("email" or "handle") is taken, if any."""
        result = await self.session.execute(
            select(Account.email, Account.handle).where(
                or_(Account.email == email, Account.handle == handle)
            )
        )
        for row in result.all():
            if row.email == email:
                return "email"
            if row.handle == handle:
                return "handle"
        return None

    async def list_by_role(self, role: str) -> List[Account]:
        result = await self.session.execute(
            select(Account).where(Account.role == role).order_by(Account.created_at)
        )
        return list(result.scalars().all())

    async def create(self, account: Account) -> Account:
        """Insert a new account; unique violations become ConflictError."""
        self.session.add(account)
        try:
            await self.session.flush()
        except SAIntegrityError as e:
            raise ConflictError(
                "Handle or email already registered",
                {"handle": account.handle, "email": account.email}
            ) from e
        return account

    async def update(
        self,
        account_id: str,
        patch: Dict[str, Any],
        expected_version: int
    ) -> Account:
        """
        Apply a patch if the stored version still equals ``expected_version``.

        Raises:
            ConcurrencyError: If another writer got there first
        """
        bad = [key for key in patch if key in PROTECTED_FIELDS or not hasattr(Account, key)]
        if bad:
            raise ValidationError("Fields cannot be patched", {"fields": bad})

        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.version == expected_version)
            .values(**patch, version=Account.version + 1)
        )
        if result.rowcount == 0:
            await self.get_or_raise(account_id)
            raise ConcurrencyError(account_id, expected_version)

        return await self.get_or_raise(account_id)

    async def increment_balance(self, account_id: str, field: str, delta: int) -> int:
        """
        Atomically add ``delta`` base units to a balance column.

        Debits only apply when the balance covers them.

        Returns:
            The new balance
        """
        if field not in BALANCE_FIELDS:
            raise ValidationError("Unknown balance field", {"field": field})

        column = getattr(Account, field)
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values({field: column + delta, "version": Account.version + 1})
        )
        if delta < 0:
            stmt = stmt.where(column >= -delta)

        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            account = await self.get_or_raise(account_id)
            raise InsufficientFundsError(-delta, getattr(account, field))

        account = await self.get_or_raise(account_id)
        new_balance = getattr(account, field)

        self.logger.debug(
            "Balance updated",
            account_id=account_id,
            field=field,
            delta=delta,
            new_balance=new_balance
        )
        return new_balance
