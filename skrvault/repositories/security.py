"""
Repositories for key export audit rows and one-time codes.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from skrvault.models.security import KeyExportEvent, ExportOutcome, OneTimeCode


class KeyExportRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        account_id: str,
        outcome: str,
        proof_type: str,
        client_ip: Optional[str] = None
    ) -> KeyExportEvent:
        event = KeyExportEvent(
            account_id=account_id,
            outcome=outcome,
            proof_type=proof_type,
            client_ip=client_ip
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def count_recent(self, account_id: str, window_seconds: int) -> int:
        """Attempts that count against the export limit (everything but rate-limited rejections)."""
        since = datetime.utcnow() - timedelta(seconds=window_seconds)
        result = await self.session.execute(
            select(func.count(KeyExportEvent.id)).where(
                KeyExportEvent.account_id == account_id,
                KeyExportEvent.created_at >= since,
                KeyExportEvent.outcome != ExportOutcome.RATE_LIMITED.value
            )
        )
        return int(result.scalar_one())


class OneTimeCodeRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def invalidate_all(self, account_id: str) -> None:
        await self.session.execute(
            update(OneTimeCode)
            .where(OneTimeCode.account_id == account_id, OneTimeCode.consumed.is_(False))
            .values(consumed=True)
        )

    async def create(self, account_id: str, code_hash: str, ttl_minutes: int) -> OneTimeCode:
        otp = OneTimeCode(
            account_id=account_id,
            code_hash=code_hash,
            expires_at=datetime.utcnow() + timedelta(minutes=ttl_minutes),
            attempts=0,
            consumed=False
        )
        self.session.add(otp)
        await self.session.flush()
        return otp

    async def get_active(self, account_id: str) -> Optional[OneTimeCode]:
        result = await self.session.execute(
            select(OneTimeCode)
            .where(OneTimeCode.account_id == account_id, OneTimeCode.consumed.is_(False))
            .order_by(OneTimeCode.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def register_attempt(self, otp: OneTimeCode, success: bool) -> None:
        otp.attempts = (otp.attempts or 0) + 1
        if success:
            otp.consumed = True
        await self.session.flush()
