"""
Per-key async lock registry.

Serializes balance-mutating work per account (``account:<id>``) and signup
per contact/handle inside one process. The database unique constraints and
version checks cover the multi-process case.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable

import structlog


logger = structlog.get_logger(__name__)


def account_key(account_id: str) -> str:
    return f"account:{account_id}"


def signup_keys(email: str, handle: str) -> list:
    # Sorted so two signups sharing one field never deadlock
    return sorted([f"signup-email:{email}", f"signup-handle:{handle.lower()}"])


class AccountLocks:
    """Lazily created asyncio locks, dropped again once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Acquire several keys in sorted order."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield

    def for_account(self, account_id: str):
        return self.hold(account_key(account_id))
