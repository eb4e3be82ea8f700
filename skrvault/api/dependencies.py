"""
API dependencies for FastAPI endpoints.
Provides the service container, session authentication and ownership checks.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Path, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from solana.rpc.async_api import AsyncClient

from skrvault.core.exceptions import AuthenticationError, ForbiddenError
from skrvault.models.account import AccountRole
from skrvault.scheduler.reward_scheduler import RewardScheduler
from skrvault.services.account_locks import AccountLocks
from skrvault.services.account_service import AccountService, SessionClaims
from skrvault.services.chain_gateway import ChainGateway, create_rpc_client
from skrvault.services.reward_engine import RewardEngine
from skrvault.services.token_service import TokenService
from skrvault.wallet.key_vault import KeyVault


logger = structlog.get_logger(__name__)


# Security scheme for session tokens
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Services:
    """Process-wide service graph, built once at startup."""
    account_service: AccountService
    reward_engine: RewardEngine
    token_service: TokenService
    scheduler: Optional[RewardScheduler] = None
    gateway: Optional[object] = None
    rpc_client: Optional[AsyncClient] = None

    async def close(self) -> None:
        if self.scheduler:
            await self.scheduler.stop()
        if self.rpc_client:
            await self.rpc_client.close()


def build_services(settings) -> Services:
    """Wire the services around one RPC client, one key vault and one lock registry."""
    rpc_client = create_rpc_client(settings)
    gateway = ChainGateway.from_settings(rpc_client, settings)
    key_vault = KeyVault.from_settings(settings)
    locks = AccountLocks()

    reward_engine = RewardEngine(gateway, locks=locks, settings=settings)
    return Services(
        account_service=AccountService(key_vault, locks=locks, settings=settings),
        reward_engine=reward_engine,
        token_service=TokenService(gateway, key_vault, locks=locks, settings=settings),
        scheduler=RewardScheduler(reward_engine, settings=settings),
        gateway=gateway,
        rpc_client=rpc_client
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized")
    return services


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    services: Services = Depends(get_services)
) -> SessionClaims:
    """Verify the bearer session token."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required", code="AUTH_REQUIRED")
    return services.account_service.verify_session_token(credentials.credentials)


async def require_admin(
    session: SessionClaims = Depends(get_current_session)
) -> SessionClaims:
    if session.role != AccountRole.ADMIN.value:
        logger.warning("Admin endpoint denied", account_id=session.account_id)
        raise ForbiddenError("Admin role required")
    return session


async def require_owner_or_admin(
    account_id: str = Path(..., description="Account identifier"),
    session: SessionClaims = Depends(get_current_session)
) -> str:
    """Allow the account itself or an admin."""
    if session.account_id != account_id and session.role != AccountRole.ADMIN.value:
        raise ForbiddenError("Not allowed to access this account", {"account_id": account_id})
    return account_id


async def require_owner(
    account_id: str = Path(..., description="Account identifier"),
    session: SessionClaims = Depends(get_current_session)
) -> str:
    """Allow only the account itself."""
    if session.account_id != account_id:
        raise ForbiddenError("Only the account owner may do this", {"account_id": account_id})
    return account_id


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None
