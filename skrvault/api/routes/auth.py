"""
Authentication API endpoints: signup, login, re-authentication codes and roles.
"""

from fastapi import APIRouter, Depends, Path, status

import structlog

from skrvault.core.config import settings
from skrvault.api.dependencies import Services, get_services, get_current_session, require_admin
from skrvault.api.schemas.accounts import (
    AccountData,
    AccountResponse,
    LoginRequest,
    LoginResponse,
    ReauthCodeData,
    ReauthCodeResponse,
    RoleUpdateRequest,
    SignupData,
    SignupRequest,
    SignupResponse,
    TokenData,
)
from skrvault.services.account_service import SessionClaims


logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Sign up",
    description="Create an account with a custodial wallet and return a session token"
)
async def signup(
    body: SignupRequest,
    services: Services = Depends(get_services)
) -> SignupResponse:
    account_service = services.account_service
    account = await account_service.signup(body.handle, body.email, body.password)
    token = account_service.issue_session_token(account)

    return SignupResponse(
        message="Account created",
        data=SignupData(
            account=AccountData.model_validate(account),
            session=TokenData.model_validate(token)
        )
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Log in",
    description="Exchange email and password for a session token"
)
async def login(
    body: LoginRequest,
    services: Services = Depends(get_services)
) -> LoginResponse:
    token = await services.account_service.login(body.email, body.password)
    return LoginResponse(data=TokenData.model_validate(token))


@router.post(
    "/reauth-code",
    response_model=ReauthCodeResponse,
    summary="Request re-authentication code",
    description="Issue a one-time code accepted by the key export endpoint"
)
async def request_reauth_code(
    session: SessionClaims = Depends(get_current_session),
    services: Services = Depends(get_services)
) -> ReauthCodeResponse:
    code = await services.account_service.issue_reauth_code(session.account_id)

    # No delivery channel here; the code is only echoed outside production
    expose = not settings.is_production
    return ReauthCodeResponse(
        message="Re-authentication code issued",
        data=ReauthCodeData(
            delivered=False,
            expires_in_minutes=settings.otp_ttl_minutes,
            code=code if expose else None
        )
    )


@router.put(
    "/accounts/{account_id}/role",
    response_model=AccountResponse,
    summary="Change account role",
    description="Admin only. Promote or demote an account"
)
async def set_role(
    body: RoleUpdateRequest,
    account_id: str = Path(..., description="Account identifier"),
    _: SessionClaims = Depends(require_admin),
    services: Services = Depends(get_services)
) -> AccountResponse:
    account = await services.account_service.set_role(account_id, body.role)
    return AccountResponse(message="Role updated", data=AccountData.model_validate(account))
