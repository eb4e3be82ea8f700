"""
Wallet API endpoints: provisioning, wallet info, key export and token sends.
"""

from fastapi import APIRouter, Depends, Request, status

import structlog

from skrvault.api.dependencies import (
    Services,
    client_ip,
    get_services,
    require_admin,
    require_owner,
    require_owner_or_admin,
)
from skrvault.api.schemas.accounts import (
    AccountData,
    AccountResponse,
    ExportData,
    ExportRequest,
    ExportResponse,
    ProvisionRequest,
    SendData,
    SendRequest,
    SendResponse,
    WalletData,
    WalletResponse,
)
from skrvault.services.account_service import SessionClaims


logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Provision account wallet",
    description="Internal (admin). Create an account with a freshly generated custodial wallet"
)
async def provision_wallet(
    body: ProvisionRequest,
    _: SessionClaims = Depends(require_admin),
    services: Services = Depends(get_services)
) -> AccountResponse:
    account = await services.account_service.signup(
        body.handle, body.email, body.password, role=body.role
    )
    return AccountResponse(message="Wallet provisioned", data=AccountData.model_validate(account))


@router.get(
    "/{account_id}",
    response_model=WalletResponse,
    summary="Get wallet",
    description="Wallet address and stored SOL/SKR balances"
)
async def get_wallet(
    account_id: str = Depends(require_owner_or_admin),
    services: Services = Depends(get_services)
) -> WalletResponse:
    info = await services.account_service.get_wallet_info(account_id)
    return WalletResponse(
        data=WalletData(account_id=info.account_id, address=info.address, balances=info.balances)
    )


@router.post(
    "/{account_id}/export",
    response_model=ExportResponse,
    summary="Export private key",
    description="Owner only. Requires the password or a one-time code; rate limited and audited"
)
async def export_private_key(
    body: ExportRequest,
    request: Request,
    account_id: str = Depends(require_owner),
    services: Services = Depends(get_services)
) -> ExportResponse:
    portable_key = await services.account_service.export_private_key(
        account_id,
        password=body.password,
        code=body.code,
        client_ip=client_ip(request)
    )
    return ExportResponse(data=ExportData(portable_key=portable_key))


@router.post(
    "/{account_id}/send",
    response_model=SendResponse,
    summary="Send reward tokens",
    description="Owner only. Transfer SKR from the custodial wallet"
)
async def send_tokens(
    body: SendRequest,
    account_id: str = Depends(require_owner),
    services: Services = Depends(get_services)
) -> SendResponse:
    result = await services.token_service.send_reward_tokens(
        account_id, body.to_address, body.amount
    )
    return SendResponse(
        message="Tokens sent",
        data=SendData(
            tx_signature=result.tx_signature,
            amount=result.amount,
            to_address=result.to_address,
            new_balance=result.new_balance
        )
    )
