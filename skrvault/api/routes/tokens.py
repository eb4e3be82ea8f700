"""
Token API endpoints: NFT mint/transfer and post tokenization.
"""

from fastapi import APIRouter, Depends, Path, status

import structlog

from skrvault.api.dependencies import Services, get_services, get_current_session
from skrvault.api.schemas.rewards import (
    MintNFTRequest,
    TokenizedPostData,
    TokenizedPostResponse,
    TokenRecordData,
    TokenRecordResponse,
    TransferNFTRequest,
)
from skrvault.services.account_service import SessionClaims


logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/nft",
    response_model=TokenRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Mint NFT",
    description="Mint a one-of-one token to the caller's wallet"
)
async def mint_nft(
    body: MintNFTRequest,
    session: SessionClaims = Depends(get_current_session),
    services: Services = Depends(get_services)
) -> TokenRecordResponse:
    token = await services.token_service.mint_nft(
        session.account_id,
        name=body.name,
        symbol=body.symbol,
        uri=body.uri,
        description=body.description,
        image=body.image
    )
    return TokenRecordResponse(message="NFT minted", data=TokenRecordData.model_validate(token))


@router.post(
    "/nft/transfer",
    response_model=TokenRecordResponse,
    summary="Transfer NFT"
)
async def transfer_nft(
    body: TransferNFTRequest,
    session: SessionClaims = Depends(get_current_session),
    services: Services = Depends(get_services)
) -> TokenRecordResponse:
    token = await services.token_service.transfer_nft(
        session.account_id, body.mint_address, body.to_address
    )
    return TokenRecordResponse(message="NFT transferred", data=TokenRecordData.model_validate(token))


@router.post(
    "/posts/{post_id}/tokenize",
    response_model=TokenizedPostResponse,
    summary="Tokenize post"
)
async def tokenize_post(
    post_id: str = Path(..., description="Post identifier"),
    session: SessionClaims = Depends(get_current_session),
    services: Services = Depends(get_services)
) -> TokenizedPostResponse:
    post = await services.token_service.tokenize_post(session.account_id, post_id)
    return TokenizedPostResponse(
        message="Post tokenized successfully",
        data=TokenizedPostData.model_validate(post)
    )
