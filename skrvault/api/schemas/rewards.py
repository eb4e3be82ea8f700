"""
Schemas for reward and token endpoints.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from .common import CamelModel, MintField, SuccessResponse, WalletField


class ClaimData(CamelModel):
    account_id: str
    period: str
    amount_paid: Decimal
    tx_signature: str
    new_balance: Decimal


class RewardSummaryData(CamelModel):
    account_id: str
    skr_balance: Decimal
    pending_rewards: Decimal
    total_paid: Decimal
    total_posts: int
    total_likes: int
    total_comments: int
    per_like: Decimal
    per_comment: Decimal
    current_period: str
    claimed_this_period: bool


class ReconcileData(CamelModel):
    settled: List[int]
    released: List[int]
    unresolved: List[int]


class ClaimResponse(SuccessResponse):
    data: ClaimData


class RewardSummaryResponse(SuccessResponse):
    data: RewardSummaryData


class DistributionResponse(SuccessResponse):
    data: Dict[str, Any]


class ReconcileResponse(SuccessResponse):
    data: ReconcileData


class MintNFTRequest(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    symbol: Optional[str] = Field(default=None, max_length=20)
    uri: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class TransferNFTRequest(CamelModel):
    mint_address: str = MintField
    to_address: str = WalletField


class TokenRecordData(CamelModel):
    mint_address: str
    owner_id: Optional[str] = None
    owner_address: str
    token_type: str
    name: str
    symbol: Optional[str] = None
    uri: Optional[str] = None
    supply: int
    decimals: int
    mint_signature: Optional[str] = None
    last_transfer_signature: Optional[str] = None


class TokenizedPostData(CamelModel):
    id: str
    author_id: str
    tokenized: bool
    token_mint_address: Optional[str] = None


class TokenRecordResponse(SuccessResponse):
    data: TokenRecordData


class TokenizedPostResponse(SuccessResponse):
    data: TokenizedPostData
