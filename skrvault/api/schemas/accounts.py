"""
Schemas for authentication and wallet endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field, model_validator

from .common import CamelModel, SuccessResponse, WalletField


class SignupRequest(CamelModel):
    handle: str = Field(min_length=3, max_length=30)
    email: str = Field(max_length=254)
    password: str = Field(min_length=8, max_length=128)


class ProvisionRequest(SignupRequest):
    role: str = "standard"


class LoginRequest(CamelModel):
    email: str
    password: str


class RoleUpdateRequest(CamelModel):
    role: str


class ExportRequest(CamelModel):
    """Re-authentication proof: the password or a one-time code."""
    password: Optional[str] = None
    code: Optional[str] = Field(default=None, min_length=6, max_length=6)

    @model_validator(mode="after")
    def check_proof(self):
        if not self.password and not self.code:
            raise ValueError("password or code is required")
        return self


class SendRequest(CamelModel):
    to_address: str = WalletField
    amount: Decimal = Field(gt=0)


class AccountData(CamelModel):
    id: str
    handle: str
    email: str
    role: str
    wallet_address: Optional[str] = None
    created_at: Optional[datetime] = None


class TokenData(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    account_id: str
    role: str


class SignupData(CamelModel):
    account: AccountData
    session: TokenData


class WalletData(CamelModel):
    account_id: str
    address: Optional[str] = None
    balances: Dict[str, Decimal]


class ExportData(CamelModel):
    portable_key: str


class ReauthCodeData(CamelModel):
    delivered: bool = False
    expires_in_minutes: int
    code: Optional[str] = None


class SendData(CamelModel):
    tx_signature: str
    amount: Decimal
    to_address: str
    new_balance: Decimal


class SignupResponse(SuccessResponse):
    data: SignupData


class LoginResponse(SuccessResponse):
    data: TokenData


class AccountResponse(SuccessResponse):
    data: AccountData


class WalletResponse(SuccessResponse):
    data: WalletData


class ExportResponse(SuccessResponse):
    data: ExportData


class ReauthCodeResponse(SuccessResponse):
    data: ReauthCodeData


class SendResponse(SuccessResponse):
    data: SendData
