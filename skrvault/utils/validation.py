"""
Input validation utilities.
Provides validation for Solana addresses, account fields and token amounts.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Union

from solders.pubkey import Pubkey

from skrvault.core.exceptions import ValidationError


HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,30}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


class SolanaValidator:
    """Validator for Solana blockchain data."""

    @staticmethod
    def is_valid_pubkey(address: str) -> bool:
        """
        Validate if a string is a valid Solana public key.

        Args:
            address: String to validate

        Returns:
            True if valid, False otherwise
        """
        try:
            if not address or len(address) < 32 or len(address) > 44:
                return False
            Pubkey.from_string(address)
            return True
        except (ValueError, TypeError):
            return False


class AccountValidator:
    """Validator for signup fields."""

    @staticmethod
    def validate_handle(handle: str) -> str:
        handle = (handle or "").strip()
        if not HANDLE_PATTERN.match(handle):
            raise ValidationError(
                "Handle must be 3-30 characters of letters, digits or underscore",
                {"field": "handle"}
            )
        return handle

    @staticmethod
    def validate_email(email: str) -> str:
        email = (email or "").strip().lower()
        if len(email) > 254 or not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address", {"field": "email"})
        return email

    @staticmethod
    def validate_password(password: str) -> str:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                {"field": "password"}
            )
        # bcrypt only uses the first 72 bytes
        if len(password.encode("utf-8")) > 72:
            raise ValidationError("Password is too long", {"field": "password"})
        return password


def validate_wallet_address(address: str, field: str = "address") -> str:
    """Return the address or raise ValidationError."""
    if not SolanaValidator.is_valid_pubkey(address):
        raise ValidationError("Invalid Solana address", {"field": field, "value": address})
    return address


def to_base_units(amount: Union[Decimal, int, float, str], decimals: int) -> int:
    """
    Scale a human-readable amount to integer base units, rounding down.

    Raises:
        ValidationError: If the amount is not a finite non-negative number
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Amount is not a number", {"amount": str(amount)}) from e

    if not value.is_finite() or value < 0:
        raise ValidationError("Amount must be a non-negative number", {"amount": str(amount)})

    return int(value.scaleb(decimals).to_integral_value(rounding="ROUND_DOWN"))


def from_base_units(units: int, decimals: int) -> Decimal:
    return Decimal(int(units)).scaleb(-decimals)


def validate_positive_amount(amount: Union[Decimal, int, float, str], decimals: int) -> int:
    """Scale to base units and reject amounts that round to zero."""
    units = to_base_units(amount, decimals)
    if units <= 0:
        raise ValidationError("Amount must be greater than zero", {"amount": str(amount)})
    return units
