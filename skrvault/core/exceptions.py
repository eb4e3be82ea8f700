"""
Custom exception classes for the application.
Provides structured error handling across all modules.

Every exception carries a stable machine-readable ``code`` so clients can
branch on it, and an HTTP status used by the API error handler.
"""

from typing import Any, Optional, Dict


class SkrVaultException(Exception):
    """Base exception class for SKR Vault backend."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(SkrVaultException):
    """Raised when data validation fails."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code, details)


class AuthenticationError(SkrVaultException):
    """Raised when authentication fails."""

    status_code = 401

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: str = "AUTHENTICATION_ERROR"):
        super().__init__(message, code, details)


class ForbiddenError(SkrVaultException):
    """Raised when role or ownership checks fail."""

    status_code = 403

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "FORBIDDEN", details)


class NotFoundError(SkrVaultException):
    """Raised when a requested resource is not found."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class ConflictError(SkrVaultException):
    """Raised when a write would violate a uniqueness rule."""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: str = "CONFLICT"):
        super().__init__(message, code, details)


class RateLimitError(SkrVaultException):
    """Raised when rate limit is exceeded."""

    status_code = 429

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RATE_LIMIT_ERROR", details)


class NotConfiguredError(SkrVaultException):
    """Raised when a signing identity or token setting is missing."""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_CONFIGURED", details)


class IntegrityError(SkrVaultException):
    """Raised when encrypted key material fails authentication."""

    status_code = 500

    def __init__(self, message: str = "Key material failed integrity check", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INTEGRITY_ERROR", details)


class DecodeError(SkrVaultException):
    """Raised when encrypted key material is malformed."""

    status_code = 500

    def __init__(self, message: str = "Key material is malformed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DECODE_ERROR", details)


class DatabaseError(SkrVaultException):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ChainError(SkrVaultException):
    """
    Raised when an on-chain operation fails.

    ``broadcast_uncertain`` is True when the transaction may have reached the
    network (send timed out, confirmation never arrived). Such failures must
    not be retried blindly; they go to reconciliation instead.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        broadcast_uncertain: bool = False,
        signature: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["broadcast_uncertain"] = broadcast_uncertain
        if signature:
            details["signature"] = signature
        code = "CHAIN_BROADCAST_UNCERTAIN" if broadcast_uncertain else "CHAIN_ERROR"
        super().__init__(message, code, details)
        self.broadcast_uncertain = broadcast_uncertain
        self.signature = signature


# Account-specific exceptions
class AccountNotFoundError(NotFoundError):
    """Raised when an account is not found."""

    def __init__(self, account_id: str):
        super().__init__(
            f"Account not found: {account_id}",
            {"account_id": account_id}
        )


class TokenNotFoundError(NotFoundError):
    """Raised when a token record is not found."""

    def __init__(self, mint: str):
        super().__init__(
            f"Token not found: {mint}",
            {"mint": mint}
        )


class PostNotFoundError(NotFoundError):
    """Raised when a post is not found."""

    def __init__(self, post_id: str):
        super().__init__(
            f"Post not found: {post_id}",
            {"post_id": post_id}
        )


class ConcurrencyError(ConflictError):
    """Raised when an optimistic-concurrency patch loses the race."""

    def __init__(self, account_id: str, expected_version: int):
        super().__init__(
            f"Account {account_id} was modified concurrently",
            {"account_id": account_id, "expected_version": expected_version},
            code="CONCURRENT_MODIFICATION"
        )


# Reward exceptions
class AlreadyClaimedError(ConflictError):
    """Raised when the current settlement period was already paid."""

    def __init__(self, account_id: str, period: str):
        super().__init__(
            f"Rewards for period {period} were already claimed",
            {"account_id": account_id, "period": period},
            code="ALREADY_CLAIMED"
        )


class NothingToClaimError(SkrVaultException):
    """Raised when an account has no accrued rewards."""

    status_code = 409

    def __init__(self, account_id: str):
        super().__init__(
            "No rewards to claim",
            "NOTHING_TO_CLAIM",
            {"account_id": account_id}
        )


class NoWalletError(ValidationError):
    """Raised when an account has no wallet address."""

    def __init__(self, account_id: str):
        super().__init__(
            "Wallet address not set",
            {"account_id": account_id},
            code="NO_WALLET"
        )


class InsufficientFundsError(ValidationError):
    """Raised when there are insufficient funds for an operation."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient funds: required {required}, available {available}",
            {"required": required, "available": available},
            code="INSUFFICIENT_FUNDS"
        )
