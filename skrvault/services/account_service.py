"""
Account service - signup with synchronous wallet provisioning, login,
session tokens and audited private key export.
"""

import asyncio
import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import bcrypt
import jwt
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from skrvault.core.config import settings as default_settings
from skrvault.core.database import SessionFactory, get_async_session
from skrvault.core.exceptions import (
    AuthenticationError,
    ConflictError,
    DecodeError,
    IntegrityError,
    NoWalletError,
    RateLimitError,
    SkrVaultException,
    ValidationError,
)
from skrvault.core.logging import get_audit_logger
from skrvault.models.account import Account, AccountRole
from skrvault.models.security import ExportOutcome
from skrvault.repositories import AccountRepository, KeyExportRepository, OneTimeCodeRepository
from skrvault.services.account_locks import AccountLocks, signup_keys
from skrvault.utils.validation import AccountValidator
from skrvault.wallet.key_vault import KeyVault


logger = structlog.get_logger(__name__)
audit_logger = get_audit_logger()

JWT_ALGORITHM = "HS256"
OTP_DIGITS = 6


@dataclass
class SessionToken:
    """Signed bearer token returned by login."""
    access_token: str
    expires_at: datetime
    account_id: str
    role: str
    token_type: str = "bearer"


@dataclass
class SessionClaims:
    account_id: str
    email: str
    role: str


@dataclass
class WalletInfo:
    account_id: str
    address: Optional[str]
    balances: Dict[str, Decimal] = field(default_factory=dict)


def hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class AccountService:
    """
    Account lifecycle around the key vault.

    Signup is serialized per email and handle so that a losing racer never
    generates key material; the unique constraints catch cross-process races.
    """

    def __init__(
        self,
        key_vault: KeyVault,
        locks: Optional[AccountLocks] = None,
        session_factory: SessionFactory = get_async_session,
        settings=None
    ):
        self.key_vault = key_vault
        self.locks = locks or AccountLocks()
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.logger = logger.bind(service="account_service")

    async def signup(
        self,
        handle: str,
        email: str,
        password: str,
        role: str = AccountRole.STANDARD.value
    ) -> Account:
        """
        Register an account and provision its custodial wallet in one transaction.

        Raises:
            ValidationError: Malformed handle, email or password
            ConflictError: Handle or email already registered
        """
        handle = AccountValidator.validate_handle(handle)
        email = AccountValidator.validate_email(email)
        AccountValidator.validate_password(password)
        role = self._validate_role(role)

        async with self.locks.hold_many(signup_keys(email, handle)):
            async with self.session_factory() as session:
                repo = AccountRepository(session)

                taken = await repo.exists(email, handle)
                if taken:
                    raise ConflictError(
                        f"{taken.capitalize()} already registered",
                        {"field": taken},
                        code=f"DUPLICATE_{taken.upper()}"
                    )

                password_hash = await asyncio.to_thread(
                    hash_password, password, self.settings.bcrypt_rounds
                )

                address, raw_key = self.key_vault.generate_key_pair()
                account = Account(
                    handle=handle,
                    email=email,
                    password_hash=password_hash,
                    role=role,
                    wallet_address=address,
                    encrypted_private_key=self.key_vault.seal(raw_key),
                    sol_balance_lamports=0,
                    skr_balance_units=0,
                    version=1
                )
                del raw_key
                await repo.create(account)

        self.logger.info(
            "Account created",
            account_id=account.id,
            handle=handle,
            wallet_address=address
        )
        return account

    async def login(self, email: str, password: str) -> SessionToken:
        """Verify credentials and issue a session token."""
        email = (email or "").strip().lower()

        async with self.session_factory() as session:
            account = await AccountRepository(session).get_by_email(email)

        if account is None or not await asyncio.to_thread(
            verify_password, password or "", account.password_hash
        ):
            self.logger.warning("Login failed", email=email)
            raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

        token = self.issue_session_token(account)
        self.logger.info("Login succeeded", account_id=account.id)
        return token

    def issue_session_token(self, account: Account) -> SessionToken:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.settings.access_token_expire_minutes)
        payload = {
            "sub": account.id,
            "email": account.email,
            "role": account.role,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self.settings.secret_key, algorithm=JWT_ALGORITHM)
        return SessionToken(
            access_token=token,
            expires_at=expires_at,
            account_id=account.id,
            role=account.role
        )

    def verify_session_token(self, token: str) -> SessionClaims:
        try:
            payload = jwt.decode(token, self.settings.secret_key, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Session expired", code="TOKEN_EXPIRED") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid session token", code="INVALID_TOKEN") from e

        try:
            return SessionClaims(
                account_id=payload["sub"],
                email=payload["email"],
                role=payload["role"]
            )
        except KeyError as e:
            raise AuthenticationError("Invalid session token", code="INVALID_TOKEN") from e

    async def get_account(self, account_id: str) -> Account:
        async with self.session_factory() as session:
            return await AccountRepository(session).get_or_raise(account_id)

    async def get_wallet_info(self, account_id: str) -> WalletInfo:
        """Stored wallet address and balances."""
        account = await self.get_account(account_id)
        return WalletInfo(
            account_id=account.id,
            address=account.wallet_address,
            balances=account.balances(self.settings.reward_token_decimals)
        )

    async def set_role(self, account_id: str, role: str) -> Account:
        role = self._validate_role(role)
        async with self.locks.for_account(account_id):
            async with self.session_factory() as session:
                repo = AccountRepository(session)
                account = await repo.get_or_raise(account_id)
                account = await repo.update(account_id, {"role": role}, account.version)

        self.logger.info("Account role changed", account_id=account_id, role=role)
        return account

    async def issue_reauth_code(self, account_id: str) -> str:
        """
        Create a one-time re-authentication code, replacing any earlier one.

        Only the hash is stored; delivering the code is up to the caller.
        """
        code = f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"

        async with self.session_factory() as session:
            await AccountRepository(session).get_or_raise(account_id)
            otp_repo = OneTimeCodeRepository(session)
            await otp_repo.invalidate_all(account_id)
            await otp_repo.create(account_id, self._hash_code(code), self.settings.otp_ttl_minutes)

        self.logger.info("Re-authentication code issued", account_id=account_id)
        return code

    async def export_private_key(
        self,
        account_id: str,
        password: Optional[str] = None,
        code: Optional[str] = None,
        client_ip: Optional[str] = None
    ) -> str:
        """
        Return the account's private key in portable (base58) form.

        Requires the password or a one-time code in the same call. Every
        attempt is recorded and counted against a per-account limit.

        Raises:
            ValidationError: No proof supplied
            AuthenticationError: Proof did not verify
            RateLimitError: Too many exports in the window
            IntegrityError: Stored key failed authentication or does not match the wallet
        """
        if not password and not code:
            raise ValidationError("Password or one-time code required", code="REAUTH_REQUIRED")
        proof_type = "password" if password else "code"

        error: Optional[SkrVaultException] = None
        portable: Optional[str] = None

        async with self.locks.hold(f"export:{account_id}"):
            async with self.session_factory() as session:
                account = await AccountRepository(session).get_or_raise(account_id)
                if not account.wallet_address or not account.encrypted_private_key:
                    raise NoWalletError(account_id)

                exports = KeyExportRepository(session)
                recent = await exports.count_recent(
                    account_id, self.settings.key_export_window_seconds
                )

                if recent >= self.settings.key_export_max_per_window:
                    outcome = ExportOutcome.RATE_LIMITED
                    error = RateLimitError(
                        "Too many key export attempts",
                        {"retry_after_seconds": self.settings.key_export_window_seconds}
                    )
                elif not await self._verify_proof(session, account, password, code):
                    outcome = ExportOutcome.BAD_PROOF
                    error = AuthenticationError("Re-authentication failed", code="REAUTH_FAILED")
                else:
                    outcome, portable, error = self._open_for_export(account)

                await exports.record(account_id, outcome.value, proof_type, client_ip)

        audit_logger.info(
            "Private key export attempt",
            account_id=account_id,
            outcome=outcome.value,
            proof_type=proof_type,
            client_ip=client_ip
        )
        if error is not None:
            raise error
        return portable

    def _open_for_export(self, account: Account):
        try:
            keypair = self.key_vault.open_keypair(account.encrypted_private_key)
        except (IntegrityError, DecodeError) as e:
            audit_logger.error(
                "Stored key failed decryption",
                account_id=account.id,
                code=e.code
            )
            return ExportOutcome.INTEGRITY_FAILURE, None, e

        if str(keypair.pubkey()) != account.wallet_address:
            audit_logger.error("Decrypted key does not match wallet", account_id=account.id)
            return (
                ExportOutcome.INTEGRITY_FAILURE,
                None,
                IntegrityError("Decrypted key does not match the wallet address")
            )

        return ExportOutcome.SUCCESS, self.key_vault.export_portable(bytes(keypair)), None

    async def _verify_proof(
        self,
        session: AsyncSession,
        account: Account,
        password: Optional[str],
        code: Optional[str]
    ) -> bool:
        if password:
            return await asyncio.to_thread(verify_password, password, account.password_hash)

        otp_repo = OneTimeCodeRepository(session)
        otp = await otp_repo.get_active(account.id)
        if otp is None:
            return False
        if otp.is_expired or otp.attempts >= self.settings.otp_max_attempts:
            otp.consumed = True
            await session.flush()
            return False

        matched = hmac.compare_digest(otp.code_hash, self._hash_code(code))
        await otp_repo.register_attempt(otp, matched)
        return matched

    def _hash_code(self, code: str) -> str:
        return hmac.new(
            self.settings.secret_key.encode("utf-8"),
            code.strip().encode("utf-8"),
            hashlib.sha256
        ).hexdigest()

    @staticmethod
    def _validate_role(role: Any) -> str:
        value = role.value if isinstance(role, AccountRole) else str(role)
        if value not in {r.value for r in AccountRole}:
            raise ValidationError("Unknown role", {"role": value})
        return value
