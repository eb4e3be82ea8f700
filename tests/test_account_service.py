"""
Tests for signup/provisioning, sessions and audited key export.
"""

import asyncio

import base58
import pytest
from solders.keypair import Keypair
from sqlalchemy import select

from skrvault.core import database
from skrvault.core.exceptions import (
    AuthenticationError,
    ConflictError,
    IntegrityError,
    RateLimitError,
    ValidationError,
)
from skrvault.models.security import ExportOutcome, KeyExportEvent
from skrvault.repositories import AccountRepository


async def export_outcomes(account_id):
    async with database.get_async_session() as session:
        result = await session.execute(
            select(KeyExportEvent.outcome)
            .where(KeyExportEvent.account_id == account_id)
            .order_by(KeyExportEvent.id)
        )
        return list(result.scalars().all())


async def test_signup_provisions_wallet(account_service, key_vault):
    account = await account_service.signup("alice", "Alice@Example.com", "password123")

    assert account.email == "alice@example.com"
    assert account.role == "standard"
    assert account.skr_balance_units == 0
    keypair = key_vault.open_keypair(account.encrypted_private_key)
    assert str(keypair.pubkey()) == account.wallet_address
    assert account.password_hash != "password123"


async def test_signup_rejects_duplicates(account_service, key_vault):
    await account_service.signup("alice", "alice@example.com", "password123")

    with pytest.raises(ConflictError) as exc_info:
        await account_service.signup("alice2", "alice@example.com", "password123")
    assert exc_info.value.code == "DUPLICATE_EMAIL"

    with pytest.raises(ConflictError) as exc_info:
        await account_service.signup("alice", "other@example.com", "password123")
    assert exc_info.value.code == "DUPLICATE_HANDLE"

    assert key_vault.generated == 1


async def test_concurrent_signup_provisions_once(account_service, key_vault):
    results = await asyncio.gather(*(
        account_service.signup(f"racer_{i}", "race@example.com", "password123")
        for i in range(5)
    ), return_exceptions=True)

    accounts = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(accounts) == 1
    assert all(isinstance(e, ConflictError) for e in errors)
    assert key_vault.generated == 1


@pytest.mark.parametrize("handle,email,password", [
    ("ab", "a@example.com", "password123"),
    ("bad handle", "a@example.com", "password123"),
    ("valid_handle", "not-an-email", "password123"),
    ("valid_handle", "a@example.com", "short"),
])
async def test_signup_validation(account_service, key_vault, handle, email, password):
    with pytest.raises(ValidationError):
        await account_service.signup(handle, email, password)
    assert key_vault.generated == 0


async def test_login_issues_verifiable_token(account_service):
    account = await account_service.signup("bob", "bob@example.com", "password123")

    token = await account_service.login("BOB@example.com", "password123")
    claims = account_service.verify_session_token(token.access_token)

    assert claims.account_id == account.id
    assert claims.role == "standard"


async def test_login_rejects_bad_credentials(account_service):
    await account_service.signup("bob", "bob@example.com", "password123")

    with pytest.raises(AuthenticationError) as exc_info:
        await account_service.login("bob@example.com", "wrong-password")
    assert exc_info.value.code == "INVALID_CREDENTIALS"

    with pytest.raises(AuthenticationError):
        await account_service.login("nobody@example.com", "password123")


async def test_tampered_and_expired_tokens(account_service, test_settings):
    account = await account_service.signup("bob", "bob@example.com", "password123")
    token = account_service.issue_session_token(account).access_token

    with pytest.raises(AuthenticationError) as exc_info:
        account_service.verify_session_token(token[:-2] + "xx")
    assert exc_info.value.code == "INVALID_TOKEN"

    test_settings.access_token_expire_minutes = -1
    expired = account_service.issue_session_token(account).access_token
    with pytest.raises(AuthenticationError) as exc_info:
        account_service.verify_session_token(expired)
    assert exc_info.value.code == "TOKEN_EXPIRED"


async def test_set_role_bumps_version(account_service):
    account = await account_service.signup("carol", "carol@example.com", "password123")

    updated = await account_service.set_role(account.id, "creator")

    assert updated.role == "creator"
    assert updated.version == account.version + 1
    with pytest.raises(ValidationError):
        await account_service.set_role(account.id, "superuser")


async def test_export_with_password(account_service):
    account = await account_service.signup("dave", "dave@example.com", "password123")

    portable = await account_service.export_private_key(
        account.id, password="password123", client_ip="10.0.0.1"
    )

    raw = base58.b58decode(portable)
    assert str(Keypair.from_bytes(raw).pubkey()) == account.wallet_address
    assert await export_outcomes(account.id) == [ExportOutcome.SUCCESS.value]


async def test_export_requires_proof(account_service):
    account = await account_service.signup("dave", "dave@example.com", "password123")

    with pytest.raises(ValidationError) as exc_info:
        await account_service.export_private_key(account.id)
    assert exc_info.value.code == "REAUTH_REQUIRED"


async def test_export_with_wrong_password_is_audited(account_service):
    account = await account_service.signup("dave", "dave@example.com", "password123")

    with pytest.raises(AuthenticationError) as exc_info:
        await account_service.export_private_key(account.id, password="guess-one")
    assert exc_info.value.code == "REAUTH_FAILED"

    assert await export_outcomes(account.id) == [ExportOutcome.BAD_PROOF.value]


async def test_export_is_rate_limited(account_service, test_settings):
    test_settings.key_export_max_per_window = 2
    account = await account_service.signup("erin", "erin@example.com", "password123")

    await account_service.export_private_key(account.id, password="password123")
    with pytest.raises(AuthenticationError):
        await account_service.export_private_key(account.id, password="wrong-password")
    with pytest.raises(RateLimitError):
        await account_service.export_private_key(account.id, password="password123")

    assert await export_outcomes(account.id) == [
        ExportOutcome.SUCCESS.value,
        ExportOutcome.BAD_PROOF.value,
        ExportOutcome.RATE_LIMITED.value,
    ]


async def test_export_with_one_time_code(account_service):
    account = await account_service.signup("frank", "frank@example.com", "password123")
    code = await account_service.issue_reauth_code(account.id)
    assert len(code) == 6 and code.isdigit()

    portable = await account_service.export_private_key(account.id, code=code)
    assert base58.b58decode(portable)

    # Codes are single use
    with pytest.raises(AuthenticationError):
        await account_service.export_private_key(account.id, code=code)


async def test_new_code_replaces_old(account_service):
    account = await account_service.signup("frank", "frank@example.com", "password123")
    old_code = await account_service.issue_reauth_code(account.id)
    new_code = await account_service.issue_reauth_code(account.id)

    if old_code != new_code:
        with pytest.raises(AuthenticationError):
            await account_service.export_private_key(account.id, code=old_code)
    assert await account_service.export_private_key(account.id, code=new_code)


async def test_export_of_tampered_key_fails_closed(account_service):
    account = await account_service.signup("gina", "gina@example.com", "password123")
    token = account.encrypted_private_key
    flipped = token[:-4] + ("AAAA" if token[-4:] != "AAAA" else "BBBB")

    async with database.get_async_session() as session:
        stored = await AccountRepository(session).get(account.id)
        stored.encrypted_private_key = flipped

    with pytest.raises(IntegrityError):
        await account_service.export_private_key(account.id, password="password123")

    assert await export_outcomes(account.id) == [ExportOutcome.INTEGRITY_FAILURE.value]


async def test_wallet_info_reports_balances(account_service):
    account = await account_service.signup("hank", "hank@example.com", "password123")

    info = await account_service.get_wallet_info(account.id)

    assert info.address == account.wallet_address
    assert info.balances["SKR"] == 0
    assert info.balances["SOL"] == 0
