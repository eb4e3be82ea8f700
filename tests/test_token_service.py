"""
Tests for NFT, post tokenization and reward token sends.
"""

from decimal import Decimal

import pytest
from solders.keypair import Keypair

from skrvault.core import database
from skrvault.core.exceptions import (
    ChainError,
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    NotConfiguredError,
    TokenNotFoundError,
    ValidationError,
)
from skrvault.repositories import AccountRepository
from skrvault.services.token_service import TokenService

from conftest import FakeGateway, add_post


async def skr_units(account_id):
    async with database.get_async_session() as session:
        account = await AccountRepository(session).get_or_raise(account_id)
        return account.skr_balance_units


async def test_mint_nft_records_owner(token_service, gateway, fan):
    token = await token_service.mint_nft(fan.id, "First drop", symbol="DROP", uri="https://example.com/1.json")

    assert token.mint_address == gateway.created_tokens[0]
    assert token.owner_id == fan.id
    assert token.owner_address == fan.wallet_address
    assert token.supply == 1 and token.decimals == 0
    assert gateway.mints == [(fan.wallet_address, Decimal(1))]


async def test_mint_nft_requires_name(token_service, fan, gateway):
    with pytest.raises(ValidationError):
        await token_service.mint_nft(fan.id, "   ")
    assert gateway.created_tokens == []


async def test_transfer_nft_to_known_account(token_service, gateway, fan, creator):
    token = await token_service.mint_nft(fan.id, "Gift")

    moved = await token_service.transfer_nft(fan.id, token.mint_address, creator.wallet_address)

    assert moved.owner_id == creator.id
    assert moved.owner_address == creator.wallet_address
    assert moved.last_transfer_signature is not None
    assert gateway.transfers[0]["from"] == fan.wallet_address
    assert gateway.transfers[0]["amount"] == 1


async def test_transfer_nft_to_external_wallet(token_service, fan):
    token = await token_service.mint_nft(fan.id, "Gift")
    external = str(Keypair().pubkey())

    moved = await token_service.transfer_nft(fan.id, token.mint_address, external)

    assert moved.owner_id is None
    assert moved.owner_address == external


async def test_transfer_nft_checks_ownership(token_service, fan, creator):
    token = await token_service.mint_nft(fan.id, "Mine")

    with pytest.raises(ForbiddenError):
        await token_service.transfer_nft(creator.id, token.mint_address, creator.wallet_address)
    with pytest.raises(TokenNotFoundError):
        await token_service.transfer_nft(fan.id, str(Keypair().pubkey()), creator.wallet_address)
    with pytest.raises(ValidationError):
        await token_service.transfer_nft(fan.id, token.mint_address, fan.wallet_address)


async def test_tokenize_post_once(token_service, gateway, creator, fan):
    post = await add_post(creator.id, likes=1)

    tokenized = await token_service.tokenize_post(creator.id, post.id)

    assert tokenized.tokenized is True
    assert tokenized.token_mint_address == gateway.created_tokens[0]

    with pytest.raises(ConflictError) as exc_info:
        await token_service.tokenize_post(creator.id, post.id)
    assert exc_info.value.code == "ALREADY_TOKENIZED"

    with pytest.raises(ForbiddenError):
        await token_service.tokenize_post(fan.id, post.id)
    assert len(gateway.created_tokens) == 1


async def test_send_reward_tokens_moves_balance(token_service, reward_engine, gateway, creator, fan):
    await add_post(creator.id, likes=10, comments=4)
    await reward_engine.claim(creator.id)

    result = await token_service.send_reward_tokens(creator.id, fan.wallet_address, "1.25")

    assert result.amount == Decimal("1.25")
    assert result.new_balance == Decimal("1.75")
    assert await skr_units(creator.id) == 1_750_000_000
    assert await skr_units(fan.id) == 1_250_000_000
    assert gateway.transfers[0]["amount"] == 1_250_000_000
    assert gateway.transfers[0]["mint"] == gateway.reward_mint_address


async def test_send_reward_tokens_rejects_overdraft(token_service, gateway, creator, fan):
    with pytest.raises(InsufficientFundsError):
        await token_service.send_reward_tokens(creator.id, fan.wallet_address, "10")
    assert gateway.transfers == []


async def test_failed_send_leaves_balance(token_service, reward_engine, gateway, creator, fan):
    await add_post(creator.id, likes=10, comments=4)
    await reward_engine.claim(creator.id)
    gateway.fail_with = ChainError("Timed out", broadcast_uncertain=True)

    with pytest.raises(ChainError):
        await token_service.send_reward_tokens(creator.id, fan.wallet_address, "1")

    assert await skr_units(creator.id) == 3_000_000_000
    assert await skr_units(fan.id) == 0


async def test_send_requires_reward_mint(db, key_vault, locks, test_settings, creator, fan):
    service = TokenService(FakeGateway(reward_mint=None), key_vault, locks=locks, settings=test_settings)

    with pytest.raises(NotConfiguredError):
        await service.send_reward_tokens(creator.id, fan.wallet_address, "1")


async def test_send_rejects_zero_amount(token_service, creator, fan):
    with pytest.raises(ValidationError):
        await token_service.send_reward_tokens(creator.id, fan.wallet_address, "0.0000000001")
