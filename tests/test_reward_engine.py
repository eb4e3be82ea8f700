"""
Tests for reward accrual, claiming and reconciliation.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from solders.signature import Signature

from skrvault.core import database
from skrvault.core.exceptions import (
    AlreadyClaimedError,
    ChainError,
    ForbiddenError,
    NothingToClaimError,
    NotConfiguredError,
)
from skrvault.models.reward import LedgerStatus, RewardLedgerEntry
from skrvault.repositories import AccountRepository, RewardLedgerRepository
from skrvault.services.chain_gateway import SignatureStatus
from skrvault.services.reward_engine import period_key

from conftest import add_post, set_engagement


async def ledger_rows(account_id):
    async with database.get_async_session() as session:
        return await RewardLedgerRepository(session).list_for_account(account_id)


async def skr_units(account_id):
    async with database.get_async_session() as session:
        account = await AccountRepository(session).get_or_raise(account_id)
        return account.skr_balance_units


def test_period_key_floors_to_period_start():
    moment = datetime(2026, 3, 10, 17, 45, tzinfo=timezone.utc)

    assert period_key(moment, 24 * 3600) == "2026-03-10T00:00:00Z"
    assert period_key(moment, 3600) == "2026-03-10T17:00:00Z"
    assert period_key(moment.replace(tzinfo=None), 24 * 3600) == "2026-03-10T00:00:00Z"


async def test_compute_accrued_from_counters(reward_engine, creator):
    await add_post(creator.id, likes=10, comments=4)

    assert await reward_engine.compute_accrued(creator.id) == Decimal("3.0")


async def test_claim_pays_accrued_once_per_period(reward_engine, gateway, creator):
    await add_post(creator.id, likes=6, comments=2)
    await add_post(creator.id, likes=4, comments=2)

    result = await reward_engine.claim(creator.id)

    assert result.amount_paid == Decimal("3.0")
    assert result.new_balance == Decimal("3.0")
    assert result.period == "2026-03-10T00:00:00Z"
    assert gateway.mints == [(creator.wallet_address, Decimal("3.0"))]

    rows = await ledger_rows(creator.id)
    assert len(rows) == 1
    assert rows[0].status == LedgerStatus.SETTLED.value
    assert rows[0].tx_signature == result.tx_signature

    with pytest.raises(AlreadyClaimedError):
        await reward_engine.claim(creator.id)
    assert len(gateway.mints) == 1


async def test_next_period_pays_only_new_engagement(reward_engine, gateway, creator, clock):
    post = await add_post(creator.id, likes=10, comments=4)
    await reward_engine.claim(creator.id)

    await set_engagement(post.id, likes=15, comments=4)
    clock.now += timedelta(days=1)

    result = await reward_engine.claim(creator.id)

    assert result.amount_paid == Decimal("0.5")
    assert await skr_units(creator.id) == 3_500_000_000


async def test_concurrent_claims_pay_once(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)

    results = await asyncio.gather(
        reward_engine.claim(creator.id),
        reward_engine.claim(creator.id),
        return_exceptions=True
    )

    paid = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(paid) == 1
    assert len(errors) == 1 and isinstance(errors[0], AlreadyClaimedError)
    assert len(gateway.mints) == 1
    assert await skr_units(creator.id) == 3_000_000_000


async def test_standard_account_cannot_claim(reward_engine, fan, gateway):
    await add_post(fan.id, likes=10)

    with pytest.raises(ForbiddenError):
        await reward_engine.claim(fan.id)
    assert gateway.mints == []


async def test_nothing_to_claim(reward_engine, creator, gateway):
    with pytest.raises(NothingToClaimError):
        await reward_engine.claim(creator.id)
    assert await ledger_rows(creator.id) == []
    assert gateway.mints == []


async def test_rejected_mint_releases_reservation(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    gateway.fail_with = ChainError("Preflight failed", broadcast_uncertain=False)

    with pytest.raises(ChainError):
        await reward_engine.claim(creator.id)

    assert await ledger_rows(creator.id) == []
    assert await skr_units(creator.id) == 0

    gateway.fail_with = None
    result = await reward_engine.claim(creator.id)
    assert result.amount_paid == Decimal("3.0")


async def test_unconfigured_token_releases_reservation(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10)
    gateway.fail_with = NotConfiguredError("Reward token not configured")

    with pytest.raises(NotConfiguredError):
        await reward_engine.claim(creator.id)
    assert await ledger_rows(creator.id) == []


async def test_uncertain_mint_blocks_repayment(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    signature = str(Signature.new_unique())
    gateway.fail_with = ChainError("Timed out", broadcast_uncertain=True, signature=signature)

    with pytest.raises(ChainError):
        await reward_engine.claim(creator.id)

    rows = await ledger_rows(creator.id)
    assert [row.status for row in rows] == [LedgerStatus.UNCERTAIN.value]
    assert rows[0].tx_signature == signature
    assert await skr_units(creator.id) == 0
    assert await reward_engine.compute_accrued(creator.id) == 0

    gateway.fail_with = None
    with pytest.raises(AlreadyClaimedError):
        await reward_engine.claim(creator.id)
    assert gateway.mints == []


async def test_reconcile_credits_confirmed_uncertain_mint(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    signature = str(Signature.new_unique())
    gateway.fail_with = ChainError("Timed out", broadcast_uncertain=True, signature=signature)
    with pytest.raises(ChainError):
        await reward_engine.claim(creator.id)

    gateway.statuses[signature] = SignatureStatus(
        signature=signature, found=True, confirmed=True, confirmation_status="finalized"
    )
    report = await reward_engine.reconcile()

    rows = await ledger_rows(creator.id)
    assert report.settled == [rows[0].id]
    assert rows[0].status == LedgerStatus.SETTLED.value
    assert await skr_units(creator.id) == 3_000_000_000

    # Idempotent
    again = await reward_engine.reconcile()
    assert again.settled == [] and again.unresolved == []
    assert await skr_units(creator.id) == 3_000_000_000


async def test_reconcile_releases_failed_uncertain_mint(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    signature = str(Signature.new_unique())
    gateway.fail_with = ChainError("Timed out", broadcast_uncertain=True, signature=signature)
    with pytest.raises(ChainError):
        await reward_engine.claim(creator.id)

    gateway.statuses[signature] = SignatureStatus(
        signature=signature, found=True, err="InstructionError"
    )
    report = await reward_engine.reconcile()

    assert len(report.released) == 1
    assert await ledger_rows(creator.id) == []
    assert await reward_engine.compute_accrued(creator.id) == Decimal("3.0")


async def test_reconcile_leaves_unknown_signature_unresolved(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    gateway.fail_with = ChainError(
        "Timed out", broadcast_uncertain=True, signature=str(Signature.new_unique())
    )
    with pytest.raises(ChainError):
        await reward_engine.claim(creator.id)

    report = await reward_engine.reconcile()

    assert len(report.unresolved) == 1
    rows = await ledger_rows(creator.id)
    assert rows[0].status == LedgerStatus.UNCERTAIN.value


async def test_reconcile_credits_minted_rows(reward_engine, creator):
    await add_post(creator.id, likes=10, comments=4)
    async with database.get_async_session() as session:
        ledger = RewardLedgerRepository(session)
        entry = await ledger.insert(RewardLedgerEntry(
            account_id=creator.id,
            period="2026-03-09T00:00:00Z",
            amount_units=1_000_000_000,
            status=LedgerStatus.PENDING.value,
            trigger="claim",
            destination_address=creator.wallet_address
        ))
        await ledger.mark_minted(entry.id, str(Signature.new_unique()))

    report = await reward_engine.reconcile()

    assert len(report.settled) == 1
    assert await skr_units(creator.id) == 1_000_000_000


async def test_signature_is_stored_before_broadcast(reward_engine, gateway, creator):
    await add_post(creator.id, likes=10, comments=4)
    seen = []
    original_mint = gateway.reward_mint

    async def interrupted_mint(destination_address, amount_skr, on_signed=None):
        async def capture(signature):
            await on_signed(signature)
            seen.extend(row.tx_signature for row in await ledger_rows(creator.id))
        await original_mint(destination_address, amount_skr, on_signed=capture)
        raise RuntimeError("connection dropped")

    gateway.reward_mint = interrupted_mint

    with pytest.raises(RuntimeError):
        await reward_engine.claim(creator.id)

    rows = await ledger_rows(creator.id)
    assert seen and seen[0] is not None
    assert rows[0].status == LedgerStatus.UNCERTAIN.value
    assert rows[0].tx_signature == seen[0]
    with pytest.raises(AlreadyClaimedError):
        await reward_engine.claim(creator.id)


async def test_reconcile_settles_pending_row_with_signature(reward_engine, gateway, creator):
    signature = str(Signature.new_unique())
    async with database.get_async_session() as session:
        ledger = RewardLedgerRepository(session)
        entry = await ledger.insert(RewardLedgerEntry(
            account_id=creator.id,
            period="2026-03-09T00:00:00Z",
            amount_units=2_000_000_000,
            status=LedgerStatus.PENDING.value,
            trigger="scheduler",
            destination_address=creator.wallet_address
        ))
        await ledger.record_signature(entry.id, signature)
    gateway.statuses[signature] = SignatureStatus(
        signature=signature, found=True, confirmed=True, confirmation_status="confirmed"
    )

    report = await reward_engine.reconcile()

    rows = await ledger_rows(creator.id)
    assert report.settled == [rows[0].id]
    assert rows[0].status == LedgerStatus.SETTLED.value
    assert await skr_units(creator.id) == 2_000_000_000


async def test_mark_minted_leaves_settled_rows_alone(creator):
    async with database.get_async_session() as session:
        ledger = RewardLedgerRepository(session)
        entry = await ledger.insert(RewardLedgerEntry(
            account_id=creator.id,
            period="2026-03-09T00:00:00Z",
            amount_units=1,
            status=LedgerStatus.PENDING.value,
            trigger="claim",
            destination_address=creator.wallet_address
        ))
        assert await ledger.mark_minted(entry.id, str(Signature.new_unique()))
        assert await ledger.settle(entry.id)
        assert not await ledger.mark_minted(entry.id, str(Signature.new_unique()))
        assert not await ledger.settle(entry.id)


async def test_balance_equals_settled_ledger(reward_engine, gateway, creator, clock):
    post = await add_post(creator.id, likes=3, comments=1)
    await reward_engine.claim(creator.id)

    for likes in (7, 12, 20):
        clock.now += timedelta(days=1)
        await set_engagement(post.id, likes=likes, comments=1)
        await reward_engine.claim(creator.id)

    async with database.get_async_session() as session:
        settled = await RewardLedgerRepository(session).total_settled(creator.id)

    assert settled == await skr_units(creator.id)
    assert sum(amount for _, amount in gateway.mints) == Decimal("2.5")


async def test_summary(reward_engine, creator):
    await add_post(creator.id, likes=10, comments=4)
    await reward_engine.claim(creator.id)

    summary = await reward_engine.get_summary(creator.id)

    assert summary.total_paid == Decimal("3.0")
    assert summary.pending_rewards == 0
    assert summary.claimed_this_period is True
    assert summary.total_likes == 10
    assert summary.total_posts == 1
