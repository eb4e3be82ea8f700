"""
Tests for the reward distribution scheduler.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from skrvault.core.exceptions import ChainError
from skrvault.scheduler.reward_scheduler import RewardScheduler, SchedulerStatus

from conftest import add_post


async def make_creators(account_service, count):
    creators = []
    for i in range(count):
        creators.append(await account_service.signup(
            f"creator_{i}", f"creator{i}@example.com", "password123", role="creator"
        ))
    return creators


def test_next_fire_time_follows_cron(reward_engine, test_settings):
    scheduler = RewardScheduler(reward_engine, settings=test_settings, cron="0 0 * * *")

    fire = scheduler.next_fire_time(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))

    assert fire == datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)


async def test_one_failing_creator_does_not_block_others(
    reward_engine, account_service, gateway, test_settings
):
    creators = await make_creators(account_service, 3)
    for creator in creators:
        await add_post(creator.id, likes=10, comments=4)
    idle = await account_service.signup("idle_creator", "idle@example.com", "password123", role="creator")
    await account_service.signup("just_a_fan", "fan2@example.com", "password123")

    broken = creators[1]
    gateway.fail_for[broken.wallet_address] = ChainError("Preflight failed")

    scheduler = RewardScheduler(reward_engine, settings=test_settings)
    stats = await scheduler.run_once()

    assert stats.creators == 4
    assert stats.paid == 2
    assert stats.failed == 1
    assert stats.skipped == 1
    assert stats.failures == {broken.id: "CHAIN_ERROR"}
    assert stats.total_paid == Decimal("6.0")
    assert idle.wallet_address not in {dest for dest, _ in gateway.mints}


async def test_repeat_run_in_same_period_pays_nothing(
    reward_engine, account_service, gateway, test_settings
):
    creators = await make_creators(account_service, 2)
    for creator in creators:
        await add_post(creator.id, likes=5)

    scheduler = RewardScheduler(reward_engine, settings=test_settings)
    first = await scheduler.run_once()
    second = await scheduler.trigger_manual_run()

    assert first.paid == 2
    assert second.paid == 0 and second.skipped == 2
    assert len(gateway.mints) == 2
    assert scheduler.get_status()["total_runs"] == 2
    assert scheduler.get_status()["last_distribution"]["triggered_by"] == "manual"


async def test_unexpected_error_is_isolated(reward_engine, account_service, gateway, test_settings):
    creators = await make_creators(account_service, 2)
    for creator in creators:
        await add_post(creator.id, likes=5)
    gateway.fail_for[creators[0].wallet_address] = RuntimeError("boom")

    scheduler = RewardScheduler(reward_engine, settings=test_settings)
    stats = await scheduler.run_once()

    assert stats.failures == {creators[0].id: "INTERNAL_ERROR"}
    assert stats.paid == 1


async def test_start_and_stop(reward_engine, test_settings):
    test_settings.scheduler_enabled = True
    scheduler = RewardScheduler(reward_engine, settings=test_settings)

    await scheduler.start()
    assert scheduler.status == SchedulerStatus.WAITING
    assert scheduler.get_status()["next_run"] is not None

    await scheduler.stop()
    assert scheduler.status == SchedulerStatus.STOPPED


async def test_disabled_scheduler_does_not_start(reward_engine, test_settings):
    scheduler = RewardScheduler(reward_engine, settings=test_settings)

    await scheduler.start()
    await asyncio.sleep(0)

    assert scheduler.status == SchedulerStatus.STOPPED
