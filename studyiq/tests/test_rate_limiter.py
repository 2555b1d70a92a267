"""
Tests for the adaptive generation rate limiter.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from studyiq.adaptive import GenerationRateLimiter
from studyiq.common.config import AdaptiveQuizConfig
from studyiq.common.error_handling import ErrorCode, RateLimitError
from studyiq.tests.factories import NOW, USER_ID, make_session

NEXT_MIDNIGHT = datetime(2026, 3, 11, tzinfo=timezone.utc)


async def add_sessions(store, count, created_at, user_id=USER_ID):
    for i in range(count):
        await store.sessions.create(make_session(f"{user_id}-s{created_at.timestamp()}-{i}", ["q"], created_at,
                                                 user_id=user_id))


@pytest.mark.asyncio
async def test_allows_under_daily_limit(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(daily_limit=3), clock)
    await add_sessions(store, 2, NOW - timedelta(hours=1))

    decision = await limiter.check(USER_ID)

    assert decision.allowed
    assert decision.sessions_today == 2
    assert decision.remaining_today == 1
    assert decision.reason is None


@pytest.mark.asyncio
async def test_daily_limit_counts_utc_day_only(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(daily_limit=3), clock)
    await add_sessions(store, 3, NOW - timedelta(hours=13))
    await add_sessions(store, 3, NOW - timedelta(hours=1), user_id="someone-else")

    decision = await limiter.check(USER_ID)
    assert decision.allowed
    assert decision.sessions_today == 0


@pytest.mark.asyncio
async def test_daily_limit_blocks_until_midnight(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(daily_limit=3), clock)
    await add_sessions(store, 3, NOW - timedelta(hours=2))

    decision = await limiter.check(USER_ID)
    assert not decision.allowed
    assert decision.reason is ErrorCode.DAILY_LIMIT_EXCEEDED
    assert decision.next_available_at == NEXT_MIDNIGHT
    assert decision.retry_after_seconds == 12 * 3600
    assert decision.remaining_today == 0

    with pytest.raises(RateLimitError) as exc_info:
        await limiter.enforce(USER_ID)
    error = exc_info.value
    assert error.code is ErrorCode.DAILY_LIMIT_EXCEEDED
    assert error.retry_after == 12 * 3600
    assert error.details["sessions_today"] == 3
    assert error.details["daily_limit"] == 3

    clock.set(NEXT_MIDNIGHT)
    assert (await limiter.check(USER_ID)).allowed


@pytest.mark.asyncio
async def test_cooldown(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(cooldown_minutes=15), clock)
    await add_sessions(store, 1, NOW - timedelta(minutes=5))

    decision = await limiter.check(USER_ID)
    assert not decision.allowed
    assert decision.reason is ErrorCode.COOLDOWN_ACTIVE
    assert decision.retry_after_seconds == 600
    assert decision.next_available_at == NOW + timedelta(minutes=10)

    with pytest.raises(RateLimitError) as exc_info:
        await limiter.enforce(USER_ID)
    assert exc_info.value.code is ErrorCode.COOLDOWN_ACTIVE

    clock.advance(minutes=10)
    assert (await limiter.check(USER_ID)).allowed


@pytest.mark.asyncio
async def test_zero_limits_disable_checks(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(daily_limit=0, cooldown_minutes=0), clock)
    await add_sessions(store, 20, NOW)

    decision = await limiter.enforce(USER_ID)
    assert decision.allowed
    assert decision.remaining_today is None
    assert decision.warnings == []


@pytest.mark.asyncio
async def test_low_remaining_warning(store, clock):
    limiter = GenerationRateLimiter(store, AdaptiveQuizConfig(daily_limit=10), clock)
    await add_sessions(store, 7, NOW - timedelta(hours=1))
    assert (await limiter.check(USER_ID)).warnings == []

    await add_sessions(store, 1, NOW)
    decision = await limiter.enforce(USER_ID)
    assert decision.warnings == ["2 adaptive quiz generations left today"]


@pytest.mark.asyncio
async def test_lease_serializes_per_user(store, clock):
    limiter = GenerationRateLimiter(store, clock=clock)
    events = []

    async def hold(user_id, name):
        async with limiter.lease(user_id):
            events.append(f"{name}-in")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            events.append(f"{name}-out")

    await asyncio.gather(hold(USER_ID, "a"), hold(USER_ID, "b"), hold("other", "c"))

    assert events.index("a-out") < events.index("b-in")
    assert events.index("c-in") < events.index("a-out")


@pytest.mark.asyncio
async def test_lease_lock_dropped_when_released(store, clock):
    limiter = GenerationRateLimiter(store, clock=clock)
    inside = []

    async def hold(user_id):
        async with limiter.lease(user_id):
            inside.append(len(limiter._locks))
            await asyncio.sleep(0)

    await asyncio.gather(hold(USER_ID), hold(USER_ID), hold("other"))
    assert max(inside) == 2
    assert limiter._locks == {}

    with pytest.raises(RuntimeError):
        async with limiter.lease(USER_ID):
            raise RuntimeError("generation failed")
    assert limiter._locks == {}

    # a waiter still shares the lock of the holder that is releasing
    async with limiter.lease(USER_ID):
        waiter = asyncio.ensure_future(hold(USER_ID))
        await asyncio.sleep(0)
        assert len(limiter._locks) == 1
    await waiter
    assert limiter._locks == {}
