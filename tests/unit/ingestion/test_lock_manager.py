"""Tests for the Redis lock manager."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from analytics_core.ingestion.lock_manager import (
    RELEASE_SCRIPT,
    RedisLock,
    acquire_lock,
    release_lock,
)


@pytest.mark.asyncio
async def test_acquire_sets_key_with_ttl(fake_redis):
    lock = await acquire_lock(fake_redis, "analytics:ingestion:a", 120_000)

    assert lock is not None
    assert lock.key == "analytics:ingestion:a"
    assert fake_redis.values[lock.key] == lock.token
    assert fake_redis.set_calls[0]["px"] == 120_000
    assert fake_redis.set_calls[0]["nx"] is True


@pytest.mark.asyncio
async def test_acquire_returns_none_when_held(fake_redis):
    first = await acquire_lock(fake_redis, "k", 1000)
    second = await acquire_lock(fake_redis, "k", 1000)

    assert first is not None
    assert second is None
    assert fake_redis.values["k"] == first.token


@pytest.mark.asyncio
async def test_tokens_are_unique(fake_redis):
    a = await acquire_lock(fake_redis, "a", 1000)
    b = await acquire_lock(fake_redis, "b", 1000)
    assert a.token != b.token


@pytest.mark.asyncio
async def test_release_deletes_owned_key(fake_redis):
    lock = await acquire_lock(fake_redis, "k", 1000)

    assert await release_lock(fake_redis, lock) is True
    assert "k" not in fake_redis.values
    assert fake_redis.eval_calls[0] == (RELEASE_SCRIPT, 1, "k", lock.token)


@pytest.mark.asyncio
async def test_release_with_stale_token_keeps_new_holder(fake_redis):
    """After TTL reassignment the old holder must not delete the new lock."""
    fake_redis.values["k"] = "other-instance-token"

    released = await release_lock(fake_redis, RedisLock(key="k", token="expired-token"))

    assert released is False
    assert fake_redis.values["k"] == "other-instance-token"


@pytest.mark.asyncio
async def test_release_none_is_noop(fake_redis):
    assert await release_lock(fake_redis, None) is False
    assert fake_redis.eval_calls == []


@pytest.mark.asyncio
async def test_redis_errors_are_not_raised():
    redis = AsyncMock()
    redis.set.side_effect = RedisConnectionError("down")
    redis.eval.side_effect = RedisConnectionError("down")

    assert await acquire_lock(redis, "k", 1000) is None
    assert await release_lock(redis, RedisLock(key="k", token="t")) is False


@pytest.mark.asyncio
async def test_ttl_is_at_least_one_millisecond(fake_redis):
    await acquire_lock(fake_redis, "k", 0)
    assert fake_redis.set_calls[0]["px"] == 1
