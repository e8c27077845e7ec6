"""Tests for per-key transition locks."""

import asyncio

import pytest

from flakeguard.core.errors import ConcurrentTransitionError
from flakeguard.engine.locks import TransitionLocks
from flakeguard.storage.redis_client import RedisKeys


@pytest.mark.asyncio
async def test_same_key_is_serialized(redis) -> None:
    locks = TransitionLocks(redis, retry_delay_seconds=0)
    events: list[str] = []

    async def worker(tag: str) -> None:
        async with locks.hold("proj:suite:test_a"):
            events.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            events.append(f"{tag}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert locks.is_held("proj:suite:test_a") is False


@pytest.mark.asyncio
async def test_different_keys_do_not_block(redis) -> None:
    locks = TransitionLocks(redis)

    async with locks.hold("proj:suite:test_a"):
        async with locks.hold("proj:suite:test_b"):
            assert locks.is_held("proj:suite:test_a")
            assert locks.is_held("proj:suite:test_b")


@pytest.mark.asyncio
async def test_lease_held_elsewhere_raises_after_retry(redis) -> None:
    locks = TransitionLocks(redis, retry_delay_seconds=0)
    await redis.set(RedisKeys.transition_lock("proj:suite:test_a"), "other-process")

    with pytest.raises(ConcurrentTransitionError) as exc_info:
        async with locks.hold("proj:suite:test_a"):
            pass

    assert exc_info.value.lock_key == "proj:suite:test_a"
    assert await redis.get(RedisKeys.transition_lock("proj:suite:test_a")) == "other-process"


@pytest.mark.asyncio
async def test_lease_is_released_on_exit(redis) -> None:
    locks = TransitionLocks(redis)

    async with locks.hold("proj:suite:test_a"):
        assert await redis.exists(RedisKeys.transition_lock("proj:suite:test_a")) == 1

    assert await redis.exists(RedisKeys.transition_lock("proj:suite:test_a")) == 0


@pytest.mark.asyncio
async def test_local_only_locks_skip_redis(redis) -> None:
    locks = TransitionLocks(redis, distributed=False)

    async with locks.hold("proj:suite:test_a"):
        assert await redis.exists(RedisKeys.transition_lock("proj:suite:test_a")) == 0
