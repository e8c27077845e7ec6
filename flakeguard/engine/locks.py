"""Per-key transition locks.

A transition lock serializes everything that mutates one test (result folds
and state transitions). In-process callers queue on an ``asyncio.Lock``;
other processes are excluded through a Redis ``SET NX PX`` lease.
"""

import asyncio
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.asyncio import Redis

from flakeguard.core.errors import ConcurrentTransitionError
from flakeguard.core.logging import get_logger
from flakeguard.storage.redis_client import RedisKeys, get_redis

logger = get_logger(__name__)


class TransitionLocks:
    """Lock registry owned by one service instance."""

    def __init__(
        self,
        redis: Redis | None = None,
        ttl_seconds: int = 30,
        retry_delay_seconds: float = 0.2,
        distributed: bool = True,
    ):
        self._redis = redis
        self._ttl_ms = ttl_seconds * 1000
        self._retry_delay = retry_delay_seconds
        self._distributed = distributed
        self._local: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Hold the lock for ``name`` for the duration of the block.

        Raises:
            ConcurrentTransitionError: another process holds the lease after one retry
        """
        lock = self._local.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        try:
            async with lock:
                token = await self._acquire_lease(name) if self._distributed else None
                try:
                    yield
                finally:
                    if token is not None:
                        await self._release_lease(name, token)
        finally:
            self._users[name] -= 1
            if self._users[name] == 0:
                del self._users[name]
                self._local.pop(name, None)

    def is_held(self, name: str) -> bool:
        lock = self._local.get(name)
        return lock is not None and lock.locked()

    async def _acquire_lease(self, name: str) -> str:
        key = RedisKeys.transition_lock(name)
        token = secrets.token_hex(16)
        for attempt in range(2):
            if await self.redis.set(key, token, nx=True, px=self._ttl_ms):
                return token
            if attempt == 0:
                logger.debug("Transition lock busy, retrying", lock=name)
                await asyncio.sleep(self._retry_delay)

        logger.warning("Transition lock contention", lock=name)
        raise ConcurrentTransitionError(name)

    async def _release_lease(self, name: str, token: str) -> None:
        key = RedisKeys.transition_lock(name)
        # Only delete our own lease; an expired one may belong to someone else.
        if await self.redis.get(key) == token:
            await self.redis.delete(key)
