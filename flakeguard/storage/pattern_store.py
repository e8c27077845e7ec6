"""Flaky test pattern storage operations."""

from redis.asyncio import Redis

from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.storage.redis_client import RedisKeys, get_redis


class PatternStore:
    """Pattern storage using Redis.

    Each pattern is a JSON document; per-project sets index all patterns and
    the quarantined subset.
    """

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def get(self, pattern_id: str) -> FlakyTestPattern | None:
        """Get a pattern by ID.

        Args:
            pattern_id: Pattern ID

        Returns:
            Pattern if found, None otherwise
        """
        data = await self.redis.get(RedisKeys.pattern(pattern_id))
        if not data:
            return None
        return FlakyTestPattern.model_validate_json(data)

    async def get_by_key(self, key: PatternKey) -> FlakyTestPattern | None:
        return await self.get(key.pattern_id)

    async def save(self, pattern: FlakyTestPattern) -> FlakyTestPattern:
        """Create or replace a pattern and keep the project indexes in sync.

        Args:
            pattern: Pattern to store

        Returns:
            Stored pattern
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(RedisKeys.pattern(pattern.pattern_id), pattern.model_dump_json())
            pipe.sadd(RedisKeys.pattern_index(pattern.project_id), pattern.pattern_id)
            if pattern.status == QuarantineStatus.QUARANTINED:
                pipe.sadd(RedisKeys.quarantined_index(pattern.project_id), pattern.pattern_id)
            else:
                pipe.srem(RedisKeys.quarantined_index(pattern.project_id), pattern.pattern_id)
            await pipe.execute()
        return pattern

    async def list_by_project(
        self,
        project_id: str,
        status: QuarantineStatus | None = None,
    ) -> list[FlakyTestPattern]:
        """List patterns of a project.

        Args:
            project_id: Project ID
            status: Only return patterns in this state (optional)

        Returns:
            Patterns sorted by test suite and name
        """
        if status == QuarantineStatus.QUARANTINED:
            index = RedisKeys.quarantined_index(project_id)
        else:
            index = RedisKeys.pattern_index(project_id)

        pattern_ids = await self.redis.smembers(index)
        patterns = []
        for pattern_id in pattern_ids:
            pattern = await self.get(pattern_id)
            if pattern is None:
                continue
            if status is not None and pattern.status != status:
                continue
            patterns.append(pattern)

        patterns.sort(key=lambda p: (p.test_suite or "", p.test_name))
        return patterns

    async def count(self, project_id: str) -> int:
        return await self.redis.scard(RedisKeys.pattern_index(project_id))

    async def count_quarantined(self, project_id: str) -> int:
        return await self.redis.scard(RedisKeys.quarantined_index(project_id))
