"""Impact record storage operations."""

from datetime import datetime

from redis.asyncio import Redis

from flakeguard.models.impact import ImpactRecord
from flakeguard.storage.redis_client import RedisKeys, get_redis


class ImpactStore:
    """Quarantine episode storage using Redis hashes (one hash per pattern)."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def save(self, record: ImpactRecord) -> ImpactRecord:
        """Create or replace an episode record."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                RedisKeys.impact_episodes(record.flaky_test_pattern_id),
                record.episode_id,
                record.model_dump_json(),
            )
            pipe.sadd(RedisKeys.impact_index(record.project_id), record.flaky_test_pattern_id)
            await pipe.execute()
        return record

    async def list_by_pattern(self, pattern_id: str) -> list[ImpactRecord]:
        """Episodes of one test, oldest first."""
        data = await self.redis.hvals(RedisKeys.impact_episodes(pattern_id))
        records = [ImpactRecord.model_validate_json(item) for item in data]
        records.sort(key=lambda r: r.period_start)
        return records

    async def latest(self, pattern_id: str) -> ImpactRecord | None:
        """Open episode of a test, or its most recent closed one."""
        records = await self.list_by_pattern(pattern_id)
        for record in reversed(records):
            if record.is_open:
                return record
        return records[-1] if records else None

    async def list_by_project(
        self,
        project_id: str,
        since: datetime | None = None,
    ) -> list[ImpactRecord]:
        """Episodes of a project overlapping ``[since, now]``, oldest first.

        Args:
            project_id: Project ID
            since: Drop episodes that ended before this time (optional)

        Returns:
            Matching episodes
        """
        pattern_ids = await self.redis.smembers(RedisKeys.impact_index(project_id))
        records: list[ImpactRecord] = []
        for pattern_id in pattern_ids:
            for record in await self.list_by_pattern(pattern_id):
                if since is not None and record.period_end is not None and record.period_end < since:
                    continue
                records.append(record)
        records.sort(key=lambda r: r.period_start)
        return records
