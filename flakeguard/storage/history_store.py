"""Quarantine history storage operations."""

from datetime import datetime

from redis.asyncio import Redis

from flakeguard.models.history import QuarantineHistoryEntry
from flakeguard.storage.redis_client import RedisKeys, get_redis


def _score(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class HistoryStore:
    """Append-only history ledger using Redis.

    Entries are appended to a per-pattern list in transition order and
    indexed per project in a sorted set scored by creation time. Nothing
    here updates or removes an entry.
    """

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def append(self, entry: QuarantineHistoryEntry) -> QuarantineHistoryEntry:
        """Append a history entry.

        Args:
            entry: Entry to record

        Returns:
            Recorded entry
        """
        data = entry.model_dump_json()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(RedisKeys.history(entry.flaky_test_pattern_id), data)
            pipe.zadd(RedisKeys.history_index(entry.project_id), {data: _score(entry.created_at)})
            await pipe.execute()
        return entry

    async def list_by_pattern(self, pattern_id: str) -> list[QuarantineHistoryEntry]:
        """History of one test, oldest first."""
        data = await self.redis.lrange(RedisKeys.history(pattern_id), 0, -1)
        return [QuarantineHistoryEntry.model_validate_json(item) for item in data]

    async def list_by_project(
        self,
        project_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[QuarantineHistoryEntry]:
        """History of a project, newest first.

        Args:
            project_id: Project ID
            since: Only entries created at or after this time (optional)
            until: Only entries created at or before this time (optional)
            limit: Maximum number of entries (optional)

        Returns:
            Matching entries
        """
        high = _score(until) if until else "+inf"
        low = _score(since) if since else "-inf"
        if limit is None:
            data = await self.redis.zrevrangebyscore(RedisKeys.history_index(project_id), high, low)
        else:
            data = await self.redis.zrevrangebyscore(
                RedisKeys.history_index(project_id), high, low, start=0, num=limit
            )
        return [QuarantineHistoryEntry.model_validate_json(item) for item in data]
