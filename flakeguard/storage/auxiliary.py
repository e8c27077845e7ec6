"""Auxiliary storage operations (idempotency, queues)."""

from redis.asyncio import Redis

from flakeguard.models.notification import NotificationTask
from flakeguard.storage.redis_client import RedisKeys, get_redis


class IdempotencyStore:
    """Processed test result markers."""

    TTL_SECONDS = 86400  # 1 day

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def mark_processed(self, result_id: str) -> bool:
        """Mark a result as processed.

        Args:
            result_id: Result ID to mark

        Returns:
            True if newly marked, False if already existed
        """
        result = await self.redis.set(
            RedisKeys.processed(result_id), "1", nx=True, ex=self.TTL_SECONDS
        )
        return bool(result)

    async def unmark(self, result_id: str) -> None:
        """Forget a marker so a redelivered result is folded again."""
        await self.redis.delete(RedisKeys.processed(result_id))


class NotificationQueue:
    """Notification task queue."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def enqueue(self, task: NotificationTask) -> None:
        """Add task to notification queue."""
        await self.redis.lpush(RedisKeys.NOTIFY_QUEUE, task.model_dump_json())

    async def dequeue(self, timeout: int = 5) -> NotificationTask | None:
        """Get next task from queue.

        Args:
            timeout: Blocking timeout in seconds

        Returns:
            Next task if available
        """
        result = await self.redis.brpop(RedisKeys.NOTIFY_QUEUE, timeout=timeout)
        if result:
            _, data = result
            return NotificationTask.model_validate_json(data)
        return None

    async def requeue(self, task: NotificationTask) -> None:
        """Requeue a task with its retry count incremented."""
        task.retry_count += 1
        await self.enqueue(task)

    async def move_to_dead_letter(self, task: NotificationTask) -> None:
        await self.redis.lpush(RedisKeys.NOTIFY_DEAD_LETTER, task.model_dump_json())

    async def queue_length(self) -> int:
        return await self.redis.llen(RedisKeys.NOTIFY_QUEUE)

    async def dead_letter_length(self) -> int:
        return await self.redis.llen(RedisKeys.NOTIFY_DEAD_LETTER)
