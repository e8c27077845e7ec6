"""Redis client management."""

import redis.asyncio as redis
from redis.asyncio import Redis

from flakeguard.core.config import get_settings

# Connection pool, created at process start
_pool: redis.ConnectionPool | None = None


async def init_redis_pool() -> None:
    """Initialize Redis connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=20,
        )


async def close_redis_pool() -> None:
    """Close Redis connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def get_redis() -> Redis:
    """Get Redis client from pool.

    Raises:
        RuntimeError: If pool not initialized
    """
    if _pool is None:
        raise RuntimeError("Redis pool not initialized. Call init_redis_pool() first.")
    return redis.Redis(connection_pool=_pool)


class RedisKeys:
    """Redis key patterns."""

    # Projects
    PROJECTS = "flakeguard:projects"
    AUTOMATION = "flakeguard:automation:{project_id}"

    # Patterns
    PATTERN = "flakeguard:pattern:{pattern_id}"
    PATTERN_INDEX = "flakeguard:patterns:{project_id}"
    QUARANTINED_INDEX = "flakeguard:quarantined:{project_id}"

    # Policies
    POLICY = "flakeguard:policy:{policy_id}"
    POLICY_INDEX = "flakeguard:policies:{project_id}"
    ACTIVE_POLICY = "flakeguard:policies:{project_id}:active"
    POLICY_AUDIT = "flakeguard:policies:{project_id}:audit"

    # History
    HISTORY = "flakeguard:history:pattern:{pattern_id}"
    HISTORY_INDEX = "flakeguard:history:project:{project_id}"

    # Impact
    IMPACT_EPISODES = "flakeguard:impact:{pattern_id}"
    IMPACT_INDEX = "flakeguard:impact:project:{project_id}"

    # Auxiliary
    PROCESSED = "flakeguard:processed:{result_id}"
    TRANSITION_LOCK = "flakeguard:lock:{lock_name}"
    NOTIFY_QUEUE = "flakeguard:notify:queue"
    NOTIFY_DEAD_LETTER = "flakeguard:notify:dead_letter"

    @classmethod
    def automation(cls, project_id: str) -> str:
        return cls.AUTOMATION.format(project_id=project_id)

    @classmethod
    def pattern(cls, pattern_id: str) -> str:
        return cls.PATTERN.format(pattern_id=pattern_id)

    @classmethod
    def pattern_index(cls, project_id: str) -> str:
        return cls.PATTERN_INDEX.format(project_id=project_id)

    @classmethod
    def quarantined_index(cls, project_id: str) -> str:
        return cls.QUARANTINED_INDEX.format(project_id=project_id)

    @classmethod
    def policy(cls, policy_id: str) -> str:
        return cls.POLICY.format(policy_id=policy_id)

    @classmethod
    def policy_index(cls, project_id: str) -> str:
        return cls.POLICY_INDEX.format(project_id=project_id)

    @classmethod
    def active_policy(cls, project_id: str) -> str:
        return cls.ACTIVE_POLICY.format(project_id=project_id)

    @classmethod
    def policy_audit(cls, project_id: str) -> str:
        return cls.POLICY_AUDIT.format(project_id=project_id)

    @classmethod
    def history(cls, pattern_id: str) -> str:
        return cls.HISTORY.format(pattern_id=pattern_id)

    @classmethod
    def history_index(cls, project_id: str) -> str:
        return cls.HISTORY_INDEX.format(project_id=project_id)

    @classmethod
    def impact_episodes(cls, pattern_id: str) -> str:
        return cls.IMPACT_EPISODES.format(pattern_id=pattern_id)

    @classmethod
    def impact_index(cls, project_id: str) -> str:
        return cls.IMPACT_INDEX.format(project_id=project_id)

    @classmethod
    def processed(cls, result_id: str) -> str:
        return cls.PROCESSED.format(result_id=result_id)

    @classmethod
    def transition_lock(cls, lock_name: str) -> str:
        return cls.TRANSITION_LOCK.format(lock_name=lock_name)
