"""Quarantine policy storage operations."""

from redis.asyncio import Redis

from flakeguard.core.errors import PolicyMissingError
from flakeguard.models.policy import PolicyAuditEntry, QuarantinePolicy
from flakeguard.storage.redis_client import RedisKeys, get_redis


class PolicyStore:
    """Policy storage using Redis.

    A project's active policy is a single pointer key, so at most one policy
    per project can ever be active. ``is_active`` on returned policies is
    derived from that pointer, never from the stored document.
    """

    AUDIT_MAX_ENTRIES = 500

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def get(self, policy_id: str) -> QuarantinePolicy | None:
        """Get a policy by ID.

        Args:
            policy_id: Policy ID

        Returns:
            Policy if found, None otherwise
        """
        data = await self.redis.get(RedisKeys.policy(policy_id))
        if not data:
            return None
        policy = QuarantinePolicy.model_validate_json(data)
        policy.is_active = await self.get_active_id(policy.project_id) == policy.policy_id
        return policy

    async def save(self, policy: QuarantinePolicy) -> QuarantinePolicy:
        """Create or replace a policy document.

        Args:
            policy: Policy to store

        Returns:
            Stored policy
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(RedisKeys.policy(policy.policy_id), policy.model_dump_json(exclude={"is_active"}))
            pipe.sadd(RedisKeys.policy_index(policy.project_id), policy.policy_id)
            await pipe.execute()
        policy.is_active = await self.get_active_id(policy.project_id) == policy.policy_id
        return policy

    async def delete(self, policy: QuarantinePolicy) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(RedisKeys.policy(policy.policy_id))
            pipe.srem(RedisKeys.policy_index(policy.project_id), policy.policy_id)
            await pipe.execute()

    async def list_by_project(self, project_id: str) -> list[QuarantinePolicy]:
        """List all policies of a project, active first, then by name."""
        policy_ids = await self.redis.smembers(RedisKeys.policy_index(project_id))
        active_id = await self.get_active_id(project_id)
        policies = []
        for policy_id in policy_ids:
            data = await self.redis.get(RedisKeys.policy(policy_id))
            if not data:
                continue
            policy = QuarantinePolicy.model_validate_json(data)
            policy.is_active = policy.policy_id == active_id
            policies.append(policy)

        policies.sort(key=lambda p: (not p.is_active, p.name))
        return policies

    async def find_by_name(self, project_id: str, name: str) -> QuarantinePolicy | None:
        for policy in await self.list_by_project(project_id):
            if policy.name == name:
                return policy
        return None

    async def get_active_id(self, project_id: str) -> str | None:
        return await self.redis.get(RedisKeys.active_policy(project_id))

    async def get_active(self, project_id: str) -> QuarantinePolicy:
        """Get the project's active policy.

        Raises:
            PolicyMissingError: If no policy is active or the pointer is dangling
        """
        policy_id = await self.get_active_id(project_id)
        if policy_id is None:
            raise PolicyMissingError(project_id)
        policy = await self.get(policy_id)
        if policy is None:
            raise PolicyMissingError(project_id)
        return policy

    async def set_active(self, project_id: str, policy_id: str) -> str | None:
        """Point the project at a policy.

        Returns:
            ID of the previously active policy, if any
        """
        return await self.redis.set(RedisKeys.active_policy(project_id), policy_id, get=True)

    async def clear_active(self, project_id: str, policy_id: str) -> bool:
        """Clear the active pointer if it still points at ``policy_id``.

        Returns:
            True if the pointer was cleared
        """
        key = RedisKeys.active_policy(project_id)
        if await self.redis.get(key) != policy_id:
            return False
        await self.redis.delete(key)
        return True

    async def append_audit(self, entry: PolicyAuditEntry) -> None:
        key = RedisKeys.policy_audit(entry.project_id)
        await self.redis.lpush(key, entry.model_dump_json())
        await self.redis.ltrim(key, 0, self.AUDIT_MAX_ENTRIES - 1)

    async def list_audit(self, project_id: str, limit: int = 50) -> list[PolicyAuditEntry]:
        """Most recent policy audit entries first."""
        data = await self.redis.lrange(RedisKeys.policy_audit(project_id), 0, limit - 1)
        return [PolicyAuditEntry.model_validate_json(item) for item in data]
