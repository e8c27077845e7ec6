"""Project registry and automation settings storage."""

from redis.asyncio import Redis

from flakeguard.models.project import AutomationSettings
from flakeguard.storage.redis_client import RedisKeys, get_redis


class ProjectStore:
    """Known projects and their automation settings."""

    def __init__(self, redis: Redis | None = None):
        self._redis = redis

    @property
    def redis(self) -> Redis:
        return self._redis or get_redis()

    async def register(self, project_id: str) -> bool:
        """Record a project as known.

        Returns:
            True if the project was not known before
        """
        return bool(await self.redis.sadd(RedisKeys.PROJECTS, project_id))

    async def list_projects(self) -> list[str]:
        return sorted(await self.redis.smembers(RedisKeys.PROJECTS))

    async def get_automation(self, project_id: str) -> AutomationSettings:
        """Automation settings of a project; disabled defaults if never set."""
        data = await self.redis.get(RedisKeys.automation(project_id))
        if not data:
            return AutomationSettings(project_id=project_id)
        return AutomationSettings.model_validate_json(data)

    async def save_automation(self, settings: AutomationSettings) -> AutomationSettings:
        await self.redis.set(RedisKeys.automation(settings.project_id), settings.model_dump_json())
        await self.register(settings.project_id)
        return settings

    async def list_automated_projects(self) -> list[str]:
        """Projects with automation enabled, sorted by ID."""
        enabled = []
        for project_id in await self.list_projects():
            settings = await self.get_automation(project_id)
            if settings.enabled:
                enabled.append(project_id)
        return enabled
