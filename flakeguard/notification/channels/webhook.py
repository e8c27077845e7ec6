"""Generic JSON webhook notification channel."""

import httpx

from flakeguard.core.logging import get_logger
from flakeguard.models.notification import NotificationTask
from flakeguard.notification.channels.base import NotificationChannel

logger = get_logger(__name__)


class WebhookChannel(NotificationChannel):
    """Posts each transition as a JSON document to a configured URL."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def channel_type(self) -> str:
        return "webhook"

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    async def send(self, task: NotificationTask) -> bool:
        payload = {
            "event": task.notification_type.value,
            "project_id": task.project_id,
            "test_name": task.test_name,
            "test_suite": task.test_suite,
            "title": task.title,
            "message": task.message,
            "created_at": task.created_at.isoformat(),
            "metadata": task.metadata,
        }

        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Webhook send error", task_id=task.task_id, error=str(e))
            return False

        if response.is_success:
            logger.info("Webhook notification sent", task_id=task.task_id)
            return True

        logger.warning(
            "Webhook send failed",
            task_id=task.task_id,
            status_code=response.status_code,
        )
        return False

    async def close(self) -> None:
        await self._client.aclose()
