"""Notification worker for processing notification queue."""

import asyncio
from typing import Sequence

from flakeguard.core.config import Settings, get_settings
from flakeguard.core.logging import get_logger
from flakeguard.models.notification import NotificationTask
from flakeguard.notification.channels.base import NotificationChannel
from flakeguard.notification.channels.email import EmailChannel
from flakeguard.notification.channels.webhook import WebhookChannel
from flakeguard.observability.metrics import NOTIFICATION_QUEUE_LENGTH, NOTIFICATIONS_SENT
from flakeguard.storage.auxiliary import NotificationQueue

logger = get_logger(__name__)


def default_channels(settings: Settings) -> list[NotificationChannel]:
    """Channels enabled by configuration."""
    channels: list[NotificationChannel] = [
        WebhookChannel(settings.notification_webhook_url),
        EmailChannel(settings=settings),
    ]
    return [channel for channel in channels if channel.is_configured]


class NotificationWorker:
    """Worker for processing notification tasks from queue."""

    def __init__(
        self,
        queue: NotificationQueue,
        channels: Sequence[NotificationChannel] | None = None,
        settings: Settings | None = None,
        retry_base_delay: float = 1.0,
    ):
        self._settings = settings or get_settings()
        self._queue = queue
        self._retry_base_delay = retry_base_delay
        self._channels = list(channels) if channels is not None else default_channels(self._settings)
        self._should_stop = False

    async def start(self) -> None:
        """Start processing notification queue."""
        logger.info(
            "Notification worker started",
            channels=[channel.channel_type for channel in self._channels],
        )

        while not self._should_stop:
            try:
                task = await self._queue.dequeue(timeout=5)
                if task:
                    await self.process(task)
                NOTIFICATION_QUEUE_LENGTH.set(await self._queue.queue_length())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Worker error", error=str(e), exc_info=True)
                await asyncio.sleep(1)

        logger.info("Notification worker stopped")

    def stop(self) -> None:
        """Signal worker to stop."""
        self._should_stop = True

    async def close(self) -> None:
        for channel in self._channels:
            await channel.close()

    async def process(self, task: NotificationTask) -> bool:
        """Deliver one task through every channel.

        Returns:
            True if at least one channel accepted the task (or none is configured)
        """
        if not self._channels:
            logger.debug("No notification channels configured", task_id=task.task_id)
            return True

        success_count = 0
        for channel in self._channels:
            sent = await channel.send(task)
            NOTIFICATIONS_SENT.labels(
                channel=channel.channel_type,
                status="success" if sent else "failed",
            ).inc()
            if sent:
                success_count += 1

        if success_count > 0:
            logger.info(
                "Notification processed",
                task_id=task.task_id,
                success=success_count,
                failed=len(self._channels) - success_count,
            )
            return True

        if task.should_retry(self._settings.notification_max_retry):
            await asyncio.sleep(min(task.calculate_retry_delay(self._retry_base_delay), 30.0))
            await self._queue.requeue(task)
            logger.info(
                "Notification requeued for retry",
                task_id=task.task_id,
                retry_count=task.retry_count,
            )
        else:
            await self._queue.move_to_dead_letter(task)
            logger.warning("Notification moved to dead letter", task_id=task.task_id)
        return False
