"""Base class for notification channels."""

from abc import ABC, abstractmethod

from flakeguard.models.notification import NotificationTask


class NotificationChannel(ABC):
    """Abstract base class for notification channels."""

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Return channel type identifier."""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def send(self, task: NotificationTask) -> bool:
        """Deliver a notification.

        Args:
            task: Notification task with message

        Returns:
            True if sent successfully
        """

    async def close(self) -> None:
        """Clean up resources. Override if needed."""
