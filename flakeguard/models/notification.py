"""Notification task domain models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Kind of quarantine event being announced."""

    AUTO_QUARANTINE = "auto_quarantine"
    AUTO_UNQUARANTINE = "auto_unquarantine"
    MANUAL_QUARANTINE = "manual_quarantine"
    MANUAL_UNQUARANTINE = "manual_unquarantine"


class NotificationTask(BaseModel):
    """Notification task for async processing."""

    task_id: str = Field(..., description="Task unique identifier")
    notification_type: NotificationType
    project_id: str
    test_name: str
    test_suite: str | None = None
    title: str = Field(..., description="Short headline")
    message: str = Field(..., description="Notification message content")
    retry_count: int = Field(default=0, ge=0, description="Current retry count")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional metadata (decision reason, confidence, etc.)",
    )

    def should_retry(self, max_retry: int) -> bool:
        """Check if task should be retried."""
        return self.retry_count < max_retry

    def calculate_retry_delay(self, base_delay: float = 1.0) -> float:
        """Calculate exponential backoff delay in seconds."""
        return base_delay * (2 ** self.retry_count)
