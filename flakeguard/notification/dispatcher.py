"""Notification dispatcher for queuing transition notifications."""

import uuid

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.logging import get_logger
from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.decision import QuarantineDecision, UnquarantineDecision
from flakeguard.models.history import HistoryAction, QuarantineHistoryEntry
from flakeguard.models.notification import NotificationTask, NotificationType
from flakeguard.observability.metrics import NOTIFICATIONS_QUEUED
from flakeguard.storage.auxiliary import NotificationQueue

logger = get_logger(__name__)


class NotificationDispatcher:
    """Turns applied transitions into queued notification tasks."""

    def __init__(self, queue: NotificationQueue, clock: Clock | None = None):
        self._queue = queue
        self._clock = clock or SystemClock()

    async def on_transition(self, result: TransitionResult) -> None:
        entry = result.history_entry
        if entry is None:
            return

        if entry.action == HistoryAction.QUARANTINED:
            notification_type = (
                NotificationType.AUTO_QUARANTINE if entry.is_automatic else NotificationType.MANUAL_QUARANTINE
            )
        else:
            notification_type = (
                NotificationType.AUTO_UNQUARANTINE if entry.is_automatic else NotificationType.MANUAL_UNQUARANTINE
            )

        task = NotificationTask(
            task_id=f"notify_{uuid.uuid4().hex[:12]}",
            notification_type=notification_type,
            project_id=entry.project_id,
            test_name=entry.test_name,
            test_suite=entry.test_suite,
            title=self._build_title(result, notification_type),
            message=self._build_message(result, entry),
            created_at=self._clock.now(),
            metadata={
                "pattern_id": entry.flaky_test_pattern_id,
                "reason": entry.reason,
                "triggered_by": entry.triggered_by,
                "confidence": entry.confidence,
            },
        )
        await self._queue.enqueue(task)
        NOTIFICATIONS_QUEUED.labels(notification_type=notification_type.value).inc()

        logger.info(
            "Notification queued",
            task_id=task.task_id,
            notification_type=notification_type.value,
            pattern_id=entry.flaky_test_pattern_id,
        )

    @staticmethod
    def _build_title(result: TransitionResult, notification_type: NotificationType) -> str:
        test = result.pattern.test_name
        if notification_type in (NotificationType.AUTO_QUARANTINE, NotificationType.MANUAL_QUARANTINE):
            return f"Test quarantined: {test}"
        return f"Test restored: {test}"

    @staticmethod
    def _build_message(result: TransitionResult, entry: QuarantineHistoryEntry) -> str:
        pattern = result.pattern

        lines = [
            f"Test: {pattern.test_name}",
        ]
        if pattern.test_suite:
            lines.append(f"Suite: {pattern.test_suite}")
        lines += [
            f"Project: {pattern.project_id}",
            f"Action: {entry.action.value} by {entry.triggered_by}",
            f"Reason: {entry.reason}",
            f"Failure rate: {pattern.failure_rate:.1%} over {pattern.total_runs} runs",
        ]

        decision = result.decision
        if isinstance(decision, QuarantineDecision):
            lines.append(f"Confidence: {decision.confidence:.0%}")
        elif isinstance(decision, UnquarantineDecision):
            lines.append(f"Stability score: {decision.stability_score:.0%}")
            if decision.forced:
                lines.append("Released after reaching the maximum quarantine period")
        return "\n".join(lines)
