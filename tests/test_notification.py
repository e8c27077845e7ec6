"""Tests for transition notifications."""

import json

import httpx
import pytest

from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.decision import NoAction
from flakeguard.models.notification import NotificationTask, NotificationType
from flakeguard.notification.channels.base import NotificationChannel
from flakeguard.notification.channels.email import EmailChannel
from flakeguard.notification.channels.webhook import WebhookChannel
from flakeguard.notification.dispatcher import NotificationDispatcher
from flakeguard.notification.worker import NotificationWorker, default_channels
from flakeguard.services.engine import QuarantineEngine

from factories import NOW, key, make_pattern


class FakeChannel(NotificationChannel):
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[NotificationTask] = []

    @property
    def channel_type(self) -> str:
        return "fake"

    async def send(self, task: NotificationTask) -> bool:
        self.sent.append(task)
        return self.succeed


def make_task(retry_count: int = 0) -> NotificationTask:
    return NotificationTask(
        task_id="notify_1",
        notification_type=NotificationType.AUTO_QUARANTINE,
        project_id="proj",
        test_name="test_checkout",
        test_suite="payments",
        title="Test quarantined: test_checkout",
        message="Test: test_checkout",
        retry_count=retry_count,
        created_at=NOW,
        metadata={"reason": "High failure rate"},
    )


@pytest.mark.asyncio
async def test_manual_quarantine_queues_notification(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())

    await engine.quarantine.manual_quarantine(key(), "alice", "Blocks the release train")

    assert await engine.notifications.queue_length() == 1
    task = await engine.notifications.dequeue(timeout=1)
    assert task is not None
    assert task.notification_type == NotificationType.MANUAL_QUARANTINE
    assert task.title == "Test quarantined: test_checkout"
    assert task.metadata["triggered_by"] == "alice"
    assert task.metadata["pattern_id"] == key().pattern_id
    assert "Reason: Blocks the release train" in task.message


@pytest.mark.asyncio
async def test_no_op_transition_queues_nothing(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())

    await engine.quarantine.manual_unquarantine(key(), "alice")

    assert await engine.notifications.queue_length() == 0


@pytest.mark.asyncio
async def test_restore_uses_unquarantine_type(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern())
    await engine.quarantine.manual_quarantine(key(), "alice")
    await engine.quarantine.manual_unquarantine(key(), "bob")

    await engine.notifications.dequeue(timeout=1)
    task = await engine.notifications.dequeue(timeout=1)

    assert task is not None
    assert task.notification_type == NotificationType.MANUAL_UNQUARANTINE
    assert task.title == "Test restored: test_checkout"


@pytest.mark.asyncio
async def test_worker_delivers_through_channels(engine: QuarantineEngine, settings) -> None:
    channel = FakeChannel()
    worker = NotificationWorker(engine.notifications, channels=[channel], settings=settings)

    assert await worker.process(make_task()) is True
    assert [t.task_id for t in channel.sent] == ["notify_1"]
    assert await engine.notifications.queue_length() == 0


@pytest.mark.asyncio
async def test_worker_without_channels_drops_task(engine: QuarantineEngine, settings) -> None:
    worker = NotificationWorker(engine.notifications, channels=[], settings=settings)

    assert await worker.process(make_task()) is True


@pytest.mark.asyncio
async def test_failed_delivery_is_requeued(engine: QuarantineEngine, settings) -> None:
    worker = NotificationWorker(
        engine.notifications, channels=[FakeChannel(succeed=False)], settings=settings, retry_base_delay=0
    )

    assert await worker.process(make_task()) is False

    requeued = await engine.notifications.dequeue(timeout=1)
    assert requeued is not None
    assert requeued.retry_count == 1
    assert await engine.notifications.dead_letter_length() == 0


@pytest.mark.asyncio
async def test_exhausted_retries_go_to_dead_letter(engine: QuarantineEngine, settings) -> None:
    worker = NotificationWorker(
        engine.notifications, channels=[FakeChannel(succeed=False)], settings=settings, retry_base_delay=0
    )

    assert await worker.process(make_task(retry_count=settings.notification_max_retry)) is False

    assert await engine.notifications.queue_length() == 0
    assert await engine.notifications.dead_letter_length() == 1


@pytest.mark.asyncio
async def test_webhook_posts_json_payload() -> None:
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    channel = WebhookChannel(
        "https://hooks.example.com/flaky",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    assert await channel.send(make_task()) is True
    await channel.close()

    assert received[0]["event"] == "auto_quarantine"
    assert received[0]["test_suite"] == "payments"
    assert received[0]["metadata"] == {"reason": "High failure rate"}
    assert received[0]["created_at"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_webhook_reports_server_errors() -> None:
    channel = WebhookChannel(
        "https://hooks.example.com/flaky",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )

    assert await channel.send(make_task()) is False
    await channel.close()


@pytest.mark.asyncio
async def test_webhook_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    channel = WebhookChannel(
        "https://hooks.example.com/flaky",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    assert await channel.send(make_task()) is False
    await channel.close()


def test_email_message_escapes_html(settings) -> None:
    settings.smtp_host = "smtp.example.com"
    settings.smtp_from = "flakeguard@example.com"
    channel = EmailChannel(recipients=["qa@example.com"], settings=settings)
    task = make_task()
    task.message = "Reason: <script>"

    message = channel.build_message(task)

    assert channel.is_configured is True
    assert message["To"] == "qa@example.com"
    assert message["Subject"] == "Test quarantined: test_checkout"
    html_part = message.get_payload()[1].get_payload(decode=True).decode()
    assert "&lt;script&gt;" in html_part


def test_unconfigured_channels_are_skipped(settings) -> None:
    assert EmailChannel(settings=settings).is_configured is False
    assert default_channels(settings) == []

    settings.notification_webhook_url = "https://hooks.example.com/flaky"
    assert [c.channel_type for c in default_channels(settings)] == ["webhook"]


@pytest.mark.asyncio
async def test_unapplied_transition_queues_nothing(engine: QuarantineEngine, clock) -> None:
    dispatcher = NotificationDispatcher(engine.notifications, clock=clock)
    result = TransitionResult(pattern=make_pattern(), decision=NoAction(reason="nothing to do"))

    await dispatcher.on_transition(result)

    assert await engine.notifications.queue_length() == 0
