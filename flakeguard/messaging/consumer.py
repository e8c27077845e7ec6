"""RabbitMQ consumer for normalized test results."""

import asyncio
import json
from typing import Any, Callable, Coroutine

import aio_pika
from aio_pika import IncomingMessage
from aio_pika.abc import AbstractRobustConnection
from pydantic import ValidationError

from flakeguard.core.config import get_settings
from flakeguard.core.errors import ConcurrentTransitionError
from flakeguard.core.logging import get_logger
from flakeguard.models.result import RunResult

logger = get_logger(__name__)

ResultCallback = Callable[[RunResult], Coroutine[Any, Any, Any]]


class RabbitMQConsumer:
    """Consumes test results produced by the CI webhook layer."""

    def __init__(self, handler: ResultCallback):
        self._settings = get_settings()
        self._handler = handler
        self._connection: AbstractRobustConnection | None = None
        self._should_stop = False

    async def connect(self) -> None:
        self._connection = await aio_pika.connect_robust(
            self._settings.rabbitmq_url,
            reconnect_interval=5,
        )
        logger.info("Connected to RabbitMQ")

    async def disconnect(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Disconnected from RabbitMQ")

    async def start_consuming(self) -> None:
        """Start consuming messages from queue."""
        if not self._connection:
            await self.connect()

        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=10)

        queue = await channel.declare_queue(
            self._settings.rabbitmq_queue,
            durable=True,
        )

        logger.info("Starting result consumption", queue=self._settings.rabbitmq_queue)

        async with queue.iterator() as queue_iter:
            async for message in queue_iter:
                if self._should_stop:
                    break
                await self._process_message(message)

    async def _process_message(self, message: IncomingMessage) -> None:
        """Parse and handle one message.

        Malformed messages are logged and acknowledged. Results whose test is
        locked by another process are requeued after a short delay.
        """
        async with message.process(ignore_processed=True):
            result = parse_result(message.body, message.message_id or "")
            if result is None:
                return
            try:
                await self._handler(result)
            except ConcurrentTransitionError as e:
                logger.warning(
                    "Result requeued, test is locked",
                    result_id=result.result_id,
                    lock=e.lock_key,
                )
                await asyncio.sleep(self._settings.transition_lock_retry_delay_seconds)
                await message.nack(requeue=True)
            except Exception as e:
                logger.error(
                    "Error processing result",
                    result_id=result.result_id,
                    error=str(e),
                    exc_info=True,
                )

    def stop(self) -> None:
        """Signal consumer to stop."""
        self._should_stop = True
        logger.info("Consumer stop requested")


def parse_result(body: bytes, fallback_id: str = "") -> RunResult | None:
    """Decode a queue message body into a result, or None if malformed."""
    try:
        data = json.loads(body.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Invalid JSON message", error=str(e))
        return None

    if not isinstance(data, dict):
        logger.warning("Message body is not an object", message_id=fallback_id)
        return None

    try:
        return RunResult.from_message(data, fallback_id)
    except (KeyError, ValidationError) as e:
        logger.warning("Malformed result message", message_id=fallback_id, error=str(e))
        return None
