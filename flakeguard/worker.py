"""Worker process entry point for result ingestion, notifications and sweeps."""

import asyncio
import signal

from prometheus_client import start_http_server

from flakeguard.core.config import get_settings
from flakeguard.core.logging import get_logger, setup_logging
from flakeguard.messaging.consumer import RabbitMQConsumer
from flakeguard.notification.worker import NotificationWorker
from flakeguard.services.engine import QuarantineEngine, build_engine
from flakeguard.storage.redis_client import (
    close_redis_pool,
    get_redis,
    init_redis_pool,
)

logger = get_logger(__name__)


class WorkerManager:
    """Manager for coordinating worker processes."""

    def __init__(self):
        self._settings = get_settings()
        self._engine: QuarantineEngine | None = None
        self._consumer: RabbitMQConsumer | None = None
        self._notification_worker: NotificationWorker | None = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all worker processes."""
        setup_logging(role="worker", settings=self._settings)
        logger.info("Starting worker manager")

        await init_redis_pool()

        self._engine = build_engine(get_redis(), self._settings)
        self._consumer = RabbitMQConsumer(self._engine.results.handle)
        self._notification_worker = NotificationWorker(self._engine.notifications, settings=self._settings)

        if self._settings.metrics_port:
            start_http_server(self._settings.metrics_port)
            logger.info("Metrics endpoint started", port=self._settings.metrics_port)

        if self._settings.worker_run_scheduler:
            self._engine.scheduler.start()

        try:
            await asyncio.gather(
                self._run_consumer(),
                self._run_notification_worker(),
            )
        finally:
            await self._cleanup()

    async def _run_consumer(self) -> None:
        """Run result consumer."""
        if self._consumer:
            try:
                await self._consumer.start_consuming()
            except asyncio.CancelledError:
                logger.info("Consumer cancelled")
            except Exception as e:
                logger.error("Consumer error", error=str(e), exc_info=True)

    async def _run_notification_worker(self) -> None:
        """Run notification worker."""
        if self._notification_worker:
            try:
                await self._notification_worker.start()
            except asyncio.CancelledError:
                logger.info("Notification worker cancelled")
            except Exception as e:
                logger.error("Notification worker error", error=str(e), exc_info=True)

    async def stop(self) -> None:
        """Signal workers to stop."""
        logger.info("Stopping workers")
        if self._consumer:
            self._consumer.stop()
        if self._notification_worker:
            self._notification_worker.stop()
        self._shutdown_event.set()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        logger.info("Cleaning up resources")
        if self._engine:
            await self._engine.scheduler.stop()
        if self._consumer:
            await self._consumer.disconnect()
        if self._notification_worker:
            await self._notification_worker.close()
        await close_redis_pool()
        logger.info("Cleanup complete")


async def main() -> None:
    """Main entry point for worker process."""
    manager = WorkerManager()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(manager.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await manager.start()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
