"""Test result ingestion handler."""

import time
from typing import Awaitable, Callable

from flakeguard.core.config import Settings, get_settings
from flakeguard.core.errors import FlakeguardError
from flakeguard.core.logging import get_logger
from flakeguard.engine.locks import TransitionLocks
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, RunStatus
from flakeguard.models.project import AutomationSchedule
from flakeguard.models.result import RunResult
from flakeguard.observability.metrics import RESULTS_DUPLICATE, RESULTS_INGESTED
from flakeguard.storage.auxiliary import IdempotencyStore
from flakeguard.storage.pattern_store import PatternStore
from flakeguard.storage.project_store import ProjectStore

logger = get_logger(__name__)

FailureTrigger = Callable[[PatternKey], Awaitable[object]]


class ResultHandler:
    """Folds normalized test results into flaky test patterns."""

    def __init__(
        self,
        patterns: PatternStore,
        projects: ProjectStore,
        idempotency: IdempotencyStore,
        locks: TransitionLocks,
        on_failure: FailureTrigger | None = None,
        settings: Settings | None = None,
    ):
        self._patterns = patterns
        self._projects = projects
        self._idempotency = idempotency
        self._locks = locks
        self._on_failure = on_failure
        self._settings = settings or get_settings()

    async def handle(self, result: RunResult) -> FlakyTestPattern | None:
        """Process one result.

        Pipeline steps:
        1. Idempotency check
        2. Fold into the pattern under the test's lock
        3. Failure-driven evaluation when the project asks for it

        Args:
            result: Normalized test result

        Returns:
            Updated pattern, or None for a duplicate result

        Raises:
            ConcurrentTransitionError: If another process holds the test; the result stays redeliverable
        """
        start_time = time.time()

        if not await self._idempotency.mark_processed(result.result_id):
            RESULTS_DUPLICATE.inc()
            logger.debug("Result already processed", result_id=result.result_id)
            return None

        key = result.key
        try:
            pattern = await self._fold(result)
        except Exception:
            # Failed folds stay redeliverable.
            await self._idempotency.unmark(result.result_id)
            raise

        await self._projects.register(key.project_id)
        RESULTS_INGESTED.labels(status=result.status.value).inc()

        if result.status == RunStatus.FAILED and not pattern.is_quarantined:
            await self._maybe_evaluate(key)

        logger.debug(
            "Result processed",
            result_id=result.result_id,
            pattern_id=pattern.pattern_id,
            status=result.status.value,
            elapsed_ms=int((time.time() - start_time) * 1000),
        )
        return pattern

    async def _fold(self, result: RunResult) -> FlakyTestPattern:
        key = result.key
        async with self._locks.hold(key.lock_name):
            pattern = await self._patterns.get_by_key(key)
            if pattern is None:
                pattern = FlakyTestPattern.new(key, result.timestamp)
                logger.info(
                    "New test observed",
                    project_id=key.project_id,
                    test_name=key.test_name,
                    test_suite=key.test_suite,
                )
            pattern.apply_result(result.status, result.timestamp, self._settings.pattern_recent_outcomes_max)
            await self._patterns.save(pattern)
        return pattern

    async def _maybe_evaluate(self, key: PatternKey) -> None:
        if self._on_failure is None:
            return
        automation = await self._projects.get_automation(key.project_id)
        if not automation.enabled or automation.schedule != AutomationSchedule.ON_TEST_FAILURE:
            return
        try:
            await self._on_failure(key)
        except FlakeguardError as e:
            logger.error(
                "Failure-driven evaluation failed",
                project_id=key.project_id,
                test_name=key.test_name,
                error=e.message,
            )
