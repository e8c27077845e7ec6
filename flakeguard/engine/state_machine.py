"""Quarantine state machine.

States are ``active`` and ``quarantined``. Every transition for one test runs
under that test's transition lock, on a freshly read pattern, and appends
exactly one history entry. Applying a decision to a test that is already in
the target state is a successful no-op.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.errors import NotFoundError
from flakeguard.core.logging import get_logger
from flakeguard.engine.locks import TransitionLocks
from flakeguard.models.decision import (
    AUTO_TRIGGER,
    Decision,
    NoAction,
    QuarantineDecision,
    UnquarantineDecision,
)
from flakeguard.models.history import HistoryAction, QuarantineHistoryEntry
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.observability.metrics import TRANSITIONS
from flakeguard.storage.history_store import HistoryStore
from flakeguard.storage.pattern_store import PatternStore

logger = get_logger(__name__)

DecideFn = Callable[[FlakyTestPattern], Awaitable[Decision]]


@dataclass
class TransitionResult:
    """Outcome of one ``run_transition`` call."""

    pattern: FlakyTestPattern
    decision: Decision
    applied: bool = False
    previous_status: QuarantineStatus = QuarantineStatus.ACTIVE
    history_entry: QuarantineHistoryEntry | None = None

    @property
    def action(self) -> HistoryAction | None:
        return self.history_entry.action if self.history_entry else None


class TransitionListener(Protocol):
    """Observer of applied transitions (impact episodes, notifications)."""

    async def on_transition(self, result: TransitionResult) -> None:
        ...


class QuarantineStateMachine:
    """Applies decisions to test patterns."""

    def __init__(
        self,
        patterns: PatternStore,
        history: HistoryStore,
        locks: TransitionLocks,
        clock: Clock | None = None,
        listeners: Sequence[TransitionListener] = (),
    ):
        self._patterns = patterns
        self._history = history
        self._locks = locks
        self._clock = clock or SystemClock()
        self._listeners = list(listeners)

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    async def run_transition(self, key: PatternKey, decide: DecideFn) -> TransitionResult:
        """Decide and apply a transition for one test atomically.

        Args:
            key: Test identity
            decide: Coroutine producing a decision from the fresh pattern

        Returns:
            Transition outcome

        Raises:
            NotFoundError: If the test has never been observed
            ConcurrentTransitionError: If another process holds the test's lock
        """
        async with self._locks.hold(key.lock_name):
            pattern = await self._patterns.get_by_key(key)
            if pattern is None:
                raise NotFoundError("pattern", key.pattern_id)

            decision = await decide(pattern)

            # Commit and listeners finish under the lock even if the caller is cancelled.
            task = asyncio.ensure_future(self._apply_and_notify(pattern, decision))
            try:
                result = await asyncio.shield(task)
            except asyncio.CancelledError:
                await asyncio.wait({task})
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "Transition failed after cancellation",
                        pattern_id=pattern.pattern_id,
                        error=str(task.exception()),
                    )
                raise
        return result

    async def _apply_and_notify(self, pattern: FlakyTestPattern, decision: Decision) -> TransitionResult:
        result = await self._apply(pattern, decision)
        if result.applied:
            await self._notify_listeners(result)
        return result

    async def apply(self, key: PatternKey, decision: Decision) -> TransitionResult:
        """Apply a precomputed decision (manual overrides)."""

        async def fixed(_: FlakyTestPattern) -> Decision:
            return decision

        return await self.run_transition(key, fixed)

    async def _apply(self, pattern: FlakyTestPattern, decision: Decision) -> TransitionResult:
        previous = pattern.status
        result = TransitionResult(pattern=pattern, decision=decision, previous_status=previous)

        if isinstance(decision, NoAction):
            return result

        if isinstance(decision, QuarantineDecision):
            if pattern.is_quarantined:
                logger.debug("Test already quarantined", pattern_id=pattern.pattern_id)
                return result
            now = self._clock.now()
            pattern.status = QuarantineStatus.QUARANTINED
            pattern.quarantined_at = now
            pattern.quarantined_by = decision.triggered_by
            pattern.quarantine_reason = decision.reason
            pattern.confidence_score = max(0.0, min(1.0, decision.confidence))
            entry = self._history_entry(
                pattern,
                HistoryAction.QUARANTINED,
                reason=decision.reason,
                triggered_by=decision.triggered_by,
                confidence=pattern.confidence_score,
                impact_score=decision.impact_score,
                metadata={"rule": decision.rule.value, **decision.metadata},
            )

        elif isinstance(decision, UnquarantineDecision):
            if not pattern.is_quarantined:
                logger.debug("Test already active", pattern_id=pattern.pattern_id)
                return result
            pattern.status = QuarantineStatus.ACTIVE
            pattern.quarantined_at = None
            pattern.quarantined_by = None
            pattern.quarantine_reason = None
            entry = self._history_entry(
                pattern,
                HistoryAction.UNQUARANTINED,
                reason=decision.reason,
                triggered_by=decision.triggered_by,
                confidence=max(0.0, min(1.0, decision.stability_score)),
                metadata={
                    "forced": decision.forced,
                    "stability_score": round(decision.stability_score, 4),
                    "consecutive_successes": decision.consecutive_successes,
                    "days_since_quarantine": round(decision.days_since_quarantine, 2),
                    **decision.metadata,
                },
            )

        else:
            raise TypeError(f"Unhandled decision type: {type(decision).__name__}")

        await self._commit(pattern, entry)

        source = "auto" if entry.is_automatic else "manual"
        TRANSITIONS.labels(action=entry.action.value, source=source).inc()
        logger.info(
            "Quarantine transition applied",
            pattern_id=pattern.pattern_id,
            project_id=pattern.project_id,
            test_name=pattern.test_name,
            action=entry.action.value,
            triggered_by=entry.triggered_by,
            reason=entry.reason,
        )

        result.applied = True
        result.history_entry = entry
        return result

    async def _commit(self, pattern: FlakyTestPattern, entry: QuarantineHistoryEntry) -> None:
        await self._patterns.save(pattern)
        await self._history.append(entry)

    def _history_entry(
        self,
        pattern: FlakyTestPattern,
        action: HistoryAction,
        reason: str,
        triggered_by: str,
        confidence: float | None = None,
        impact_score: float | None = None,
        metadata: dict | None = None,
    ) -> QuarantineHistoryEntry:
        return QuarantineHistoryEntry(
            entry_id=f"qh_{uuid.uuid4().hex[:16]}",
            flaky_test_pattern_id=pattern.pattern_id,
            project_id=pattern.project_id,
            test_name=pattern.test_name,
            test_suite=pattern.test_suite,
            action=action,
            reason=reason,
            triggered_by=triggered_by or AUTO_TRIGGER,
            confidence=confidence,
            failure_rate=pattern.failure_rate,
            impact_score=impact_score,
            metadata=metadata or {},
            created_at=self._clock.now(),
        )

    async def _notify_listeners(self, result: TransitionResult) -> None:
        for listener in self._listeners:
            try:
                await listener.on_transition(result)
            except Exception as e:
                # Transition is already committed; listener failures are only logged.
                logger.error(
                    "Transition listener failed",
                    listener=type(listener).__name__,
                    pattern_id=result.pattern.pattern_id,
                    error=str(e),
                    exc_info=True,
                )
