"""Quarantine service: evaluation, manual overrides and status queries."""

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.errors import NotFoundError, PolicyMissingError
from flakeguard.core.logging import get_logger
from flakeguard.engine.evaluator import EvaluationContext, QuarantineEvaluator
from flakeguard.engine.locks import TransitionLocks
from flakeguard.engine.state_machine import QuarantineStateMachine, TransitionResult
from flakeguard.models.decision import Decision, manual_quarantine, manual_unquarantine
from flakeguard.models.history import QuarantineHistoryEntry
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.models.policy import QuarantinePolicy, QuarantinePolicyConfig, default_policy
from flakeguard.observability.metrics import EVALUATIONS, QUARANTINED_TESTS
from flakeguard.storage.history_store import HistoryStore
from flakeguard.storage.pattern_store import PatternStore
from flakeguard.storage.policy_store import PolicyStore

logger = get_logger(__name__)


def cap_lock_name(project_id: str) -> str:
    return f"quarantine-cap:{project_id}"


class QuarantineService:
    """Entry point for every evaluation, whatever triggered it."""

    def __init__(
        self,
        patterns: PatternStore,
        policies: PolicyStore,
        history: HistoryStore,
        state_machine: QuarantineStateMachine,
        locks: TransitionLocks,
        evaluator: QuarantineEvaluator | None = None,
        clock: Clock | None = None,
    ):
        self._patterns = patterns
        self._policies = policies
        self._history = history
        self._state_machine = state_machine
        self._locks = locks
        self._evaluator = evaluator or QuarantineEvaluator()
        self._clock = clock or SystemClock()

    async def resolve_policy(self, project_id: str) -> QuarantinePolicy:
        """Active policy of a project, or the built-in default."""
        try:
            return await self._policies.get_active(project_id)
        except PolicyMissingError:
            logger.warning("No active policy, using default", project_id=project_id)
            return default_policy(project_id)

    async def evaluate_test(
        self,
        key: PatternKey,
        config: QuarantinePolicyConfig | None = None,
    ) -> TransitionResult:
        """Evaluate one test and apply the resulting decision.

        Args:
            key: Test identity
            config: Policy snapshot; resolved from the project when omitted

        Returns:
            Transition outcome

        Raises:
            NotFoundError: If the test has never been observed
            DataIntegrityError: If the pattern or policy is inconsistent
        """
        if config is None:
            config = (await self.resolve_policy(key.project_id)).config

        async def decide(pattern: FlakyTestPattern) -> Decision:
            context = EvaluationContext(
                now=self._clock.now(),
                project_total_tests=await self._patterns.count(key.project_id),
                project_quarantined_tests=await self._patterns.count_quarantined(key.project_id),
            )
            decision = self._evaluator.evaluate(pattern, config, context)
            EVALUATIONS.labels(outcome=decision.kind).inc()
            logger.debug(
                "Test evaluated",
                pattern_id=pattern.pattern_id,
                outcome=decision.kind,
                reason=decision.reason,
            )
            return decision

        if config.max_quarantine_percentage is not None:
            # The cap reads a project-wide count, so apply under a project lock.
            async with self._locks.hold(cap_lock_name(key.project_id)):
                result = await self._state_machine.run_transition(key, decide)
        else:
            result = await self._state_machine.run_transition(key, decide)

        if result.applied:
            await self._refresh_gauge(key.project_id)
        return result

    async def manual_quarantine(
        self,
        key: PatternKey,
        user_id: str,
        reason: str | None = None,
    ) -> TransitionResult:
        """Quarantine a test regardless of its statistics."""
        result = await self._state_machine.apply(key, manual_quarantine(user_id, reason))
        if result.applied:
            await self._refresh_gauge(key.project_id)
        return result

    async def manual_unquarantine(
        self,
        key: PatternKey,
        user_id: str,
        reason: str | None = None,
    ) -> TransitionResult:
        """Restore a test regardless of its statistics."""
        result = await self._state_machine.apply(key, manual_unquarantine(user_id, reason))
        if result.applied:
            await self._refresh_gauge(key.project_id)
        return result

    async def get_pattern(self, key: PatternKey) -> FlakyTestPattern:
        pattern = await self._patterns.get_by_key(key)
        if pattern is None:
            raise NotFoundError("pattern", key.pattern_id)
        return pattern

    async def is_quarantined(self, key: PatternKey) -> bool:
        """Whether a test is quarantined; unknown tests are not."""
        pattern = await self._patterns.get_by_key(key)
        return pattern is not None and pattern.is_quarantined

    async def list_quarantined(self, project_id: str) -> list[FlakyTestPattern]:
        return await self._patterns.list_by_project(project_id, QuarantineStatus.QUARANTINED)

    async def get_test_history(self, key: PatternKey) -> list[QuarantineHistoryEntry]:
        await self.get_pattern(key)
        return await self._history.list_by_pattern(key.pattern_id)

    async def get_project_history(self, project_id: str, limit: int = 50) -> list[QuarantineHistoryEntry]:
        return await self._history.list_by_project(project_id, limit=limit)

    async def _refresh_gauge(self, project_id: str) -> None:
        QUARANTINED_TESTS.labels(project_id=project_id).set(await self._patterns.count_quarantined(project_id))
