"""Policy administration: validation, lifecycle, simulation and recommendation."""

import math
import statistics
import uuid
from collections import Counter

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.config import Settings, get_settings
from flakeguard.core.errors import (
    DataIntegrityError,
    NotFoundError,
    PolicyInUseError,
    PolicyMissingError,
    PolicyValidationError,
)
from flakeguard.core.logging import get_logger
from flakeguard.engine import statistics as stats
from flakeguard.engine.evaluator import EvaluationContext, QuarantineEvaluator
from flakeguard.models.decision import QuarantineDecision, UnquarantineDecision
from flakeguard.models.pattern import FlakyTestPattern
from flakeguard.models.policy import (
    DEFAULT_POLICY_NAME,
    PolicyAuditEntry,
    PolicyRecommendation,
    PolicySimulation,
    PolicyValidationResult,
    QuarantinePolicy,
    QuarantinePolicyConfig,
    SimulatedDecision,
    default_policy_config,
)
from flakeguard.services.impact import ImpactTracker
from flakeguard.storage.pattern_store import PatternStore
from flakeguard.storage.policy_store import PolicyStore

logger = get_logger(__name__)

# Simulation heuristics
SIMULATION_BUILDS_PER_UNIT_RATE = 10
SIMULATION_FALSE_POSITIVE_RATE = 0.3
SIMULATION_FALSE_POSITIVE_CONFIDENCE = 0.7
SIMULATION_DEFAULT_CAP = 0.5

# Recommendation bounds
RECOMMENDED_RATE_BOUNDS = (0.1, 0.9)
RECOMMENDED_CONFIDENCE_BOUNDS = (0.6, 0.9)
HIGH_IMPACT_SUITE_MIN_FLAKY = 3
FEEDBACK_FALSE_POSITIVE_LIMIT = 0.2


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


def validate_policy_config(config: QuarantinePolicyConfig) -> PolicyValidationResult:
    """Check a configuration for hard errors and risky settings."""
    errors: list[str] = []
    warnings: list[str] = []

    for name, label in (
        ("failure_rate_threshold", "Failure rate threshold"),
        ("confidence_threshold", "Confidence threshold"),
        ("success_rate_required", "Success rate required"),
    ):
        if not 0.0 <= getattr(config, name) <= 1.0:
            errors.append(f"{label} must be between 0 and 1")
    for name, label in (
        ("consecutive_failures", "Consecutive failures"),
        ("min_runs_required", "Minimum runs required"),
        ("min_successful_runs", "Minimum successful runs"),
        ("stability_period", "Stability period (days)"),
    ):
        if getattr(config, name) < 1:
            errors.append(f"{label} must be at least 1")
    if config.max_quarantine_percentage is not None and not 0.0 <= config.max_quarantine_percentage <= 1.0:
        errors.append("Maximum quarantine percentage must be between 0 and 1")
    if config.max_quarantine_period is not None and config.max_quarantine_period < 1:
        errors.append("Maximum quarantine period must be at least 1 day")

    if config.failure_rate_threshold < 0.1:
        warnings.append("Very low failure rate threshold may cause excessive quarantining")
    if config.failure_rate_threshold > 0.8:
        warnings.append("High failure rate threshold may not catch flaky tests early enough")
    if config.confidence_threshold < 0.5:
        warnings.append("Low confidence threshold may result in false positives")
    if config.stability_period > 30:
        warnings.append("Long stability period may keep good tests quarantined too long")
    if config.success_rate_required < 0.8:
        warnings.append("Low success rate for unquarantine may release unstable tests")
    if config.max_quarantine_percentage is not None and config.max_quarantine_percentage > 0.5:
        warnings.append("High quarantine percentage limit may affect too many tests")
    if config.max_quarantine_period is not None and config.max_quarantine_period > 90:
        warnings.append("Very long maximum quarantine period may be excessive")
    if (
        config.enable_time_based_rules
        and config.max_quarantine_period is not None
        and config.max_quarantine_period < config.stability_period
    ):
        warnings.append("Maximum quarantine period is shorter than the stability period")

    return PolicyValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


class PolicyService:
    """Administrative operations on quarantine policies."""

    def __init__(
        self,
        policies: PolicyStore,
        patterns: PatternStore,
        impact: ImpactTracker | None = None,
        evaluator: QuarantineEvaluator | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._policies = policies
        self._patterns = patterns
        self._impact = impact
        self._evaluator = evaluator or QuarantineEvaluator()
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()

    # Lifecycle

    async def get(self, policy_id: str) -> QuarantinePolicy:
        policy = await self._policies.get(policy_id)
        if policy is None:
            raise NotFoundError("policy", policy_id)
        return policy

    async def list_policies(self, project_id: str) -> list[QuarantinePolicy]:
        return await self._policies.list_by_project(project_id)

    async def list_audit(self, project_id: str, limit: int = 50) -> list[PolicyAuditEntry]:
        return await self._policies.list_audit(project_id, limit)

    async def create_or_update(
        self,
        project_id: str,
        name: str,
        config: QuarantinePolicyConfig,
        description: str | None = None,
        actor: str = "system",
    ) -> tuple[QuarantinePolicy, PolicyValidationResult]:
        """Upsert a policy by project and name.

        Returns:
            Stored policy and its validation warnings

        Raises:
            PolicyValidationError: If the configuration has errors
        """
        validation = validate_policy_config(config)
        if not validation.is_valid:
            raise PolicyValidationError(validation.errors)

        now = self._clock.now()
        existing = await self._policies.find_by_name(project_id, name)
        if existing is not None:
            existing.config = config
            existing.description = description if description is not None else existing.description
            existing.version += 1
            existing.updated_at = now
            existing.updated_by = actor
            policy = await self._policies.save(existing)
            action = "updated"
        else:
            policy = await self._policies.save(
                QuarantinePolicy(
                    policy_id=f"policy_{now.strftime('%Y%m%d')}_{uuid.uuid4().hex[:8]}",
                    project_id=project_id,
                    name=name,
                    description=description,
                    config=config,
                    created_at=now,
                    updated_at=now,
                    updated_by=actor,
                )
            )
            action = "created"

        await self._audit(policy, action, actor)
        logger.info(
            "Policy saved",
            policy_id=policy.policy_id,
            project_id=project_id,
            action=action,
            version=policy.version,
            warnings=len(validation.warnings),
        )
        return policy, validation

    async def activate(self, policy_id: str, actor: str = "system") -> QuarantinePolicy:
        """Make a policy the project's only active policy."""
        policy = await self.get(policy_id)
        previous = await self._policies.set_active(policy.project_id, policy.policy_id)
        if previous == policy.policy_id:
            return policy

        if previous is not None:
            replaced = await self._policies.get(previous)
            if replaced is not None:
                await self._audit(replaced, "deactivated", actor)
        policy.is_active = True
        await self._audit(policy, "activated", actor)
        logger.info("Policy activated", policy_id=policy_id, project_id=policy.project_id, replaced=previous)
        return policy

    async def deactivate(self, policy_id: str, actor: str = "system") -> QuarantinePolicy:
        policy = await self.get(policy_id)
        if await self._policies.clear_active(policy.project_id, policy.policy_id):
            policy.is_active = False
            await self._audit(policy, "deactivated", actor)
            logger.info("Policy deactivated", policy_id=policy_id, project_id=policy.project_id)
        return policy

    async def delete(self, policy_id: str, actor: str = "system") -> None:
        """Delete an inactive policy.

        Raises:
            NotFoundError: If the policy does not exist
            PolicyInUseError: If the policy is active
        """
        policy = await self.get(policy_id)
        if policy.is_active:
            raise PolicyInUseError(policy_id)
        await self._policies.delete(policy)
        await self._audit(policy, "deleted", actor)
        logger.info("Policy deleted", policy_id=policy_id, project_id=policy.project_id)

    async def ensure_default_policy(self, project_id: str, actor: str = "system") -> QuarantinePolicy:
        """Idempotently give a project an active policy."""
        try:
            return await self._policies.get_active(project_id)
        except PolicyMissingError:
            pass

        policy = await self._policies.find_by_name(project_id, DEFAULT_POLICY_NAME)
        if policy is None:
            policy, _ = await self.create_or_update(
                project_id,
                DEFAULT_POLICY_NAME,
                default_policy_config(),
                description="Provisioned when automation was enabled",
                actor=actor,
            )
        return await self.activate(policy.policy_id, actor)

    # Simulation and recommendation

    async def simulate(self, project_id: str, config: QuarantinePolicyConfig) -> PolicySimulation:
        """Project the effect of a configuration on current patterns without persisting."""
        validation = validate_policy_config(config)
        if not validation.is_valid:
            raise PolicyValidationError(validation.errors)

        patterns = await self._patterns.list_by_project(project_id)
        simulation = PolicySimulation(project_id=project_id, total_tests=len(patterns))
        now = self._clock.now()
        quarantined = sum(1 for p in patterns if p.is_quarantined)
        skipped = 0

        for pattern in patterns:
            context = EvaluationContext(
                now=now,
                project_total_tests=len(patterns),
                project_quarantined_tests=quarantined,
            )
            try:
                decision = self._evaluator.evaluate(pattern, config, context)
            except DataIntegrityError as e:
                skipped += 1
                logger.warning("Simulation skipped test", pattern_id=pattern.pattern_id, error=str(e))
                continue

            critical = config.is_protected(pattern.test_name, pattern.test_suite)
            if isinstance(decision, QuarantineDecision):
                quarantined += 1
                simulation.would_quarantine.append(self._simulated(pattern, decision.reason, decision.confidence, critical))
                rate = pattern.failure_rate
                savings = simulation.estimated_savings
                savings.ci_minutes += rate * self._settings.ci_minutes_per_failure
                savings.developer_hours += rate * self._settings.developer_hours_per_failure
                savings.builds_protected += math.floor(rate * SIMULATION_BUILDS_PER_UNIT_RATE)
                if critical:
                    simulation.risks.critical_tests_affected += 1
                if rate < SIMULATION_FALSE_POSITIVE_RATE and decision.confidence < SIMULATION_FALSE_POSITIVE_CONFIDENCE:
                    simulation.risks.false_positives += 1
            elif isinstance(decision, UnquarantineDecision):
                quarantined -= 1
                simulation.would_unquarantine.append(
                    self._simulated(pattern, decision.reason, decision.stability_score, critical)
                )

        if patterns:
            cap = config.max_quarantine_percentage
            ratio = len(simulation.would_quarantine) / len(patterns)
            simulation.risks.over_quarantine = ratio > (cap if cap is not None else SIMULATION_DEFAULT_CAP)

        logger.info(
            "Policy simulated",
            project_id=project_id,
            tests=len(patterns),
            would_quarantine=len(simulation.would_quarantine),
            would_unquarantine=len(simulation.would_unquarantine),
            skipped=skipped,
        )
        return simulation

    async def recommend(self, project_id: str) -> PolicyRecommendation:
        """Suggest a configuration from the project's failure-rate distribution."""
        patterns = [p for p in await self._patterns.list_by_project(project_id) if p.total_runs > 0]
        base = default_policy_config()
        recommendation = PolicyRecommendation(project_id=project_id, config=base, based_on_tests=len(patterns))

        if not patterns:
            recommendation.rationale.append("No test history yet; using the default policy")
            return recommendation

        rates = sorted(p.failure_rate for p in patterns)
        p80 = statistics.quantiles(rates, n=5, method="inclusive")[3] if len(rates) > 1 else rates[0]
        failure_rate_threshold = _clamp(p80, RECOMMENDED_RATE_BOUNDS)
        recommendation.rationale.append(
            f"Failure rate threshold at the 80th percentile of {len(rates)} tests ({p80:.1%})"
        )

        confidences = [
            stats.confidence_score(p.total_runs, p.failure_rate, base.min_runs_required) for p in patterns
        ]
        confidence_threshold = _clamp(statistics.fmean(confidences), RECOMMENDED_CONFIDENCE_BOUNDS)

        suites = Counter(p.test_suite for p in patterns if p.test_suite and p.failure_count > 0)
        high_impact = sorted(s for s, count in suites.items() if count >= HIGH_IMPACT_SUITE_MIN_FLAKY)
        if high_impact:
            recommendation.rationale.append(
                f"Protect suites with {HIGH_IMPACT_SUITE_MIN_FLAKY}+ flaky tests: {', '.join(high_impact)}"
            )

        updates: dict = {
            "failure_rate_threshold": round(failure_rate_threshold, 3),
            "confidence_threshold": round(confidence_threshold, 3),
            "high_impact_suites": high_impact,
        }

        if self._impact is not None:
            feedback = await self._impact.policy_feedback(project_id)
            if feedback.episodes and feedback.false_positive_rate > FEEDBACK_FALSE_POSITIVE_LIMIT:
                updates["confidence_threshold"] = round(min(0.95, updates["confidence_threshold"] + 0.1), 3)
                updates["failure_rate_threshold"] = round(min(0.9, updates["failure_rate_threshold"] + 0.05), 3)
                recommendation.rationale.append(
                    f"Raised thresholds: {feedback.false_positive_rate:.0%} of recent quarantines were false positives"
                )
            if feedback.average_stability_delta is not None and feedback.average_stability_delta <= 0:
                updates["success_rate_required"] = min(0.99, base.success_rate_required + 0.05)
                updates["min_successful_runs"] = base.min_successful_runs + 2
                recommendation.rationale.append(
                    "Tightened unquarantine criteria: CI stability did not improve after quarantines"
                )

        recommendation.config = base.model_copy(update=updates)
        return recommendation

    @staticmethod
    def _simulated(pattern: FlakyTestPattern, reason: str, confidence: float, critical: bool) -> SimulatedDecision:
        return SimulatedDecision(
            pattern_id=pattern.pattern_id,
            test_name=pattern.test_name,
            test_suite=pattern.test_suite,
            reason=reason,
            confidence=round(confidence, 4),
            failure_rate=round(pattern.failure_rate, 4),
            critical=critical,
        )

    async def _audit(self, policy: QuarantinePolicy, action: str, actor: str) -> None:
        await self._policies.append_audit(
            PolicyAuditEntry(
                policy_id=policy.policy_id,
                project_id=policy.project_id,
                action=action,
                version=policy.version,
                actor=actor,
                created_at=self._clock.now(),
            )
        )
