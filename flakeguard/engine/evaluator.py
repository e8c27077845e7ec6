"""Quarantine evaluator.

Pure policy evaluation: given a test pattern, a policy configuration and a
snapshot of project-level counts, decide whether the test should move between
``active`` and ``quarantined``. No I/O happens here.
"""

from dataclasses import dataclass
from datetime import datetime

from flakeguard.core.clock import days_between
from flakeguard.core.errors import DataIntegrityError
from flakeguard.core.logging import get_logger
from flakeguard.engine import statistics as stats
from flakeguard.models.decision import (
    Decision,
    NoAction,
    QuarantineDecision,
    QuarantineRule,
    UnquarantineDecision,
)
from flakeguard.models.pattern import FlakyTestPattern
from flakeguard.models.policy import QuarantinePolicyConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """Project-level facts the evaluator needs besides the pattern."""

    now: datetime
    project_total_tests: int = 0
    project_quarantined_tests: int = 0


class QuarantineEvaluator:
    """Applies a quarantine policy to a single test pattern."""

    def __init__(self, rapid_degradation_window_runs: int = 10):
        self._rapid_window = rapid_degradation_window_runs

    def evaluate(
        self,
        pattern: FlakyTestPattern,
        config: QuarantinePolicyConfig,
        context: EvaluationContext,
    ) -> Decision:
        """Evaluate a pattern against a policy.

        Active tests go through the quarantine rules, quarantined tests
        through the release rules.

        Raises:
            DataIntegrityError: pattern or policy data is inconsistent
        """
        stats.check_pattern_integrity(pattern)
        stats.check_policy_integrity(config)

        if pattern.is_quarantined:
            return self.evaluate_unquarantine(pattern, config, context)
        return self.evaluate_quarantine(pattern, config, context)

    def evaluate_quarantine(
        self,
        pattern: FlakyTestPattern,
        config: QuarantinePolicyConfig,
        context: EvaluationContext,
    ) -> Decision:
        if pattern.total_runs < config.min_runs_required:
            return NoAction(
                reason=(
                    f"Insufficient runs: {pattern.total_runs}/{config.min_runs_required} "
                    "required before quarantine"
                ),
            )

        failure_rate = pattern.failure_rate
        confidence = stats.pattern_confidence(pattern, config)
        threshold, protected = stats.effective_confidence_threshold(
            config, pattern.test_name, pattern.test_suite
        )
        impact_multiplier = 2.0 if protected else 1.0
        # Protected tests need the raised confidence on every automated path.
        protected_gate = not protected or confidence >= threshold

        metadata = {
            "failure_rate": round(failure_rate, 4),
            "confidence": round(confidence, 4),
            "confidence_threshold": round(threshold, 4),
            "critical_path": protected,
            "total_runs": pattern.total_runs,
            "failure_count": pattern.failure_count,
            "consecutive_failures": pattern.consecutive_failures,
        }

        candidates: list[QuarantineDecision] = []

        if failure_rate >= config.failure_rate_threshold and confidence >= threshold:
            candidates.append(
                QuarantineDecision(
                    reason=(
                        f"High failure rate: {failure_rate:.1%} "
                        f"({pattern.failure_count}/{pattern.total_runs} runs), "
                        f"confidence {confidence:.2f}"
                    ),
                    confidence=confidence,
                    impact_score=failure_rate * impact_multiplier,
                    rule=QuarantineRule.FAILURE_RATE,
                    metadata={**metadata, "rule": QuarantineRule.FAILURE_RATE.value},
                )
            )

        if pattern.consecutive_failures >= config.consecutive_failures and protected_gate:
            candidates.append(
                QuarantineDecision(
                    reason=f"{pattern.consecutive_failures} consecutive failures detected",
                    confidence=min(1.0, confidence + 0.1 * pattern.consecutive_failures),
                    impact_score=0.3 * pattern.consecutive_failures * impact_multiplier,
                    rule=QuarantineRule.CONSECUTIVE_FAILURES,
                    metadata={**metadata, "rule": QuarantineRule.CONSECUTIVE_FAILURES.value},
                )
            )

        if config.enable_rapid_degradation and protected_gate:
            degrading, recent_rate = stats.is_rapidly_degrading(pattern, self._rapid_window)
            if degrading:
                candidates.append(
                    QuarantineDecision(
                        reason=(
                            f"Rapid degradation: recent failure rate {recent_rate:.1%} "
                            f"vs overall {failure_rate:.1%}"
                        ),
                        confidence=confidence,
                        impact_score=1.5 * recent_rate,
                        rule=QuarantineRule.RAPID_DEGRADATION,
                        metadata={
                            **metadata,
                            "rule": QuarantineRule.RAPID_DEGRADATION.value,
                            "recent_failure_rate": round(recent_rate, 4),
                        },
                    )
                )

        if not candidates:
            return NoAction(reason="No quarantine criteria met", metadata=metadata)

        # Highest confidence wins; ties keep rule order above.
        decision = max(candidates, key=lambda d: d.confidence)

        cap = config.max_quarantine_percentage
        if cap is not None and context.project_total_tests > 0:
            projected = (context.project_quarantined_tests + 1) / context.project_total_tests
            if projected > cap:
                logger.info(
                    "Quarantine suppressed by project cap",
                    pattern_id=pattern.pattern_id,
                    projected_ratio=round(projected, 4),
                    cap=cap,
                )
                return NoAction(
                    reason=(
                        f"Quarantine cap reached: {projected:.1%} of tests would be "
                        f"quarantined (max {cap:.1%})"
                    ),
                    metadata={**metadata, "suppressed_rule": decision.rule.value},
                )

        return decision

    def evaluate_unquarantine(
        self,
        pattern: FlakyTestPattern,
        config: QuarantinePolicyConfig,
        context: EvaluationContext,
    ) -> Decision:
        if pattern.quarantined_at is None:
            raise DataIntegrityError(
                f"Pattern {pattern.pattern_id} has no quarantine start",
                {"pattern_id": pattern.pattern_id, "problems": ["quarantined without quarantine start"]},
            )
        days = max(0.0, days_between(pattern.quarantined_at, context.now))

        if (
            config.enable_time_based_rules
            and config.max_quarantine_period is not None
            and days >= config.max_quarantine_period
        ):
            return UnquarantineDecision(
                reason=(
                    f"Max quarantine period exceeded: {days:.1f} days "
                    f"(max {config.max_quarantine_period})"
                ),
                stability_score=0.0,
                consecutive_successes=pattern.consecutive_successes,
                days_since_quarantine=days,
                forced=True,
                metadata={"rule": "max_quarantine_period"},
            )

        if days < config.stability_period:
            return NoAction(
                reason=f"Waiting for stability period: {days:.1f}/{config.stability_period} days",
            )

        if pattern.consecutive_successes < config.min_successful_runs:
            return NoAction(
                reason=(
                    f"Waiting for consecutive successes: "
                    f"{pattern.consecutive_successes}/{config.min_successful_runs}"
                ),
            )

        since = stats.stability_window_start(context.now, config.stability_period)
        success_rate, samples = stats.window_success_rate(pattern, since)
        if samples == 0 or success_rate < config.success_rate_required:
            return NoAction(
                reason=(
                    f"Success rate {success_rate:.1%} over {samples} recent runs below "
                    f"required {config.success_rate_required:.1%}"
                ),
            )

        # Quarantine wins when the recent window still meets quarantine criteria.
        if 1.0 - success_rate >= config.failure_rate_threshold:
            return NoAction(
                reason=(
                    f"Recent failure rate {1.0 - success_rate:.1%} still meets quarantine "
                    f"threshold {config.failure_rate_threshold:.1%}"
                ),
            )

        score = stats.stability_score(
            success_rate, pattern.consecutive_successes, days, config.stability_period
        )
        return UnquarantineDecision(
            reason=(
                f"Test stabilized: {success_rate:.1%} success rate over {samples} runs, "
                f"{pattern.consecutive_successes} consecutive successes"
            ),
            stability_score=score,
            consecutive_successes=pattern.consecutive_successes,
            days_since_quarantine=days,
            metadata={"success_rate": round(success_rate, 4), "samples": samples},
        )
