"""Statistics derived from a flaky test pattern.

All functions here are pure. They read a pattern and return numbers; the
evaluator combines them with a policy.
"""

import math
from datetime import datetime, timedelta

from flakeguard.core.errors import DataIntegrityError
from flakeguard.models.pattern import FlakyTestPattern, RunStatus
from flakeguard.models.policy import QuarantinePolicyConfig

# Failure rate at which the rate signal saturates.
SIGNAL_SATURATION_RATE = 0.5

RAPID_DEGRADATION_MULTIPLIER = 2.0
RAPID_DEGRADATION_MIN_RATE = 0.3
RAPID_DEGRADATION_MIN_SAMPLES = 5

CRITICAL_PATH_CONFIDENCE_BOOST = 0.15


def check_pattern_integrity(pattern: FlakyTestPattern) -> None:
    """Raise DataIntegrityError when running statistics are inconsistent."""
    problems: list[str] = []
    if pattern.total_runs < 0:
        problems.append("total_runs is negative")
    if pattern.failure_count < 0:
        problems.append("failure_count is negative")
    if pattern.failure_count > pattern.total_runs:
        problems.append(
            f"failure_count ({pattern.failure_count}) exceeds total_runs ({pattern.total_runs})"
        )
    if pattern.consecutive_failures < 0 or pattern.consecutive_successes < 0:
        problems.append("negative streak")
    if pattern.consecutive_failures > 0 and pattern.consecutive_successes > 0:
        problems.append("failure and success streaks are both non-zero")
    if pattern.consecutive_failures > pattern.failure_count:
        problems.append("consecutive_failures exceeds failure_count")
    if pattern.consecutive_successes > pattern.total_runs - pattern.failure_count:
        problems.append("consecutive_successes exceeds successful runs")
    if pattern.is_quarantined and pattern.quarantined_at is None:
        problems.append("quarantined without quarantine start")

    if problems:
        raise DataIntegrityError(
            f"Pattern {pattern.pattern_id} violates invariants: {'; '.join(problems)}",
            {"pattern_id": pattern.pattern_id, "problems": problems},
        )


def check_policy_integrity(config: QuarantinePolicyConfig) -> None:
    """Raise DataIntegrityError for configs that bypassed model validation."""
    problems: list[str] = []
    for name in ("failure_rate_threshold", "confidence_threshold", "success_rate_required"):
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            problems.append(f"{name} outside [0, 1]")
    for name in ("consecutive_failures", "min_runs_required", "min_successful_runs", "stability_period"):
        if getattr(config, name) < 1:
            problems.append(f"{name} below 1")
    if config.max_quarantine_percentage is not None and not 0.0 <= config.max_quarantine_percentage <= 1.0:
        problems.append("max_quarantine_percentage outside [0, 1]")

    if problems:
        raise DataIntegrityError(
            f"Policy configuration violates invariants: {'; '.join(problems)}",
            {"problems": problems},
        )


def confidence_score(total_runs: int, failure_rate: float, min_runs_required: int) -> float:
    """Certainty that a failure pattern is not noise.

    Grows with the number of observed runs (relative to the policy's minimum)
    and with the distance of the failure rate from a never-failing baseline.
    """
    if total_runs <= 0 or failure_rate <= 0:
        return 0.0
    sample = 1.0 - math.exp(-total_runs / max(min_runs_required, 1))
    signal = min(1.0, failure_rate / SIGNAL_SATURATION_RATE)
    return max(0.0, min(1.0, sample * signal))


def pattern_confidence(pattern: FlakyTestPattern, config: QuarantinePolicyConfig) -> float:
    return confidence_score(pattern.total_runs, pattern.failure_rate, config.min_runs_required)


def recent_failure_rate(pattern: FlakyTestPattern, window_runs: int) -> tuple[float, int]:
    """Failure rate over the last ``window_runs`` outcomes and the sample size."""
    window = pattern.recent_outcomes[-window_runs:] if window_runs > 0 else []
    if not window:
        return 0.0, 0
    failures = sum(1 for outcome in window if outcome.status == RunStatus.FAILED)
    return failures / len(window), len(window)


def is_rapidly_degrading(pattern: FlakyTestPattern, window_runs: int) -> tuple[bool, float]:
    """Sudden onset of failures relative to the long-run rate."""
    recent_rate, samples = recent_failure_rate(pattern, window_runs)
    if samples < RAPID_DEGRADATION_MIN_SAMPLES:
        return False, recent_rate
    degrading = (
        recent_rate >= RAPID_DEGRADATION_MIN_RATE
        and recent_rate >= RAPID_DEGRADATION_MULTIPLIER * pattern.failure_rate
    )
    return degrading, recent_rate


def window_success_rate(pattern: FlakyTestPattern, since: datetime) -> tuple[float, int]:
    """Success rate of outcomes at or after ``since`` and the sample size."""
    window = [outcome for outcome in pattern.recent_outcomes if outcome.at >= since]
    if not window:
        return 0.0, 0
    passed = sum(1 for outcome in window if outcome.status == RunStatus.PASSED)
    return passed / len(window), len(window)


def stability_window_start(now: datetime, stability_period_days: int) -> datetime:
    return now - timedelta(days=stability_period_days)


def effective_confidence_threshold(
    config: QuarantinePolicyConfig,
    test_name: str,
    test_suite: str | None,
) -> tuple[float, bool]:
    """Confidence threshold after critical-path protection, and whether it applied."""
    protected = config.enable_critical_path_protection and config.is_protected(test_name, test_suite)
    if protected:
        return min(1.0, config.confidence_threshold + CRITICAL_PATH_CONFIDENCE_BOOST), True
    return config.confidence_threshold, False


def stability_score(success_rate: float, consecutive_successes: int, days: float, stability_period: int) -> float:
    score = success_rate + consecutive_successes / 10 + 0.2 * (days / max(stability_period, 1))
    return max(0.0, min(1.0, score))
