"""Tests for quarantine evaluation rules."""

from datetime import timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flakeguard.core.errors import DataIntegrityError
from flakeguard.engine.evaluator import EvaluationContext, QuarantineEvaluator
from flakeguard.engine.statistics import confidence_score, is_rapidly_degrading
from flakeguard.models.decision import (
    NoAction,
    QuarantineDecision,
    QuarantineRule,
    UnquarantineDecision,
)
from flakeguard.models.pattern import QuarantineStatus
from flakeguard.models.policy import QuarantinePolicyConfig

from factories import FAIL, NOW, PASS, key, make_pattern

evaluator = QuarantineEvaluator()
context = EvaluationContext(now=NOW)


def quarantined(days_ago: float, consecutive_successes: int, recent, total_runs: int = 40, failure_count: int = 10):
    return make_pattern(
        total_runs=total_runs,
        failure_count=failure_count,
        consecutive_successes=consecutive_successes,
        recent=recent,
        status=QuarantineStatus.QUARANTINED,
        quarantined_at=NOW - timedelta(days=days_ago),
    )


def test_failure_rate_path_quarantines_when_streak_path_is_not_met() -> None:
    pattern = make_pattern(total_runs=20, failure_count=8, consecutive_failures=4)
    config = QuarantinePolicyConfig(
        failure_rate_threshold=0.3,
        confidence_threshold=0.5,
        consecutive_failures=5,
        min_runs_required=10,
    )

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, QuarantineDecision)
    assert decision.rule == QuarantineRule.FAILURE_RATE
    assert decision.confidence >= 0.5
    assert decision.triggered_by == "auto"


def test_insufficient_runs_is_no_action() -> None:
    pattern = make_pattern(total_runs=20, failure_count=8, consecutive_failures=4)
    config = QuarantinePolicyConfig(
        failure_rate_threshold=0.5,
        consecutive_failures=10,
        min_runs_required=50,
    )

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, NoAction)
    assert "Insufficient runs" in decision.reason


@given(
    min_runs=st.integers(min_value=2, max_value=200),
    data=st.data(),
)
def test_never_quarantines_below_min_runs(min_runs: int, data) -> None:
    total_runs = data.draw(st.integers(min_value=0, max_value=min_runs - 1))
    failure_count = data.draw(st.integers(min_value=0, max_value=total_runs))
    streak = data.draw(st.integers(min_value=0, max_value=failure_count))
    pattern = make_pattern(total_runs=total_runs, failure_count=failure_count, consecutive_failures=streak)
    config = QuarantinePolicyConfig(min_runs_required=min_runs, consecutive_failures=1, failure_rate_threshold=0.0)

    decision = evaluator.evaluate(pattern, config, context)

    assert not isinstance(decision, QuarantineDecision)


def test_consecutive_failures_path() -> None:
    pattern = make_pattern(total_runs=30, failure_count=6, consecutive_failures=5)
    config = QuarantinePolicyConfig(failure_rate_threshold=0.5, consecutive_failures=5, enable_rapid_degradation=False)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, QuarantineDecision)
    assert decision.rule == QuarantineRule.CONSECUTIVE_FAILURES
    base = confidence_score(30, 6 / 30, config.min_runs_required)
    assert decision.confidence == pytest.approx(min(1.0, base + 0.5))


@given(streak=st.integers(min_value=0, max_value=19))
def test_quarantine_eligibility_is_monotonic_in_consecutive_failures(streak: int) -> None:
    config = QuarantinePolicyConfig(failure_rate_threshold=0.9, consecutive_failures=6, enable_rapid_degradation=False)
    lower = evaluator.evaluate(make_pattern(total_runs=40, failure_count=20, consecutive_failures=streak), config, context)
    higher = evaluator.evaluate(
        make_pattern(total_runs=40, failure_count=20, consecutive_failures=streak + 1), config, context
    )

    if isinstance(lower, QuarantineDecision):
        assert isinstance(higher, QuarantineDecision)
        assert higher.confidence >= lower.confidence


def test_protected_suite_requires_strictly_higher_confidence() -> None:
    config = QuarantinePolicyConfig(
        failure_rate_threshold=0.3,
        confidence_threshold=0.6,
        min_runs_required=10,
        high_impact_suites=["payments"],
        enable_rapid_degradation=False,
    )
    # confidence = (1 - e^-2) * 0.8, between 0.6 and 0.75
    plain = make_pattern(key("test_checkout", "ui"), total_runs=20, failure_count=8)
    protected = make_pattern(key("test_checkout", "payments"), total_runs=20, failure_count=8)

    assert isinstance(evaluator.evaluate(plain, config, context), QuarantineDecision)
    decision = evaluator.evaluate(protected, config, context)
    assert isinstance(decision, NoAction)
    assert decision.metadata["critical_path"] is True
    assert decision.metadata["confidence_threshold"] == pytest.approx(0.75)


def test_protected_test_is_not_quarantined_by_streak_alone() -> None:
    config = QuarantinePolicyConfig(priority_tests=["test_checkout"], consecutive_failures=3)
    pattern = make_pattern(total_runs=12, failure_count=3, consecutive_failures=3)

    assert isinstance(evaluator.evaluate(pattern, config, context), NoAction)


def test_protection_can_be_disabled() -> None:
    config = QuarantinePolicyConfig(
        priority_tests=["test_checkout"],
        consecutive_failures=3,
        enable_critical_path_protection=False,
    )
    pattern = make_pattern(total_runs=12, failure_count=3, consecutive_failures=3)

    assert isinstance(evaluator.evaluate(pattern, config, context), QuarantineDecision)


def test_rapid_degradation_detects_sudden_onset() -> None:
    recent = [PASS] * 5 + [FAIL] * 5
    pattern = make_pattern(total_runs=100, failure_count=6, consecutive_failures=5, recent=recent)
    config = QuarantinePolicyConfig(failure_rate_threshold=0.5, consecutive_failures=10)

    degrading, recent_rate = is_rapidly_degrading(pattern, 10)
    decision = evaluator.evaluate(pattern, config, context)

    assert degrading is True
    assert recent_rate == pytest.approx(0.5)
    assert isinstance(decision, QuarantineDecision)
    assert decision.rule == QuarantineRule.RAPID_DEGRADATION
    assert decision.impact_score == pytest.approx(0.75)


def test_rapid_degradation_needs_enough_recent_runs() -> None:
    pattern = make_pattern(total_runs=100, failure_count=4, consecutive_failures=4, recent=[FAIL] * 4)

    assert is_rapidly_degrading(pattern, 10) == (False, 1.0)


def test_quarantine_cap_suppresses_decision() -> None:
    pattern = make_pattern(total_runs=20, failure_count=10)
    config = QuarantinePolicyConfig(max_quarantine_percentage=0.2)

    allowed = evaluator.evaluate(
        pattern, config, EvaluationContext(now=NOW, project_total_tests=10, project_quarantined_tests=1)
    )
    suppressed = evaluator.evaluate(
        pattern, config, EvaluationContext(now=NOW, project_total_tests=10, project_quarantined_tests=2)
    )

    assert isinstance(allowed, QuarantineDecision)
    assert isinstance(suppressed, NoAction)
    assert "cap" in suppressed.reason


def test_stable_test_is_released_after_stability_period() -> None:
    recent = [PASS, FAIL, PASS, PASS, PASS] + [PASS] * 5
    pattern = quarantined(days_ago=10, consecutive_successes=6, recent=recent)
    config = QuarantinePolicyConfig(stability_period=7, min_successful_runs=5, success_rate_required=0.8)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, UnquarantineDecision)
    assert decision.forced is False
    assert decision.days_since_quarantine == pytest.approx(10)
    assert decision.stability_score == pytest.approx(1.0)


def test_no_release_before_stability_period() -> None:
    pattern = quarantined(days_ago=3, consecutive_successes=20, recent=[PASS] * 20)
    config = QuarantinePolicyConfig(stability_period=7)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, NoAction)
    assert "stability period" in decision.reason


def test_no_release_without_success_streak() -> None:
    pattern = quarantined(days_ago=10, consecutive_successes=2, recent=[PASS] * 8 + [FAIL] + [PASS] * 2)
    config = QuarantinePolicyConfig(min_successful_runs=5)

    assert isinstance(evaluator.evaluate(pattern, config, context), NoAction)


def test_no_release_when_window_success_rate_is_low() -> None:
    recent = [FAIL, PASS, FAIL, PASS, FAIL] + [PASS] * 5
    pattern = quarantined(days_ago=10, consecutive_successes=5, recent=recent)
    config = QuarantinePolicyConfig(success_rate_required=0.9, min_successful_runs=5)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, NoAction)
    assert "below required" in decision.reason


def test_quarantine_takes_precedence_over_release() -> None:
    recent = [FAIL, FAIL, FAIL] + [PASS] * 7
    pattern = quarantined(days_ago=10, consecutive_successes=7, recent=recent)
    config = QuarantinePolicyConfig(success_rate_required=0.7, failure_rate_threshold=0.3)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, NoAction)
    assert "still meets quarantine" in decision.reason


def test_max_quarantine_period_forces_release() -> None:
    pattern = quarantined(days_ago=31, consecutive_successes=0, recent=[FAIL] * 10, failure_count=20)
    config = QuarantinePolicyConfig(enable_time_based_rules=True, max_quarantine_period=30)

    decision = evaluator.evaluate(pattern, config, context)

    assert isinstance(decision, UnquarantineDecision)
    assert decision.forced is True
    assert "Max quarantine period" in decision.reason


def test_max_quarantine_period_ignored_without_time_based_rules() -> None:
    pattern = quarantined(days_ago=31, consecutive_successes=0, recent=[FAIL] * 10, failure_count=20)
    config = QuarantinePolicyConfig(enable_time_based_rules=False, max_quarantine_period=30)

    assert isinstance(evaluator.evaluate(pattern, config, context), NoAction)


def test_inconsistent_pattern_raises_data_integrity_error() -> None:
    pattern = make_pattern(total_runs=0, failure_count=3)

    with pytest.raises(DataIntegrityError) as exc_info:
        evaluator.evaluate(pattern, QuarantinePolicyConfig(), context)

    assert exc_info.value.details["pattern_id"] == pattern.pattern_id


def test_quarantined_pattern_without_start_raises() -> None:
    pattern = make_pattern(status=QuarantineStatus.QUARANTINED)
    pattern.quarantined_at = None

    with pytest.raises(DataIntegrityError):
        evaluator.evaluate(pattern, QuarantinePolicyConfig(), context)


def test_release_path_without_start_raises_when_called_directly() -> None:
    pattern = make_pattern(status=QuarantineStatus.QUARANTINED)
    pattern.quarantined_at = None

    with pytest.raises(DataIntegrityError) as exc_info:
        evaluator.evaluate_unquarantine(pattern, QuarantinePolicyConfig(), context)

    assert exc_info.value.details["problems"] == ["quarantined without quarantine start"]


def test_invalid_policy_bypassing_validation_raises() -> None:
    config = QuarantinePolicyConfig.model_construct(**{**QuarantinePolicyConfig().model_dump(), "min_runs_required": 0})

    with pytest.raises(DataIntegrityError):
        evaluator.evaluate(make_pattern(), config, context)


@given(
    runs=st.integers(min_value=1, max_value=500),
    rate=st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
    min_runs=st.integers(min_value=1, max_value=100),
)
def test_confidence_is_bounded_and_monotonic_in_runs(runs: int, rate: float, min_runs: int) -> None:
    current = confidence_score(runs, rate, min_runs)

    assert 0.0 <= current <= 1.0
    assert confidence_score(runs + 1, rate, min_runs) >= current
    assert confidence_score(runs, min(1.0, rate + 0.05), min_runs) >= current
