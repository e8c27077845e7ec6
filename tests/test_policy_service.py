"""Tests for policy administration."""

import pytest

from flakeguard.core.errors import NotFoundError, PolicyInUseError, PolicyMissingError, PolicyValidationError
from flakeguard.models.pattern import QuarantineStatus
from flakeguard.models.policy import DEFAULT_POLICY_NAME, QuarantinePolicyConfig
from flakeguard.services.engine import QuarantineEngine
from flakeguard.services.policy_service import validate_policy_config

from factories import NOW, PASS, key, make_pattern


def test_validation_warns_on_risky_settings() -> None:
    config = QuarantinePolicyConfig(
        failure_rate_threshold=0.05,
        confidence_threshold=0.4,
        stability_period=45,
        success_rate_required=0.7,
        max_quarantine_percentage=0.6,
        max_quarantine_period=120,
    )

    result = validate_policy_config(config)

    assert result.is_valid is True
    assert result.errors == []
    assert len(result.warnings) == 6


def test_validation_reports_errors_for_constructed_configs() -> None:
    config = QuarantinePolicyConfig.model_construct(
        **{**QuarantinePolicyConfig().model_dump(), "failure_rate_threshold": 1.5, "stability_period": 0}
    )

    result = validate_policy_config(config)

    assert result.is_valid is False
    assert "Failure rate threshold must be between 0 and 1" in result.errors
    assert "Stability period (days) must be at least 1" in result.errors


def test_default_config_has_no_warnings() -> None:
    assert validate_policy_config(QuarantinePolicyConfig()).warnings == []


@pytest.mark.asyncio
async def test_upsert_by_name_increments_version(engine: QuarantineEngine) -> None:
    service = engine.policy_service

    created, _ = await service.create_or_update("proj", "strict", QuarantinePolicyConfig(), actor="alice")
    updated, validation = await service.create_or_update(
        "proj", "strict", QuarantinePolicyConfig(failure_rate_threshold=0.9), actor="bob"
    )

    assert updated.policy_id == created.policy_id
    assert created.policy_id.startswith(f"policy_{NOW.strftime('%Y%m%d')}_")
    assert updated.version == 2
    assert updated.updated_by == "bob"
    assert validation.warnings == ["High failure rate threshold may not catch flaky tests early enough"]
    assert len(await service.list_policies("proj")) == 1
    audit = await service.list_audit("proj")
    assert [(a.action, a.version) for a in audit] == [("updated", 2), ("created", 1)]


@pytest.mark.asyncio
async def test_invalid_config_is_rejected(engine: QuarantineEngine) -> None:
    config = QuarantinePolicyConfig.model_construct(
        **{**QuarantinePolicyConfig().model_dump(), "min_runs_required": 0}
    )

    with pytest.raises(PolicyValidationError) as exc_info:
        await engine.policy_service.create_or_update("proj", "broken", config)

    assert exc_info.value.errors == ["Minimum runs required must be at least 1"]
    assert await engine.policy_service.list_policies("proj") == []


@pytest.mark.asyncio
async def test_activation_keeps_a_single_active_policy(engine: QuarantineEngine) -> None:
    service = engine.policy_service
    first, _ = await service.create_or_update("proj", "first", QuarantinePolicyConfig())
    second, _ = await service.create_or_update("proj", "second", QuarantinePolicyConfig())

    await service.activate(first.policy_id)
    await service.activate(second.policy_id)

    policies = await service.list_policies("proj")
    assert [(p.name, p.is_active) for p in policies] == [("second", True), ("first", False)]
    assert (await engine.policies.get_active("proj")).policy_id == second.policy_id
    actions = [a.action for a in await service.list_audit("proj")]
    assert actions[:3] == ["activated", "deactivated", "activated"]


@pytest.mark.asyncio
async def test_active_policy_cannot_be_deleted(engine: QuarantineEngine) -> None:
    service = engine.policy_service
    policy, _ = await service.create_or_update("proj", "strict", QuarantinePolicyConfig())
    await service.activate(policy.policy_id)

    with pytest.raises(PolicyInUseError):
        await service.delete(policy.policy_id)

    await service.deactivate(policy.policy_id)
    await service.delete(policy.policy_id)

    with pytest.raises(NotFoundError):
        await service.get(policy.policy_id)
    with pytest.raises(PolicyMissingError):
        await engine.policies.get_active("proj")


@pytest.mark.asyncio
async def test_missing_policy_falls_back_to_default(engine: QuarantineEngine) -> None:
    policy = await engine.quarantine.resolve_policy("proj")

    assert policy.name == DEFAULT_POLICY_NAME
    assert policy.config.failure_rate_threshold == 0.3
    assert policy.config.min_runs_required == 10
    assert policy.config.success_rate_required == 0.9


@pytest.mark.asyncio
async def test_ensure_default_policy_is_idempotent(engine: QuarantineEngine) -> None:
    first = await engine.policy_service.ensure_default_policy("proj")
    second = await engine.policy_service.ensure_default_policy("proj")

    assert first.policy_id == second.policy_id
    assert len(await engine.policy_service.list_policies("proj")) == 1


@pytest.mark.asyncio
async def test_simulation_does_not_persist(engine: QuarantineEngine) -> None:
    await engine.patterns.save(make_pattern(key("test_flaky"), total_runs=20, failure_count=10))
    await engine.patterns.save(make_pattern(key("test_stable"), total_runs=20, failure_count=0))
    await engine.patterns.save(
        make_pattern(
            key("test_recovered"),
            total_runs=40,
            failure_count=5,
            consecutive_successes=10,
            recent=[PASS] * 10,
            status=QuarantineStatus.QUARANTINED,
            quarantined_at=NOW.replace(day=1, month=2),
        )
    )

    simulation = await engine.policy_service.simulate("proj", QuarantinePolicyConfig())

    assert simulation.total_tests == 3
    assert [d.test_name for d in simulation.would_quarantine] == ["test_flaky"]
    assert [d.test_name for d in simulation.would_unquarantine] == ["test_recovered"]
    assert simulation.estimated_savings.ci_minutes == pytest.approx(15.0)
    assert simulation.estimated_savings.developer_hours == pytest.approx(1.0)
    assert simulation.estimated_savings.builds_protected == 5
    assert simulation.risks.over_quarantine is False
    assert await engine.patterns.count_quarantined("proj") == 1
    assert await engine.history.list_by_project("proj") == []


@pytest.mark.asyncio
async def test_simulation_flags_over_quarantine_against_cap(engine: QuarantineEngine) -> None:
    for name in ("test_a", "test_b"):
        await engine.patterns.save(make_pattern(key(name), total_runs=20, failure_count=10))

    simulation = await engine.policy_service.simulate("proj", QuarantinePolicyConfig(max_quarantine_percentage=1.0))

    assert len(simulation.would_quarantine) == 2
    assert simulation.risks.over_quarantine is False

    capped = await engine.policy_service.simulate("proj", QuarantinePolicyConfig(max_quarantine_percentage=0.5))
    assert len(capped.would_quarantine) == 1


@pytest.mark.asyncio
async def test_recommendation_without_history_is_default(engine: QuarantineEngine) -> None:
    recommendation = await engine.policy_service.recommend("proj")

    assert recommendation.based_on_tests == 0
    assert recommendation.config == QuarantinePolicyConfig()
    assert recommendation.rationale


@pytest.mark.asyncio
async def test_recommendation_follows_failure_rate_distribution(engine: QuarantineEngine) -> None:
    for name, suite, failures in (
        ("test_a", "payments", 1),
        ("test_b", "payments", 2),
        ("test_c", "payments", 4),
        ("test_d", "ui", 0),
        ("test_e", "ui", 5),
    ):
        await engine.patterns.save(make_pattern(key(name, suite), total_runs=10, failure_count=failures))

    recommendation = await engine.policy_service.recommend("proj")

    assert recommendation.based_on_tests == 5
    assert recommendation.config.failure_rate_threshold == pytest.approx(0.42)
    assert 0.6 <= recommendation.config.confidence_threshold <= 0.9
    assert recommendation.config.high_impact_suites == ["payments"]
    # never applied
    assert await engine.policy_service.list_policies("proj") == []
