"""Quarantine policy domain models."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuarantinePolicyConfig(BaseModel):
    """Thresholds and toggles driving automated quarantine decisions."""

    # Quarantine thresholds
    failure_rate_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    consecutive_failures: int = Field(default=3, ge=1)
    min_runs_required: int = Field(default=10, ge=1)

    # Unquarantine thresholds
    stability_period: int = Field(default=7, ge=1, description="Days")
    success_rate_required: float = Field(default=0.9, ge=0.0, le=1.0)
    min_successful_runs: int = Field(default=5, ge=1)

    # Critical path configuration
    high_impact_suites: list[str] = Field(default_factory=list)
    priority_tests: list[str] = Field(default_factory=list)

    # Rule toggles
    enable_rapid_degradation: bool = True
    enable_critical_path_protection: bool = True
    enable_time_based_rules: bool = False

    # Limits
    max_quarantine_period: int | None = Field(default=None, ge=1, description="Days")
    max_quarantine_percentage: float | None = Field(default=None, ge=0.0, le=1.0)

    def is_protected(self, test_name: str, test_suite: str | None) -> bool:
        """Whether a test sits on a critical path."""
        if test_suite and test_suite in self.high_impact_suites:
            return True
        return test_name in self.priority_tests


class QuarantinePolicy(BaseModel):
    """Named, versioned policy owned by a project."""

    policy_id: str = Field(..., description="Policy unique identifier")
    project_id: str = Field(..., description="Owning project")
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = Field(default=False, description="Derived from the project's active pointer")
    config: QuarantinePolicyConfig = Field(default_factory=QuarantinePolicyConfig)
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    updated_by: str = Field(default="system")


DEFAULT_POLICY_NAME = "Default Quarantine Policy"


def default_policy_config() -> QuarantinePolicyConfig:
    """Built-in policy used when a project has no active policy."""
    return QuarantinePolicyConfig(
        failure_rate_threshold=0.3,
        confidence_threshold=0.7,
        consecutive_failures=3,
        min_runs_required=10,
        stability_period=7,
        success_rate_required=0.9,
        min_successful_runs=5,
        enable_rapid_degradation=True,
        enable_critical_path_protection=True,
        enable_time_based_rules=False,
    )


def default_policy(project_id: str) -> QuarantinePolicy:
    """Unsaved default policy for a project."""
    return QuarantinePolicy(
        policy_id=f"default:{project_id}",
        project_id=project_id,
        name=DEFAULT_POLICY_NAME,
        description="Built-in fallback policy",
        is_active=True,
        config=default_policy_config(),
    )


class PolicyValidationResult(BaseModel):
    """Outcome of validating a policy configuration."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class PolicyAuditEntry(BaseModel):
    """Audit trail entry for administrative policy changes."""

    policy_id: str
    project_id: str
    action: str = Field(..., description="created/updated/activated/deactivated/deleted")
    version: int
    actor: str = Field(default="system")
    created_at: datetime = Field(default_factory=_utcnow)


class SimulatedDecision(BaseModel):
    """Decision the evaluator would take for one test under a candidate policy."""

    pattern_id: str
    test_name: str
    test_suite: str | None = None
    reason: str
    confidence: float
    failure_rate: float
    critical: bool = False


class SimulationSavings(BaseModel):
    ci_minutes: float = 0.0
    developer_hours: float = 0.0
    builds_protected: int = 0


class SimulationRisks(BaseModel):
    false_positives: int = 0
    over_quarantine: bool = False
    critical_tests_affected: int = 0


class PolicySimulation(BaseModel):
    """Projected effect of a policy; nothing is persisted."""

    project_id: str
    total_tests: int = 0
    would_quarantine: list[SimulatedDecision] = Field(default_factory=list)
    would_unquarantine: list[SimulatedDecision] = Field(default_factory=list)
    estimated_savings: SimulationSavings = Field(default_factory=SimulationSavings)
    risks: SimulationRisks = Field(default_factory=SimulationRisks)


class PolicyRecommendation(BaseModel):
    """Suggested configuration derived from project history. Never auto-applied."""

    project_id: str
    config: QuarantinePolicyConfig
    based_on_tests: int = 0
    rationale: list[str] = Field(default_factory=list)
