"""Quarantine, automation and analytics API schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.history import QuarantineHistoryEntry
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.models.project import AutomationSchedule


class TestRef(BaseModel):
    """Identity of a test inside the path's project."""

    __test__ = False

    test_name: str = Field(..., min_length=1)
    test_suite: str | None = None

    def key(self, project_id: str) -> PatternKey:
        return PatternKey(project_id, self.test_name, self.test_suite or None)


class ManualActionRequest(TestRef):
    user_id: str = Field(..., min_length=1, description="Operator performing the override")
    reason: str | None = Field(default=None, max_length=500)


class TransitionResponse(BaseModel):
    pattern_id: str
    status: QuarantineStatus
    applied: bool = Field(..., description="False when the test was already in the target state")
    decision: str
    reason: str
    history_entry: QuarantineHistoryEntry | None = None

    @classmethod
    def from_result(cls, result: TransitionResult) -> "TransitionResponse":
        return cls(
            pattern_id=result.pattern.pattern_id,
            status=result.pattern.status,
            applied=result.applied,
            decision=result.decision.kind,
            reason=result.decision.reason,
            history_entry=result.history_entry,
        )


class QuarantineStatusResponse(BaseModel):
    pattern_id: str
    test_name: str
    test_suite: str | None = None
    is_quarantined: bool
    quarantined_at: datetime | None = None
    quarantined_by: str | None = None
    quarantine_reason: str | None = None
    failure_rate: float
    total_runs: int
    consecutive_failures: int
    consecutive_successes: int

    @classmethod
    def from_pattern(cls, pattern: FlakyTestPattern) -> "QuarantineStatusResponse":
        return cls(
            pattern_id=pattern.pattern_id,
            test_name=pattern.test_name,
            test_suite=pattern.test_suite,
            is_quarantined=pattern.is_quarantined,
            quarantined_at=pattern.quarantined_at,
            quarantined_by=pattern.quarantined_by,
            quarantine_reason=pattern.quarantine_reason,
            failure_rate=round(pattern.failure_rate, 4),
            total_runs=pattern.total_runs,
            consecutive_failures=pattern.consecutive_failures,
            consecutive_successes=pattern.consecutive_successes,
        )


class AutomationEnableRequest(BaseModel):
    schedule: AutomationSchedule = AutomationSchedule.DAILY
    user_id: str = Field(default="system", min_length=1)


class EvaluationResponse(BaseModel):
    project_id: str
    policy_id: str
    evaluated: int
    quarantined: int
    unquarantined: int
    timed_out: int
    errors: int


class SweepTriggerResponse(BaseModel):
    cadence: str
    accepted: bool = True


class TrackImpactRequest(TestRef):
    builds_blocked: int = Field(default=0, ge=0)
    ci_time_wasted: float = Field(default=0.0, ge=0, description="Minutes")
    developer_hours: float = Field(default=0.0, ge=0)
    false_positive: bool | None = None
