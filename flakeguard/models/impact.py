"""Quarantine impact domain models."""

from datetime import datetime

from pydantic import BaseModel, Field


class ImpactRecord(BaseModel):
    """Outcome metrics of one quarantine episode."""

    episode_id: str = Field(..., description="Episode unique identifier")
    flaky_test_pattern_id: str
    project_id: str
    test_name: str
    test_suite: str | None = None
    period_start: datetime
    period_end: datetime | None = None
    builds_blocked: int = Field(default=0, ge=0)
    ci_time_wasted: float = Field(default=0.0, ge=0, description="Minutes")
    developer_hours: float = Field(default=0.0, ge=0)
    false_positive: bool = False
    auto_unquarantined: bool = False
    quarantine_days: float = Field(default=0.0, ge=0)
    quarantined_by: str = Field(default="auto")
    stability_before: float | None = Field(default=None, ge=0.0, le=1.0)
    stability_after: float | None = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_open(self) -> bool:
        return self.period_end is None

    @property
    def stability_delta(self) -> float | None:
        if self.stability_before is None or self.stability_after is None:
            return None
        return self.stability_after - self.stability_before
