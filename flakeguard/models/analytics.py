"""Quarantine analytics and effectiveness report models."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class TimeRange(str, Enum):
    """Reporting window."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"

    @property
    def days(self) -> int:
        return {"week": 7, "month": 30, "quarter": 90}[self.value]


class QuarantineSummary(BaseModel):
    total_quarantined: int = 0
    currently_quarantined: int = 0
    auto_quarantined: int = 0
    manual_quarantined: int = 0
    auto_unquarantined: int = 0
    manual_unquarantined: int = 0
    avg_quarantine_days: float = 0.0
    longest_quarantine_days: float = 0.0


class DailyTrend(BaseModel):
    day: date
    quarantined: int = 0
    unquarantined: int = 0
    net: int = 0


class QuarantinedTestSummary(BaseModel):
    test_name: str
    test_suite: str | None = None
    quarantine_days: float
    reason: str


class CostSavings(BaseModel):
    ci_cost_saved: float = 0.0
    developer_cost_saved: float = 0.0
    total_saved: float = 0.0


class ImpactMetrics(BaseModel):
    ci_time_saved: float = Field(default=0.0, description="Minutes")
    developer_hours_saved: float = 0.0
    builds_protected: int = 0
    cost_savings: CostSavings = Field(default_factory=CostSavings)
    false_positive_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class QuarantineAnalytics(BaseModel):
    """Project analytics over a time range."""

    project_id: str
    time_range: TimeRange
    generated_at: datetime
    summary: QuarantineSummary
    daily: list[DailyTrend] = Field(default_factory=list)
    category_distribution: dict[str, int] = Field(default_factory=dict)
    top_quarantined_tests: list[QuarantinedTestSummary] = Field(default_factory=list)
    impact: ImpactMetrics
    recommendations: list[str] = Field(default_factory=list)


class EpisodeEffectiveness(BaseModel):
    episode_id: str
    flaky_test_pattern_id: str
    test_name: str
    test_suite: str | None = None
    period_start: datetime
    period_end: datetime | None = None
    stability_before: float | None = None
    stability_after: float | None = None
    stability_delta: float | None = None
    false_positive: bool = False


class EffectivenessReport(BaseModel):
    """CI stability before and after each quarantine episode."""

    project_id: str
    time_range: TimeRange
    generated_at: datetime
    episodes: list[EpisodeEffectiveness] = Field(default_factory=list)
    average_stability_delta: float | None = None
    false_positive_rate: float = 0.0
    overall_score: int = Field(default=0, ge=0, le=100)
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)


class QuarantineStats(BaseModel):
    """Quarantine activity of the last 30 days."""

    project_id: str
    total_quarantined: int = 0
    auto_quarantined: int = 0
    manual_quarantined: int = 0
    auto_unquarantined: int = 0
    manual_unquarantined: int = 0
    currently_quarantined: int = 0
    ci_time_saved: float = 0.0
    developer_hours_saved: float = 0.0
    avg_quarantine_days: float = 0.0
    false_positive_rate: float = 0.0


class PolicyFeedback(BaseModel):
    """Effectiveness signals consumed by policy recommendation."""

    episodes: int = 0
    false_positive_rate: float = 0.0
    average_stability_delta: float | None = None
