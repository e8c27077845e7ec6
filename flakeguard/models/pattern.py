"""Flaky test pattern domain models."""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Outcome of a single test execution."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class QuarantineStatus(str, Enum):
    """Lifecycle state of a test."""

    ACTIVE = "active"
    QUARANTINED = "quarantined"


class PatternKey(NamedTuple):
    """Identity of a test within a project."""

    project_id: str
    test_name: str
    test_suite: str | None = None

    @property
    def pattern_id(self) -> str:
        return make_pattern_id(self.project_id, self.test_name, self.test_suite)

    @property
    def lock_name(self) -> str:
        return f"{self.project_id}:{self.test_suite or ''}:{self.test_name}"


def make_pattern_id(project_id: str, test_name: str, test_suite: str | None = None) -> str:
    """Deterministic pattern identifier for a test key."""
    raw = "\x1f".join([project_id, test_suite or "", test_name])
    return "ftp_" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:20]


class RunOutcome(BaseModel):
    """Compact record of a recent non-skipped execution."""

    status: RunStatus
    at: datetime


class FlakyTestPattern(BaseModel):
    """Running statistics of one test, plus its quarantine state."""

    pattern_id: str = Field(..., description="Deterministic pattern identifier")
    project_id: str = Field(..., description="Owning project")
    test_name: str = Field(..., description="Test name")
    test_suite: str | None = Field(default=None, description="Test suite, if any")

    total_runs: int = Field(default=0, description="Non-skipped executions")
    failure_count: int = Field(default=0, description="Failed executions")
    consecutive_failures: int = Field(default=0)
    consecutive_successes: int = Field(default=0)
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_success_at: datetime | None = None
    recent_outcomes: list[RunOutcome] = Field(
        default_factory=list,
        description="Most recent non-skipped outcomes, oldest first",
    )
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)

    status: QuarantineStatus = Field(default=QuarantineStatus.ACTIVE)
    quarantined_at: datetime | None = None
    quarantined_by: str | None = None
    quarantine_reason: str | None = None

    @classmethod
    def new(cls, key: PatternKey, seen_at: datetime) -> "FlakyTestPattern":
        """Create the pattern for a test observed for the first time."""
        return cls(
            pattern_id=key.pattern_id,
            project_id=key.project_id,
            test_name=key.test_name,
            test_suite=key.test_suite,
            first_seen_at=seen_at,
            last_seen_at=seen_at,
        )

    @property
    def key(self) -> PatternKey:
        return PatternKey(self.project_id, self.test_name, self.test_suite)

    @property
    def failure_rate(self) -> float:
        if self.total_runs <= 0:
            return 0.0
        return self.failure_count / self.total_runs

    @property
    def is_quarantined(self) -> bool:
        return self.status == QuarantineStatus.QUARANTINED

    def apply_result(self, status: RunStatus, at: datetime, max_recent: int = 100) -> None:
        """Fold one execution result into the running statistics."""
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        if self.first_seen_at is None or at < self.first_seen_at:
            self.first_seen_at = at
        if self.last_seen_at is None or at > self.last_seen_at:
            self.last_seen_at = at

        if status == RunStatus.SKIPPED:
            return

        self.total_runs += 1
        if status == RunStatus.FAILED:
            self.failure_count += 1
            self.consecutive_failures += 1
            self.consecutive_successes = 0
            if self.last_failure_at is None or at > self.last_failure_at:
                self.last_failure_at = at
        else:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
            if self.last_success_at is None or at > self.last_success_at:
                self.last_success_at = at

        self.recent_outcomes.append(RunOutcome(status=status, at=at))
        if len(self.recent_outcomes) > max_recent:
            del self.recent_outcomes[: len(self.recent_outcomes) - max_recent]
