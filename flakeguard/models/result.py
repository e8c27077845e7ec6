"""Normalized test result received from the ingestion boundary."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from flakeguard.models.pattern import PatternKey, RunStatus


class RunResult(BaseModel):
    """One test execution reported by a CI provider adapter."""

    result_id: str = Field(..., min_length=1, description="Result identifier for idempotency")
    project_id: str = Field(..., min_length=1)
    test_name: str = Field(..., min_length=1)
    test_suite: str | None = None
    status: RunStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int | None = Field(default=None, ge=0)
    branch: str | None = None
    ci_provider: str | None = None

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("test_suite")
    @classmethod
    def blank_suite_is_none(cls, value: str | None) -> str | None:
        return value or None

    @property
    def key(self) -> PatternKey:
        return PatternKey(self.project_id, self.test_name, self.test_suite)

    @classmethod
    def from_message(cls, body: dict[str, Any], fallback_id: str = "") -> "RunResult":
        """Build a result from a queue message body."""
        return cls(
            result_id=body.get("result_id") or fallback_id,
            project_id=body["project_id"],
            test_name=body["test_name"],
            test_suite=body.get("test_suite"),
            status=body["status"],
            timestamp=body.get("timestamp") or datetime.now(timezone.utc),
            duration_ms=body.get("duration_ms"),
            branch=body.get("branch"),
            ci_provider=body.get("ci_provider"),
        )
