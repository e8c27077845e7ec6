"""Quarantine history domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class HistoryAction(str, Enum):
    """Transition recorded in the history ledger."""

    QUARANTINED = "quarantined"
    UNQUARANTINED = "unquarantined"


class QuarantineHistoryEntry(BaseModel):
    """Append-only record of one applied transition."""

    entry_id: str = Field(..., description="Entry unique identifier")
    flaky_test_pattern_id: str = Field(..., description="Pattern the transition applied to")
    project_id: str = Field(..., description="Owning project")
    test_name: str
    test_suite: str | None = None
    action: HistoryAction
    reason: str = Field(default="")
    triggered_by: str = Field(default="auto", description="'auto' or the invoking user id")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    failure_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    impact_score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @property
    def is_automatic(self) -> bool:
        return self.triggered_by == "auto"
