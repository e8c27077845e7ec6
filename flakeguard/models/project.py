"""Project automation settings."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class AutomationSchedule(str, Enum):
    """When automated quarantine evaluation runs for a project."""

    DAILY = "daily"
    ON_TEST_FAILURE = "on_test_failure"


class AutomationSettings(BaseModel):
    """Automation state of one project."""

    project_id: str
    enabled: bool = False
    schedule: AutomationSchedule = AutomationSchedule.DAILY
    enabled_at: datetime | None = None
    updated_at: datetime | None = None
    last_evaluation_at: datetime | None = None


class AutomationStatus(BaseModel):
    """Automation report for one project."""

    project_id: str
    enabled: bool
    schedule: AutomationSchedule
    last_evaluation_at: datetime | None = None
    currently_quarantined: int = Field(default=0, ge=0)
    auto_quarantined_30d: int = Field(default=0, ge=0)
    auto_unquarantined_30d: int = Field(default=0, ge=0)
