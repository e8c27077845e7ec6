"""Quarantine decision variants produced by the evaluator.

A decision is one of three tagged variants. Consumers switch on the
concrete type and must handle all three.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

AUTO_TRIGGER = "auto"


class QuarantineRule(str, Enum):
    """Rule that produced a quarantine decision."""

    FAILURE_RATE = "failure_rate"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    RAPID_DEGRADATION = "rapid_degradation"
    MANUAL = "manual"


@dataclass(frozen=True)
class QuarantineDecision:
    """Move an active test into quarantine."""

    reason: str
    confidence: float
    impact_score: float = 0.0
    triggered_by: str = AUTO_TRIGGER
    rule: QuarantineRule = QuarantineRule.FAILURE_RATE
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: Literal["quarantine"] = "quarantine"


@dataclass(frozen=True)
class UnquarantineDecision:
    """Restore a quarantined test to active status."""

    reason: str
    stability_score: float
    consecutive_successes: int = 0
    days_since_quarantine: float = 0.0
    forced: bool = False
    triggered_by: str = AUTO_TRIGGER
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: Literal["unquarantine"] = "unquarantine"


@dataclass(frozen=True)
class NoAction:
    """Leave the test where it is."""

    reason: str
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: Literal["none"] = "none"


Decision = Union[QuarantineDecision, UnquarantineDecision, NoAction]


def manual_quarantine(user_id: str, reason: str | None = None) -> QuarantineDecision:
    """Operator quarantine; bypasses every evaluator threshold."""
    return QuarantineDecision(
        reason=reason or f"Manually quarantined by {user_id}",
        confidence=1.0,
        impact_score=0.0,
        triggered_by=user_id,
        rule=QuarantineRule.MANUAL,
    )


def manual_unquarantine(user_id: str, reason: str | None = None) -> UnquarantineDecision:
    """Operator release; bypasses every evaluator threshold."""
    return UnquarantineDecision(
        reason=reason or f"Manually unquarantined by {user_id}",
        stability_score=1.0,
        consecutive_successes=0,
        triggered_by=user_id,
    )
