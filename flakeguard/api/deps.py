"""API dependency injection."""

from typing import Annotated

from fastapi import Depends, Query, Request

from flakeguard.scheduler import QuarantineScheduler
from flakeguard.services.engine import QuarantineEngine
from flakeguard.services.impact import ImpactTracker
from flakeguard.services.policy_service import PolicyService
from flakeguard.services.quarantine import QuarantineService


def get_engine(request: Request) -> QuarantineEngine:
    """Get the engine built by the application lifespan."""
    return request.app.state.engine


EngineDep = Annotated[QuarantineEngine, Depends(get_engine)]


def get_quarantine_service(engine: EngineDep) -> QuarantineService:
    return engine.quarantine


def get_policy_service(engine: EngineDep) -> PolicyService:
    return engine.policy_service


def get_scheduler(engine: EngineDep) -> QuarantineScheduler:
    return engine.scheduler


def get_impact_tracker(engine: EngineDep) -> ImpactTracker:
    return engine.impact


# Type aliases for dependency injection
QuarantineServiceDep = Annotated[QuarantineService, Depends(get_quarantine_service)]
PolicyServiceDep = Annotated[PolicyService, Depends(get_policy_service)]
SchedulerDep = Annotated[QuarantineScheduler, Depends(get_scheduler)]
ImpactTrackerDep = Annotated[ImpactTracker, Depends(get_impact_tracker)]


def get_limit(
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of items"),
) -> int:
    """Get list limit from query."""
    return limit


LimitDep = Annotated[int, Depends(get_limit)]
