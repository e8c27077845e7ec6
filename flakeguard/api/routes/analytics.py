"""Analytics and impact API routes."""

from fastapi import APIRouter, Query

from flakeguard.api.deps import ImpactTrackerDep
from flakeguard.models.analytics import EffectivenessReport, QuarantineAnalytics, TimeRange
from flakeguard.models.impact import ImpactRecord
from flakeguard.schemas.common import APIResponse
from flakeguard.schemas.quarantine import TrackImpactRequest

router = APIRouter(prefix="/projects/{project_id}/analytics", tags=["analytics"])


@router.get("", response_model=APIResponse[QuarantineAnalytics])
async def get_analytics(
    project_id: str,
    tracker: ImpactTrackerDep,
    time_range: TimeRange = Query(default=TimeRange.MONTH),
) -> APIResponse[QuarantineAnalytics]:
    return APIResponse(data=await tracker.get_analytics(project_id, time_range))


@router.get("/effectiveness", response_model=APIResponse[EffectivenessReport])
async def get_effectiveness(
    project_id: str,
    tracker: ImpactTrackerDep,
    time_range: TimeRange = Query(default=TimeRange.QUARTER),
) -> APIResponse[EffectivenessReport]:
    return APIResponse(data=await tracker.get_effectiveness_report(project_id, time_range))


@router.post("/impact", response_model=APIResponse[ImpactRecord])
async def track_impact(
    project_id: str,
    data: TrackImpactRequest,
    tracker: ImpactTrackerDep,
) -> APIResponse[ImpactRecord]:
    """Add measured impact to the latest quarantine episode of a test."""
    record = await tracker.track_impact(
        data.key(project_id).pattern_id,
        builds_blocked=data.builds_blocked,
        ci_time_wasted=data.ci_time_wasted,
        developer_hours=data.developer_hours,
        false_positive=data.false_positive,
    )
    return APIResponse(data=record)
