"""Quarantine API routes: manual overrides, status and history."""

from fastapi import APIRouter, Query

from flakeguard.api.deps import ImpactTrackerDep, LimitDep, QuarantineServiceDep
from flakeguard.models.analytics import QuarantineStats
from flakeguard.models.history import QuarantineHistoryEntry
from flakeguard.models.pattern import PatternKey
from flakeguard.schemas.common import APIResponse, ListResponse
from flakeguard.schemas.quarantine import (
    ManualActionRequest,
    QuarantineStatusResponse,
    TransitionResponse,
)

router = APIRouter(prefix="/projects/{project_id}/quarantine", tags=["quarantine"])


@router.post("/quarantine", response_model=APIResponse[TransitionResponse])
async def quarantine_test(
    project_id: str,
    data: ManualActionRequest,
    service: QuarantineServiceDep,
) -> APIResponse[TransitionResponse]:
    """Quarantine a test regardless of its statistics."""
    result = await service.manual_quarantine(data.key(project_id), data.user_id, data.reason)
    return APIResponse(data=TransitionResponse.from_result(result))


@router.post("/unquarantine", response_model=APIResponse[TransitionResponse])
async def unquarantine_test(
    project_id: str,
    data: ManualActionRequest,
    service: QuarantineServiceDep,
) -> APIResponse[TransitionResponse]:
    """Restore a quarantined test regardless of its statistics."""
    result = await service.manual_unquarantine(data.key(project_id), data.user_id, data.reason)
    return APIResponse(data=TransitionResponse.from_result(result))


@router.get("", response_model=ListResponse[QuarantineStatusResponse])
async def list_quarantined(
    project_id: str,
    service: QuarantineServiceDep,
) -> ListResponse[QuarantineStatusResponse]:
    patterns = await service.list_quarantined(project_id)
    return ListResponse(
        data=[QuarantineStatusResponse.from_pattern(p) for p in patterns],
        total=len(patterns),
    )


@router.get("/status", response_model=APIResponse[QuarantineStatusResponse])
async def quarantine_status(
    project_id: str,
    service: QuarantineServiceDep,
    test_name: str = Query(..., min_length=1),
    test_suite: str | None = Query(default=None),
) -> APIResponse[QuarantineStatusResponse]:
    """Current quarantine state and statistics of one test."""
    pattern = await service.get_pattern(PatternKey(project_id, test_name, test_suite or None))
    return APIResponse(data=QuarantineStatusResponse.from_pattern(pattern))


@router.get("/stats", response_model=APIResponse[QuarantineStats])
async def quarantine_stats(
    project_id: str,
    tracker: ImpactTrackerDep,
) -> APIResponse[QuarantineStats]:
    return APIResponse(data=await tracker.get_stats(project_id))


@router.get("/history", response_model=ListResponse[QuarantineHistoryEntry])
async def quarantine_history(
    project_id: str,
    service: QuarantineServiceDep,
    limit: LimitDep,
    test_name: str | None = Query(default=None, description="Restrict to one test"),
    test_suite: str | None = Query(default=None),
) -> ListResponse[QuarantineHistoryEntry]:
    """Transition history of a project, newest first, or of one test in order."""
    if test_name:
        entries = await service.get_test_history(PatternKey(project_id, test_name, test_suite or None))
        entries = entries[-limit:]
    else:
        entries = await service.get_project_history(project_id, limit)
    return ListResponse(data=entries, total=len(entries))
