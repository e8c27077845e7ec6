"""Automation API routes."""

from fastapi import APIRouter, HTTPException

from flakeguard.api.deps import SchedulerDep
from flakeguard.models.project import AutomationSettings, AutomationStatus
from flakeguard.schemas.common import APIResponse
from flakeguard.schemas.policy import PolicyAction
from flakeguard.schemas.quarantine import (
    AutomationEnableRequest,
    EvaluationResponse,
    SweepTriggerResponse,
)
from flakeguard.scheduler import SweepCadence

router = APIRouter(tags=["automation"])


@router.get("/projects/{project_id}/automation", response_model=APIResponse[AutomationStatus])
async def automation_status(
    project_id: str,
    scheduler: SchedulerDep,
) -> APIResponse[AutomationStatus]:
    return APIResponse(data=await scheduler.get_automation_status(project_id))


@router.post("/projects/{project_id}/automation/enable", response_model=APIResponse[AutomationSettings])
async def enable_automation(
    project_id: str,
    data: AutomationEnableRequest,
    scheduler: SchedulerDep,
) -> APIResponse[AutomationSettings]:
    """Enable automation, provisioning the default policy when the project has none."""
    settings = await scheduler.enable_automation(project_id, data.schedule, data.user_id)
    return APIResponse(data=settings)


@router.post("/projects/{project_id}/automation/disable", response_model=APIResponse[AutomationSettings])
async def disable_automation(
    project_id: str,
    data: PolicyAction,
    scheduler: SchedulerDep,
) -> APIResponse[AutomationSettings]:
    return APIResponse(data=await scheduler.disable_automation(project_id, data.user_id))


@router.post("/projects/{project_id}/automation/evaluate", response_model=APIResponse[EvaluationResponse])
async def evaluate_now(
    project_id: str,
    scheduler: SchedulerDep,
) -> APIResponse[EvaluationResponse]:
    """Evaluate every test of the project now and wait for the result."""
    result = await scheduler.trigger_immediate_evaluation(project_id)
    return APIResponse(
        data=EvaluationResponse(
            project_id=result.project_id,
            policy_id=result.policy_id,
            evaluated=result.evaluated,
            quarantined=result.quarantined,
            unquarantined=result.unquarantined,
            timed_out=result.timed_out,
            errors=result.errors,
        )
    )


@router.post("/automation/sweeps/{cadence}", status_code=202, response_model=APIResponse[SweepTriggerResponse])
async def trigger_sweep(
    cadence: SweepCadence,
    scheduler: SchedulerDep,
) -> APIResponse[SweepTriggerResponse]:
    """Start a detached sweep over every automated project."""
    if cadence == SweepCadence.DAILY:
        scheduler.trigger_daily_sweep()
    elif cadence == SweepCadence.HOURLY:
        scheduler.trigger_hourly_sweep()
    else:
        raise HTTPException(status_code=400, detail="Immediate evaluation is per project")
    return APIResponse(data=SweepTriggerResponse(cadence=cadence.value))
