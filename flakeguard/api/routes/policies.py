"""Policy management API routes."""

from fastapi import APIRouter

from flakeguard.api.deps import LimitDep, PolicyServiceDep
from flakeguard.core.errors import NotFoundError
from flakeguard.models.policy import (
    PolicyAuditEntry,
    PolicyRecommendation,
    PolicySimulation,
    QuarantinePolicy,
    QuarantinePolicyConfig,
)
from flakeguard.schemas.common import APIResponse, ListResponse
from flakeguard.schemas.policy import PolicyAction, PolicySaveResponse, PolicyUpsert
from flakeguard.services.policy_service import PolicyService

router = APIRouter(prefix="/projects/{project_id}/policies", tags=["policies"])


async def _owned_policy(service: PolicyService, project_id: str, policy_id: str) -> QuarantinePolicy:
    policy = await service.get(policy_id)
    if policy.project_id != project_id:
        raise NotFoundError("policy", policy_id)
    return policy


@router.get("", response_model=ListResponse[QuarantinePolicy])
async def list_policies(
    project_id: str,
    service: PolicyServiceDep,
) -> ListResponse[QuarantinePolicy]:
    """List the policies of a project, active first."""
    policies = await service.list_policies(project_id)
    return ListResponse(data=policies, total=len(policies))


@router.put("", response_model=APIResponse[PolicySaveResponse])
async def upsert_policy(
    project_id: str,
    data: PolicyUpsert,
    service: PolicyServiceDep,
) -> APIResponse[PolicySaveResponse]:
    """Create a policy, or update the project's policy of the same name."""
    policy, validation = await service.create_or_update(
        project_id,
        data.name,
        data.config,
        description=data.description,
        actor=data.user_id,
    )
    return APIResponse(data=PolicySaveResponse(policy=policy, warnings=validation.warnings))


@router.post("/simulate", response_model=APIResponse[PolicySimulation])
async def simulate_policy(
    project_id: str,
    config: QuarantinePolicyConfig,
    service: PolicyServiceDep,
) -> APIResponse[PolicySimulation]:
    """Project the effect of a configuration without persisting anything."""
    return APIResponse(data=await service.simulate(project_id, config))


@router.get("/recommended", response_model=APIResponse[PolicyRecommendation])
async def recommend_policy(
    project_id: str,
    service: PolicyServiceDep,
) -> APIResponse[PolicyRecommendation]:
    return APIResponse(data=await service.recommend(project_id))


@router.get("/audit", response_model=ListResponse[PolicyAuditEntry])
async def policy_audit(
    project_id: str,
    service: PolicyServiceDep,
    limit: LimitDep,
) -> ListResponse[PolicyAuditEntry]:
    entries = await service.list_audit(project_id, limit)
    return ListResponse(data=entries, total=len(entries))


@router.get("/{policy_id}", response_model=APIResponse[QuarantinePolicy])
async def get_policy(
    project_id: str,
    policy_id: str,
    service: PolicyServiceDep,
) -> APIResponse[QuarantinePolicy]:
    return APIResponse(data=await _owned_policy(service, project_id, policy_id))


@router.post("/{policy_id}/activate", response_model=APIResponse[QuarantinePolicy])
async def activate_policy(
    project_id: str,
    policy_id: str,
    data: PolicyAction,
    service: PolicyServiceDep,
) -> APIResponse[QuarantinePolicy]:
    """Make the policy the project's only active policy."""
    await _owned_policy(service, project_id, policy_id)
    return APIResponse(data=await service.activate(policy_id, data.user_id))


@router.post("/{policy_id}/deactivate", response_model=APIResponse[QuarantinePolicy])
async def deactivate_policy(
    project_id: str,
    policy_id: str,
    data: PolicyAction,
    service: PolicyServiceDep,
) -> APIResponse[QuarantinePolicy]:
    await _owned_policy(service, project_id, policy_id)
    return APIResponse(data=await service.deactivate(policy_id, data.user_id))


@router.delete("/{policy_id}", response_model=APIResponse[None])
async def delete_policy(
    project_id: str,
    policy_id: str,
    service: PolicyServiceDep,
    user_id: str = "system",
) -> APIResponse[None]:
    """Delete an inactive policy."""
    await _owned_policy(service, project_id, policy_id)
    await service.delete(policy_id, user_id)
    return APIResponse(message="Policy deleted")
