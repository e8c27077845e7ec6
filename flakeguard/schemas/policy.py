"""Policy API schemas."""

from pydantic import BaseModel, Field

from flakeguard.models.policy import QuarantinePolicy, QuarantinePolicyConfig


class PolicyUpsert(BaseModel):
    """Create-or-update request; policies are keyed by project and name."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    config: QuarantinePolicyConfig = Field(default_factory=QuarantinePolicyConfig)
    user_id: str = Field(default="system", min_length=1)


class PolicyAction(BaseModel):
    user_id: str = Field(default="system", min_length=1)


class PolicySaveResponse(BaseModel):
    policy: QuarantinePolicy
    warnings: list[str] = Field(default_factory=list)
