"""Error taxonomy for the quarantine engine.

Every error raised on purpose by the engine derives from ``FlakeguardError``
so that the HTTP layer can map it to a status code in one place.

Recovery rules:
    DataIntegrityError        - fatal for the evaluation, never retried
    PolicyMissingError        - recovered by falling back to the default policy
    PolicyInUseError          - user-facing validation error
    PolicyValidationError     - user-facing validation error
    NotFoundError             - surfaced to the caller
    ConcurrentTransitionError - retried once with backoff, then surfaced
"""

from typing import Any


class FlakeguardError(Exception):
    """Base class for engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DataIntegrityError(FlakeguardError):
    """Pattern or policy data violates its invariants."""


class PolicyMissingError(FlakeguardError):
    """No active policy exists for the project."""

    def __init__(self, project_id: str):
        super().__init__(
            f"No active quarantine policy for project {project_id}",
            {"project_id": project_id},
        )
        self.project_id = project_id


class PolicyInUseError(FlakeguardError):
    """The policy is active and cannot be deleted."""

    def __init__(self, policy_id: str):
        super().__init__(
            f"Policy {policy_id} is active; deactivate it before deleting",
            {"policy_id": policy_id},
        )
        self.policy_id = policy_id


class PolicyValidationError(FlakeguardError):
    """Policy configuration failed validation."""

    def __init__(self, errors: list[str]):
        super().__init__(
            f"Policy validation failed: {', '.join(errors)}",
            {"errors": errors},
        )
        self.errors = errors


class NotFoundError(FlakeguardError):
    """Referenced test pattern, policy or record does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found", {"kind": kind, "id": identifier})
        self.kind = kind
        self.identifier = identifier


class ConcurrentTransitionError(FlakeguardError):
    """Another process holds the transition lock for the same test."""

    def __init__(self, lock_key: str):
        super().__init__(
            f"Transition already in progress for {lock_key}",
            {"lock_key": lock_key},
        )
        self.lock_key = lock_key
