"""Tests for the HTTP surface and its error envelopes."""

from fastapi.testclient import TestClient

import flakeguard.api.app as app_module
from flakeguard.api.app import create_app
from flakeguard.api.deps import get_policy_service, get_quarantine_service, get_scheduler
from flakeguard.core.errors import NotFoundError, PolicyInUseError, PolicyValidationError
from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.decision import manual_quarantine
from flakeguard.models.history import HistoryAction, QuarantineHistoryEntry
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.models.policy import PolicyValidationResult, QuarantinePolicy

from factories import NOW, key, make_pattern


class FakeQuarantineService:
    """In-memory quarantine service for API tests."""

    def __init__(self, patterns: list[FlakyTestPattern]):
        self._patterns = {p.pattern_id: p for p in patterns}

    async def get_pattern(self, test_key: PatternKey) -> FlakyTestPattern:
        pattern = self._patterns.get(test_key.pattern_id)
        if pattern is None:
            raise NotFoundError("pattern", test_key.pattern_id)
        return pattern

    async def manual_quarantine(self, test_key: PatternKey, user_id: str, reason: str | None = None) -> TransitionResult:
        pattern = await self.get_pattern(test_key)
        decision = manual_quarantine(user_id, reason)
        pattern.status = QuarantineStatus.QUARANTINED
        pattern.quarantined_at = NOW
        entry = QuarantineHistoryEntry(
            entry_id="hist_1",
            flaky_test_pattern_id=pattern.pattern_id,
            project_id=pattern.project_id,
            test_name=pattern.test_name,
            test_suite=pattern.test_suite,
            action=HistoryAction.QUARANTINED,
            reason=decision.reason,
            triggered_by=user_id,
            confidence=1.0,
            created_at=NOW,
        )
        return TransitionResult(pattern=pattern, decision=decision, applied=True, history_entry=entry)


class FakePolicyService:
    """In-memory policy service for API tests."""

    def __init__(self, policies: list[QuarantinePolicy]):
        self._policies = {p.policy_id: p for p in policies}

    async def get(self, policy_id: str) -> QuarantinePolicy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise NotFoundError("policy", policy_id)
        return policy

    async def delete(self, policy_id: str, actor: str = "system") -> None:
        policy = await self.get(policy_id)
        if policy.is_active:
            raise PolicyInUseError(policy_id)
        del self._policies[policy_id]

    async def create_or_update(self, project_id, name, config, description=None, actor="system"):
        if name == "broken":
            raise PolicyValidationError(["Minimum runs required must be at least 1"])
        policy = QuarantinePolicy(policy_id="policy_new", project_id=project_id, name=name, config=config)
        return policy, PolicyValidationResult(is_valid=True, warnings=["High failure rate threshold"])


class FakeScheduler:
    def __init__(self):
        self.triggered: list[str] = []

    def trigger_daily_sweep(self) -> None:
        self.triggered.append("daily")

    def trigger_hourly_sweep(self) -> None:
        self.triggered.append("hourly")


def _make_client(monkeypatch, scheduler: FakeScheduler | None = None) -> TestClient:
    async def _noop() -> None:
        return None

    monkeypatch.setattr(app_module, "init_redis_pool", _noop)
    monkeypatch.setattr(app_module, "close_redis_pool", _noop)

    policies = [
        QuarantinePolicy(policy_id="policy_active", project_id="proj", name="strict", is_active=True),
        QuarantinePolicy(policy_id="policy_other", project_id="other", name="loose"),
    ]

    app = create_app()
    app.dependency_overrides[get_quarantine_service] = lambda: FakeQuarantineService([make_pattern()])
    app.dependency_overrides[get_policy_service] = lambda: FakePolicyService(policies)
    app.dependency_overrides[get_scheduler] = lambda: scheduler or FakeScheduler()
    return TestClient(app)


def test_manual_quarantine_returns_transition(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.post(
        "/api/v1/projects/proj/quarantine/quarantine",
        json={"test_name": "test_checkout", "test_suite": "payments", "user_id": "alice", "reason": "Blocks CI"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["code"] == 0
    data = payload["data"]
    assert data["pattern_id"] == key().pattern_id
    assert data["status"] == "quarantined"
    assert data["applied"] is True
    assert data["decision"] == "quarantine"
    assert data["history_entry"]["triggered_by"] == "alice"
    assert data["history_entry"]["reason"] == "Blocks CI"


def test_unknown_test_is_not_found(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get(
        "/api/v1/projects/proj/quarantine/status",
        params={"test_name": "test_missing", "test_suite": "payments"},
    )

    assert response.status_code == 404
    payload = response.json()
    assert payload["code"] == 404
    assert payload["message"].endswith("not found")
    assert payload["data"]["kind"] == "pattern"


def test_policy_of_another_project_is_not_found(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/api/v1/projects/proj/policies/policy_other")

    assert response.status_code == 404
    assert response.json()["message"] == "policy policy_other not found"


def test_deleting_active_policy_conflicts(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.delete("/api/v1/projects/proj/policies/policy_active")

    assert response.status_code == 409
    payload = response.json()
    assert payload["code"] == 409
    assert payload["data"] == {"policy_id": "policy_active"}


def test_policy_upsert_reports_warnings(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.put(
        "/api/v1/projects/proj/policies",
        json={"name": "strict", "config": {"failure_rate_threshold": 0.9}},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["policy"]["config"]["failure_rate_threshold"] == 0.9
    assert data["warnings"] == ["High failure rate threshold"]


def test_policy_validation_failure_lists_errors(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.put("/api/v1/projects/proj/policies", json={"name": "broken", "config": {}})

    assert response.status_code == 422
    payload = response.json()
    assert payload["code"] == 422
    assert payload["data"]["errors"] == ["Minimum runs required must be at least 1"]


def test_request_validation_error_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.put(
        "/api/v1/projects/proj/policies",
        json={"name": "strict", "config": {"failure_rate_threshold": 1.5}},
    )

    assert response.status_code == 422
    payload = response.json()
    assert payload["code"] == 422
    assert payload["message"] == "Validation error"
    assert isinstance(payload["data"], list)
    assert payload["data"]


def test_sweeps_are_started_detached(monkeypatch) -> None:
    scheduler = FakeScheduler()
    client = _make_client(monkeypatch, scheduler)

    response = client.post("/api/v1/automation/sweeps/hourly")

    assert response.status_code == 202
    assert response.json()["data"] == {"cadence": "hourly", "accepted": True}
    assert scheduler.triggered == ["hourly"]


def test_immediate_sweep_is_rejected(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.post("/api/v1/automation/sweeps/immediate")

    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "Immediate evaluation is per project"
    assert payload["data"] is None


def test_health_check(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
