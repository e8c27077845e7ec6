"""Wiring of stores, engine and services for one process."""

from dataclasses import dataclass

from redis.asyncio import Redis

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.config import Settings, get_settings
from flakeguard.engine.evaluator import QuarantineEvaluator
from flakeguard.engine.locks import TransitionLocks
from flakeguard.engine.state_machine import QuarantineStateMachine
from flakeguard.messaging.handler import ResultHandler
from flakeguard.notification.dispatcher import NotificationDispatcher
from flakeguard.scheduler import QuarantineScheduler
from flakeguard.services.impact import ImpactTracker
from flakeguard.services.policy_service import PolicyService
from flakeguard.services.quarantine import QuarantineService
from flakeguard.storage.auxiliary import IdempotencyStore, NotificationQueue
from flakeguard.storage.history_store import HistoryStore
from flakeguard.storage.impact_store import ImpactStore
from flakeguard.storage.pattern_store import PatternStore
from flakeguard.storage.policy_store import PolicyStore
from flakeguard.storage.project_store import ProjectStore


@dataclass
class QuarantineEngine:
    """Everything one service instance owns. Built at start, discarded at shutdown."""

    settings: Settings
    clock: Clock
    patterns: PatternStore
    policies: PolicyStore
    history: HistoryStore
    impacts: ImpactStore
    projects: ProjectStore
    notifications: NotificationQueue
    locks: TransitionLocks
    state_machine: QuarantineStateMachine
    impact: ImpactTracker
    quarantine: QuarantineService
    policy_service: PolicyService
    scheduler: QuarantineScheduler
    results: ResultHandler


def build_engine(
    redis: Redis,
    settings: Settings | None = None,
    clock: Clock | None = None,
    distributed_locks: bool = True,
) -> QuarantineEngine:
    """Build a fully wired engine on one Redis client."""
    settings = settings or get_settings()
    clock = clock or SystemClock()

    patterns = PatternStore(redis)
    policies = PolicyStore(redis)
    history = HistoryStore(redis)
    impacts = ImpactStore(redis)
    projects = ProjectStore(redis)
    notifications = NotificationQueue(redis)
    locks = TransitionLocks(
        redis,
        ttl_seconds=settings.transition_lock_ttl_seconds,
        retry_delay_seconds=settings.transition_lock_retry_delay_seconds,
        distributed=distributed_locks,
    )
    evaluator = QuarantineEvaluator(settings.rapid_degradation_window_runs)

    impact = ImpactTracker(impacts, patterns, history, clock=clock, settings=settings)
    state_machine = QuarantineStateMachine(
        patterns,
        history,
        locks,
        clock=clock,
        listeners=[impact, NotificationDispatcher(notifications, clock=clock)],
    )
    quarantine = QuarantineService(
        patterns,
        policies,
        history,
        state_machine,
        locks,
        evaluator=evaluator,
        clock=clock,
    )
    policy_service = PolicyService(
        policies,
        patterns,
        impact=impact,
        evaluator=evaluator,
        clock=clock,
        settings=settings,
    )
    scheduler = QuarantineScheduler(
        quarantine,
        policy_service,
        projects,
        patterns,
        history,
        settings=settings,
        clock=clock,
    )
    results = ResultHandler(
        patterns,
        projects,
        IdempotencyStore(redis),
        locks,
        on_failure=scheduler.evaluate_single,
        settings=settings,
    )

    return QuarantineEngine(
        settings=settings,
        clock=clock,
        patterns=patterns,
        policies=policies,
        history=history,
        impacts=impacts,
        projects=projects,
        notifications=notifications,
        locks=locks,
        state_machine=state_machine,
        impact=impact,
        quarantine=quarantine,
        policy_service=policy_service,
        scheduler=scheduler,
        results=results,
    )
