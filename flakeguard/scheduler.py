"""Quarantine scheduler.

Two timers drive automated evaluation: the daily sweep looks for active
tests to quarantine, the hourly sweep looks for quarantined tests to
restore. Both timers, the on-demand trigger and failure-driven single-test
evaluation go through the same evaluation path.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from flakeguard.core.clock import Clock, SystemClock
from flakeguard.core.config import Settings, get_settings
from flakeguard.core.errors import FlakeguardError
from flakeguard.core.logging import get_logger
from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.history import HistoryAction
from flakeguard.models.pattern import FlakyTestPattern, PatternKey, QuarantineStatus
from flakeguard.models.policy import QuarantinePolicyConfig
from flakeguard.models.project import AutomationSchedule, AutomationSettings, AutomationStatus
from flakeguard.observability.metrics import EVALUATION_TIMEOUTS, SWEEP_DURATION, SWEEPS
from flakeguard.observability.tracing import TraceContext
from flakeguard.services.policy_service import PolicyService
from flakeguard.services.quarantine import QuarantineService
from flakeguard.storage.history_store import HistoryStore
from flakeguard.storage.pattern_store import PatternStore
from flakeguard.storage.project_store import ProjectStore

logger = get_logger(__name__)

STATUS_WINDOW_DAYS = 30


class SweepCadence(str, Enum):
    """Trigger source of a sweep."""

    DAILY = "daily"
    HOURLY = "hourly"
    IMMEDIATE = "immediate"

    @property
    def target_status(self) -> QuarantineStatus | None:
        if self is SweepCadence.DAILY:
            return QuarantineStatus.ACTIVE
        if self is SweepCadence.HOURLY:
            return QuarantineStatus.QUARANTINED
        return None


@dataclass
class ProjectSweepResult:
    """Evaluation counts for one project."""

    project_id: str
    policy_id: str = ""
    evaluated: int = 0
    quarantined: int = 0
    unquarantined: int = 0
    timed_out: int = 0
    errors: int = 0


@dataclass
class SweepSummary:
    cadence: SweepCadence
    sweep_id: str = ""
    projects: int = 0
    evaluated: int = 0
    quarantined: int = 0
    unquarantined: int = 0
    timed_out: int = 0
    failed_projects: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def add(self, result: ProjectSweepResult) -> None:
        self.projects += 1
        self.evaluated += result.evaluated
        self.quarantined += result.quarantined
        self.unquarantined += result.unquarantined
        self.timed_out += result.timed_out


class QuarantineScheduler:
    """Owns the sweep timers and every evaluation trigger."""

    def __init__(
        self,
        quarantine: QuarantineService,
        policies: PolicyService,
        projects: ProjectStore,
        patterns: PatternStore,
        history: HistoryStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ):
        self._quarantine = quarantine
        self._policies = policies
        self._projects = projects
        self._patterns = patterns
        self._history = history
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._timers: list[asyncio.Task] = []
        self._detached: set[asyncio.Task] = set()

    # Lifecycle

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._timers)

    def start(self) -> None:
        """Start both sweep timers."""
        if self.running:
            return
        self._timers = [
            asyncio.create_task(
                self._timer_loop(SweepCadence.DAILY, self._settings.daily_sweep_interval_seconds),
                name="flakeguard-daily-sweep",
            ),
            asyncio.create_task(
                self._timer_loop(SweepCadence.HOURLY, self._settings.hourly_sweep_interval_seconds),
                name="flakeguard-hourly-sweep",
            ),
        ]
        logger.info(
            "Scheduler started",
            daily_interval=self._settings.daily_sweep_interval_seconds,
            hourly_interval=self._settings.hourly_sweep_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel timers and in-flight detached sweeps."""
        tasks = [*self._timers, *self._detached]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers = []
        self._detached.clear()
        logger.info("Scheduler stopped")

    async def _timer_loop(self, cadence: SweepCadence, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_sweep(cadence)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Sweep crashed", cadence=cadence.value, error=str(e), exc_info=True)

    # Triggers

    def trigger_daily_sweep(self) -> asyncio.Task:
        return self._detach(SweepCadence.DAILY)

    def trigger_hourly_sweep(self) -> asyncio.Task:
        return self._detach(SweepCadence.HOURLY)

    def _detach(self, cadence: SweepCadence) -> asyncio.Task:
        task = asyncio.create_task(self.run_sweep(cadence), name=f"flakeguard-{cadence.value}-sweep-manual")
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        return task

    async def trigger_immediate_evaluation(self, project_id: str) -> ProjectSweepResult:
        """Evaluate every test of a project now; errors reach the caller."""
        with TraceContext(prefix="immediate-"):
            return await self.evaluate_project(project_id, SweepCadence.IMMEDIATE, isolate_errors=False)

    async def evaluate_single(self, key: PatternKey) -> TransitionResult:
        """Evaluate one test now (failure-driven automation)."""
        policy = await self._quarantine.resolve_policy(key.project_id)
        return await asyncio.wait_for(
            self._quarantine.evaluate_test(key, policy.config),
            timeout=self._settings.evaluation_timeout_seconds,
        )

    # Sweeps

    async def run_sweep(self, cadence: SweepCadence) -> SweepSummary:
        """Evaluate every automated project; one project's failure never stops the rest."""
        started = time.monotonic()
        with TraceContext(prefix=f"{cadence.value}-") as sweep_id:
            summary = SweepSummary(cadence=cadence, sweep_id=sweep_id, started_at=self._clock.now())
            project_ids = await self._projects.list_automated_projects()
            logger.info("Sweep started", cadence=cadence.value, projects=len(project_ids))

            for project_id in project_ids:
                try:
                    summary.add(await self.evaluate_project(project_id, cadence))
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    summary.failed_projects.append(project_id)
                    logger.error(
                        "Project sweep failed",
                        cadence=cadence.value,
                        project_id=project_id,
                        error=str(e),
                        exc_info=True,
                    )

            summary.finished_at = self._clock.now()
            status = "partial" if summary.failed_projects else "success"
            SWEEPS.labels(cadence=cadence.value, status=status).inc()
            SWEEP_DURATION.labels(cadence=cadence.value).observe(time.monotonic() - started)
            logger.info(
                "Sweep complete",
                cadence=cadence.value,
                projects=summary.projects,
                evaluated=summary.evaluated,
                quarantined=summary.quarantined,
                unquarantined=summary.unquarantined,
                timed_out=summary.timed_out,
                failed_projects=summary.failed_projects,
            )
            return summary

    async def evaluate_project(
        self,
        project_id: str,
        cadence: SweepCadence,
        isolate_errors: bool = True,
    ) -> ProjectSweepResult:
        """Evaluate the tests of one project under one policy snapshot.

        Args:
            project_id: Project to evaluate
            cadence: Selects active, quarantined or all tests
            isolate_errors: Log per-test engine errors and continue instead of raising

        Returns:
            Per-project counts
        """
        policy = await self._quarantine.resolve_policy(project_id)
        patterns = await self._patterns.list_by_project(project_id, cadence.target_status)
        result = ProjectSweepResult(project_id=project_id, policy_id=policy.policy_id)
        semaphore = asyncio.Semaphore(self._settings.sweep_concurrency)

        async def evaluate(pattern: FlakyTestPattern) -> None:
            async with semaphore:
                await self._evaluate_one(pattern, policy.config, result, isolate_errors)

        outcomes = await asyncio.gather(*(evaluate(p) for p in patterns), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        settings = await self._projects.get_automation(project_id)
        settings.last_evaluation_at = self._clock.now()
        await self._projects.save_automation(settings)

        logger.info(
            "Project evaluated",
            project_id=project_id,
            cadence=cadence.value,
            policy_id=policy.policy_id,
            evaluated=result.evaluated,
            quarantined=result.quarantined,
            unquarantined=result.unquarantined,
        )
        return result

    async def _evaluate_one(
        self,
        pattern: FlakyTestPattern,
        config: QuarantinePolicyConfig,
        result: ProjectSweepResult,
        isolate_errors: bool,
    ) -> None:
        try:
            transition = await asyncio.wait_for(
                self._quarantine.evaluate_test(pattern.key, config),
                timeout=self._settings.evaluation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            result.timed_out += 1
            EVALUATION_TIMEOUTS.inc()
            logger.warning(
                "Evaluation timed out",
                pattern_id=pattern.pattern_id,
                timeout=self._settings.evaluation_timeout_seconds,
            )
            return
        except FlakeguardError as e:
            if not isolate_errors:
                raise
            result.errors += 1
            logger.error("Evaluation failed", pattern_id=pattern.pattern_id, error=e.message)
            return

        result.evaluated += 1
        if transition.action == HistoryAction.QUARANTINED:
            result.quarantined += 1
        elif transition.action == HistoryAction.UNQUARANTINED:
            result.unquarantined += 1

    # Automation settings

    async def enable_automation(
        self,
        project_id: str,
        schedule: AutomationSchedule = AutomationSchedule.DAILY,
        actor: str = "system",
    ) -> AutomationSettings:
        """Enable automation, provisioning the default policy when needed."""
        await self._policies.ensure_default_policy(project_id, actor)

        settings = await self._projects.get_automation(project_id)
        now = self._clock.now()
        if not settings.enabled:
            settings.enabled_at = now
        settings.enabled = True
        settings.schedule = schedule
        settings.updated_at = now
        await self._projects.save_automation(settings)
        logger.info("Automation enabled", project_id=project_id, schedule=schedule.value, actor=actor)
        return settings

    async def disable_automation(self, project_id: str, actor: str = "system") -> AutomationSettings:
        settings = await self._projects.get_automation(project_id)
        settings.enabled = False
        settings.updated_at = self._clock.now()
        await self._projects.save_automation(settings)
        logger.info("Automation disabled", project_id=project_id, actor=actor)
        return settings

    async def get_automation_status(self, project_id: str) -> AutomationStatus:
        settings = await self._projects.get_automation(project_id)
        since = self._clock.now() - timedelta(days=STATUS_WINDOW_DAYS)
        entries = await self._history.list_by_project(project_id, since=since)
        return AutomationStatus(
            project_id=project_id,
            enabled=settings.enabled,
            schedule=settings.schedule,
            last_evaluation_at=settings.last_evaluation_at,
            currently_quarantined=await self._patterns.count_quarantined(project_id),
            auto_quarantined_30d=sum(
                1 for e in entries if e.is_automatic and e.action == HistoryAction.QUARANTINED
            ),
            auto_unquarantined_30d=sum(
                1 for e in entries if e.is_automatic and e.action == HistoryAction.UNQUARANTINED
            ),
        )
