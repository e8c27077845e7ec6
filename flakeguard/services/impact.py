"""Impact and effectiveness tracking.

Every quarantine opens an impact episode that records CI stability at the
moment of quarantine; the matching unquarantine closes it and records
stability again. Operators add measured impact (blocked builds, wasted CI
time, developer hours) and false-positive verdicts to the latest episode.
Reports built here are advisory: policy recommendation reads them, nothing
here changes a policy.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable

from flakeguard.core.clock import Clock, SystemClock, days_between
from flakeguard.core.config import Settings, get_settings
from flakeguard.core.errors import NotFoundError
from flakeguard.core.logging import get_logger
from flakeguard.engine.state_machine import TransitionResult
from flakeguard.models.analytics import (
    CostSavings,
    DailyTrend,
    EffectivenessReport,
    EpisodeEffectiveness,
    ImpactMetrics,
    PolicyFeedback,
    QuarantineAnalytics,
    QuarantinedTestSummary,
    QuarantineStats,
    QuarantineSummary,
    TimeRange,
)
from flakeguard.models.decision import AUTO_TRIGGER, QuarantineRule
from flakeguard.models.history import HistoryAction, QuarantineHistoryEntry
from flakeguard.models.impact import ImpactRecord
from flakeguard.models.pattern import FlakyTestPattern, QuarantineStatus, RunStatus
from flakeguard.storage.history_store import HistoryStore
from flakeguard.storage.impact_store import ImpactStore
from flakeguard.storage.pattern_store import PatternStore

logger = get_logger(__name__)

STATS_WINDOW_DAYS = 30
PREMATURE_RELEASE_DAYS = 3

CATEGORY_LABELS = {
    QuarantineRule.FAILURE_RATE.value: "High Failure Rate",
    QuarantineRule.CONSECUTIVE_FAILURES.value: "Consecutive Failures",
    QuarantineRule.RAPID_DEGRADATION.value: "Rapid Degradation",
    QuarantineRule.MANUAL.value: "Manual",
}


def ci_stability(
    patterns: Iterable[FlakyTestPattern],
    since: datetime,
    include: frozenset[str] = frozenset(),
) -> float | None:
    """Pass rate of non-quarantined tests over outcomes since ``since``.

    Args:
        patterns: Patterns of one project
        since: Start of the trailing window
        include: Pattern IDs counted even if currently quarantined

    Returns:
        Pass rate, or None when the window holds no outcomes
    """
    passed = total = 0
    for pattern in patterns:
        if pattern.status == QuarantineStatus.QUARANTINED and pattern.pattern_id not in include:
            continue
        for outcome in pattern.recent_outcomes:
            if outcome.at < since:
                continue
            total += 1
            if outcome.status == RunStatus.PASSED:
                passed += 1
    if total == 0:
        return None
    return passed / total


def categorize(entry: QuarantineHistoryEntry) -> str:
    """Category label of a quarantine entry, from its rule or its reason."""
    rule = entry.metadata.get("rule")
    if rule in CATEGORY_LABELS:
        return CATEGORY_LABELS[rule]
    reason = entry.reason.lower()
    if "failure rate" in reason:
        return "High Failure Rate"
    if "consecutive" in reason:
        return "Consecutive Failures"
    if "degradation" in reason:
        return "Rapid Degradation"
    return "Other"


class ImpactTracker:
    """Accumulates impact records and produces effectiveness reporting."""

    def __init__(
        self,
        impacts: ImpactStore,
        patterns: PatternStore,
        history: HistoryStore,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        self._impacts = impacts
        self._patterns = patterns
        self._history = history
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()

    # Episode lifecycle

    async def on_transition(self, result: TransitionResult) -> None:
        entry = result.history_entry
        if entry is None:
            return
        if entry.action == HistoryAction.QUARANTINED:
            await self.open_episode(result.pattern)
        else:
            await self.close_episode(result.pattern, automatic=entry.is_automatic)

    async def open_episode(self, pattern: FlakyTestPattern) -> ImpactRecord:
        """Start an impact episode for a freshly quarantined test."""
        now = self._clock.now()
        stability = await self.project_stability(pattern.project_id, include={pattern.pattern_id})
        record = ImpactRecord(
            episode_id=f"qi_{uuid.uuid4().hex[:16]}",
            flaky_test_pattern_id=pattern.pattern_id,
            project_id=pattern.project_id,
            test_name=pattern.test_name,
            test_suite=pattern.test_suite,
            period_start=pattern.quarantined_at or now,
            quarantined_by=pattern.quarantined_by or AUTO_TRIGGER,
            stability_before=stability,
        )
        await self._impacts.save(record)
        logger.debug("Impact episode opened", pattern_id=pattern.pattern_id, episode_id=record.episode_id)
        return record

    async def close_episode(self, pattern: FlakyTestPattern, automatic: bool) -> ImpactRecord | None:
        """Close the open episode of a test that just left quarantine."""
        record = await self._impacts.latest(pattern.pattern_id)
        if record is None or not record.is_open:
            logger.warning("No open impact episode", pattern_id=pattern.pattern_id)
            return None

        now = self._clock.now()
        record.period_end = now
        record.quarantine_days = max(0.0, days_between(record.period_start, now))
        record.auto_unquarantined = automatic
        record.stability_after = await self.project_stability(pattern.project_id)
        await self._impacts.save(record)
        logger.debug("Impact episode closed", pattern_id=pattern.pattern_id, episode_id=record.episode_id)
        return record

    async def track_impact(
        self,
        pattern_id: str,
        builds_blocked: int = 0,
        ci_time_wasted: float = 0.0,
        developer_hours: float = 0.0,
        false_positive: bool | None = None,
    ) -> ImpactRecord:
        """Add measured impact to the open (or latest) episode of a test.

        Raises:
            NotFoundError: If the test was never quarantined
        """
        record = await self._impacts.latest(pattern_id)
        if record is None:
            raise NotFoundError("impact episode for pattern", pattern_id)

        record.builds_blocked += max(0, builds_blocked)
        record.ci_time_wasted += max(0.0, ci_time_wasted)
        record.developer_hours += max(0.0, developer_hours)
        if false_positive is not None:
            record.false_positive = false_positive
        await self._impacts.save(record)

        logger.info(
            "Impact tracked",
            pattern_id=pattern_id,
            episode_id=record.episode_id,
            builds_blocked=builds_blocked,
            false_positive=record.false_positive,
        )
        return record

    async def project_stability(self, project_id: str, include: Iterable[str] = ()) -> float | None:
        since = self._clock.now() - timedelta(days=self._settings.stability_window_days)
        patterns = await self._patterns.list_by_project(project_id)
        return ci_stability(patterns, since, frozenset(include))

    # Reporting

    async def get_analytics(
        self,
        project_id: str,
        time_range: TimeRange = TimeRange.MONTH,
    ) -> QuarantineAnalytics:
        now = self._clock.now()
        start = now - timedelta(days=time_range.days)
        entries = await self._history.list_by_project(project_id, since=start)
        episodes = await self._impacts.list_by_project(project_id, since=start)
        quarantined = await self._patterns.list_by_project(project_id, QuarantineStatus.QUARANTINED)

        summary = self._summarize(entries, episodes, len(quarantined))
        impact = self._impact_metrics(episodes)

        top = sorted(quarantined, key=lambda p: p.quarantined_at or now)[:10]
        analytics = QuarantineAnalytics(
            project_id=project_id,
            time_range=time_range,
            generated_at=now,
            summary=summary,
            daily=self._daily_trend(entries, start, now),
            category_distribution=dict(
                Counter(categorize(e) for e in entries if e.action == HistoryAction.QUARANTINED)
            ),
            top_quarantined_tests=[
                QuarantinedTestSummary(
                    test_name=p.test_name,
                    test_suite=p.test_suite,
                    quarantine_days=round(days_between(p.quarantined_at or now, now), 2),
                    reason=p.quarantine_reason or "Unknown",
                )
                for p in top
            ],
            impact=impact,
        )
        analytics.recommendations = self._recommendations(summary, impact)
        return analytics

    async def get_effectiveness_report(
        self,
        project_id: str,
        time_range: TimeRange = TimeRange.QUARTER,
    ) -> EffectivenessReport:
        now = self._clock.now()
        episodes = await self._impacts.list_by_project(project_id, since=now - timedelta(days=time_range.days))

        rows = [
            EpisodeEffectiveness(
                episode_id=e.episode_id,
                flaky_test_pattern_id=e.flaky_test_pattern_id,
                test_name=e.test_name,
                test_suite=e.test_suite,
                period_start=e.period_start,
                period_end=e.period_end,
                stability_before=e.stability_before,
                stability_after=e.stability_after,
                stability_delta=e.stability_delta,
                false_positive=e.false_positive,
            )
            for e in episodes
        ]
        feedback = self._feedback(episodes)
        impact = self._impact_metrics(episodes)
        report = EffectivenessReport(
            project_id=project_id,
            time_range=time_range,
            generated_at=now,
            episodes=rows,
            average_stability_delta=feedback.average_stability_delta,
            false_positive_rate=feedback.false_positive_rate,
        )

        if not episodes:
            report.action_items.append("Consider running analysis to identify flaky tests for quarantine")
            return report

        score = 0
        if feedback.false_positive_rate <= 0.1:
            score += 30
            report.strengths.append(f"Low false positive rate ({feedback.false_positive_rate:.1%})")
        elif feedback.false_positive_rate > 0.2:
            report.weaknesses.append(f"High false positive rate ({feedback.false_positive_rate:.1%})")
            report.action_items.append("Increase confidence thresholds to reduce false positives")
        else:
            score += 15

        delta = feedback.average_stability_delta
        if delta is not None and delta > 0:
            score += 30
            report.strengths.append(f"CI stability improved by {delta:.1%} on average")
        elif delta is not None:
            report.weaknesses.append(f"CI stability did not improve ({delta:+.1%} on average)")
            report.action_items.append("Tighten unquarantine criteria or review quarantine coverage")

        closed = [e for e in episodes if not e.is_open]
        premature = [e for e in closed if e.auto_unquarantined and e.quarantine_days < PREMATURE_RELEASE_DAYS]
        if closed:
            release_success = 1 - len(premature) / len(closed)
            if release_success >= 0.8:
                score += 20
                report.strengths.append(f"High unquarantine success rate ({release_success:.1%})")
            elif release_success < 0.6:
                report.weaknesses.append(f"Low unquarantine success rate ({release_success:.1%})")
                report.action_items.append("Extend stability requirements before unquarantining")

        if impact.builds_protected > 10:
            score += 10
            report.strengths.append(f"Protected {impact.builds_protected} builds from flaky failures")
        if impact.ci_time_saved > 100:
            score += 10
            report.strengths.append(f"Saved {impact.ci_time_saved:.0f} minutes of CI time")

        avg_days = sum(e.quarantine_days for e in closed) / len(closed) if closed else 0.0
        if avg_days > 30:
            report.action_items.append("Review unquarantine criteria - tests may be quarantined too long")

        report.overall_score = min(score, 100)
        return report

    async def get_stats(self, project_id: str) -> QuarantineStats:
        """Quarantine activity of the last 30 days."""
        now = self._clock.now()
        start = now - timedelta(days=STATS_WINDOW_DAYS)
        entries = await self._history.list_by_project(project_id, since=start)
        episodes = await self._impacts.list_by_project(project_id, since=start)
        currently = await self._patterns.count_quarantined(project_id)

        summary = self._summarize(entries, episodes, currently)
        impact = self._impact_metrics(episodes)
        return QuarantineStats(
            project_id=project_id,
            total_quarantined=summary.total_quarantined,
            auto_quarantined=summary.auto_quarantined,
            manual_quarantined=summary.manual_quarantined,
            auto_unquarantined=summary.auto_unquarantined,
            manual_unquarantined=summary.manual_unquarantined,
            currently_quarantined=currently,
            ci_time_saved=impact.ci_time_saved,
            developer_hours_saved=impact.developer_hours_saved,
            avg_quarantine_days=summary.avg_quarantine_days,
            false_positive_rate=impact.false_positive_rate,
        )

    async def policy_feedback(self, project_id: str, days: int = 90) -> PolicyFeedback:
        """Effectiveness signals for policy recommendation."""
        since = self._clock.now() - timedelta(days=days)
        return self._feedback(await self._impacts.list_by_project(project_id, since=since))

    # Helpers

    def _summarize(
        self,
        entries: list[QuarantineHistoryEntry],
        episodes: list[ImpactRecord],
        currently_quarantined: int,
    ) -> QuarantineSummary:
        quarantines = [e for e in entries if e.action == HistoryAction.QUARANTINED]
        releases = [e for e in entries if e.action == HistoryAction.UNQUARANTINED]
        auto_q = sum(1 for e in quarantines if e.is_automatic)
        auto_u = sum(1 for e in releases if e.is_automatic)
        durations = [e.quarantine_days for e in episodes if not e.is_open]
        return QuarantineSummary(
            total_quarantined=len(quarantines),
            currently_quarantined=currently_quarantined,
            auto_quarantined=auto_q,
            manual_quarantined=len(quarantines) - auto_q,
            auto_unquarantined=auto_u,
            manual_unquarantined=len(releases) - auto_u,
            avg_quarantine_days=round(sum(durations) / len(durations), 2) if durations else 0.0,
            longest_quarantine_days=round(max(durations), 2) if durations else 0.0,
        )

    def _impact_metrics(self, episodes: list[ImpactRecord]) -> ImpactMetrics:
        ci_minutes = sum(e.ci_time_wasted for e in episodes)
        dev_hours = sum(e.developer_hours for e in episodes)
        ci_cost = ci_minutes * self._settings.ci_cost_per_minute
        dev_cost = dev_hours * self._settings.developer_hourly_cost
        false_positives = sum(1 for e in episodes if e.false_positive)
        return ImpactMetrics(
            ci_time_saved=ci_minutes,
            developer_hours_saved=dev_hours,
            builds_protected=sum(e.builds_blocked for e in episodes),
            cost_savings=CostSavings(
                ci_cost_saved=round(ci_cost, 2),
                developer_cost_saved=round(dev_cost, 2),
                total_saved=round(ci_cost + dev_cost, 2),
            ),
            false_positive_rate=false_positives / len(episodes) if episodes else 0.0,
        )

    def _feedback(self, episodes: list[ImpactRecord]) -> PolicyFeedback:
        deltas = [e.stability_delta for e in episodes if e.stability_delta is not None]
        false_positives = sum(1 for e in episodes if e.false_positive)
        return PolicyFeedback(
            episodes=len(episodes),
            false_positive_rate=false_positives / len(episodes) if episodes else 0.0,
            average_stability_delta=sum(deltas) / len(deltas) if deltas else None,
        )

    @staticmethod
    def _daily_trend(entries: list[QuarantineHistoryEntry], start: datetime, end: datetime) -> list[DailyTrend]:
        days: dict = {}
        current = start.date()
        while current <= end.date():
            days[current] = DailyTrend(day=current)
            current += timedelta(days=1)
        for entry in entries:
            trend = days.get(entry.created_at.date())
            if trend is None:
                continue
            if entry.action == HistoryAction.QUARANTINED:
                trend.quarantined += 1
            else:
                trend.unquarantined += 1
        for trend in days.values():
            trend.net = trend.quarantined - trend.unquarantined
        return list(days.values())

    @staticmethod
    def _recommendations(summary: QuarantineSummary, impact: ImpactMetrics) -> list[str]:
        recommendations = []
        if impact.false_positive_rate > 0.2:
            recommendations.append("High false positive rate detected - consider increasing confidence thresholds")
        if summary.avg_quarantine_days > 30:
            recommendations.append("Review unquarantine criteria - tests may be quarantined too long")
        elif 0 < summary.avg_quarantine_days < PREMATURE_RELEASE_DAYS:
            recommendations.append("Consider extending stability period to ensure tests are truly stable")
        if summary.total_quarantined > 10 and impact.builds_protected < 5:
            recommendations.append("Few builds protected relative to quarantines - review impact tracking")
        if summary.total_quarantined > 0 and summary.auto_quarantined / summary.total_quarantined < 0.8:
            recommendations.append("Consider enabling automation to reduce manual quarantine effort")
        return recommendations
