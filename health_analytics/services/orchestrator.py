"""
Analysis orchestration: composes the analyzers into two public operations.

Architecture:
1. Fetch a time window from the repository (the only suspension point)
2. Run the pure pipeline: statistics, patterns, trends, exercise, risk, recommendations
3. Publish the fresh Insights into an explicit per-user cache

State machine per user: IDLE -> ANALYZING -> PUBLISHED. Concurrent requests
for the same user are not serialized; whichever finishes last is published
(last writer wins). A failed fetch returns the user to IDLE and leaves the
last published Insights untouched. No failure blocks future calls.
Every finished analysis also evicts insights older than the configured max
age, so expired results stop being served.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from health_analytics.config import AppConfig, get_config
from health_analytics.domain.errors import InsufficientData, UpstreamFetchFailure
from health_analytics.domain.models import (
    AnalysisKind,
    AnalysisState,
    CorrelationWindow,
    ExerciseImpact,
    GlucoseSummary,
    Insights,
    RiskAssessment,
    TimeInRange,
    assume_utc,
)
from health_analytics.services.exercise_impact import ExerciseImpactAnalyzer
from health_analytics.services.patterns import PatternDetector
from health_analytics.services.recommendations import RecommendationGenerator
from health_analytics.services.repository import TimeWindowRepository, window_start
from health_analytics.services.risk import RiskAssessor
from health_analytics.services.statistics import StatisticsCalculator
from health_analytics.services.trends import TrendPredictor

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PublishedInsights:
    """The last published result for a user and when it was published."""

    insights: Insights
    published_at: datetime


class InsightsCache:
    """Explicit per-user "last published" slot with age-based eviction."""

    def __init__(self, max_age: timedelta) -> None:
        self.max_age = max_age
        self._entries: dict[str, PublishedInsights] = {}
        self.logger = logger.bind(component="insights_cache")

    def publish(self, insights: Insights, published_at: datetime) -> None:
        """Replace the user's slot wholesale."""
        self._entries[insights.user_id] = PublishedInsights(insights, published_at)

    def get(self, user_id: str) -> Insights | None:
        entry = self._entries.get(user_id)
        return entry.insights if entry else None

    def entry(self, user_id: str) -> PublishedInsights | None:
        return self._entries.get(user_id)

    def evict_stale(self, now: datetime) -> list[str]:
        """Drop entries published more than max_age before now."""
        cutoff = now - self.max_age
        stale = [uid for uid, e in self._entries.items() if e.published_at < cutoff]
        for user_id in stale:
            del self._entries[user_id]
        if stale:
            self.logger.info("stale_insights_evicted", count=len(stale))
        return stale

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class _GlucosePathResult:
    average_level: float | None
    time_in_range: TimeInRange | None
    summary: GlucoseSummary | None


class AnalysisOrchestrator:
    """
    Owns the published insights for every user it analyzes.

    The pipeline itself is stateless: every call builds a new Insights value
    from the fetched window and the explicit "now".
    """

    def __init__(
        self,
        repository: TimeWindowRepository,
        config: AppConfig | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or get_config()
        self.logger = logger.bind(component="analysis_orchestrator")

        thresholds = self.config.thresholds
        confidence = self.config.confidence
        timezone = self.config.analysis.timezone

        self.statistics = StatisticsCalculator(thresholds, timezone)
        self.pattern_detector = PatternDetector(thresholds, confidence, timezone)
        self.trend_predictor = TrendPredictor(thresholds, confidence)
        self.exercise_analyzer = ExerciseImpactAnalyzer(thresholds)
        self.risk_assessor = RiskAssessor(thresholds)
        self.recommender = RecommendationGenerator(thresholds)

        self.cache = InsightsCache(timedelta(days=self.config.analysis.cache_max_age_days))
        self._states: dict[str, AnalysisState] = {}
        self._in_flight: dict[str, int] = {}

    # Output contract

    def get_latest_insights(self, user_id: str) -> Insights | None:
        """Most recently published Insights, or None if no analysis has completed."""
        return self.cache.get(user_id)

    def get_state(self, user_id: str) -> AnalysisState:
        return self._states.get(user_id, AnalysisState.IDLE)

    # Public operations

    async def analyze_glucose_patterns(
        self, user_id: str, now: datetime | None = None
    ) -> Insights | None:
        """Glucose-path analysis: statistics, patterns, predictions, glucose advice."""
        return await self._run(user_id, AnalysisKind.GLUCOSE, now)

    async def analyze_health_patterns(
        self, user_id: str, now: datetime | None = None
    ) -> Insights | None:
        """Holistic analysis: glucose path plus exercise, nutrition and risk."""
        return await self._run(user_id, AnalysisKind.HOLISTIC, now)

    async def on_data_updated(self, user_id: str, now: datetime | None = None) -> Insights | None:
        """New glucose, meal or exercise data arrived; recompute everything."""
        self.logger.info("data_updated", user_id=user_id)
        return await self.analyze_health_patterns(user_id, now)

    async def analyze_users(
        self,
        user_ids: Iterable[str],
        now: datetime | None = None,
        kind: AnalysisKind = AnalysisKind.HOLISTIC,
    ) -> dict[str, Insights | None]:
        """
        Analyze many users concurrently.

        Each user is an independent task; one user's failure only affects
        that user's entry.
        """
        now = assume_utc(now) if now else datetime.now(UTC)
        async with asyncio.TaskGroup() as task_group:
            tasks = {
                user_id: task_group.create_task(self._run(user_id, kind, now), name=user_id)
                for user_id in dict.fromkeys(user_ids)
            }
        return {user_id: task.result() for user_id, task in tasks.items()}

    # Pipeline

    async def _run(self, user_id: str, kind: AnalysisKind, now: datetime | None) -> Insights | None:
        now = assume_utc(now) if now else datetime.now(UTC)
        started = asyncio.get_running_loop().time()
        self._begin(user_id)
        self.logger.info("analysis_started", user_id=user_id, kind=kind.value)

        try:
            window = await self._fetch_window(user_id, now)

            if kind is AnalysisKind.GLUCOSE and not window.readings:
                self.logger.info("analysis_aborted_no_readings", user_id=user_id)
                self._finish(user_id, None, now)
                return None
            if window.is_empty:
                self.logger.info("analysis_aborted_empty_window", user_id=user_id)
                self._finish(user_id, None, now)
                return None

            insights = self.build_insights(window, kind, now)

        except UpstreamFetchFailure as e:
            self.logger.warning("upstream_fetch_failed", user_id=user_id, error=str(e))
            self._finish(user_id, None, now)
            return None
        except Exception as e:
            self.logger.exception("analysis_failed", user_id=user_id, error=str(e))
            self._finish(user_id, None, now)
            return None

        self._finish(user_id, insights, now)
        self.logger.info(
            "analysis_completed",
            user_id=user_id,
            kind=kind.value,
            patterns=len(insights.patterns),
            predictions=len(insights.predictions),
            recommendations=len(insights.recommendations),
            risk_level=insights.risk_assessment.level.value if insights.risk_assessment else None,
            duration_seconds=round(asyncio.get_running_loop().time() - started, 3),
        )
        return insights

    async def _fetch_window(self, user_id: str, now: datetime) -> CorrelationWindow:
        """Fetch the correlation window, mapping every failure mode to UpstreamFetchFailure."""
        days = self.config.analysis.window_days
        try:
            result = await asyncio.wait_for(
                self.repository.get_correlation_window(user_id, days, now),
                timeout=self.config.analysis.fetch_timeout_seconds,
            )
        except TimeoutError as e:
            raise UpstreamFetchFailure(user_id, "timed out") from e
        except UpstreamFetchFailure:
            raise
        except Exception as e:
            raise UpstreamFetchFailure(user_id, str(e)) from e

        if result.is_err():
            error = result.unwrap_err()
            if isinstance(error, UpstreamFetchFailure):
                raise error
            raise UpstreamFetchFailure(user_id, str(error))
        return result.unwrap()

    def build_insights(
        self, window: CorrelationWindow, kind: AnalysisKind, now: datetime
    ) -> Insights:
        """Run the pure pipeline over an already-fetched window."""
        glucose = self._glucose_path(window)
        patterns = self.pattern_detector.detect(window)
        predictions = self.trend_predictor.predict(window.readings)
        recommendations = self.recommender.for_glucose(
            glucose.time_in_range, glucose.average_level
        )

        exercise_impact: ExerciseImpact | None = None
        risk_assessment: RiskAssessment | None = None
        if kind is AnalysisKind.HOLISTIC:
            exercise_impact = self.exercise_analyzer.analyze(window)
            risk_assessment = self.risk_assessor.assess(window.levels)
            recommendations.extend(self.recommender.for_nutrition(window.meals))
            recommendations.extend(self.recommender.for_exercise(exercise_impact))

        return Insights(
            user_id=window.user_id,
            kind=kind,
            window_start=window_start(now, window.days),
            window_end=now,
            average_level=glucose.average_level,
            time_in_range=glucose.time_in_range,
            summary=glucose.summary,
            patterns=patterns,
            predictions=predictions,
            risk_assessment=risk_assessment,
            exercise_impact=exercise_impact,
            recommendations=recommendations,
        )

    def _glucose_path(self, window: CorrelationWindow) -> _GlucosePathResult:
        """Statistics that need at least one reading; skipped individually when empty."""
        try:
            average = self.statistics.average_level(window.readings)
            summary = self.statistics.summarize(
                window.readings, self.trend_predictor.trend_direction(window.readings)
            )
        except InsufficientData as e:
            self.logger.debug("sub_analysis_skipped", user_id=window.user_id, reason=str(e))
            return _GlucosePathResult(average_level=None, time_in_range=None, summary=None)

        return _GlucosePathResult(
            average_level=average,
            time_in_range=self.statistics.time_in_range(window.readings),
            summary=summary,
        )

    # State bookkeeping

    def _begin(self, user_id: str) -> None:
        self._in_flight[user_id] = self._in_flight.get(user_id, 0) + 1
        self._states[user_id] = AnalysisState.ANALYZING

    def _finish(self, user_id: str, insights: Insights | None, now: datetime) -> None:
        remaining = self._in_flight.get(user_id, 1) - 1
        if remaining > 0:
            self._in_flight[user_id] = remaining
        else:
            self._in_flight.pop(user_id, None)

        if insights is not None:
            self.cache.publish(insights, published_at=now)

        if remaining > 0:
            self._states[user_id] = AnalysisState.ANALYZING
        elif insights is not None:
            self._states[user_id] = AnalysisState.PUBLISHED
        else:
            # Absent state reads as IDLE
            self._states.pop(user_id, None)

        self._evict_stale(now)

    def _evict_stale(self, now: datetime) -> None:
        """Drop expired insights; an evicted user with nothing in flight goes back to IDLE."""
        for user_id in self.cache.evict_stale(now):
            if user_id not in self._in_flight:
                self._states.pop(user_id, None)
