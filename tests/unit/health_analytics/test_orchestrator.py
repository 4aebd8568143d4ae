"""
Tests for AnalysisOrchestrator.

Covers:
- Glucose and holistic paths and what each one populates
- Per-user state machine (IDLE -> ANALYZING -> PUBLISHED)
- Failure handling: previous insights survive, state returns to IDLE
- Idempotence for a fixed "now"
- Concurrent analysis of many users
- Age-based eviction of published insights
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from health_analytics.config import AnalysisConfig, AppConfig
from health_analytics.domain.errors import UpstreamFetchFailure
from health_analytics.domain.models import (
    AnalysisKind,
    AnalysisState,
    CorrelationWindow,
    ExerciseEvent,
    MealEvent,
    Reading,
    RecommendationCategory,
    RiskFactor,
    Severity,
)
from health_analytics.services.orchestrator import AnalysisOrchestrator, InsightsCache
from health_analytics.services.repository import InMemoryTimeWindowRepository, Result

NOW = datetime(2024, 3, 15, 20, 0, tzinfo=UTC)
TODAY = NOW.replace(hour=0)


def _at(hour: int, minute: int = 0) -> datetime:
    return TODAY.replace(hour=hour, minute=minute)


def _populate(repo: InMemoryTimeWindowRepository, user_id: str) -> None:
    """A day with a high-carb lunch, an afternoon run and a high evening."""
    repo.add_readings(
        user_id,
        [
            Reading(level=170, timestamp=_at(12, 30)),
            Reading(level=170, timestamp=_at(13, 30)),
            Reading(level=140, timestamp=_at(14, 30)),
            Reading(level=140, timestamp=_at(15, 30)),
            Reading(level=250, timestamp=_at(17)),
            Reading(level=260, timestamp=_at(18)),
            Reading(level=240, timestamp=_at(19)),
        ],
    )
    repo.add_meals(user_id, [MealEvent(timestamp=_at(12), name="Lunch", carbs_grams=70)])
    repo.add_exercises(
        user_id, [ExerciseEvent(timestamp=_at(14), exercise_type="Running", duration_minutes=30)]
    )


class SlowRepository:
    """Repository whose fetch never completes within the configured timeout."""

    async def get_glucose_window(self, user_id: str, days: int, now: datetime) -> Result:
        await asyncio.sleep(5)
        return Result.ok([])

    async def get_correlation_window(self, user_id: str, days: int, now: datetime) -> Result:
        await asyncio.sleep(5)
        return Result.ok(CorrelationWindow(user_id=user_id, days=days))


class BrokenRepository:
    """Repository that raises instead of returning Result.err."""

    async def get_glucose_window(self, user_id: str, days: int, now: datetime) -> Result:
        raise ConnectionError("connection reset")

    async def get_correlation_window(self, user_id: str, days: int, now: datetime) -> Result:
        raise ConnectionError("connection reset")


class GatedRepository:
    """Holds every fetch until the test releases the gate."""

    def __init__(self, inner: InMemoryTimeWindowRepository) -> None:
        self.inner = inner
        self.gate = asyncio.Event()

    async def get_glucose_window(self, user_id: str, days: int, now: datetime) -> Result:
        await self.gate.wait()
        return await self.inner.get_glucose_window(user_id, days, now)

    async def get_correlation_window(self, user_id: str, days: int, now: datetime) -> Result:
        await self.gate.wait()
        return await self.inner.get_correlation_window(user_id, days, now)


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def repository() -> InMemoryTimeWindowRepository:
    repo = InMemoryTimeWindowRepository()
    _populate(repo, "u1")
    return repo


@pytest.fixture
def orchestrator(
    repository: InMemoryTimeWindowRepository, config: AppConfig
) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(repository, config)


class TestGlucoseAnalysis:
    @pytest.mark.asyncio
    async def test_publishes_glucose_insights(self, orchestrator: AnalysisOrchestrator) -> None:
        assert orchestrator.get_state("u1") is AnalysisState.IDLE

        insights = await orchestrator.analyze_glucose_patterns("u1", now=NOW)

        assert insights is not None
        assert insights.kind is AnalysisKind.GLUCOSE
        assert insights.window_end == NOW
        assert insights.window_start == NOW - timedelta(days=30)
        assert insights.average_level == pytest.approx(1370 / 7)
        assert insights.time_in_range is not None
        assert insights.time_in_range.in_range_pct == pytest.approx(400 / 7)
        assert insights.summary is not None
        assert insights.summary.reading_count == 7
        assert insights.risk_assessment is None
        assert insights.exercise_impact is None
        assert [r.title for r in insights.recommendations] == [
            "Improve Time in Range",
            "High Average Glucose",
        ]
        assert orchestrator.get_state("u1") is AnalysisState.PUBLISHED
        assert orchestrator.get_latest_insights("u1") == insights

    @pytest.mark.asyncio
    async def test_no_readings_aborts(self, config: AppConfig) -> None:
        repo = InMemoryTimeWindowRepository()
        repo.add_meals("u2", [MealEvent(timestamp=_at(12), carbs_grams=90)])
        orchestrator = AnalysisOrchestrator(repo, config)

        assert await orchestrator.analyze_glucose_patterns("u2", now=NOW) is None
        assert orchestrator.get_state("u2") is AnalysisState.IDLE
        assert orchestrator.get_latest_insights("u2") is None

    @pytest.mark.asyncio
    async def test_post_meal_spike_found_through_orchestrator(self, config: AppConfig) -> None:
        repo = InMemoryTimeWindowRepository()
        repo.add_readings("u3", [Reading(level=210, timestamp=_at(14))])
        repo.add_meals("u3", [MealEvent(timestamp=_at(12), name="Pasta", carbs_grams=90)])
        orchestrator = AnalysisOrchestrator(repo, config)

        insights = await orchestrator.analyze_glucose_patterns("u3", now=NOW)

        assert insights is not None
        assert [p.description for p in insights.patterns] == [
            "High glucose spike after Pasta (90g carbs)"
        ]


class TestHolisticAnalysis:
    @pytest.mark.asyncio
    async def test_populates_risk_exercise_and_ordered_recommendations(
        self, orchestrator: AnalysisOrchestrator
    ) -> None:
        insights = await orchestrator.analyze_health_patterns("u1", now=NOW)

        assert insights is not None
        assert insights.kind is AnalysisKind.HOLISTIC
        assert insights.risk_assessment is not None
        assert insights.risk_assessment.level is Severity.HIGH
        assert RiskFactor.ELEVATED_AVERAGE in insights.risk_assessment.factors
        assert insights.exercise_impact is not None
        assert insights.exercise_impact.average_improvement == 30.0
        assert [r.category for r in insights.recommendations] == [
            RecommendationCategory.GLUCOSE,
            RecommendationCategory.GLUCOSE,
            RecommendationCategory.NUTRITION,
            RecommendationCategory.EXERCISE,
        ]

    @pytest.mark.asyncio
    async def test_meals_only_window_skips_glucose_statistics(self, config: AppConfig) -> None:
        repo = InMemoryTimeWindowRepository()
        repo.add_meals("u2", [MealEvent(timestamp=_at(12), carbs_grams=90)])
        orchestrator = AnalysisOrchestrator(repo, config)

        insights = await orchestrator.analyze_health_patterns("u2", now=NOW)

        assert insights is not None
        assert insights.average_level is None
        assert insights.time_in_range is None
        assert insights.summary is None
        assert insights.risk_assessment is not None
        assert insights.risk_assessment.level is Severity.LOW
        assert [r.title for r in insights.recommendations] == ["High Carb Meal Impact"]

    @pytest.mark.asyncio
    async def test_empty_window_aborts(self, config: AppConfig) -> None:
        orchestrator = AnalysisOrchestrator(InMemoryTimeWindowRepository(), config)

        assert await orchestrator.analyze_health_patterns("nobody", now=NOW) is None
        assert orchestrator.get_state("nobody") is AnalysisState.IDLE

    @pytest.mark.asyncio
    async def test_on_data_updated_runs_holistic(
        self, orchestrator: AnalysisOrchestrator
    ) -> None:
        insights = await orchestrator.on_data_updated("u1", now=NOW)

        assert insights is not None
        assert insights.kind is AnalysisKind.HOLISTIC


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_outage_keeps_previous_insights(
        self, orchestrator: AnalysisOrchestrator, repository: InMemoryTimeWindowRepository
    ) -> None:
        first = await orchestrator.analyze_health_patterns("u1", now=NOW)
        repository.set_available("u1", False)

        second = await orchestrator.analyze_health_patterns("u1", now=NOW + timedelta(hours=1))

        assert second is None
        assert orchestrator.get_state("u1") is AnalysisState.IDLE
        assert orchestrator.get_latest_insights("u1") == first

        # A failure never blocks the next call
        repository.set_available("u1", True)
        assert await orchestrator.analyze_health_patterns("u1", now=NOW) is not None
        assert orchestrator.get_state("u1") is AnalysisState.PUBLISHED

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_a_fetch_failure(self) -> None:
        config = AppConfig(analysis=AnalysisConfig(fetch_timeout_seconds=0.05))
        orchestrator = AnalysisOrchestrator(SlowRepository(), config)

        assert await orchestrator.analyze_health_patterns("u1", now=NOW) is None
        assert orchestrator.get_state("u1") is AnalysisState.IDLE

    @pytest.mark.asyncio
    async def test_raising_repository_is_contained(self, config: AppConfig) -> None:
        orchestrator = AnalysisOrchestrator(BrokenRepository(), config)

        assert await orchestrator.analyze_glucose_patterns("u1", now=NOW) is None
        assert orchestrator.get_state("u1") is AnalysisState.IDLE

    @pytest.mark.asyncio
    async def test_fetch_errors_are_normalized(self, config: AppConfig) -> None:
        orchestrator = AnalysisOrchestrator(BrokenRepository(), config)

        with pytest.raises(UpstreamFetchFailure, match="connection reset"):
            await orchestrator._fetch_window("u1", NOW)


class TestDeterminism:
    @pytest.mark.asyncio
    async def test_same_window_and_now_give_equal_insights(
        self, orchestrator: AnalysisOrchestrator
    ) -> None:
        first = await orchestrator.analyze_health_patterns("u1", now=NOW)
        second = await orchestrator.analyze_health_patterns("u1", now=NOW)

        assert first == second
        assert first is not None and second is not None
        assert first.model_dump_json() == second.model_dump_json()
        assert first is not second


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_state_is_analyzing_while_fetch_is_in_flight(
        self, repository: InMemoryTimeWindowRepository, config: AppConfig
    ) -> None:
        gated = GatedRepository(repository)
        orchestrator = AnalysisOrchestrator(gated, config)

        first = asyncio.create_task(orchestrator.analyze_health_patterns("u1", now=NOW))
        second = asyncio.create_task(orchestrator.analyze_health_patterns("u1", now=NOW))
        await asyncio.sleep(0)

        assert orchestrator.get_state("u1") is AnalysisState.ANALYZING
        assert orchestrator.get_latest_insights("u1") is None

        gated.gate.set()
        results = await asyncio.gather(first, second)

        assert results[0] == results[1]
        assert orchestrator.get_state("u1") is AnalysisState.PUBLISHED
        assert orchestrator.get_latest_insights("u1") == results[1]

    @pytest.mark.asyncio
    async def test_analyze_users_isolates_failures(
        self, repository: InMemoryTimeWindowRepository, config: AppConfig
    ) -> None:
        _populate(repository, "u2")
        _populate(repository, "down")
        repository.set_available("down", False)
        orchestrator = AnalysisOrchestrator(repository, config)

        results = await orchestrator.analyze_users(["u1", "u2", "down", "u1"], now=NOW)

        assert list(results) == ["u1", "u2", "down"]
        assert results["u1"] is not None
        assert results["u2"] is not None
        assert results["down"] is None
        assert orchestrator.get_state("down") is AnalysisState.IDLE
        assert orchestrator.get_state("u2") is AnalysisState.PUBLISHED


class TestInsightsCache:
    @pytest.mark.asyncio
    async def test_stale_entries_are_evicted(self, orchestrator: AnalysisOrchestrator) -> None:
        insights = await orchestrator.analyze_health_patterns("u1", now=NOW)
        assert insights is not None

        cache = InsightsCache(max_age=timedelta(days=30))
        cache.publish(insights, published_at=NOW)

        assert cache.evict_stale(NOW + timedelta(days=29)) == []
        assert len(cache) == 1
        assert cache.entry("u1") is not None

        assert cache.evict_stale(NOW + timedelta(days=31)) == ["u1"]
        assert cache.get("u1") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_orchestrator_evicts_expired_insights(
        self, orchestrator: AnalysisOrchestrator, repository: InMemoryTimeWindowRepository
    ) -> None:
        later = NOW + timedelta(days=60)
        repository.add_readings("u2", [Reading(level=120, timestamp=later - timedelta(hours=1))])

        assert await orchestrator.analyze_health_patterns("u1", now=NOW) is not None
        assert await orchestrator.analyze_health_patterns("u2", now=later) is not None

        assert orchestrator.get_latest_insights("u1") is None
        assert orchestrator.get_state("u1") is AnalysisState.IDLE
        assert orchestrator.get_latest_insights("u2") is not None
        assert len(orchestrator.cache) == 1
        assert orchestrator._in_flight == {}


class TestNaiveTimestamps:
    @pytest.mark.asyncio
    async def test_naive_records_and_now_are_analyzed_as_utc(self, config: AppConfig) -> None:
        naive_now = NOW.replace(tzinfo=None)
        repo = InMemoryTimeWindowRepository()
        repo.add_readings(
            "u1",
            [
                Reading(level=100 + i, timestamp=naive_now - timedelta(minutes=15 * (12 - i)))
                for i in range(12)
            ],
        )
        orchestrator = AnalysisOrchestrator(repo, config)

        insights = await orchestrator.analyze_glucose_patterns("u1", now=naive_now)

        assert insights is not None
        assert insights.window_end == NOW
        assert insights.summary is not None
        assert insights.summary.reading_count == 12
        assert [p.direction_label for p in insights.predictions] == ["Rising trend detected"]
