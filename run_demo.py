"""
End-to-end demonstration of the analytics pipeline.

This script exercises:
1. Configuration loading and validation
2. Raw record intake into a correlation window
3. Glucose-pattern and holistic analysis for several users concurrently
4. Fallback behavior when the repository is unavailable

Run with: uv run python run_demo.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from health_analytics.config import configure_logging, get_config, print_config_summary
from health_analytics.domain.models import AnalysisKind, Insights
from health_analytics.services.orchestrator import AnalysisOrchestrator
from health_analytics.services.records import build_correlation_window
from health_analytics.services.repository import InMemoryTimeWindowRepository

console = Console()

NOW = datetime(2024, 3, 15, 20, 0, tzinfo=UTC)


def _scenario_records(scenario: str) -> dict[str, list[dict[str, object]]]:
    """Raw exported records for a named scenario, spread over the last week."""
    readings: list[dict[str, object]] = []
    meals: list[dict[str, object]] = []
    exercises: list[dict[str, object]] = []

    for day in range(7):
        base = NOW - timedelta(days=day + 1)
        morning = base.replace(hour=7, minute=0)

        if scenario == "stable":
            levels = [105, 112, 118, 121, 109, 115]
        elif scenario == "dawn_and_spikes":
            levels = [165, 158, 172, 205, 190, 150]
        else:  # "active"
            levels = [150, 165, 170, 130, 125, 120]

        for i, level in enumerate(levels):
            readings.append(
                {"level": level, "timestamp": (morning + timedelta(minutes=40 * i)).isoformat()}
            )

        lunch = base.replace(hour=12, minute=0)
        carbs = 35 if scenario == "stable" else 70
        meals.append({"name": "Lunch", "carbs_grams": carbs, "timestamp": lunch.isoformat()})

        post_lunch = 210 if scenario == "dawn_and_spikes" else 140
        readings.append(
            {"level": post_lunch, "timestamp": (lunch + timedelta(hours=2)).isoformat()}
        )

        if scenario == "active":
            exercises.append(
                {
                    "exercise_type": "Running",
                    "duration_minutes": 30,
                    "timestamp": (morning + timedelta(minutes=110)).isoformat(),
                }
            )

    # One record from a device that lost its clock
    readings.append({"level": 118, "timestamp": None, "notes": "manual entry"})
    return {"readings": readings, "meals": meals, "exercises": exercises}


def _build_repository() -> InMemoryTimeWindowRepository:
    repository = InMemoryTimeWindowRepository()
    for user_id in ("stable", "dawn_and_spikes", "active"):
        window, report = build_correlation_window(
            user_id, days=30, now=NOW, **_scenario_records(user_id)
        )
        repository.add_readings(user_id, window.readings)
        repository.add_meals(user_id, window.meals)
        repository.add_exercises(user_id, window.exercises)
        console.print(
            f"Loaded {report.accepted} records for {user_id} "
            f"({report.substituted_timestamps} timestamps substituted)",
            style="cyan",
        )
    return repository


def _render(insights: Insights) -> None:
    table = Table(title=f"Insights: {insights.user_id} ({insights.kind.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    if insights.average_level is not None:
        table.add_row("Average", f"{insights.average_level:.1f} mg/dL")
    if insights.time_in_range is not None:
        tir = insights.time_in_range
        table.add_row(
            "Time in range",
            f"{tir.in_range_pct:.1f}% in / {tir.below_range_pct:.1f}% below / "
            f"{tir.above_range_pct:.1f}% above",
        )
    if insights.risk_assessment is not None:
        risk = insights.risk_assessment
        table.add_row("Risk", risk.level.value.upper())
        for factor in risk.factors:
            table.add_row("  factor", factor.value)
    for pattern in insights.patterns:
        table.add_row("Pattern", f"{pattern.description} ({pattern.confidence:.0%})")
    for prediction in insights.predictions:
        table.add_row(
            "Prediction", f"{prediction.horizon_label}: {prediction.direction_label}"
        )
    for rec in insights.recommendations:
        table.add_row(f"{rec.title} ({rec.priority.value})", rec.description)

    console.print(table)


async def main() -> None:
    config = get_config()
    configure_logging(config.logging)

    console.print(Panel("Health Analytics Engine - Demo", style="bold blue"))
    print_config_summary()

    repository = _build_repository()
    orchestrator = AnalysisOrchestrator(repository, config)

    console.print(Panel("Glucose-pattern analysis", style="blue"))
    glucose = await orchestrator.analyze_glucose_patterns("dawn_and_spikes", now=NOW)
    if glucose:
        _render(glucose)

    console.print(Panel("Holistic analysis (concurrent)", style="blue"))
    results = await orchestrator.analyze_users(
        ["stable", "dawn_and_spikes", "active"], now=NOW, kind=AnalysisKind.HOLISTIC
    )
    for insights in results.values():
        if insights:
            _render(insights)

    console.print(Panel("Fallback on repository outage", style="blue"))
    repository.set_available("active", False)
    failed = await orchestrator.analyze_health_patterns("active", now=NOW)
    latest = orchestrator.get_latest_insights("active")
    console.print(
        f"Analysis returned {failed!r}; state={orchestrator.get_state('active').value}; "
        f"previous insights kept: {latest is not None}",
        style="yellow",
    )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\nDemo stopped by user", style="yellow")
