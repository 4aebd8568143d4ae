"""
Maps insights into actionable recommendation records.

Each rule reads one independent input and appends at most one record.
Results are concatenated in rule order with no deduplication or ranking.
"""

import math
from collections.abc import Sequence

from health_analytics.config import GlucoseThresholds
from health_analytics.domain.models import (
    ExerciseImpact,
    MealEvent,
    Recommendation,
    RecommendationCategory,
    Severity,
    TimeInRange,
)


def _round_half_up(value: float) -> int:
    # Halves go up: 2.5 -> 3, 22.5 -> 23
    return math.floor(value + 0.5)


class RecommendationGenerator:
    def __init__(self, thresholds: GlucoseThresholds) -> None:
        self.thresholds = thresholds

    def for_glucose(
        self, time_in_range: TimeInRange | None, average_level: float | None
    ) -> list[Recommendation]:
        """Recommendations from time-in-range and the average level."""
        t = self.thresholds
        recommendations = []

        if time_in_range is not None and time_in_range.in_range_pct < t.time_in_range_target_pct:
            recommendations.append(
                Recommendation(
                    category=RecommendationCategory.GLUCOSE,
                    title="Improve Time in Range",
                    description=(
                        f"Your time in range is {int(time_in_range.in_range_pct)}%. "
                        f"Aim for {t.time_in_range_target_pct:.0f}% or higher."
                    ),
                    priority=Severity.HIGH,
                )
            )

        if average_level is not None and average_level > t.elevated_average_level:
            recommendations.append(
                Recommendation(
                    category=RecommendationCategory.GLUCOSE,
                    title="High Average Glucose",
                    description=(
                        f"Your average glucose is {int(average_level)}mg/dL. "
                        "Consider consulting your healthcare provider."
                    ),
                    priority=Severity.HIGH,
                )
            )

        return recommendations

    def for_nutrition(self, meals: Sequence[MealEvent]) -> list[Recommendation]:
        """A single recommendation however many high-carb meals were logged."""
        limit = self.thresholds.high_carb_grams
        if not any(meal.carbs_grams > limit for meal in meals):
            return []
        return [
            Recommendation(
                category=RecommendationCategory.NUTRITION,
                title="High Carb Meal Impact",
                description=(
                    f"Consider reducing carbs in meals to {limit:.0f}g or less "
                    "for better glucose control"
                ),
                priority=Severity.MEDIUM,
            )
        ]

    def for_exercise(self, impact: ExerciseImpact | None) -> list[Recommendation]:
        if impact is None or not impact.improves_glucose:
            return []
        return [
            Recommendation(
                category=RecommendationCategory.EXERCISE,
                title="Exercise Benefits Detected",
                description=(
                    "Your glucose levels improve by an average of "
                    f"{_round_half_up(impact.average_improvement)}mg/dL after exercise"
                ),
                priority=Severity.HIGH,
            )
        ]

    def generate(
        self,
        *,
        time_in_range: TimeInRange | None,
        average_level: float | None,
        meals: Sequence[MealEvent],
        exercise_impact: ExerciseImpact | None,
    ) -> list[Recommendation]:
        """All rules, concatenated: glucose, nutrition, then exercise."""
        return [
            *self.for_glucose(time_in_range, average_level),
            *self.for_nutrition(meals),
            *self.for_exercise(exercise_impact),
        ]
