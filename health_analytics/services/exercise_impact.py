"""
Glucose change attributable to exercise.

For every session the mean level in the window before it is compared with the
mean level in the window after it. Both windows are open intervals, the same
convention used for post-meal windows: a reading taken at the exact instant of
the session belongs to neither side.
"""

from datetime import timedelta
from statistics import fmean

import structlog

from health_analytics.config import GlucoseThresholds
from health_analytics.domain.models import CorrelationWindow, ExerciseEvent, ExerciseImpact

logger = structlog.get_logger(__name__)


class ExerciseImpactAnalyzer:
    def __init__(self, thresholds: GlucoseThresholds) -> None:
        self.thresholds = thresholds
        self.logger = logger.bind(component="exercise_impact_analyzer")

    def improvement_for(self, window: CorrelationWindow, exercise: ExerciseEvent) -> float | None:
        """Before mean minus after mean; None when either side has no readings."""
        span = timedelta(seconds=self.thresholds.exercise_window_seconds)
        before = window.readings_between(exercise.timestamp - span, exercise.timestamp)
        after = window.readings_between(exercise.timestamp, exercise.timestamp + span)
        if not before or not after:
            return None
        return fmean(r.level for r in before) - fmean(r.level for r in after)

    def analyze(self, window: CorrelationWindow) -> ExerciseImpact:
        improvements = []
        for exercise in window.exercises:
            improvement = self.improvement_for(window, exercise)
            if improvement is not None:
                improvements.append(improvement)

        average = fmean(improvements) if improvements else 0.0
        impact = ExerciseImpact(
            improves_glucose=average > 0,
            average_improvement=average,
            exercises_analyzed=len(improvements),
        )

        self.logger.debug(
            "exercise_impact_analyzed",
            user_id=window.user_id,
            exercises=len(window.exercises),
            qualified=len(improvements),
            average_improvement=round(average, 2),
        )
        return impact
