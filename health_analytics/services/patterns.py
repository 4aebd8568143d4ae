"""
Detection of recurring named glucose patterns.

Gates are simple and explainable rather than learned:
- Dawn phenomenon: enough early-morning readings whose mean is elevated
- Post-meal spike: a reading above the spike level in the window after a meal

Confidence is a fixed constant per pattern kind, taken from PatternConfidence.
"""

from collections.abc import Sequence
from datetime import timedelta
from statistics import fmean

import structlog
from dateutil import tz

from health_analytics.config import GlucoseThresholds, PatternConfidence
from health_analytics.domain.models import (
    CorrelationWindow,
    MealEvent,
    Pattern,
    PatternKind,
    Reading,
)
from health_analytics.services.statistics import local_hour

logger = structlog.get_logger(__name__)


class PatternDetector:
    """Scans a window for dawn phenomenon and post-meal spikes."""

    def __init__(
        self,
        thresholds: GlucoseThresholds,
        confidence: PatternConfidence,
        timezone: str = "UTC",
    ) -> None:
        self.thresholds = thresholds
        self.confidence = confidence
        self.zone = tz.gettz(timezone) or tz.UTC
        self.logger = logger.bind(component="pattern_detector")

    def detect(self, window: CorrelationWindow) -> list[Pattern]:
        """All patterns found in the window; a fresh list on every call."""
        patterns: list[Pattern] = []

        dawn = self.detect_dawn_phenomenon(window.readings)
        if dawn:
            patterns.append(dawn)

        patterns.extend(self.detect_post_meal_spikes(window))

        self.logger.debug(
            "patterns_detected",
            user_id=window.user_id,
            count=len(patterns),
            kinds=[p.kind.value for p in patterns],
        )
        return patterns

    def detect_dawn_phenomenon(self, readings: Sequence[Reading]) -> Pattern | None:
        t = self.thresholds
        morning = [
            r
            for r in readings
            if t.dawn_start_hour <= local_hour(r.timestamp, self.zone) <= t.dawn_end_hour
        ]
        if len(morning) < t.dawn_min_readings:
            return None

        morning_mean = fmean(r.level for r in morning)
        if morning_mean <= t.dawn_mean_level:
            return None

        return Pattern(
            kind=PatternKind.DAWN_PHENOMENON,
            description="Elevated morning glucose levels detected",
            confidence=self.confidence.dawn_phenomenon,
        )

    def detect_post_meal_spikes(self, window: CorrelationWindow) -> list[Pattern]:
        """One pattern per meal followed by a spike; meals are not deduplicated."""
        patterns = []
        for meal in window.meals:
            peak = self._post_meal_peak(window, meal)
            if peak is None or peak <= self.thresholds.post_meal_spike_level:
                continue
            patterns.append(
                Pattern(
                    kind=PatternKind.POST_MEAL_SPIKE,
                    description=(
                        f"High glucose spike after {meal.name} "
                        f"({meal.carbs_grams:g}g carbs)"
                    ),
                    confidence=self.confidence.post_meal_spike,
                )
            )
        return patterns

    def _post_meal_peak(self, window: CorrelationWindow, meal: MealEvent) -> int | None:
        start = meal.timestamp + timedelta(seconds=self.thresholds.post_meal_window_start_seconds)
        end = meal.timestamp + timedelta(seconds=self.thresholds.post_meal_window_end_seconds)
        post_meal = window.readings_between(start, end)
        if not post_meal:
            return None
        return max(r.level for r in post_meal)
