"""Short-horizon directional forecasts from the most recent readings.

This is a finite difference over the last readings, not a regression.
"""

from collections.abc import Sequence

from health_analytics.config import GlucoseThresholds, PatternConfidence
from health_analytics.domain.models import Prediction, Reading, TrendDirection

HORIZON_LABEL = "Next 2 hours"


class TrendPredictor:
    def __init__(self, thresholds: GlucoseThresholds, confidence: PatternConfidence) -> None:
        self.thresholds = thresholds
        self.confidence = confidence

    def trend_delta(self, readings: Sequence[Reading]) -> float:
        """Last minus first level over the trailing window (0 for fewer than 2 readings)."""
        recent = readings[-self.thresholds.trend_window_size :]
        if len(recent) < 2:
            return 0.0
        return float(recent[-1].level - recent[0].level)

    def trend_direction(self, readings: Sequence[Reading]) -> TrendDirection:
        delta = self.trend_delta(readings)
        if delta > self.thresholds.trend_delta:
            return TrendDirection.RISING
        if delta < -self.thresholds.trend_delta:
            return TrendDirection.FALLING
        return TrendDirection.STABLE

    def predict(self, readings: Sequence[Reading]) -> list[Prediction]:
        """At most one prediction; none when fewer than a full window of readings exist."""
        if len(readings) < self.thresholds.trend_window_size:
            return []

        direction = self.trend_direction(readings)
        if direction is TrendDirection.RISING:
            label = "Rising trend detected"
        elif direction is TrendDirection.FALLING:
            label = "Declining trend detected"
        else:
            return []

        return [
            Prediction(
                horizon_label=HORIZON_LABEL,
                direction_label=label,
                direction=direction,
                confidence=self.confidence.trend_prediction,
            )
        ]
