"""
Scalar and aggregate summaries of a glucose series.

Averages and dispersion are undefined for an empty series and raise
InsufficientData; callers decide whether that skips a sub-analysis.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, tzinfo
from statistics import fmean, pstdev

import structlog
from dateutil import tz

from health_analytics.config import GlucoseThresholds
from health_analytics.domain.errors import InsufficientData
from health_analytics.domain.models import (
    GlucoseStatus,
    GlucoseSummary,
    Reading,
    TimeInRange,
    TimeOfDay,
    TrendDirection,
)

logger = structlog.get_logger(__name__)


def local_hour(timestamp: datetime, zone: tzinfo) -> int:
    """Hour of day in the given zone. Domain timestamps are always aware."""
    return timestamp.astimezone(zone).hour


class StatisticsCalculator:
    """Computes averages, time-in-range and descriptive summaries."""

    def __init__(self, thresholds: GlucoseThresholds, timezone: str = "UTC") -> None:
        self.thresholds = thresholds
        self.zone = tz.gettz(timezone) or tz.UTC

    def average_level(self, readings: Sequence[Reading]) -> float:
        if not readings:
            raise InsufficientData("average_level", required=1, available=0)
        return fmean(r.level for r in readings)

    def standard_deviation(self, levels: Sequence[float]) -> float:
        """Population standard deviation."""
        if not levels:
            raise InsufficientData("standard_deviation", required=1, available=0)
        return pstdev(levels)

    def classify(self, level: int) -> GlucoseStatus:
        if level < self.thresholds.range_low:
            return GlucoseStatus.LOW
        if level <= self.thresholds.range_high:
            return GlucoseStatus.NORMAL
        return GlucoseStatus.HIGH

    def time_in_range(self, readings: Sequence[Reading]) -> TimeInRange:
        """
        Percent of readings below, inside (inclusive) and above the target range.

        Returns all zeros for an empty series.
        """
        total = len(readings)
        if total == 0:
            return TimeInRange(in_range_pct=0.0, below_range_pct=0.0, above_range_pct=0.0)

        counts = self._status_counts(readings)
        return TimeInRange(
            in_range_pct=counts[GlucoseStatus.NORMAL] / total * 100,
            below_range_pct=counts[GlucoseStatus.LOW] / total * 100,
            above_range_pct=counts[GlucoseStatus.HIGH] / total * 100,
        )

    def summarize(self, readings: Sequence[Reading], trend: TrendDirection) -> GlucoseSummary:
        """Descriptive statistics for a non-empty series."""
        if not readings:
            raise InsufficientData("summary", required=1, available=0)

        levels = [float(r.level) for r in readings]
        mean = fmean(levels)
        stddev = pstdev(levels)

        by_time_of_day: defaultdict[TimeOfDay, list[float]] = defaultdict(list)
        for reading in readings:
            bucket = TimeOfDay.from_hour(local_hour(reading.timestamp, self.zone))
            by_time_of_day[bucket].append(float(reading.level))

        return GlucoseSummary(
            reading_count=len(readings),
            min_level=min(r.level for r in readings),
            max_level=max(r.level for r in readings),
            standard_deviation=stddev,
            coefficient_of_variation=stddev / mean if mean else 0.0,
            status_counts=self._status_counts(readings),
            time_of_day_averages={
                bucket: fmean(values)
                for bucket, values in sorted(by_time_of_day.items(), key=lambda kv: kv[0].value)
            },
            trend_direction=trend,
        )

    def _status_counts(self, readings: Sequence[Reading]) -> dict[GlucoseStatus, int]:
        counts = {status: 0 for status in GlucoseStatus}
        for reading in readings:
            counts[self.classify(reading.level)] += 1
        return counts
