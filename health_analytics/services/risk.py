"""
Deterministic, rule-ordered risk classification.

Rules run in a fixed order against the glucose levels of the window:
1. stddev above the high-variability bound  -> HIGH_VARIABILITY, level HIGH
2. else stddev above the moderate bound     -> MODERATE_VARIABILITY, level MEDIUM
3. mean above the elevated-average bound    -> ELEVATED_AVERAGE, level HIGH

The level starts at LOW and is only ever escalated within one evaluation.
"""

from collections.abc import Sequence
from statistics import fmean, pstdev
from typing import assert_never

import structlog

from health_analytics.config import GlucoseThresholds
from health_analytics.domain.models import RiskAssessment, RiskFactor, Severity

logger = structlog.get_logger(__name__)


def recommendation_for(factor: RiskFactor) -> str:
    """Recommendation text for a risk factor.

    Exhaustive over RiskFactor: adding a member without a branch here fails
    type checking at assert_never.
    """
    if factor is RiskFactor.HIGH_VARIABILITY or factor is RiskFactor.MODERATE_VARIABILITY:
        return "Focus on consistent meal timing and carb counting"
    elif factor is RiskFactor.ELEVATED_AVERAGE:
        return "Consult with your healthcare provider about medication adjustments"
    else:
        assert_never(factor)


class RiskAssessor:
    def __init__(self, thresholds: GlucoseThresholds) -> None:
        self.thresholds = thresholds
        self.logger = logger.bind(component="risk_assessor")

    def assess(self, levels: Sequence[float]) -> RiskAssessment:
        if not levels:
            return RiskAssessment(level=Severity.LOW)

        t = self.thresholds
        mean = fmean(levels)
        stddev = pstdev(levels)

        factors: list[RiskFactor] = []
        level = Severity.LOW

        if stddev > t.high_variability_stddev:
            factors.append(RiskFactor.HIGH_VARIABILITY)
            level = level.escalate(Severity.HIGH)
        elif stddev > t.moderate_variability_stddev:
            factors.append(RiskFactor.MODERATE_VARIABILITY)
            level = level.escalate(Severity.MEDIUM)

        if mean > t.elevated_average_level:
            factors.append(RiskFactor.ELEVATED_AVERAGE)
            level = level.escalate(Severity.HIGH)

        assessment = RiskAssessment(
            level=level,
            factors=factors,
            recommendations=[recommendation_for(f) for f in factors],
            standard_deviation=stddev,
            mean_level=mean,
        )

        self.logger.info(
            "risk_assessed",
            level=level.value,
            factors=[f.value for f in factors],
            stddev=round(stddev, 2),
            mean=round(mean, 2),
        )
        return assessment
