"""
Domain models for personal health analytics.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; every record is frozen so an analysis can
never mutate the data it was handed.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def assume_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC; aware ones are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


Timestamp = Annotated[datetime, AfterValidator(assume_utc)]


class Severity(str, Enum):
    """Graded level shared by risk assessments and recommendation priorities."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def escalate(self, other: "Severity") -> "Severity":
        """Return the more severe of the two levels; never lowers."""
        return other if other.rank > self.rank else self


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class GlucoseStatus(str, Enum):
    """Classification of a single reading against the target range."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class TrendDirection(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class TimeOfDay(str, Enum):
    """Coarse buckets of the local day."""

    MORNING = "morning"  # 06-11
    AFTERNOON = "afternoon"  # 12-17
    EVENING = "evening"  # 18-21
    NIGHT = "night"  # 22-05

    @classmethod
    def from_hour(cls, hour: int) -> "TimeOfDay":
        if 6 <= hour <= 11:
            return cls.MORNING
        if 12 <= hour <= 17:
            return cls.AFTERNOON
        if 18 <= hour <= 21:
            return cls.EVENING
        return cls.NIGHT


class Reading(BaseModel):
    """Individual glucose measurement."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=0, description="Glucose level in mg/dL")
    timestamp: Timestamp
    notes: str | None = None


class MealEvent(BaseModel):
    """A logged meal, used only for correlation with readings."""

    model_config = ConfigDict(frozen=True)

    timestamp: Timestamp
    name: str = Field(default="Meal", min_length=1)
    carbs_grams: float = Field(ge=0.0)


class ExerciseEvent(BaseModel):
    """A logged exercise session, used only for correlation with readings."""

    model_config = ConfigDict(frozen=True)

    timestamp: Timestamp
    exercise_type: str = Field(default="Other", min_length=1)
    duration_minutes: float = Field(default=0.0, ge=0.0)


class CorrelationWindow(BaseModel):
    """
    All records for one user over one day-count window.

    Built fresh for every analysis call. Each stream is sorted ascending by
    timestamp on construction, so callers may hand over unordered data.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    days: int = Field(gt=0)
    readings: list[Reading] = Field(default_factory=list)
    meals: list[MealEvent] = Field(default_factory=list)
    exercises: list[ExerciseEvent] = Field(default_factory=list)

    @field_validator("readings", "meals", "exercises")
    @classmethod
    def sort_by_timestamp(cls, v: list) -> list:
        return sorted(v, key=lambda record: record.timestamp)

    @property
    def levels(self) -> list[float]:
        return [float(r.level) for r in self.readings]

    @property
    def is_empty(self) -> bool:
        return not (self.readings or self.meals or self.exercises)

    def readings_between(self, start: datetime, end: datetime) -> list[Reading]:
        """Readings strictly inside the open interval (start, end)."""
        return [r for r in self.readings if start < r.timestamp < end]


class TimeInRange(BaseModel):
    """Share of readings below, inside and above the target range, in percent."""

    model_config = ConfigDict(frozen=True)

    in_range_pct: float = Field(ge=0.0, le=100.0)
    below_range_pct: float = Field(ge=0.0, le=100.0)
    above_range_pct: float = Field(ge=0.0, le=100.0)


class PatternKind(str, Enum):
    DAWN_PHENOMENON = "dawn_phenomenon"
    POST_MEAL_SPIKE = "post_meal_spike"
    EXERCISE_RESPONSE = "exercise_response"
    STRESS_RESPONSE = "stress_response"


class Pattern(BaseModel):
    """A recurring physiological pattern found in the window."""

    model_config = ConfigDict(frozen=True)

    kind: PatternKind
    description: str
    confidence: float = Field(ge=0.0, le=1.0)


class Prediction(BaseModel):
    """Short-horizon directional forecast."""

    model_config = ConfigDict(frozen=True)

    horizon_label: str
    direction_label: str
    direction: TrendDirection
    confidence: float = Field(ge=0.0, le=1.0)


class RiskFactor(str, Enum):
    """Named contributors to a risk assessment."""

    HIGH_VARIABILITY = "High glucose variability"
    MODERATE_VARIABILITY = "Moderate glucose variability"
    ELEVATED_AVERAGE = "Elevated average glucose"


class RiskAssessment(BaseModel):
    """Graded risk with the factors that produced it."""

    model_config = ConfigDict(frozen=True)

    level: Severity
    factors: list[RiskFactor] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    standard_deviation: float | None = Field(None, ge=0.0)
    mean_level: float | None = None


class RecommendationCategory(str, Enum):
    GLUCOSE = "glucose"
    EXERCISE = "exercise"
    NUTRITION = "nutrition"
    MEDICATION = "medication"
    LIFESTYLE = "lifestyle"


class Recommendation(BaseModel):
    """Plain structured recommendation, ready for rendering or serialization."""

    model_config = ConfigDict(frozen=True)

    category: RecommendationCategory
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    priority: Severity
    actionable: bool = True


class ExerciseImpact(BaseModel):
    """Glucose change attributable to exercise across the window."""

    model_config = ConfigDict(frozen=True)

    improves_glucose: bool
    average_improvement: float = Field(description="Mean before-minus-after level, mg/dL")
    exercises_analyzed: int = Field(ge=0)


class GlucoseSummary(BaseModel):
    """Descriptive statistics of the readings in a window."""

    model_config = ConfigDict(frozen=True)

    reading_count: int = Field(gt=0)
    min_level: int
    max_level: int
    standard_deviation: float = Field(ge=0.0)
    coefficient_of_variation: float = Field(ge=0.0)
    status_counts: dict[GlucoseStatus, int]
    time_of_day_averages: dict[TimeOfDay, float]
    trend_direction: TrendDirection


class AnalysisKind(str, Enum):
    GLUCOSE = "glucose"
    HOLISTIC = "holistic"


class AnalysisState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    PUBLISHED = "published"


class Insights(BaseModel):
    """
    Top-level result of one analysis cycle.

    Replaced wholesale on every recomputation. Holds no wall-clock values other
    than the window bounds, so identical input produces an identical result.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: AnalysisKind
    window_start: Timestamp
    window_end: Timestamp
    average_level: float | None = None
    time_in_range: TimeInRange | None = None
    summary: GlucoseSummary | None = None
    patterns: list[Pattern] = Field(default_factory=list)
    predictions: list[Prediction] = Field(default_factory=list)
    risk_assessment: RiskAssessment | None = None
    exercise_impact: ExerciseImpact | None = None
    recommendations: list[Recommendation] = Field(default_factory=list)
