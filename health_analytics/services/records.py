"""Conversion of raw exported records into domain records.

Collaborators hand over loosely-typed mappings (JSON exports, platform sync
payloads). A record without a usable timestamp is kept with ``now``
substituted; each substitution is logged so the data-quality problem stays
visible instead of being silently absorbed. A record whose values cannot be
converted is skipped and logged; it never aborts the rest of the intake.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

import structlog
from dateutil import parser as date_parser
from dateutil import tz
from pydantic import ValidationError

from health_analytics.domain.errors import MalformedTimestamp
from health_analytics.domain.models import (
    CorrelationWindow,
    ExerciseEvent,
    MealEvent,
    Reading,
    assume_utc,
)

logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", Reading, MealEvent, ExerciseEvent)


@dataclass
class IntakeReport:
    """
    What happened to the raw records during intake.

    ``accepted`` counts records that ended up in the window. ``skipped``
    counts records dropped for a missing value, an invalid value or a
    timestamp outside the window; ``out_of_window`` is the last of those.
    """

    accepted: int = 0
    skipped: int = 0
    out_of_window: int = 0
    substituted_timestamps: int = 0
    problems: list[str] = field(default_factory=list)


def parse_timestamp(raw: Any, kind: str) -> datetime:
    """Parse a datetime, ISO-8601 string or epoch seconds.

    Naive values are taken as UTC.

    Raises:
        MalformedTimestamp: If the value cannot be interpreted.
    """
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
        try:
            parsed = datetime.fromtimestamp(float(raw), tz=tz.UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedTimestamp(kind, raw) from exc
    elif isinstance(raw, str) and raw.strip():
        try:
            parsed = date_parser.isoparse(raw.strip())
        except ValueError as exc:
            raise MalformedTimestamp(kind, raw) from exc
    else:
        raise MalformedTimestamp(kind, raw)

    return assume_utc(parsed)


def _timestamp_or_now(
    item: Mapping[str, Any], kind: str, now: datetime, report: IntakeReport
) -> datetime:
    try:
        return parse_timestamp(item.get("timestamp"), kind)
    except MalformedTimestamp as exc:
        report.substituted_timestamps += 1
        report.problems.append(str(exc))
        logger.warning(
            "malformed_timestamp",
            kind=kind,
            raw_value=repr(exc.raw_value),
            substituted=now.isoformat(),
        )
        return now


def _reject(kind: str, error: Exception, report: IntakeReport) -> None:
    report.skipped += 1
    report.problems.append(f"Invalid {kind} record: {error}")
    logger.warning("invalid_record", kind=kind, error=str(error))


def parse_reading(item: Mapping[str, Any], now: datetime, report: IntakeReport) -> Reading | None:
    """Convert a mapping to a Reading; None when it carries no usable level."""
    level = item.get("level")
    if level is None:
        report.skipped += 1
        return None

    notes = str(item.get("notes") or "").strip()
    try:
        reading = Reading(
            level=int(level),
            timestamp=_timestamp_or_now(item, "reading", now, report),
            notes=notes or None,
        )
    except (ValueError, TypeError, ValidationError) as exc:
        _reject("reading", exc, report)
        return None

    report.accepted += 1
    return reading


def parse_meal(item: Mapping[str, Any], now: datetime, report: IntakeReport) -> MealEvent | None:
    """Convert a mapping to a MealEvent; None when it carries no usable carbohydrate amount."""
    carbs = item.get("carbs_grams", item.get("carbs"))
    if carbs is None:
        report.skipped += 1
        return None

    try:
        meal = MealEvent(
            timestamp=_timestamp_or_now(item, "meal", now, report),
            name=str(item.get("name") or "Meal"),
            carbs_grams=float(carbs),
        )
    except (ValueError, TypeError, ValidationError) as exc:
        _reject("meal", exc, report)
        return None

    report.accepted += 1
    return meal


def parse_exercise(
    item: Mapping[str, Any], now: datetime, report: IntakeReport
) -> ExerciseEvent | None:
    """Convert a mapping to an ExerciseEvent; a missing duration counts as zero."""
    duration = item.get("duration_minutes", item.get("duration"))
    try:
        exercise = ExerciseEvent(
            timestamp=_timestamp_or_now(item, "exercise", now, report),
            exercise_type=str(item.get("exercise_type") or item.get("type") or "Other"),
            duration_minutes=float(duration) if duration is not None else 0.0,
        )
    except (ValueError, TypeError, ValidationError) as exc:
        _reject("exercise", exc, report)
        return None

    report.accepted += 1
    return exercise


def _within_window(
    records: Sequence[RecordT], start: datetime, end: datetime, report: IntakeReport
) -> list[RecordT]:
    kept = [r for r in records if start <= r.timestamp <= end]
    dropped = len(records) - len(kept)
    report.accepted -= dropped
    report.skipped += dropped
    report.out_of_window += dropped
    return kept


def build_correlation_window(
    user_id: str,
    days: int,
    now: datetime,
    *,
    readings: Iterable[Mapping[str, Any]] = (),
    meals: Iterable[Mapping[str, Any]] = (),
    exercises: Iterable[Mapping[str, Any]] = (),
) -> tuple[CorrelationWindow, IntakeReport]:
    """
    Build the ``[now - days, now]`` window from raw records.

    Records outside the window are dropped and counted in the report.
    """
    now = assume_utc(now)
    start = now - timedelta(days=days)
    report = IntakeReport()

    parsed_readings = [
        r for r in (parse_reading(i, now, report) for i in readings) if r is not None
    ]
    parsed_meals = [m for m in (parse_meal(i, now, report) for i in meals) if m is not None]
    parsed_exercises = [
        e for e in (parse_exercise(i, now, report) for i in exercises) if e is not None
    ]

    window = CorrelationWindow(
        user_id=user_id,
        days=days,
        readings=_within_window(parsed_readings, start, now, report),
        meals=_within_window(parsed_meals, start, now, report),
        exercises=_within_window(parsed_exercises, start, now, report),
    )

    if report.substituted_timestamps or report.skipped:
        logger.warning(
            "intake_data_quality",
            user_id=user_id,
            accepted=report.accepted,
            skipped=report.skipped,
            out_of_window=report.out_of_window,
            substituted_timestamps=report.substituted_timestamps,
        )
    return window, report
