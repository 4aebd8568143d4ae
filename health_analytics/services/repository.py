"""
Read-only access to a user's time-windowed health records.

Key patterns:
- Protocol-based dependency injection (storage lives outside this package)
- Generic Result type for expected fetch failures
- Explicit "now" on every call so window bounds are deterministic
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Generic, Protocol, TypeVar

import structlog

from health_analytics.domain.errors import UpstreamFetchFailure
from health_analytics.domain.models import (
    CorrelationWindow,
    ExerciseEvent,
    MealEvent,
    Reading,
    assume_utc,
)

logger = structlog.get_logger(__name__)

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Why: Makes error paths visible in type system, forces handling decisions.
    When to use: When failure is expected business logic, not exceptional.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class TimeWindowRepository(Protocol):
    """
    Supplies immutable, time-ordered record sets for a user.

    The window is [now - days, now]. Implementations report outages as
    Result.err rather than raising.
    """

    async def get_glucose_window(
        self, user_id: str, days: int, now: datetime
    ) -> Result[list[Reading], UpstreamFetchFailure]:
        """Readings in the window, ascending by timestamp."""
        ...

    async def get_correlation_window(
        self, user_id: str, days: int, now: datetime
    ) -> Result[CorrelationWindow, UpstreamFetchFailure]:
        """Readings, meals and exercises in the window."""
        ...


def window_start(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)


class InMemoryTimeWindowRepository:
    """
    Dict-backed repository for tests, demos and embedding.

    In production this role is played by the application's data store.
    Users can be marked unavailable to simulate an upstream outage.
    """

    def __init__(self) -> None:
        self._readings: defaultdict[str, list[Reading]] = defaultdict(list)
        self._meals: defaultdict[str, list[MealEvent]] = defaultdict(list)
        self._exercises: defaultdict[str, list[ExerciseEvent]] = defaultdict(list)
        self._unavailable: set[str] = set()
        self.logger = logger.bind(component="in_memory_repository")

    def add_readings(self, user_id: str, readings: Iterable[Reading]) -> None:
        self._readings[user_id].extend(readings)

    def add_meals(self, user_id: str, meals: Iterable[MealEvent]) -> None:
        self._meals[user_id].extend(meals)

    def add_exercises(self, user_id: str, exercises: Iterable[ExerciseEvent]) -> None:
        self._exercises[user_id].extend(exercises)

    def set_available(self, user_id: str, available: bool) -> None:
        """Toggle a simulated outage for one user."""
        if available:
            self._unavailable.discard(user_id)
        else:
            self._unavailable.add(user_id)

    async def get_glucose_window(
        self, user_id: str, days: int, now: datetime
    ) -> Result[list[Reading], UpstreamFetchFailure]:
        now = assume_utc(now)
        if user_id in self._unavailable:
            return Result.err(UpstreamFetchFailure(user_id, "repository unavailable"))

        start = window_start(now, days)
        readings = sorted(
            (r for r in self._readings[user_id] if start <= r.timestamp <= now),
            key=lambda r: r.timestamp,
        )
        self.logger.debug("glucose_window_fetched", user_id=user_id, count=len(readings))
        return Result.ok(readings)

    async def get_correlation_window(
        self, user_id: str, days: int, now: datetime
    ) -> Result[CorrelationWindow, UpstreamFetchFailure]:
        now = assume_utc(now)
        glucose = await self.get_glucose_window(user_id, days, now)
        if glucose.is_err():
            return Result.err(glucose.unwrap_err())

        start = window_start(now, days)
        window = CorrelationWindow(
            user_id=user_id,
            days=days,
            readings=glucose.unwrap(),
            meals=[m for m in self._meals[user_id] if start <= m.timestamp <= now],
            exercises=[e for e in self._exercises[user_id] if start <= e.timestamp <= now],
        )
        self.logger.debug(
            "correlation_window_fetched",
            user_id=user_id,
            readings=len(window.readings),
            meals=len(window.meals),
            exercises=len(window.exercises),
        )
        return Result.ok(window)
