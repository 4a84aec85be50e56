from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class TimeProvider(Protocol):
    """Source of "now" for the engine. Nothing else in the engine reads a wall clock."""

    def now(self) -> datetime:  # pragma: no cover
        ...

    def utc_now(self) -> datetime:  # pragma: no cover
        ...


class SystemTimeProvider:
    def now(self) -> datetime:
        return datetime.now().astimezone()

    def utc_now(self) -> datetime:
        return datetime.now(tz=UTC)


class ManualTimeProvider:
    """Deterministic clock for tests and simulations.

    Time only moves when `advance()` or `set()` is called.
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime(2025, 1, 1, tzinfo=UTC)
        if start.tzinfo is None:
            raise ValueError("ManualTimeProvider requires a timezone-aware start instant")
        self._current = start.astimezone(UTC)

    def now(self) -> datetime:
        return self._current

    def utc_now(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta | float) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=float(delta))
        if delta < timedelta(0):
            raise ValueError("Cannot advance time backwards")
        self._current = self._current + delta
        return self._current

    def set(self, instant: datetime) -> datetime:
        if instant.tzinfo is None:
            raise ValueError("instant must be timezone-aware")
        self._current = instant.astimezone(UTC)
        return self._current
