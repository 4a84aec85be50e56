from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from fluency.core.clock import ManualTimeProvider, SystemTimeProvider


def test_manual_clock_only_moves_when_told() -> None:
    clock = ManualTimeProvider(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))

    assert clock.utc_now() == clock.utc_now() == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    assert clock.advance(30) == datetime(2025, 3, 1, 12, 0, 30, tzinfo=UTC)
    assert clock.advance(timedelta(minutes=1)) == datetime(2025, 3, 1, 12, 1, 30, tzinfo=UTC)


def test_manual_clock_normalizes_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    clock = ManualTimeProvider(datetime(2025, 3, 1, 14, 0, tzinfo=plus_two))

    assert clock.utc_now() == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    assert clock.utc_now().tzinfo == UTC


def test_manual_clock_rejects_naive_and_backwards_time() -> None:
    with pytest.raises(ValueError):
        ManualTimeProvider(datetime(2025, 1, 1))

    clock = ManualTimeProvider()
    with pytest.raises(ValueError):
        clock.advance(-1)
    with pytest.raises(ValueError):
        clock.set(datetime(2025, 1, 2))


def test_system_clock_is_timezone_aware() -> None:
    clock = SystemTimeProvider()

    assert clock.utc_now().tzinfo is not None
    assert clock.now().tzinfo is not None
