"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

import pytest

from payroll_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:
    def test_stands_still(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)

    def test_advance_seconds_and_timedelta(self):
        clock = DeterministicClock()
        start = clock.now()
        assert clock.advance(60) == start + timedelta(minutes=1)
        assert clock.advance(timedelta(hours=1)) == start + timedelta(minutes=61)
        assert clock.now() == start + timedelta(minutes=61)

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            DeterministicClock().advance(-1)

    def test_naive_start_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2025, 6, 30))


class TestSystemClock:
    def test_timezone_aware_utc(self):
        assert SystemClock().now().utcoffset() == timedelta(0)
