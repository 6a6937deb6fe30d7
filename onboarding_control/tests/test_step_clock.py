"""Tests for step clock day math and retry backoff."""

from datetime import timedelta

from onboarding_control.services.step_clock import offset_from, resume_at, retry_backoff
from onboarding_control.tests.conftest import T0


class TestOffsetFrom:
    def test_first_day_waits_one_day(self):
        assert offset_from(0, 1) == timedelta(days=1)

    def test_gap_between_steps(self):
        assert offset_from(1, 3) == timedelta(days=2)

    def test_non_increasing_day_fires_immediately(self):
        assert offset_from(3, 2) == timedelta(0)
        assert offset_from(4, 4) == timedelta(0)


class TestResumeAt:
    def test_adds_offset_to_now(self):
        assert resume_at(T0, 2, 5) == T0 + timedelta(days=3)

    def test_repeated_day_is_now(self):
        assert resume_at(T0, 5, 5) == T0


class TestRetryBackoff:
    def test_doubles_each_attempt(self):
        assert retry_backoff(1, base_seconds=60, max_seconds=3600) == timedelta(seconds=60)
        assert retry_backoff(2, base_seconds=60, max_seconds=3600) == timedelta(seconds=120)
        assert retry_backoff(4, base_seconds=60, max_seconds=3600) == timedelta(seconds=480)

    def test_capped(self):
        assert retry_backoff(10, base_seconds=60, max_seconds=3600) == timedelta(seconds=3600)

    def test_huge_attempt_count_stays_capped(self):
        assert retry_backoff(10_000, base_seconds=60, max_seconds=3600) == timedelta(seconds=3600)

    def test_zero_attempt_treated_as_first(self):
        assert retry_backoff(0, base_seconds=30, max_seconds=3600) == timedelta(seconds=30)
