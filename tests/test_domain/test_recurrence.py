"""Tests for calendar arithmetic: next_occurrence, month clamping, first_run_at"""
from datetime import datetime, timedelta, timezone

import pytest

from agencyflow.domain.recurrence import (
    add_months,
    first_run_at,
    next_occurrence,
    parse_time_of_day,
    sunday_weekday,
)


WED = datetime(2024, 1, 3, 9, 30)  # Wednesday


class TestWeekly:
    def test_without_anchor_adds_seven_days(self):
        assert next_occurrence(WED, "WEEKLY") == datetime(2024, 1, 10, 9, 30)

    def test_anchor_moves_within_target_week(self):
        # target week is Sun 2024-01-07 .. Sat 2024-01-13
        assert next_occurrence(WED, "WEEKLY", day_of_week=1) == datetime(2024, 1, 8, 9, 30)
        assert next_occurrence(WED, "WEEKLY", day_of_week=0) == datetime(2024, 1, 7, 9, 30)
        assert next_occurrence(WED, "WEEKLY", day_of_week=6) == datetime(2024, 1, 13, 9, 30)

    @pytest.mark.parametrize("day_of_week", range(7))
    def test_anchor_weekday_and_week_hold_for_every_start(self, day_of_week):
        start = datetime(2024, 2, 25, 8, 0)
        for offset in range(14):
            previous = start + timedelta(days=offset)
            nxt = next_occurrence(previous, "WEEKLY", day_of_week=day_of_week)
            base = previous + timedelta(days=7)
            week_start = base - timedelta(days=sunday_weekday(base))
            assert sunday_weekday(nxt) == day_of_week
            assert week_start <= nxt < week_start + timedelta(days=7)

    def test_biweekly_adds_fourteen_days(self):
        assert next_occurrence(WED, "biweekly") == datetime(2024, 1, 17, 9, 30)

    def test_sunday_weekday_convention(self):
        assert sunday_weekday(datetime(2024, 1, 7)) == 0  # Sunday
        assert sunday_weekday(datetime(2024, 1, 8)) == 1  # Monday
        assert sunday_weekday(datetime(2024, 1, 13)) == 6  # Saturday


class TestMonthBased:
    def test_day_31_clamps_to_leap_february(self):
        assert next_occurrence(datetime(2024, 1, 31), "MONTHLY", day_of_month=31) == datetime(2024, 2, 29)

    def test_day_31_clamps_to_common_february(self):
        assert next_occurrence(datetime(2023, 1, 31), "MONTHLY", day_of_month=31) == datetime(2023, 2, 28)

    def test_day_31_clamps_to_thirty_day_month(self):
        assert next_occurrence(datetime(2024, 3, 31), "MONTHLY", day_of_month=31) == datetime(2024, 4, 30)

    def test_anchor_recovers_after_short_month(self):
        assert next_occurrence(datetime(2024, 2, 29), "MONTHLY", day_of_month=31) == datetime(2024, 3, 31)

    def test_monthly_without_anchor_clamps_intermediate_day(self):
        assert next_occurrence(datetime(2024, 1, 31), "MONTHLY") == datetime(2024, 2, 29)

    def test_quarterly_crosses_year(self):
        assert next_occurrence(datetime(2024, 11, 30), "QUARTERLY", day_of_month=31) == datetime(2025, 2, 28)

    def test_semiannual(self):
        assert next_occurrence(datetime(2024, 8, 31), "SEMIANNUAL") == datetime(2025, 2, 28)
        assert next_occurrence(datetime(2024, 3, 15), "SEMIANNUAL", day_of_month=1) == datetime(2024, 9, 1)

    def test_add_months_negative_and_large(self):
        assert add_months(datetime(2024, 3, 31), -1) == datetime(2024, 2, 29)
        assert add_months(datetime(2024, 1, 15), 25) == datetime(2026, 2, 15)


class TestGeneral:
    def test_time_and_tz_preserved(self):
        previous = datetime(2024, 5, 6, 14, 45, tzinfo=timezone.utc)
        nxt = next_occurrence(previous, "MONTHLY", day_of_month=20)
        assert nxt == datetime(2024, 6, 20, 14, 45, tzinfo=timezone.utc)
        assert nxt.tzinfo is timezone.utc

    @pytest.mark.parametrize("frequency", ["WEEKLY", "BIWEEKLY", "MONTHLY", "QUARTERLY", "SEMIANNUAL"])
    def test_strictly_later_and_monotonic(self, frequency):
        previous_out = None
        for offset in range(0, 60, 3):
            previous = datetime(2024, 1, 1) + timedelta(days=offset)
            out = next_occurrence(previous, frequency)
            assert out > previous
            if previous_out is not None:
                assert out >= previous_out
            previous_out = out

    def test_lowercase_frequency_accepted(self):
        assert next_occurrence(WED, "monthly") == datetime(2024, 2, 3, 9, 30)

    def test_unknown_frequency_rejected(self):
        with pytest.raises(ValueError, match="invalid frequency"):
            next_occurrence(WED, "DAILY")

    def test_out_of_range_anchors_rejected(self):
        with pytest.raises(ValueError):
            next_occurrence(WED, "WEEKLY", day_of_week=7)
        with pytest.raises(ValueError):
            next_occurrence(WED, "MONTHLY", day_of_month=0)


class TestFirstRunAt:
    NOW = datetime(2024, 1, 3, 10, 0)  # Wednesday 10:00

    def test_weekly_next_matching_weekday(self):
        assert first_run_at("weekly", 1, None, "09:00", self.NOW) == datetime(2024, 1, 8, 9, 0)

    def test_weekly_same_day_still_ahead(self):
        assert first_run_at("weekly", 3, None, "12:00", self.NOW) == datetime(2024, 1, 3, 12, 0)

    def test_weekly_same_day_already_past(self):
        assert first_run_at("weekly", 3, None, "09:00", self.NOW) == datetime(2024, 1, 10, 9, 0)

    def test_biweekly_weekday_later_this_week(self):
        assert first_run_at("biweekly", 5, None, "09:00", self.NOW) == datetime(2024, 1, 5, 9, 0)

    def test_biweekly_weekday_already_passed_skips_a_week(self):
        # Monday has passed on Wednesday: 12 days out, not 5
        assert first_run_at("biweekly", 1, None, "09:00", self.NOW) == datetime(2024, 1, 15, 9, 0)

    def test_biweekly_same_day_already_past(self):
        assert first_run_at("biweekly", 3, None, "09:00", self.NOW) == datetime(2024, 1, 17, 9, 0)

    def test_monthly_clamps_this_month(self):
        now = datetime(2024, 2, 10, 8, 0)
        assert first_run_at("monthly", None, 31, "09:00", now) == datetime(2024, 2, 29, 9, 0)

    def test_monthly_rolls_to_next_month(self):
        now = datetime(2024, 2, 10, 8, 0)
        assert first_run_at("monthly", None, 5, "09:00", now) == datetime(2024, 3, 5, 9, 0)

    def test_no_anchor_is_one_week_out(self):
        assert first_run_at("biweekly", None, None, "09:00", self.NOW) == datetime(2024, 1, 10, 9, 0)


class TestParseTimeOfDay:
    def test_valid(self):
        t = parse_time_of_day("9:05")
        assert (t.hour, t.minute) == (9, 5)

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_time_of_day(value)
