"""Tests for report schedule validation and the derived report status"""
import pytest

from agencyflow.domain.report_schedule import (
    ReportScheduleValidationError,
    default_subject,
    derive_report_status,
    validate_schedule,
)


class TestValidateSchedule:
    def test_cleans_and_deduplicates_recipients(self):
        cleaned = validate_schedule("weekly", 1, None, "09:00", [" a@x.io", "a@x.io", "b@x.io"], True)
        assert cleaned == ["a@x.io", "b@x.io"]

    def test_active_schedule_needs_recipients(self):
        with pytest.raises(ReportScheduleValidationError, match="at least one recipient"):
            validate_schedule("weekly", 1, None, "09:00", [], True)

    def test_inactive_schedule_may_have_none(self):
        assert validate_schedule("monthly", None, 15, "09:00", None, False) == []

    @pytest.mark.parametrize("frequency", ["WEEKLY", "daily", "QUARTERLY"])
    def test_unknown_frequency(self, frequency):
        with pytest.raises(ReportScheduleValidationError, match="frequency"):
            validate_schedule(frequency, None, None, "09:00", ["a@x.io"], True)

    def test_bad_email(self):
        with pytest.raises(ReportScheduleValidationError, match="Invalid recipient"):
            validate_schedule("weekly", None, None, "09:00", ["not-an-email"], True)

    def test_bad_time_of_day(self):
        with pytest.raises(ReportScheduleValidationError):
            validate_schedule("weekly", None, None, "25:00", ["a@x.io"], True)

    def test_bad_anchors(self):
        with pytest.raises(ReportScheduleValidationError):
            validate_schedule("weekly", 7, None, "09:00", ["a@x.io"], True)
        with pytest.raises(ReportScheduleValidationError):
            validate_schedule("monthly", None, 32, "09:00", ["a@x.io"], True)


def test_default_subject():
    assert default_subject("Acme", "biweekly") == "SEO Report - Acme - Biweekly"


@pytest.mark.parametrize("stored, active, expected", [
    ("sent", True, "sent"),
    ("sent", False, "sent"),
    ("draft", True, "scheduled"),
    ("draft", False, "draft"),
])
def test_derive_report_status(stored, active, expected):
    assert derive_report_status(stored, active) == expected
