"""Report schedule validation and the read-side report status projection"""
import re

from agencyflow.domain.recurrence import REPORT_FREQUENCIES, parse_time_of_day


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ReportScheduleValidationError(ValueError):
    pass


def validate_schedule(
    frequency: str,
    day_of_week: int | None,
    day_of_month: int | None,
    time_of_day: str,
    recipients: list[str] | None,
    is_active: bool,
) -> list[str]:
    """Validate schedule fields. Returns the cleaned recipient list."""
    if frequency not in REPORT_FREQUENCIES:
        raise ReportScheduleValidationError(
            f"frequency must be one of {', '.join(REPORT_FREQUENCIES)}"
        )
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ReportScheduleValidationError("day_of_week must be between 0 and 6")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ReportScheduleValidationError("day_of_month must be between 1 and 31")
    try:
        parse_time_of_day(time_of_day)
    except ValueError as e:
        raise ReportScheduleValidationError(str(e)) from e

    cleaned: list[str] = []
    for raw in recipients or []:
        email = str(raw).strip()
        if not _EMAIL_RE.match(email):
            raise ReportScheduleValidationError(f"Invalid recipient email: {raw!r}")
        if email not in cleaned:
            cleaned.append(email)

    if is_active and not cleaned:
        raise ReportScheduleValidationError("An active schedule needs at least one recipient")
    return cleaned


def default_subject(client_name: str, frequency: str) -> str:
    return f"SEO Report - {client_name} - {frequency.capitalize()}"


def derive_report_status(stored_status: str, has_active_schedule: bool) -> str:
    """Status shown to the UI; "scheduled" is never stored."""
    if stored_status == "sent":
        return "sent"
    if stored_status == "draft" and has_active_schedule:
        return "scheduled"
    return stored_status
