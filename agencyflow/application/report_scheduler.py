"""
Report Schedule Runner - due-schedule poller, manual trigger and schedule management.

process_scheduled_reports() runs from the background scheduler. For each due
schedule the report generation, the send and the cadence advance share one
transaction: if the send raises, nothing is committed and the schedule stays
due for the next tick.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from agencyflow.application.errors import (
    AccessDeniedError,
    DeliveryError,
    NotFoundError,
    ValidationError,
)
from agencyflow.application.report_delivery import ReportDeliveryService
from agencyflow.domain.access import Actor, can_manage_agency_scope
from agencyflow.domain.recurrence import at_time_of_day, first_run_at, next_occurrence
from agencyflow.domain.report_schedule import (
    ReportScheduleValidationError,
    default_subject,
    derive_report_status,
    validate_schedule,
)
from agencyflow.infrastructure.db.models import Client, ReportScheduleModel, SeoReportModel
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)


def _send_report(
    repo: RecurrenceRepository,
    delivery: ReportDeliveryService,
    schedule: ReportScheduleModel,
    client: Client,
    now: datetime,
) -> SeoReportModel:
    """Generate, link and send one report. Flushes only; the caller commits."""
    report = delivery.generate(repo.db, client.id, schedule.frequency, now)
    report.schedule_id = schedule.id

    recipients = list(schedule.recipients or [])
    if not recipients:
        logger.warning("Report schedule_id=%s has no recipients, nothing sent", schedule.id)
        return report

    subject = schedule.email_subject or default_subject(client.name, schedule.frequency)
    delivered = delivery.send(report, client, recipients, subject)
    report.recipients = recipients
    report.email_subject = subject
    if delivered == len(recipients):
        report.status = "sent"
        report.sent_at = now
    else:
        logger.warning(
            "Report for client_id=%s delivered to %d of %d recipient(s); left as draft",
            client.id, delivered, len(recipients),
        )
    repo.db.flush()
    return report


def advance_schedule(schedule: ReportScheduleModel, now: datetime) -> datetime:
    """Next run after the current pointer, pushed past ``now`` if the runner fell behind."""
    nxt = schedule.next_run_at
    while True:
        nxt = at_time_of_day(
            next_occurrence(nxt, schedule.frequency, schedule.day_of_week, schedule.day_of_month),
            schedule.time_of_day,
        )
        if nxt > now:
            return nxt


def process_scheduled_reports(
    db: Session,
    delivery: ReportDeliveryService,
    now: datetime | None = None,
) -> int:
    """Run every due schedule once. Returns how many schedules ran."""
    now = now or datetime.now(timezone.utc)
    repo = RecurrenceRepository(db)
    due = repo.due_report_schedules(now)
    if not due:
        logger.debug("Report scheduler: no due schedules at %s", now.isoformat())
        return 0

    schedule_ids = [s.id for s in due]
    ran = 0
    for schedule_id in schedule_ids:
        try:
            with repo.transaction():
                schedule = repo.get_schedule(schedule_id)
                if schedule is None or not schedule.is_active:
                    continue
                client = repo.get_client(schedule.client_id)
                _send_report(repo, delivery, schedule, client, now)
                schedule.last_run_at = now
                schedule.next_run_at = advance_schedule(schedule, now)
            ran += 1
            logger.info(
                "Report schedule_id=%s (%s) ran for client_id=%s, next run at %s",
                schedule_id, schedule.frequency, schedule.client_id, schedule.next_run_at,
            )
        except Exception:
            logger.exception("Failed to process report schedule_id=%s", schedule_id)

    logger.info("Report scheduler: %d of %d due schedule(s) ran", ran, len(schedule_ids))
    return ran


# ---------------------------------------------------------------------------
# Use cases
# ---------------------------------------------------------------------------

class _ScheduleUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = RecurrenceRepository(db)

    def _authorized_client(self, client_id: int, actor: Actor) -> Client:
        client = self.repo.get_client(client_id)
        if client is None:
            raise NotFoundError("Client not found")
        members = frozenset(self.repo.agency_member_ids(client.agency_id)) if client.agency_id else frozenset()
        if not can_manage_agency_scope(actor, members):
            raise AccessDeniedError()
        return client

    def _authorized_schedule(self, schedule_id: int, actor: Actor) -> tuple[ReportScheduleModel, Client]:
        schedule = self.repo.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Report schedule not found")
        return schedule, self._authorized_client(schedule.client_id, actor)


class TriggerReportScheduleUseCase(_ScheduleUseCase):
    """Send a schedule's report right now. next_run_at and last_run_at are left alone."""

    def __init__(self, db: Session, delivery: ReportDeliveryService):
        super().__init__(db)
        self.delivery = delivery

    def execute(self, schedule_id: int, actor: Actor, now: datetime | None = None) -> SeoReportModel:
        now = now or datetime.now(timezone.utc)
        schedule, client = self._authorized_schedule(schedule_id, actor)
        if not schedule.is_active:
            raise ValidationError("Report schedule is not active")
        if not schedule.recipients:
            raise ValidationError("Report schedule has no recipients")

        try:
            with self.repo.transaction():
                report = _send_report(self.repo, self.delivery, schedule, client, now)
        except Exception as e:
            logger.exception("Manual trigger failed for report schedule_id=%s", schedule_id)
            raise DeliveryError(f"Failed to send report: {e}") from e
        logger.info("Report schedule_id=%s triggered manually by user_id=%s", schedule_id, actor.user_id)
        return report


class SaveReportScheduleUseCase(_ScheduleUseCase):
    """Create the client's schedule for a frequency, or update the existing one."""

    def execute(
        self,
        client_id: int,
        actor: Actor,
        frequency: str,
        recipients: list[str] | None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        time_of_day: str = "09:00",
        email_subject: str | None = None,
        is_active: bool = True,
        now: datetime | None = None,
    ) -> ReportScheduleModel:
        now = now or datetime.now(timezone.utc)
        try:
            cleaned = validate_schedule(frequency, day_of_week, day_of_month, time_of_day, recipients, is_active)
        except ReportScheduleValidationError as e:
            raise ValidationError(str(e)) from e
        client = self._authorized_client(client_id, actor)

        time_of_day = time_of_day.strip()
        fields = dict(
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            time_of_day=time_of_day,
            recipients=cleaned,
            email_subject=(email_subject or "").strip() or None,
            is_active=is_active,
            next_run_at=first_run_at(frequency, day_of_week, day_of_month, time_of_day, now),
        )
        with self.repo.transaction():
            schedule = self.repo.find_schedule(client.id, frequency)
            if schedule is None:
                schedule = self.repo.add_schedule(
                    ReportScheduleModel(client_id=client.id, frequency=frequency, **fields)
                )
            else:
                for key, value in fields.items():
                    setattr(schedule, key, value)
        logger.info(
            "Report schedule_id=%s saved for client_id=%s (%s), next run at %s",
            schedule.id, client.id, frequency, schedule.next_run_at,
        )
        return schedule


class DeleteReportScheduleUseCase(_ScheduleUseCase):
    def execute(self, schedule_id: int, actor: Actor) -> None:
        schedule, _ = self._authorized_schedule(schedule_id, actor)
        with self.repo.transaction():
            self.repo.delete_schedule(schedule)


def list_report_schedules(db: Session, client_id: int, actor: Actor) -> list[ReportScheduleModel]:
    use_case = _ScheduleUseCase(db)
    use_case._authorized_client(client_id, actor)
    return use_case.repo.schedules_for_client(client_id)


def report_status_for_client(db: Session, client_id: int) -> str | None:
    """Display status of the client's report, or None when none was generated yet."""
    repo = RecurrenceRepository(db)
    report = repo.report_for_client(client_id)
    if report is None:
        return None
    return derive_report_status(report.status, repo.has_active_schedule(client_id))
