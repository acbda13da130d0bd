"""
Report generation and delivery collaborator used by the report schedule runner.

Report content itself (analytics, PDF) lives outside the engine. The default
EmailReportDelivery keeps the one-report-per-client record current and mails
a plain-text summary through the notification EmailTransport.
"""
import logging
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from agencyflow.application.notification_dispatcher import EmailTransport
from agencyflow.infrastructure.db.models import Client, SeoReportModel
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)

# days covered by a report of each period
PERIOD_DAYS = {"weekly": 7, "biweekly": 14, "monthly": 30}


class ReportDeliveryService(Protocol):
    def generate(self, db: Session, client_id: int, period: str, now: datetime) -> SeoReportModel:
        """Create or refresh the client's report as a draft (flush, no commit)."""
        ...

    def send(self, report: SeoReportModel, client: Client, recipients: list[str], subject: str) -> int:
        """Deliver to every recipient. Returns how many were sent; raises on failure."""
        ...


class EmailReportDelivery:
    def __init__(self, email: EmailTransport | None = None):
        self.email = email or EmailTransport()

    def generate(self, db: Session, client_id: int, period: str, now: datetime) -> SeoReportModel:
        repo = RecurrenceRepository(db)
        if repo.get_client(client_id) is None:
            raise LookupError(f"Client #{client_id} not found")

        report = repo.report_for_client(client_id)
        if report is None:
            report = SeoReportModel(client_id=client_id)
            db.add(report)
        report.period = period
        report.report_date = now
        report.status = "draft"
        report.sent_at = None
        db.flush()
        return report

    def render(self, report: SeoReportModel, client: Client) -> str:
        end = report.report_date
        start = end - timedelta(days=PERIOD_DAYS.get(report.period, 30))
        return (
            f"SEO report for {client.name}\n\n"
            f"Period: {report.period} ({start:%Y-%m-%d} - {end:%Y-%m-%d})\n"
            f"Report date: {end:%Y-%m-%d}\n"
        )

    def send(self, report: SeoReportModel, client: Client, recipients: list[str], subject: str) -> int:
        body = self.render(report, client)
        sent = 0
        for email in recipients:
            # EmailDeliveryError propagates: the whole run is retried
            if self.email.send_email(email, subject, body):
                sent += 1
        return sent
