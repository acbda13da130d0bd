"""
Notification Dispatcher: best-effort fan-out of workflow and archival events.

Architecture:
- _TEMPLATES: subject / body templates per notification kind
- Notification: what to send and to whom (user ids, explicit emails, agency)
- Transports: EmailTransport (SMTP, stub when not configured), InAppTransport,
  WebhookTransport (optional agency chat channel)
- NotificationDispatcher.dispatch(): hands delivery to a thread pool and
  returns at once; delivery opens its own session and never raises
"""
import logging
import smtplib
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

import requests
from sqlalchemy.orm import Session

from agencyflow.config import Settings, get_settings
from agencyflow.infrastructure.db.models import NotificationModel
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

TASK_APPROVAL_REQUESTED = "TASK_APPROVAL_REQUESTED"
TASK_COMPLETED = "TASK_COMPLETED"
CLIENT_ARCHIVED = "CLIENT_ARCHIVED"

_TEMPLATES: dict[str, dict] = {
    TASK_APPROVAL_REQUESTED: {
        "title": "Approval requested",
        "subject": "Content needs your approval: {title}",
        "body": "{requested_by} has requested approval for the following task:\n\n"
                "{title}\nClient: {client}\n\nPlease review and approve in the dashboard.",
        "message": "{requested_by} requested your approval for \"{title}\".",
    },
    TASK_COMPLETED: {
        "title": "Task completed",
        "subject": "Task completed: {title}",
        "body": "The following task has been marked completed:\n\n{title}\nClient: {client}",
        "message": "\"{title}\" for {client} has been completed.",
    },
    CLIENT_ARCHIVED: {
        "title": "Client archived",
        "subject": "Client archived: {client}",
        "body": "{client} has been archived ({reason}). Its report schedules were deactivated.",
        "message": "{client} has been archived ({reason}).",
    },
}


@dataclass(frozen=True)
class Notification:
    kind: str
    context: dict
    entity_type: str
    entity_id: int
    user_ids: tuple[int, ...] = ()
    emails: tuple[str, ...] = ()
    agency_id: int | None = None
    link: str | None = None

    def render(self, part: str) -> str:
        return _TEMPLATES[self.kind][part].format(**self.context)


@dataclass(frozen=True)
class Recipient:
    user_id: int | None
    email: str | None

    def __str__(self) -> str:
        return self.email or f"user:{self.user_id}"


class Transport(Protocol):
    channel: str

    def deliver(self, db: Session, note: Notification, recipients: list[Recipient]) -> int:
        ...


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------

class EmailDeliveryError(RuntimeError):
    pass


class EmailTransport:
    """SMTP delivery. Logs a stub line and reports nothing sent until EMAIL_SMTP_HOST is set."""
    channel = "email"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.EMAIL_SMTP_HOST)

    def send_email(self, to: str, subject: str, body: str) -> bool:
        """Send one message. False when SMTP is not configured; raises EmailDeliveryError on failure."""
        if not self.enabled:
            logger.info("EMAIL stub: to=%s subject=%s", to, subject)
            return False
        msg = EmailMessage()
        msg["From"] = self.settings.EMAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.settings.EMAIL_SMTP_HOST, self.settings.EMAIL_SMTP_PORT, timeout=10) as smtp:
                smtp.starttls()
                if self.settings.EMAIL_SMTP_USER:
                    smtp.login(self.settings.EMAIL_SMTP_USER, self.settings.EMAIL_SMTP_PASSWORD)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP send to {to} failed: {e}") from e
        return True

    def deliver(self, db: Session, note: Notification, recipients: list[Recipient]) -> int:
        subject = note.render("subject")
        body = note.render("body")
        sent = 0
        for r in recipients:
            if not r.email:
                continue
            try:
                if self.send_email(r.email, subject, body):
                    sent += 1
            except EmailDeliveryError:
                logger.warning(
                    "Email notification failed: kind=%s %s_id=%s recipient=%s",
                    note.kind, note.entity_type, note.entity_id, r.email, exc_info=True,
                )
        return sent


class InAppTransport:
    """One notifications row per recipient user, plus one agency-wide row when agency_id is set."""
    channel = "inapp"

    def deliver(self, db: Session, note: Notification, recipients: list[Recipient]) -> int:
        title = note.render("title")
        message = note.render("message")
        created = 0
        for r in recipients:
            if r.user_id is None:
                continue
            db.add(NotificationModel(
                user_id=r.user_id, type=note.kind.lower(), title=title, message=message, link=note.link,
            ))
            created += 1
        if note.agency_id is not None:
            db.add(NotificationModel(
                agency_id=note.agency_id, type=note.kind.lower(), title=title, message=message, link=note.link,
            ))
            created += 1
        db.commit()
        return created


class WebhookTransport:
    """Posts the in-app message to a chat webhook (Slack-compatible JSON). Off until NOTIFICATION_WEBHOOK_URL is set."""
    channel = "webhook"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def deliver(self, db: Session, note: Notification, recipients: list[Recipient]) -> int:
        url = self.settings.NOTIFICATION_WEBHOOK_URL
        if not url:
            return 0
        text = f"*{note.render('title')}*\n{note.render('message')}"
        if note.link:
            text += f"\n{self.settings.APP_URL.rstrip('/')}{note.link}"
        try:
            resp = requests.post(url, json={"text": text}, timeout=5)
        except requests.RequestException:
            logger.exception("Webhook send failed: kind=%s %s_id=%s", note.kind, note.entity_type, note.entity_id)
            return 0
        if resp.status_code >= 300:
            logger.warning(
                "Webhook rejected notification: kind=%s %s_id=%s status=%s",
                note.kind, note.entity_type, note.entity_id, resp.status_code,
            )
            return 0
        return 1


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    def __init__(self, session_factory, transports: list[Transport], executor: Executor | None = None):
        self.session_factory = session_factory
        self.transports = transports
        self.executor = executor or ThreadPoolExecutor(
            max_workers=get_settings().NOTIFICATION_MAX_WORKERS, thread_name_prefix="notify",
        )

    def dispatch(self, note: Notification) -> Future | None:
        """Queue delivery and return immediately. Never raises."""
        if not note.user_ids and not note.emails and note.agency_id is None:
            return None
        try:
            future = self.executor.submit(self.deliver, note)
        except RuntimeError:
            logger.exception("Could not queue %s notification for %s_id=%s", note.kind, note.entity_type, note.entity_id)
            return None
        future.add_done_callback(self._log_outcome)
        return future

    def deliver(self, note: Notification) -> int:
        db = self.session_factory()
        try:
            recipients = self._resolve_recipients(db, note)
            delivered = 0
            for transport in self.transports:
                try:
                    delivered += transport.deliver(db, note, recipients)
                except Exception:
                    db.rollback()
                    logger.exception(
                        "%s delivery failed: kind=%s %s_id=%s recipients=%s",
                        transport.channel, note.kind, note.entity_type, note.entity_id,
                        ", ".join(str(r) for r in recipients),
                    )
            return delivered
        finally:
            db.close()

    @staticmethod
    def _resolve_recipients(db: Session, note: Notification) -> list[Recipient]:
        emails = RecurrenceRepository(db).user_emails(list(note.user_ids))
        recipients = [Recipient(user_id=uid, email=emails.get(uid)) for uid in note.user_ids]
        known = {r.email for r in recipients if r.email}
        for email in note.emails:
            if email not in known:
                recipients.append(Recipient(user_id=None, email=email))
                known.add(email)
        return recipients

    @staticmethod
    def _log_outcome(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Notification delivery crashed", exc_info=exc)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False)


_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher (singleton) bound to the app session factory."""
    global _dispatcher
    if _dispatcher is None:
        from agencyflow.infrastructure.db.session import get_session_factory
        _dispatcher = NotificationDispatcher(
            get_session_factory(), [EmailTransport(), InAppTransport(), WebhookTransport()],
        )
    return _dispatcher
