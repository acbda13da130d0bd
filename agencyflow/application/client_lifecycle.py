"""
Client Lifecycle Archiver - the two daily archival sweeps plus the entry points
that put a client on the path to archival (cancel, schedule archive).

Archiving always deactivates the client's report schedules in the same
transaction, so an ARCHIVED client never has an active schedule.
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from agencyflow.application.errors import AccessDeniedError, NotFoundError, ValidationError
from agencyflow.application.notification_dispatcher import (
    CLIENT_ARCHIVED,
    Notification,
    NotificationDispatcher,
    get_dispatcher,
)
from agencyflow.domain.access import Actor, can_manage_agency_scope
from agencyflow.infrastructure.db.models import Client
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)

REASON_CANCELED = "cancellation end date reached"
REASON_SCHEDULED = "scheduled archive date reached"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _archive(
    db: Session,
    clients: list[Client],
    reason: str,
    dispatcher: NotificationDispatcher | None,
) -> int:
    if not clients:
        return 0
    repo = RecurrenceRepository(db)
    # read before the bulk update expires the rows
    targets = [(c.id, c.name, c.agency_id) for c in clients]

    with repo.transaction():
        repo.archive_clients([t[0] for t in targets], datetime.now(timezone.utc))

    dispatcher = dispatcher or get_dispatcher()
    for client_id, name, agency_id in targets:
        if agency_id is None:
            continue
        dispatcher.dispatch(Notification(
            kind=CLIENT_ARCHIVED,
            context={"client": name, "reason": reason},
            entity_type="client",
            entity_id=client_id,
            agency_id=agency_id,
            link=f"/agency/clients/{client_id}",
        ))
    return len(targets)


def archive_canceled_clients(
    db: Session,
    today: date | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> int:
    """CANCELED clients whose canceled_end_date is today or earlier become ARCHIVED."""
    today = today or _today()
    clients = RecurrenceRepository(db).clients_canceled_past_end(today)
    archived = _archive(db, clients, REASON_CANCELED, dispatcher)
    if archived:
        logger.info("[Client Status] Archived %d client(s) past canceled end date", archived)
    return archived


def archive_scheduled_clients(
    db: Session,
    today: date | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> int:
    """Clients whose scheduled_archive_at is today or earlier become ARCHIVED."""
    today = today or _today()
    clients = RecurrenceRepository(db).clients_due_for_scheduled_archive(today)
    archived = _archive(db, clients, REASON_SCHEDULED, dispatcher)
    if archived:
        logger.info("[Client Status] Archived %d client(s) with scheduled archive date", archived)
    return archived


# ---------------------------------------------------------------------------
# Use cases
# ---------------------------------------------------------------------------

class _ClientUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = RecurrenceRepository(db)

    def _load_authorized(self, client_id: int, actor: Actor) -> Client:
        client = self.repo.get_client(client_id)
        if client is None:
            raise NotFoundError("Client not found")
        members = frozenset(self.repo.agency_member_ids(client.agency_id)) if client.agency_id else frozenset()
        if not can_manage_agency_scope(actor, members):
            raise AccessDeniedError()
        if client.status == "ARCHIVED":
            raise ValidationError("Client is already archived")
        return client


class CancelClientUseCase(_ClientUseCase):
    """Mark the client CANCELED; the archiver picks it up once end_date has passed."""

    def execute(
        self,
        client_id: int,
        actor: Actor,
        end_date: date | None = None,
        today: date | None = None,
    ) -> Client:
        client = self._load_authorized(client_id, actor)
        with self.repo.transaction():
            client.status = "CANCELED"
            client.canceled_end_date = end_date or today or _today()
        logger.info(
            "Client_id=%s canceled by user_id=%s, end date %s",
            client_id, actor.user_id, client.canceled_end_date,
        )
        return client


class ScheduleClientArchiveUseCase(_ClientUseCase):
    """Set (or clear, with None) the date on which the client gets archived."""

    def execute(
        self,
        client_id: int,
        actor: Actor,
        archive_on: date | None,
        today: date | None = None,
    ) -> Client:
        today = today or _today()
        if archive_on is not None and archive_on < today:
            raise ValidationError("Scheduled archive date cannot be in the past")
        client = self._load_authorized(client_id, actor)
        with self.repo.transaction():
            client.scheduled_archive_at = archive_on
        return client
