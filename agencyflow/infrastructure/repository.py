"""
Recurrence Repository - transactional access to rules, tasks, schedules and clients

Pollers and workflow use cases go through this class instead of building
queries inline, so every per-entity unit of work has one commit point.
"""
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from agencyflow.domain.access import TaskRelations
from agencyflow.infrastructure.db.models import (
    AgencyMember,
    Client,
    ClientUser,
    RecurringTaskRuleModel,
    ReportScheduleModel,
    SeoReportModel,
    TaskModel,
    User,
)


SKIPPED_CLIENT_STATUSES = ("ARCHIVED", "SUSPENDED", "REJECTED")


class RecurrenceRepository:
    """
    Repository over recurring task rules and the records they drive

    Usage:
        >>> repo = RecurrenceRepository(db)
        >>> with repo.transaction():
        ...     repo.add_task(TaskModel(title="Monthly audit"))
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # --- recurring rules -------------------------------------------------

    def due_rules(self, now: datetime) -> list[RecurringTaskRuleModel]:
        return list(self.db.scalars(
            select(RecurringTaskRuleModel)
            .where(
                RecurringTaskRuleModel.is_active.is_(True),
                RecurringTaskRuleModel.next_run_at <= now,
            )
            .order_by(RecurringTaskRuleModel.next_run_at.asc(), RecurringTaskRuleModel.id.asc())
        ))

    def get_rule(self, rule_id: int) -> RecurringTaskRuleModel | None:
        return self.db.get(RecurringTaskRuleModel, rule_id)

    def rules_for_agencies(self, agency_ids: list[int]) -> list[RecurringTaskRuleModel]:
        if not agency_ids:
            return []
        return list(self.db.scalars(
            select(RecurringTaskRuleModel)
            .where(RecurringTaskRuleModel.agency_id.in_(agency_ids))
            .order_by(RecurringTaskRuleModel.next_run_at.asc())
        ))

    def add_rule(self, rule: RecurringTaskRuleModel) -> RecurringTaskRuleModel:
        self.db.add(rule)
        self.db.flush()
        return rule

    def delete_rule(self, rule: RecurringTaskRuleModel) -> None:
        self.db.delete(rule)
        self.db.flush()

    # --- tasks -----------------------------------------------------------

    def get_task(self, task_id: int) -> TaskModel | None:
        return self.db.get(TaskModel, task_id)

    def add_task(self, task: TaskModel) -> TaskModel:
        self.db.add(task)
        self.db.flush()
        return task

    def delete_task(self, task: TaskModel) -> None:
        self.db.delete(task)
        self.db.flush()

    def task_relations(self, task: TaskModel) -> TaskRelations:
        client_owner_id = None
        client_member_ids: frozenset[int] = frozenset()
        if task.client_id is not None:
            client = self.db.get(Client, task.client_id)
            client_owner_id = client.user_id if client else None
            client_member_ids = frozenset(self.active_client_member_ids(task.client_id))
        agency_ids = frozenset(self.agency_member_ids(task.agency_id)) if task.agency_id else frozenset()
        return TaskRelations(
            assignee_id=task.assignee_id,
            agency_member_ids=agency_ids,
            active_client_member_ids=client_member_ids,
            client_owner_id=client_owner_id,
        )

    # --- people ----------------------------------------------------------

    def active_client_member_ids(self, client_id: int) -> list[int]:
        return list(self.db.scalars(
            select(ClientUser.user_id)
            .where(ClientUser.client_id == client_id, ClientUser.status == "ACTIVE")
            .order_by(ClientUser.id)
        ))

    def agency_member_ids(self, agency_id: int) -> list[int]:
        return list(self.db.scalars(
            select(AgencyMember.user_id).where(AgencyMember.agency_id == agency_id)
        ))

    def agency_ids_for_user(self, user_id: int) -> list[int]:
        return list(self.db.scalars(
            select(AgencyMember.agency_id)
            .where(AgencyMember.user_id == user_id)
            .order_by(AgencyMember.id)
        ))

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def user_emails(self, user_ids: list[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        rows = self.db.execute(select(User.id, User.email).where(User.id.in_(user_ids))).all()
        return {row.id: row.email for row in rows if row.email}

    # --- clients ---------------------------------------------------------

    def get_client(self, client_id: int) -> Client | None:
        return self.db.get(Client, client_id)

    def clients_canceled_past_end(self, today: date) -> list[Client]:
        return list(self.db.scalars(
            select(Client)
            .where(
                Client.status == "CANCELED",
                Client.canceled_end_date.isnot(None),
                Client.canceled_end_date <= today,
            )
            .order_by(Client.canceled_end_date.asc(), Client.id.asc())
        ))

    def clients_due_for_scheduled_archive(self, today: date) -> list[Client]:
        return list(self.db.scalars(
            select(Client)
            .where(
                Client.scheduled_archive_at.isnot(None),
                Client.scheduled_archive_at <= today,
                Client.status != "ARCHIVED",
            )
            .order_by(Client.scheduled_archive_at.asc(), Client.id.asc())
        ))

    def archive_clients(self, client_ids: list[int], archived_at: datetime) -> None:
        """Flip clients to ARCHIVED and deactivate all their report schedules (no commit)."""
        if not client_ids:
            return
        self.db.execute(
            update(ReportScheduleModel)
            .where(ReportScheduleModel.client_id.in_(client_ids))
            .values(is_active=False)
        )
        self.db.execute(
            update(Client)
            .where(Client.id.in_(client_ids))
            .values(status="ARCHIVED", scheduled_archive_at=None, archived_at=archived_at)
        )
        self.db.flush()

    # --- report schedules ------------------------------------------------

    def due_report_schedules(self, now: datetime) -> list[ReportScheduleModel]:
        return list(self.db.scalars(
            select(ReportScheduleModel)
            .join(Client, Client.id == ReportScheduleModel.client_id)
            .where(
                ReportScheduleModel.is_active.is_(True),
                ReportScheduleModel.next_run_at <= now,
                Client.status.notin_(SKIPPED_CLIENT_STATUSES),
            )
            .order_by(ReportScheduleModel.next_run_at.asc(), ReportScheduleModel.id.asc())
        ))

    def get_schedule(self, schedule_id: int) -> ReportScheduleModel | None:
        return self.db.get(ReportScheduleModel, schedule_id)

    def schedules_for_client(self, client_id: int) -> list[ReportScheduleModel]:
        return list(self.db.scalars(
            select(ReportScheduleModel)
            .where(ReportScheduleModel.client_id == client_id)
            .order_by(ReportScheduleModel.created_at.desc(), ReportScheduleModel.id.desc())
        ))

    def find_schedule(self, client_id: int, frequency: str) -> ReportScheduleModel | None:
        return self.db.scalars(
            select(ReportScheduleModel).where(
                ReportScheduleModel.client_id == client_id,
                ReportScheduleModel.frequency == frequency,
            )
        ).first()

    def has_active_schedule(self, client_id: int) -> bool:
        return self.db.scalars(
            select(ReportScheduleModel.id).where(
                ReportScheduleModel.client_id == client_id,
                ReportScheduleModel.is_active.is_(True),
            )
        ).first() is not None

    def add_schedule(self, schedule: ReportScheduleModel) -> ReportScheduleModel:
        self.db.add(schedule)
        self.db.flush()
        return schedule

    def delete_schedule(self, schedule: ReportScheduleModel) -> None:
        self.db.delete(schedule)
        self.db.flush()

    def report_for_client(self, client_id: int) -> SeoReportModel | None:
        return self.db.scalars(
            select(SeoReportModel).where(SeoReportModel.client_id == client_id)
        ).first()
