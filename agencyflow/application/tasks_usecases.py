"""Task use cases - status workflow, detail edits, deletion"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from agencyflow.application.errors import AccessDeniedError, NotFoundError, ValidationError
from agencyflow.application.notification_dispatcher import (
    TASK_APPROVAL_REQUESTED,
    TASK_COMPLETED,
    Notification,
    NotificationDispatcher,
    get_dispatcher,
)
from agencyflow.domain.access import Actor, Capability, can_access_task
from agencyflow.domain.task_status import (
    TODO,
    StatusChange,
    TaskStatusValidationError,
    plan_status_change,
    validate_proof,
    validate_status,
)
from agencyflow.infrastructure.db.models import TaskModel
from agencyflow.infrastructure.repository import RecurrenceRepository

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title", "description", "notes", "category", "due_date", "assignee_id",
    "client_id", "priority", "estimated_hours", "proof",
)
# _plan default: completion recipients come from the task's current client
_SAME_CLIENT = object()


class TaskValidationError(ValidationError):
    pass


def _check_estimated_hours(value: int | None) -> None:
    if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
        raise TaskValidationError("estimated_hours must be a positive integer")


class _TaskUseCase:
    def __init__(self, db: Session, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self.repo = RecurrenceRepository(db)
        self.dispatcher = dispatcher or get_dispatcher()

    def _load_authorized(self, task_id: int, actor: Actor, capability: Capability) -> TaskModel:
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task #{task_id} not found")
        if not can_access_task(actor, capability, self.repo.task_relations(task)):
            raise AccessDeniedError()
        return task

    def _plan(
        self,
        task: TaskModel,
        actor: Actor,
        new_status: str,
        approval_user_ids: list[int] | None,
        old_status: str | None = None,
        client_id=_SAME_CLIENT,
    ) -> StatusChange:
        """client_id: the client the task will belong to, when the same call moves it"""
        if client_id is _SAME_CLIENT:
            client_id = task.client_id
        client_members = self.repo.active_client_member_ids(client_id) if client_id else []
        try:
            return plan_status_change(
                old_status=old_status if old_status is not None else task.status,
                old_approval_user_ids=task.approval_notify_user_ids,
                new_status=new_status,
                requested_approval_user_ids=approval_user_ids,
                actor_user_id=actor.user_id,
                creator_id=task.created_by_id,
                active_client_member_ids=client_members,
            )
        except TaskStatusValidationError as e:
            raise TaskValidationError(str(e)) from e

    @staticmethod
    def _apply(task: TaskModel, change: StatusChange) -> None:
        task.status = change.new_status
        # assign a fresh list so the JSON column is marked dirty
        task.approval_notify_user_ids = (
            list(change.approval_notify_user_ids) if change.approval_notify_user_ids else None
        )

    def _notify(self, task: TaskModel, change: StatusChange, actor: Actor) -> None:
        """Fan out after commit. Failures here are logged and never reach the caller."""
        if not change.approval_recipients and not change.completed:
            return
        try:
            client = self.repo.get_client(task.client_id) if task.client_id else None
            context = {"title": task.title, "client": client.name if client else "Client"}

            if change.approval_recipients:
                requester = self.repo.get_user(actor.user_id)
                context_approval = dict(
                    context,
                    requested_by=(requester.name or requester.email) if requester else "A user",
                )
                self.dispatcher.dispatch(Notification(
                    kind=TASK_APPROVAL_REQUESTED,
                    context=context_approval,
                    entity_type="task",
                    entity_id=task.id,
                    user_ids=change.approval_recipients,
                    link=f"/tasks/{task.id}",
                ))

            if change.completed:
                self.dispatcher.dispatch(Notification(
                    kind=TASK_COMPLETED,
                    context=context,
                    entity_type="task",
                    entity_id=task.id,
                    user_ids=change.completion_recipients,
                    agency_id=task.agency_id,
                    link="/agency/tasks",
                ))
        except Exception:
            logger.exception("Failed to dispatch notifications for task_id=%s", task.id)


class GetTaskUseCase(_TaskUseCase):
    """Single task read; specialists see only tasks assigned to them."""

    def execute(self, task_id: int, actor: Actor) -> TaskModel:
        return self._load_authorized(task_id, actor, Capability.VIEW)


class PatchTaskStatusUseCase(_TaskUseCase):
    """Status-only update; the one mutation specialists may perform on their own tasks."""

    def execute(
        self,
        task_id: int,
        actor: Actor,
        status: str,
        approval_notify_user_ids: list[int] | None = None,
    ) -> TaskModel:
        try:
            validate_status(status)
        except TaskStatusValidationError as e:
            raise TaskValidationError(str(e)) from e

        task = self._load_authorized(task_id, actor, Capability.PATCH_STATUS)
        change = self._plan(task, actor, status, approval_notify_user_ids)

        with self.repo.transaction():
            self._apply(task, change)

        self._notify(task, change, actor)
        return task


class UpdateTaskUseCase(_TaskUseCase):
    """Detail edit (may also carry status / approval list). Denied to specialists."""

    def execute(self, task_id: int, actor: Actor, **changes) -> TaskModel:
        unknown = set(changes) - set(EDITABLE_FIELDS) - {"status", "approval_notify_user_ids"}
        if unknown:
            raise TaskValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
            if not changes["title"]:
                raise TaskValidationError("Task title cannot be empty")
        if "estimated_hours" in changes:
            _check_estimated_hours(changes["estimated_hours"])
        if "proof" in changes:
            try:
                changes["proof"] = validate_proof(changes["proof"]) or None
            except TaskStatusValidationError as e:
                raise TaskValidationError(str(e)) from e

        task = self._load_authorized(task_id, actor, Capability.EDIT_DETAILS)

        change = None
        if "status" in changes or "approval_notify_user_ids" in changes:
            new_status = changes.get("status") or task.status
            change = self._plan(
                task, actor, new_status, changes.get("approval_notify_user_ids"),
                client_id=changes.get("client_id", _SAME_CLIENT),
            )

        with self.repo.transaction():
            for key in EDITABLE_FIELDS:
                if key in changes:
                    setattr(task, key, changes[key])
            if change is not None:
                self._apply(task, change)

        if change is not None:
            self._notify(task, change, actor)
        return task


class DeleteTaskUseCase(_TaskUseCase):
    def execute(self, task_id: int, actor: Actor) -> None:
        task = self._load_authorized(task_id, actor, Capability.DELETE)
        with self.repo.transaction():
            self.repo.delete_task(task)


class CreateTaskUseCase(_TaskUseCase):
    """Direct task creation; creating straight into NEEDS_APPROVAL requests approval."""

    def execute(
        self,
        actor: Actor,
        title: str,
        agency_id: int | None = None,
        status: str = TODO,
        approval_notify_user_ids: list[int] | None = None,
        description: str | None = None,
        notes: str | None = None,
        category: str | None = None,
        due_date: datetime | None = None,
        assignee_id: int | None = None,
        client_id: int | None = None,
        priority: str | None = None,
        estimated_hours: int | None = None,
        proof: list[dict] | None = None,
    ) -> TaskModel:
        title = (title or "").strip()
        if not title:
            raise TaskValidationError("Task title cannot be empty")
        _check_estimated_hours(estimated_hours)
        try:
            validate_status(status)
            proof = validate_proof(proof) or None
        except TaskStatusValidationError as e:
            raise TaskValidationError(str(e)) from e

        if actor.is_specialist:
            raise AccessDeniedError("Specialists cannot create tasks")
        if agency_id is None:
            agency_ids = self.repo.agency_ids_for_user(actor.user_id)
            if not agency_ids:
                raise TaskValidationError("No agency found.")
            agency_id = agency_ids[0]
        elif not actor.role.is_platform_admin and actor.user_id not in self.repo.agency_member_ids(agency_id):
            raise AccessDeniedError()

        task = TaskModel(
            agency_id=agency_id,
            created_by_id=actor.user_id,
            title=title,
            description=description,
            notes=notes,
            category=category,
            due_date=due_date,
            assignee_id=assignee_id,
            client_id=client_id,
            priority=priority,
            estimated_hours=estimated_hours,
            proof=proof,
        )
        # a task created as DONE is not a transition into DONE
        change = self._plan(task, actor, status, approval_notify_user_ids, old_status=status)

        with self.repo.transaction():
            self._apply(task, change)
            self.repo.add_task(task)

        self._notify(task, change, actor)
        return task
