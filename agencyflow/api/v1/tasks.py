"""
Task API endpoints (create, read, edit, status workflow, delete)
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agencyflow.api.deps import get_current_actor, get_db, get_notification_dispatcher, to_http_error
from agencyflow.application.errors import WorkflowError
from agencyflow.application.notification_dispatcher import NotificationDispatcher
from agencyflow.application.tasks_usecases import (
    CreateTaskUseCase,
    DeleteTaskUseCase,
    GetTaskUseCase,
    PatchTaskStatusUseCase,
    UpdateTaskUseCase,
)
from agencyflow.domain.access import Actor
from agencyflow.infrastructure.db.models import TaskModel


router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


# === Request/Response models ===

class ProofItem(BaseModel):
    type: str  # image / video / url
    value: str
    name: str | None = None


class CreateTaskRequest(BaseModel):
    title: str
    agency_id: int | None = None
    status: str = "TODO"
    approval_notify_user_ids: list[int] | None = None
    description: str | None = None
    notes: str | None = None
    category: str | None = None
    due_date: datetime | None = None
    assignee_id: int | None = None
    client_id: int | None = None
    priority: str | None = None
    estimated_hours: int | None = None
    proof: list[ProofItem] | None = None


class UpdateTaskRequest(BaseModel):
    """Sparse update: only the fields present in the body are applied."""
    title: str | None = None
    description: str | None = None
    notes: str | None = None
    category: str | None = None
    due_date: datetime | None = None
    assignee_id: int | None = None
    client_id: int | None = None
    priority: str | None = None
    estimated_hours: int | None = None
    proof: list[ProofItem] | None = None
    status: str | None = None
    approval_notify_user_ids: list[int] | None = None


class PatchStatusRequest(BaseModel):
    status: str
    approval_notify_user_ids: list[int] | None = None


class TaskResponse(BaseModel):
    id: int
    agency_id: int | None
    client_id: int | None
    assignee_id: int | None
    created_by_id: int | None
    recurring_rule_id: int | None
    title: str
    description: str | None
    notes: str | None
    category: str | None
    status: str
    due_date: datetime | None
    priority: str | None
    estimated_hours: int | None
    proof: list[dict] | None
    approval_notify_user_ids: list[int] | None


def _to_response(task: TaskModel) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        agency_id=task.agency_id,
        client_id=task.client_id,
        assignee_id=task.assignee_id,
        created_by_id=task.created_by_id,
        recurring_rule_id=task.recurring_rule_id,
        title=task.title,
        description=task.description,
        notes=task.notes,
        category=task.category,
        status=task.status,
        due_date=task.due_date,
        priority=task.priority,
        estimated_hours=task.estimated_hours,
        proof=task.proof,
        approval_notify_user_ids=task.approval_notify_user_ids,
    )


# === Endpoints ===

@router.post("", response_model=TaskResponse, status_code=201)
def create_task(
    req: CreateTaskRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Create a task (creating in NEEDS_APPROVAL sends approval requests)"""
    data = req.model_dump()
    if req.proof is not None:
        data["proof"] = [p.model_dump(exclude_none=True) for p in req.proof]
    try:
        task = CreateTaskUseCase(db, dispatcher).execute(actor=actor, **data)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(task)


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    try:
        task = GetTaskUseCase(db, dispatcher).execute(task_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(task)


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    req: UpdateTaskRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Edit task details (not available to specialists)"""
    changes = req.model_dump(exclude_unset=True)
    if req.proof is not None:
        changes["proof"] = [p.model_dump(exclude_none=True) for p in req.proof]
    try:
        task = UpdateTaskUseCase(db, dispatcher).execute(task_id, actor, **changes)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(task)


@router.patch("/{task_id}/status", response_model=TaskResponse)
def patch_task_status(
    task_id: int,
    req: PatchStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Move a task to another status"""
    try:
        task = PatchTaskStatusUseCase(db, dispatcher).execute(
            task_id, actor, req.status, req.approval_notify_user_ids,
        )
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(task)


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    try:
        DeleteTaskUseCase(db, dispatcher).execute(task_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
