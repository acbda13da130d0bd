"""
Recurring task rule API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agencyflow.api.deps import get_current_actor, get_db, to_http_error
from agencyflow.application.errors import WorkflowError
from agencyflow.application.recurring_tasks import (
    CreateRecurringRuleUseCase,
    DeleteRecurringRuleUseCase,
    ResumeRecurringRuleUseCase,
    StopRecurringRuleUseCase,
    UpdateRecurringRuleUseCase,
    list_recurring_rules,
)
from agencyflow.domain.access import Actor
from agencyflow.infrastructure.db.models import RecurringTaskRuleModel


router = APIRouter(prefix="/api/v1/tasks/recurring", tags=["recurring-tasks"])


# === Request/Response models ===

class CreateRuleRequest(BaseModel):
    title: str
    frequency: str  # WEEKLY / MONTHLY / QUARTERLY / SEMIANNUAL
    first_run_at: datetime
    agency_id: int | None = None
    day_of_week: int | None = None  # 0=Sunday
    day_of_month: int | None = None
    description: str | None = None
    category: str | None = None
    status: str | None = None
    priority: str | None = None
    estimated_hours: int | None = None
    assignee_id: int | None = None
    client_id: int | None = None
    proof: list[dict] | None = None


class UpdateRuleRequest(BaseModel):
    title: str | None = None
    frequency: str | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    next_run_at: datetime | None = None
    first_run_at: datetime | None = None
    description: str | None = None
    category: str | None = None
    status: str | None = None
    priority: str | None = None
    estimated_hours: int | None = None
    assignee_id: int | None = None
    client_id: int | None = None
    proof: list[dict] | None = None


class RuleResponse(BaseModel):
    id: int
    agency_id: int
    title: str
    frequency: str
    day_of_week: int | None
    day_of_month: int | None
    next_run_at: datetime
    is_active: bool
    status: str | None
    assignee_id: int | None
    client_id: int | None


def _to_response(rule: RecurringTaskRuleModel) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        agency_id=rule.agency_id,
        title=rule.title,
        frequency=rule.frequency,
        day_of_week=rule.day_of_week,
        day_of_month=rule.day_of_month,
        next_run_at=rule.next_run_at,
        is_active=rule.is_active,
        status=rule.status,
        assignee_id=rule.assignee_id,
        client_id=rule.client_id,
    )


# === Endpoints ===

@router.get("", response_model=list[RuleResponse])
def list_rules(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        rules = list_recurring_rules(db, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return [_to_response(r) for r in rules]


@router.post("", response_model=RuleResponse, status_code=201)
def create_rule(
    req: CreateRuleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    template = req.model_dump(exclude_none=True)
    try:
        rule = CreateRecurringRuleUseCase(db).execute(actor=actor, **template)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(rule)


@router.put("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    req: UpdateRuleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        rule = UpdateRecurringRuleUseCase(db).execute(rule_id, actor, **req.model_dump(exclude_unset=True))
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(rule)


@router.patch("/{rule_id}/stop", response_model=RuleResponse)
def stop_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Deactivate the rule; already spawned tasks are kept"""
    try:
        rule = StopRecurringRuleUseCase(db).execute(rule_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(rule)


@router.patch("/{rule_id}/resume", response_model=RuleResponse)
def resume_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        rule = ResumeRecurringRuleUseCase(db).execute(rule_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(rule)


@router.delete("/{rule_id}", status_code=204)
def delete_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        DeleteRecurringRuleUseCase(db).execute(rule_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
