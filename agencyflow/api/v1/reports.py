"""
Report schedule API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agencyflow.api.deps import get_current_actor, get_db, get_report_delivery, to_http_error
from agencyflow.application.errors import WorkflowError
from agencyflow.application.report_delivery import ReportDeliveryService
from agencyflow.application.report_scheduler import (
    DeleteReportScheduleUseCase,
    SaveReportScheduleUseCase,
    TriggerReportScheduleUseCase,
    list_report_schedules,
    report_status_for_client,
)
from agencyflow.domain.access import Actor
from agencyflow.infrastructure.db.models import ReportScheduleModel


router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


# === Request/Response models ===

class SaveScheduleRequest(BaseModel):
    frequency: str  # weekly / biweekly / monthly
    recipients: list[str]
    day_of_week: int | None = None
    day_of_month: int | None = None
    time_of_day: str = "09:00"
    email_subject: str | None = None
    is_active: bool = True


class ScheduleResponse(BaseModel):
    id: int
    client_id: int
    frequency: str
    day_of_week: int | None
    day_of_month: int | None
    time_of_day: str
    recipients: list[str]
    email_subject: str | None
    is_active: bool
    next_run_at: datetime
    last_run_at: datetime | None


class ScheduleListResponse(BaseModel):
    report_status: str | None  # draft / scheduled / sent
    schedules: list[ScheduleResponse]


class TriggerResponse(BaseModel):
    report_id: int
    status: str
    sent_at: datetime | None


def _to_response(s: ReportScheduleModel) -> ScheduleResponse:
    return ScheduleResponse(
        id=s.id,
        client_id=s.client_id,
        frequency=s.frequency,
        day_of_week=s.day_of_week,
        day_of_month=s.day_of_month,
        time_of_day=s.time_of_day,
        recipients=list(s.recipients or []),
        email_subject=s.email_subject,
        is_active=s.is_active,
        next_run_at=s.next_run_at,
        last_run_at=s.last_run_at,
    )


# === Endpoints ===

@router.get("/{client_id}/schedules", response_model=ScheduleListResponse)
def get_schedules(
    client_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        schedules = list_report_schedules(db, client_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return ScheduleListResponse(
        report_status=report_status_for_client(db, client_id),
        schedules=[_to_response(s) for s in schedules],
    )


@router.post("/{client_id}/schedule", response_model=ScheduleResponse)
def save_schedule(
    client_id: int,
    req: SaveScheduleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Create or update the client's schedule for the given frequency"""
    try:
        schedule = SaveReportScheduleUseCase(db).execute(client_id, actor, **req.model_dump())
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(schedule)


@router.post("/schedules/{schedule_id}/trigger", response_model=TriggerResponse)
def trigger_schedule(
    schedule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    delivery: ReportDeliveryService = Depends(get_report_delivery),
):
    """Generate and send the report now; the regular cadence is not moved"""
    try:
        report = TriggerReportScheduleUseCase(db, delivery).execute(schedule_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
    return TriggerResponse(report_id=report.id, status=report.status, sent_at=report.sent_at)


@router.delete("/schedules/{schedule_id}", status_code=204)
def delete_schedule(
    schedule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        DeleteReportScheduleUseCase(db).execute(schedule_id, actor)
    except WorkflowError as e:
        raise to_http_error(e)
