"""
Client lifecycle API endpoints (cancel, scheduled archive)
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from agencyflow.api.deps import get_current_actor, get_db, to_http_error
from agencyflow.application.client_lifecycle import CancelClientUseCase, ScheduleClientArchiveUseCase
from agencyflow.application.errors import WorkflowError
from agencyflow.domain.access import Actor
from agencyflow.infrastructure.db.models import Client


router = APIRouter(prefix="/api/v1/clients", tags=["clients"])


class CancelClientRequest(BaseModel):
    end_date: date | None = None  # defaults to today


class ScheduleArchiveRequest(BaseModel):
    archive_on: date | None = None  # None clears the scheduled date


class ClientLifecycleResponse(BaseModel):
    id: int
    status: str
    canceled_end_date: date | None
    scheduled_archive_at: date | None


def _to_response(client: Client) -> ClientLifecycleResponse:
    return ClientLifecycleResponse(
        id=client.id,
        status=client.status,
        canceled_end_date=client.canceled_end_date,
        scheduled_archive_at=client.scheduled_archive_at,
    )


@router.post("/{client_id}/cancel", response_model=ClientLifecycleResponse)
def cancel_client(
    client_id: int,
    req: CancelClientRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        client = CancelClientUseCase(db).execute(client_id, actor, end_date=req.end_date)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(client)


@router.post("/{client_id}/scheduled-archive", response_model=ClientLifecycleResponse)
def schedule_archive(
    client_id: int,
    req: ScheduleArchiveRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        client = ScheduleClientArchiveUseCase(db).execute(client_id, actor, req.archive_on)
    except WorkflowError as e:
        raise to_http_error(e)
    return _to_response(client)
