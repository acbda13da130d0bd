"""
FastAPI dependencies (DB session, actor, collaborators)
"""
from fastapi import Depends, Request, HTTPException, status
from sqlalchemy.orm import Session

from agencyflow.application.errors import WorkflowError
from agencyflow.application.notification_dispatcher import NotificationDispatcher, get_dispatcher
from agencyflow.application.report_delivery import EmailReportDelivery, ReportDeliveryService
from agencyflow.domain.access import Actor, Role
from agencyflow.infrastructure.db.session import get_db as _get_db
from agencyflow.infrastructure.db.models import User


# Re-export get_db
get_db = _get_db


def get_current_actor(request: Request, db: Session = Depends(get_db)) -> Actor:
    """
    Resolve the acting user from the session cookie

    Raises:
        HTTPException(401): not logged in, or the user no longer exists

    Usage:
        @router.patch("/{task_id}/status")
        def patch_status(task_id: int, actor: Actor = Depends(get_current_actor)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return Actor(user_id=user.id, role=Role.parse(user.role))


def get_notification_dispatcher() -> NotificationDispatcher:
    return get_dispatcher()


def get_report_delivery() -> ReportDeliveryService:
    return EmailReportDelivery()


def to_http_error(e: WorkflowError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))
