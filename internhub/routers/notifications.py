from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from internhub.db import get_db
from internhub.models import Notification
from internhub.schemas import NotificationRead
from internhub.security import AuthSession, require_session
from internhub.services.notifications import (
    count_unread_notifications,
    list_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)

router = APIRouter(tags=["notifications"])


@router.get("/api/notifications", response_model=list[NotificationRead])
def my_notifications(
    unread_only: bool = Query(default=False),
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
) -> list[Notification]:
    return list_notifications(db, user_id=session.principal_id, unread_only=unread_only)


@router.get("/api/notifications/unread-count")
def my_unread_count(
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    return {"unread": count_unread_notifications(db, user_id=session.principal_id)}


@router.post("/api/notifications/{notification_id}/read", response_model=NotificationRead)
def read_notification(
    notification_id: int,
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
) -> Notification:
    return mark_notification_read(db, user_id=session.principal_id, notification_id=notification_id)


@router.post("/api/notifications/read-all")
def read_all_notifications(
    session: AuthSession = Depends(require_session),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    return {"updated": mark_all_notifications_read(db, user_id=session.principal_id)}
