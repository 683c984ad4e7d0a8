from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import get_current_user, user_id_from_token
from ..constants import NOTIFICATION_PRIORITIES
from ..models.models import Notification, User
from ..schemas.schemas import NotificationRead
from ..services.notifications import notification_center, notification_websocket_handler

router = APIRouter()


@router.get("/", response_model=List[NotificationRead])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    include_read: bool = Query(True),
    priorities: Optional[List[str]] = Query(None, description="Filter by notification priority."),
    types: Optional[List[str]] = Query(None, description="Filter by notification type."),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Notification]:
    query = (
        db.query(Notification)
        .filter(Notification.recipient_id == current_user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    if not include_read:
        query = query.filter(Notification.is_read.is_(False))
    if priorities:
        normalized = sorted({priority.lower() for priority in priorities if priority.lower() in NOTIFICATION_PRIORITIES})
        if normalized:
            query = query.filter(Notification.priority.in_(normalized))
    if types:
        query = query.filter(Notification.type.in_(types))
    return query.limit(limit).all()


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.recipient_id == current_user.id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found.")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        db.add(notification)
        db.commit()
        db.refresh(notification)
        notification_center.dispatch_read(current_user.id, notification.id, notification.read_at)
    return notification


@router.post("/read-all", response_model=dict)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    unread_notifications = (
        db.query(Notification)
        .filter(Notification.recipient_id == current_user.id, Notification.is_read.is_(False))
        .all()
    )
    if not unread_notifications:
        return {"updated": 0}
    timestamp = datetime.now(timezone.utc)
    for notification in unread_notifications:
        notification.is_read = True
        notification.read_at = timestamp
        db.add(notification)
    db.commit()
    notification_center.dispatch_bulk_read(current_user.id, [item.id for item in unread_notifications])
    return {"updated": len(unread_notifications)}


@router.websocket("/ws")
async def websocket_notifications(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
) -> None:
    user_id = user_id_from_token(token) if token else None
    if user_id is None:
        await websocket.close(code=4401)
        return

    user = db.get(User, user_id)
    if not user or not user.is_active:
        await websocket.close(code=4403)
        return

    await notification_websocket_handler(user_id, websocket)
