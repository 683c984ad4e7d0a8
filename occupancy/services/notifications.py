from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from fastapi import WebSocket
from sqlalchemy.orm import Session
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..constants import NOTIFICATION_PRIORITIES
from ..models.models import Notification, Role, RoleAssignment, User
from ..schemas.schemas import NotificationRead

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Best-effort WebSocket hub; users without a live socket miss the push."""

    def __init__(self) -> None:
        self._connections: Dict[int, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def configure_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        logger.debug("NotificationCenter bound to event loop %s", loop)

    async def connect(self, user_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[user_id].add(websocket)
        logger.debug("WebSocket connected for user %s (total=%s)", user_id, len(self._connections[user_id]))

    async def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            connections = self._connections.get(user_id)
            if connections and websocket in connections:
                connections.remove(websocket)
            if not connections:
                self._connections.pop(user_id, None)
        logger.debug("WebSocket disconnected for user %s", user_id)

    def connected_users(self) -> List[int]:
        return [user_id for user_id, sockets in self._connections.items() if sockets]

    async def _send_to_user(self, user_id: int, payload: dict) -> None:
        async with self._lock:
            connections = list(self._connections.get(user_id, set()))
        for websocket in connections:
            if websocket.application_state != WebSocketState.CONNECTED:
                continue
            try:
                await websocket.send_json(payload)
            except RuntimeError:
                # Connection closed between selection and send
                continue
            except Exception:  # pragma: no cover
                logger.exception("Failed to send notification payload to user %s", user_id)

    def _ensure_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if not self._loop:
            logger.debug("NotificationCenter loop not configured; skipping dispatch.")
            return None
        return self._loop

    def dispatch_created(self, notification: Notification) -> None:
        loop = self._ensure_loop()
        if not loop:
            return
        payload = {
            "type": "notification.created",
            "notification": serialize_notification(notification),
        }
        asyncio.run_coroutine_threadsafe(self._send_to_user(notification.recipient_id, payload), loop)

    def dispatch_read(self, user_id: int, notification_id: int, read_at: datetime) -> None:
        loop = self._ensure_loop()
        if not loop:
            return
        payload = {
            "type": "notification.read",
            "id": notification_id,
            "read_at": read_at.isoformat(),
        }
        asyncio.run_coroutine_threadsafe(self._send_to_user(user_id, payload), loop)

    def dispatch_bulk_read(self, user_id: int, notification_ids: List[int]) -> None:
        if not notification_ids:
            return
        loop = self._ensure_loop()
        if not loop:
            return
        payload = {
            "type": "notification.bulk_read",
            "ids": notification_ids,
            "read_at": datetime.now(timezone.utc).isoformat(),
        }
        asyncio.run_coroutine_threadsafe(self._send_to_user(user_id, payload), loop)

    async def shutdown(self) -> None:
        async with self._lock:
            connections = list(self._connections.items())
            self._connections.clear()
        for user_id, websockets in connections:
            for websocket in websockets:
                if websocket.application_state == WebSocketState.CONNECTED:
                    try:
                        await websocket.close()
                    except RuntimeError:
                        continue
                    except Exception:  # pragma: no cover
                        logger.exception("Failed to close WebSocket for user %s", user_id)


notification_center = NotificationCenter()


def serialize_notification(notification: Notification) -> dict:
    return NotificationRead.model_validate(notification).model_dump(mode="json")


def committee_member_ids(session: Session) -> List[int]:
    """Active users holding an active committee role."""
    rows = (
        session.query(User.id)
        .join(RoleAssignment, RoleAssignment.user_id == User.id)
        .join(Role, Role.id == RoleAssignment.role_id)
        .filter(
            Role.is_committee.is_(True),
            Role.is_active.is_(True),
            RoleAssignment.is_active.is_(True),
            User.is_active.is_(True),
        )
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)


def _resolve_recipient_ids(
    session: Session,
    user_ids: Optional[Iterable[Optional[int]]] = None,
    include_committee: bool = False,
) -> List[int]:
    recipients: Set[int] = set()
    if user_ids:
        recipients.update(user_id for user_id in user_ids if user_id is not None)
    if include_committee:
        recipients.update(committee_member_ids(session))
    return sorted(recipients)


def create_notification(
    session: Session,
    *,
    type: str,
    title: str,
    message: str,
    priority: str = "medium",
    link: Optional[str] = None,
    sender_id: Optional[int] = None,
    sender_role: Optional[str] = None,
    user_ids: Optional[Iterable[Optional[int]]] = None,
    include_committee: bool = False,
    exclude_ids: Optional[Iterable[int]] = None,
) -> List[Notification]:
    """Stage one notification row per resolved recipient.

    Rows are flushed but not committed and nothing is pushed; callers push
    with :func:`push_created` once the rows are committed.
    """
    if priority not in NOTIFICATION_PRIORITIES:
        raise ValueError(f"Unknown notification priority: {priority}")

    recipient_ids = _resolve_recipient_ids(session, user_ids=user_ids, include_committee=include_committee)
    excluded = set(exclude_ids or [])
    recipient_ids = [recipient_id for recipient_id in recipient_ids if recipient_id not in excluded]
    if not recipient_ids:
        return []

    notifications: List[Notification] = []
    now = datetime.now(timezone.utc)
    for recipient_id in recipient_ids:
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            priority=priority,
            link=link,
            sender_id=sender_id,
            sender_role=sender_role,
            created_at=now,
        )
        session.add(notification)
        notifications.append(notification)
    session.flush()
    return notifications


def push_created(notifications: Iterable[Notification]) -> None:
    for notification in notifications:
        notification_center.dispatch_created(notification)


async def notification_websocket_handler(user_id: int, websocket: WebSocket) -> None:
    await notification_center.connect(user_id, websocket)
    try:
        await websocket.send_json({"type": "notification.connected"})
        while True:
            try:
                await websocket.receive_text()
            except WebSocketDisconnect:
                break
    finally:
        await notification_center.disconnect(user_id, websocket)
