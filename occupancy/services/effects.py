"""Post-commit side effects of engine transitions.

A transition returns its notifications as :class:`NotificationEffect`
values instead of writing them inline. :func:`dispatch_effects` runs after
the state change has committed: it persists the notification rows in a
short transaction of their own and pushes them to connected sockets. A
failure here is logged and dropped; the committed state change stands.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from .notifications import create_notification, push_created

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEffect:
    type: str
    title: str
    message: str
    priority: str = "medium"
    recipient_ids: Tuple[int, ...] = field(default_factory=tuple)
    to_committee: bool = False
    link: Optional[str] = None
    sender_id: Optional[int] = None
    sender_role: Optional[str] = None


def notify(
    recipients: Iterable[Optional[int]],
    type: str,
    title: str,
    message: str,
    priority: str = "medium",
    **extra,
) -> NotificationEffect:
    unique = tuple(dict.fromkeys(recipient for recipient in recipients if recipient is not None))
    return NotificationEffect(type=type, title=title, message=message, priority=priority, recipient_ids=unique, **extra)


def notify_committee(type: str, title: str, message: str, priority: str = "high", **extra) -> NotificationEffect:
    return NotificationEffect(type=type, title=title, message=message, priority=priority, to_committee=True, **extra)


def dispatch_effects(session: Session, effects: Iterable[NotificationEffect]) -> int:
    """Persist and push each effect; returns how many notification rows were stored."""
    delivered = 0
    for effect in effects:
        try:
            notifications = create_notification(
                session,
                type=effect.type,
                title=effect.title,
                message=effect.message,
                priority=effect.priority,
                link=effect.link,
                sender_id=effect.sender_id,
                sender_role=effect.sender_role,
                user_ids=effect.recipient_ids,
                include_committee=effect.to_committee,
            )
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Failed to deliver %s notification", effect.type)
            continue

        delivered += len(notifications)
        try:
            push_created(notifications)
        except Exception:
            logger.exception("Failed to push %s notification", effect.type)
    return delivered

