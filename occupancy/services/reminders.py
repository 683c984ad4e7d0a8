from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    Apartment,
    Notification,
    OwnershipRelationship,
    OwnershipTransfer,
    TenantRelationship,
    User,
)
from .notifications import create_notification, push_created

logger = logging.getLogger(__name__)

PENDING_ALERT_TYPE = "pending_queue_alert"
LEASE_REMINDER_TYPE = "lease_expiration_reminder"
CRITICAL_LEASE_DAYS = 7


def count_stale_pending(session: Session, cutoff: datetime) -> int:
    total = 0
    for model in (OwnershipRelationship, TenantRelationship, OwnershipTransfer):
        total += session.query(model).filter(model.status == STATUS_PENDING, model.created_at < cutoff).count()
    total += (
        session.query(User)
        .filter(User.registration_status == STATUS_PENDING, User.created_at < cutoff)
        .count()
    )
    return total


def notify_stale_pending(session: Session, now: Optional[datetime] = None, hours: Optional[int] = None) -> int:
    """Alert committee members about requests left pending too long.

    Advisory only: no request changes state. Returns the number of stale
    requests found.
    """
    now = now or datetime.now(timezone.utc)
    hours = hours if hours is not None else settings.stale_pending_hours
    stale = count_stale_pending(session, now - timedelta(hours=hours))
    if not stale:
        return 0

    notifications = create_notification(
        session,
        type=PENDING_ALERT_TYPE,
        title="Pending Approvals Alert",
        message=(
            f"There are {stale} approval requests pending for more than {hours} hours. "
            "Please review them urgently."
        ),
        priority="high",
        link="/approvals",
        sender_role="System",
        include_committee=True,
    )
    session.commit()
    push_created(notifications)
    logger.info("Pending queue alert sent: %s stale requests, %s recipients", stale, len(notifications))
    return stale


def lease_priority(days_left: int) -> str:
    return "critical" if days_left <= CRITICAL_LEASE_DAYS else "high"


def _already_reminded(session: Session, recipient_id: int, link: str, title: str, since: datetime) -> bool:
    return (
        session.query(Notification.id)
        .filter(
            Notification.recipient_id == recipient_id,
            Notification.type == LEASE_REMINDER_TYPE,
            Notification.link == link,
            Notification.title == title,
            Notification.created_at >= since,
        )
        .first()
        is not None
    )


def _owner_ids(session: Session, apartment_id: int) -> List[int]:
    rows = (
        session.query(OwnershipRelationship.user_id)
        .filter(
            OwnershipRelationship.apartment_id == apartment_id,
            OwnershipRelationship.is_active.is_(True),
            OwnershipRelationship.status == STATUS_APPROVED,
        )
        .all()
    )
    return [row[0] for row in rows]


def notify_lease_expirations(
    session: Session,
    today: Optional[date] = None,
    reminder_days: Optional[Iterable[int]] = None,
) -> List[Notification]:
    """Remind tenants and owners of leases ending in exactly one of the reminder windows."""
    today = today or date.today()
    windows = sorted(set(reminder_days if reminder_days is not None else settings.lease_reminder_days), reverse=True)
    start_of_today = datetime.combine(today, datetime.min.time())

    created: List[Notification] = []
    for days_left in windows:
        tenancies = (
            session.query(TenantRelationship)
            .filter(
                TenantRelationship.status == STATUS_APPROVED,
                TenantRelationship.is_active.is_(True),
                TenantRelationship.lease_end == today + timedelta(days=days_left),
            )
            .order_by(TenantRelationship.id)
            .all()
        )
        for tenancy in tenancies:
            apartment = session.get(Apartment, tenancy.apartment_id)
            unit_name = apartment.unit_number if apartment else str(tenancy.apartment_id)
            title = f"Lease Expiration Notice - {days_left} days"
            base = f"Lease for apartment {unit_name} expires in {days_left} days."
            link = f"/relationships/tenancy/{tenancy.id}"
            priority = lease_priority(days_left)

            audiences = [([tenancy.user_id], f"{base} Please contact your owner to discuss renewal.")]
            owners = _owner_ids(session, tenancy.apartment_id)
            if owners:
                audiences.append((owners, f"{base} Please contact your tenant regarding renewal."))

            for recipients, message in audiences:
                fresh = [
                    recipient
                    for recipient in recipients
                    if not _already_reminded(session, recipient, link, title, start_of_today)
                ]
                created.extend(
                    create_notification(
                        session,
                        type=LEASE_REMINDER_TYPE,
                        title=title,
                        message=message,
                        priority=priority,
                        link=link,
                        sender_role="System",
                        user_ids=fresh,
                    )
                )

    if created:
        session.commit()
        push_created(created)
        logger.info("Lease expiration reminders sent: %s notifications", len(created))
    return created
