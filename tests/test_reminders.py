from datetime import date, datetime, timedelta
from decimal import Decimal

from occupancy.models.models import STATUS_PENDING, Notification, OwnershipRelationship
from occupancy.services.reminders import (
    LEASE_REMINDER_TYPE,
    PENDING_ALERT_TYPE,
    lease_priority,
    notify_lease_expirations,
    notify_stale_pending,
)


def test_stale_pending_alert_reaches_committee(db_session, create_user, create_apartment):
    apartment = create_apartment()
    president = create_user(email="president@example.com", role_names=("President",))
    owner = create_user(email="owner@example.com")
    db_session.add(
        OwnershipRelationship(
            user_id=owner.id,
            apartment_id=apartment.id,
            percentage=Decimal("100"),
            start_date=date(2025, 1, 1),
            status=STATUS_PENDING,
            created_at=datetime(2025, 1, 1, 8, 0),
        )
    )
    db_session.commit()

    stale = notify_stale_pending(db_session, now=datetime(2025, 1, 3, 8, 0), hours=24)

    assert stale == 1
    alert = db_session.query(Notification).filter(Notification.type == PENDING_ALERT_TYPE).one()
    assert alert.recipient_id == president.id
    assert alert.title == "Pending Approvals Alert"
    assert alert.priority == "high"
    assert "1 approval requests pending for more than 24 hours" in alert.message


def test_fresh_requests_do_not_trigger_alert(db_session, create_user, create_apartment):
    apartment = create_apartment()
    create_user(email="president@example.com", role_names=("President",))
    owner = create_user(email="owner@example.com")
    db_session.add(
        OwnershipRelationship(
            user_id=owner.id,
            apartment_id=apartment.id,
            percentage=Decimal("100"),
            start_date=date(2025, 1, 1),
            status=STATUS_PENDING,
            created_at=datetime(2025, 1, 3, 7, 0),
        )
    )
    db_session.commit()

    assert notify_stale_pending(db_session, now=datetime(2025, 1, 3, 8, 0), hours=24) == 0
    assert db_session.query(Notification).count() == 0


def test_lease_priority_escalates_in_final_week():
    assert lease_priority(30) == "high"
    assert lease_priority(7) == "critical"
    assert lease_priority(1) == "critical"


def test_lease_reminders_go_to_tenant_and_owners_once_per_day(
    db_session, create_user, create_apartment, make_owner, make_tenant
):
    today = date(2025, 6, 1)
    apartment = create_apartment("12A")
    owner = create_user(email="owner@example.com")
    tenant = create_user(email="tenant@example.com", role_names=("Tenant",))
    make_owner(owner, apartment, "100")
    make_tenant(tenant, apartment, date(2024, 6, 8), today + timedelta(days=7))

    created = notify_lease_expirations(db_session, today=today, reminder_days=[30, 7])

    assert sorted(note.recipient_id for note in created) == sorted([owner.id, tenant.id])
    tenant_note = next(note for note in created if note.recipient_id == tenant.id)
    assert tenant_note.type == LEASE_REMINDER_TYPE
    assert tenant_note.title == "Lease Expiration Notice - 7 days"
    assert tenant_note.priority == "critical"
    assert "Lease for apartment 12A expires in 7 days." in tenant_note.message

    assert notify_lease_expirations(db_session, today=today, reminder_days=[30, 7]) == []


def test_no_reminder_outside_windows(db_session, create_user, create_apartment, make_tenant):
    today = date(2025, 6, 1)
    apartment = create_apartment()
    tenant = create_user(email="tenant@example.com", role_names=("Tenant",))
    make_tenant(tenant, apartment, date(2024, 6, 1), today + timedelta(days=20))

    assert notify_lease_expirations(db_session, today=today, reminder_days=[30, 7]) == []
