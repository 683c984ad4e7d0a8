import logging

import pytest

from occupancy.models.models import Notification
from occupancy.services import effects as effects_module
from occupancy.services.effects import dispatch_effects, notify, notify_committee
from occupancy.services.notifications import committee_member_ids, create_notification


def test_notify_dedupes_and_drops_missing_recipients():
    effect = notify([3, None, 3, 5], "transfer_approved", "Title", "Body", priority="high")

    assert effect.recipient_ids == (3, 5)
    assert effect.to_committee is False


def test_committee_member_ids_only_active_committee_roles(db_session, create_user):
    president = create_user(email="president@example.com", role_names=("President",))
    secretary = create_user(email="secretary@example.com", role_names=("Secretary",))
    create_user(email="admin@example.com", role_names=("Admin",))
    create_user(email="delegate@example.com", role_names=("Committee Delegate",))
    retired = create_user(email="retired@example.com", role_names=("Treasurer",))
    retired.is_active = False
    db_session.commit()

    assert committee_member_ids(db_session) == sorted([president.id, secretary.id])


def test_create_notification_rejects_unknown_priority(db_session, create_user):
    user = create_user(email="user@example.com")

    with pytest.raises(ValueError):
        create_notification(db_session, type="x", title="t", message="m", priority="urgent", user_ids=[user.id])


def test_dispatch_effects_fans_out_to_committee(db_session, create_user):
    president = create_user(email="president@example.com", role_names=("President",))
    treasurer = create_user(email="treasurer@example.com", role_names=("Treasurer",))
    owner = create_user(email="owner@example.com")

    delivered = dispatch_effects(
        db_session,
        [
            notify_committee("ownership_request_submitted", "Ownership Request", "Please review", priority="medium"),
            notify([owner.id], "ownership_relationship_approved", "Approved", "Done", priority="high"),
        ],
    )

    assert delivered == 3
    recipients = sorted(row.recipient_id for row in db_session.query(Notification).all())
    assert recipients == sorted([president.id, treasurer.id, owner.id])


def test_dispatch_failure_is_logged_and_swallowed(db_session, create_user, monkeypatch, caplog):
    owner = create_user(email="owner@example.com")
    calls = {"count": 0}
    original = effects_module.create_notification

    def flaky(session, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database went away")
        return original(session, **kwargs)

    monkeypatch.setattr(effects_module, "create_notification", flaky)

    with caplog.at_level(logging.ERROR, logger="occupancy.services.effects"):
        delivered = dispatch_effects(
            db_session,
            [
                notify([owner.id], "first", "First", "Lost"),
                notify([owner.id], "second", "Second", "Kept"),
            ],
        )

    assert delivered == 1
    assert [row.type for row in db_session.query(Notification).all()] == ["second"]
    assert "Failed to deliver first notification" in caplog.text


def test_list_notifications_returns_only_current_user_items(db_session, create_user, client_for):
    user = create_user(email="notify@example.com")
    other = create_user(email="other@example.com")
    note_one = Notification(recipient_id=user.id, type="info", title="Test", message="Body", priority="low")
    note_two = Notification(recipient_id=user.id, type="info", title="Another", message="Body", priority="critical")
    note_other = Notification(recipient_id=other.id, type="info", title="Hidden", message="Body")
    db_session.add_all([note_one, note_two, note_other])
    db_session.commit()

    client = client_for(user)
    response = client.get("/notifications/")
    assert response.status_code == 200
    returned_ids = {item["id"] for item in response.json()}
    assert returned_ids == {note_one.id, note_two.id}

    response = client.get("/notifications/", params={"priorities": ["critical"]})
    assert [item["id"] for item in response.json()] == [note_two.id]


def test_mark_notification_read_sets_timestamp(db_session, create_user, client_for):
    user = create_user(email="notify2@example.com")
    notification = Notification(recipient_id=user.id, type="info", title="Unread", message="Body")
    db_session.add(notification)
    db_session.commit()

    response = client_for(user).post(f"/notifications/{notification.id}/read")

    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None
    db_session.refresh(notification)
    assert notification.read_at is not None


def test_mark_all_notifications_read_updates_multiple_entries(db_session, create_user, client_for):
    user = create_user(email="notify3@example.com")
    first = Notification(recipient_id=user.id, type="info", title="First", message="Body")
    second = Notification(recipient_id=user.id, type="info", title="Second", message="Body")
    db_session.add_all([first, second])
    db_session.commit()

    response = client_for(user).post("/notifications/read-all")

    assert response.status_code == 200
    assert response.json()["updated"] == 2
    db_session.refresh(first)
    db_session.refresh(second)
    assert first.is_read and second.is_read
