from datetime import date
from decimal import Decimal

import pytest

from occupancy.core.errors import AuthorizationError
from occupancy.models.models import AuditLog, OwnershipTransfer
from occupancy.services.conflicts import find_conflict
from occupancy.services.permissions import capabilities_for


def test_committee_member_cannot_decide_own_registration(db_session, create_user):
    secretary = create_user(email="secretary@example.com", role_names=("Secretary",))

    reason = find_conflict(db_session, capabilities_for(secretary), secretary.id, "users", secretary.id)

    assert reason == "Committee members cannot decide their own registration."


def test_committee_member_cannot_act_on_owned_apartment(db_session, create_user, create_apartment, make_owner):
    apartment = create_apartment()
    treasurer = create_user(email="treasurer@example.com", role_names=("Treasurer", "Owner"))
    make_owner(treasurer, apartment)

    reason = find_conflict(db_session, capabilities_for(treasurer), treasurer.id, "apartments", apartment.id)

    assert reason is not None


def test_committee_member_party_to_transfer(db_session, create_user, create_apartment):
    apartment = create_apartment()
    president = create_user(email="president@example.com", role_names=("President",))
    buyer = create_user(email="buyer@example.com")
    transfer = OwnershipTransfer(
        apartment_id=apartment.id,
        from_user_id=president.id,
        to_user_id=buyer.id,
        percentage=Decimal("50"),
    )
    db_session.add(transfer)
    db_session.commit()

    caps = capabilities_for(president)

    assert find_conflict(db_session, caps, president.id, "ownership_transfers", transfer.id) is not None
    assert find_conflict(db_session, caps, president.id, "ownership_transfers", 999) is None


def test_committee_member_own_relationship(db_session, create_user, create_apartment, make_tenant):
    apartment = create_apartment()
    secretary = create_user(email="secretary@example.com", role_names=("Secretary",))
    tenancy = make_tenant(secretary, apartment)

    reason = find_conflict(db_session, capabilities_for(secretary), secretary.id, "tenant_relationships", tenancy.id)

    assert reason == "Committee members cannot decide their own relationship request."


def test_non_committee_actors_are_never_screened(db_session, create_user):
    admin = create_user(email="admin@example.com", role_names=("Admin",))
    delegate = create_user(email="delegate@example.com", role_names=("Committee Delegate",))

    assert find_conflict(db_session, capabilities_for(admin), admin.id, "users", admin.id) is None
    assert find_conflict(db_session, capabilities_for(delegate), delegate.id, "users", delegate.id) is None


def test_unknown_table_or_bad_id_never_conflicts(db_session, create_user):
    president = create_user(email="president@example.com", role_names=("President",))
    caps = capabilities_for(president)

    assert find_conflict(db_session, caps, president.id, "notifications", president.id) is None
    assert find_conflict(db_session, caps, president.id, "users", "not-a-number") is None


def test_guard_conflict_audits_refusal(db_session, create_user, create_apartment, make_tenant, gateway_for):
    apartment = create_apartment()
    secretary = create_user(email="secretary@example.com", role_names=("Secretary",))
    tenancy = make_tenant(secretary, apartment, date(2025, 1, 1), date(2025, 12, 31))

    with pytest.raises(AuthorizationError) as excinfo:
        gateway_for(secretary).guard_conflict("tenant_relationships", tenancy.id, action="extend")

    assert excinfo.value.code == "PST_CONFLICT"
    assert excinfo.value.status_code == 403
    entry = db_session.query(AuditLog).filter(AuditLog.action == "CONFLICT_ATTEMPT").one()
    assert entry.actor_id == secretary.id
    assert entry.table_name == "tenant_relationships"
    assert entry.record_id == str(tenancy.id)
    assert entry.role_of_actor == "Secretary"
    assert "extend" in entry.new_value
