import pytest

from occupancy.core.errors import AuthorizationError, InvariantViolation, NotFound
from occupancy.models.models import AuditLog, Notification
from occupancy.services.permissions import capabilities_for
from occupancy.services.roles import assign_role, deactivate_role_assignment


def test_admin_assigns_committee_role(db_session, create_user, get_role, gateway_for):
    admin = create_user(email="admin@example.com", role_names=("Admin",))
    owner = create_user(email="owner@example.com")

    assignment = assign_role(gateway_for(admin), owner.id, get_role("Secretary").id)

    assert assignment.is_active
    assert assignment.assigned_by == admin.id
    db_session.refresh(owner)
    assert capabilities_for(owner).is_pst_member
    assert db_session.query(AuditLog).filter(AuditLog.table_name == "role_assignments").count() == 1
    note = db_session.query(Notification).filter(Notification.recipient_id == owner.id).one()
    assert "Secretary" in note.message

    with pytest.raises(InvariantViolation) as excinfo:
        assign_role(gateway_for(admin), owner.id, get_role("Secretary").id)
    assert excinfo.value.code == "ROLE_ALREADY_ASSIGNED"


def test_admin_cannot_grant_super_admin(db_session, create_user, get_role, gateway_for):
    admin = create_user(email="admin@example.com", role_names=("Admin",))
    owner = create_user(email="owner@example.com")

    with pytest.raises(AuthorizationError) as excinfo:
        assign_role(gateway_for(admin), owner.id, get_role("Super Admin").id)

    assert excinfo.value.code == "INSUFFICIENT_PERMISSIONS"


def test_committee_rank_cannot_manage_roles(db_session, create_user, get_role, gateway_for):
    president = create_user(email="president@example.com", role_names=("President",))
    owner = create_user(email="owner@example.com")

    with pytest.raises(AuthorizationError):
        assign_role(gateway_for(president), owner.id, get_role("Tenant").id)


def test_unknown_role_or_user(db_session, create_user, get_role, gateway_for):
    admin = create_user(email="admin@example.com", role_names=("Admin",))

    with pytest.raises(NotFound) as excinfo:
        assign_role(gateway_for(admin), admin.id, 999)
    assert excinfo.value.code == "ROLE_NOT_FOUND"
    with pytest.raises(NotFound) as excinfo:
        assign_role(gateway_for(admin), 999, get_role("Owner").id)
    assert excinfo.value.code == "USER_NOT_FOUND"


def test_deactivate_role_assignment(db_session, create_user, get_role, gateway_for):
    admin = create_user(email="admin@example.com", role_names=("Admin",))
    member = create_user(email="member@example.com", role_names=("Treasurer",))
    assignment = member.role_assignments[0]

    result = deactivate_role_assignment(gateway_for(admin), assignment.id)

    assert result.is_active is False
    assert result.deactivated_at is not None
    db_session.refresh(member)
    assert not capabilities_for(member).is_pst_member

    with pytest.raises(NotFound):
        deactivate_role_assignment(gateway_for(admin), 999)
