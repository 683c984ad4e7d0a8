import logging
from typing import Optional

from ..constants import OVERRIDE_RANK
from ..core.errors import AuthorizationError, InvariantViolation, NotFound
from ..models.models import Apartment, Role, RoleAssignment, utcnow
from .approvals import get_active_user
from .audit import AUDIT_INSERT, AUDIT_UPDATE, snapshot
from .effects import notify
from .gateway import Gateway, Outcome

logger = logging.getLogger(__name__)


def assign_role(gateway: Gateway, user_id: int, role_id: int, apartment_id: Optional[int] = None) -> RoleAssignment:
    """Give a user an active role, optionally scoped to one apartment."""
    gateway.require("can_modify")
    gateway.require_rank(OVERRIDE_RANK)
    gateway.guard_conflict("users", user_id, action="assign_role")
    session = gateway.session

    def unit() -> Outcome:
        get_active_user(session, user_id)
        role = session.get(Role, role_id)
        if role is None or not role.is_active:
            raise NotFound("ROLE_NOT_FOUND", f"Role {role_id} not found.")
        if role.permission_level > gateway.capabilities.max_rank:
            raise AuthorizationError("INSUFFICIENT_PERMISSIONS", "Cannot grant a role above your own rank.")
        if apartment_id is not None and session.get(Apartment, apartment_id) is None:
            raise NotFound("APARTMENT_NOT_FOUND", f"Apartment {apartment_id} not found.")

        duplicate = (
            session.query(RoleAssignment.id)
            .filter(
                RoleAssignment.user_id == user_id,
                RoleAssignment.role_id == role_id,
                RoleAssignment.apartment_id.is_(None)
                if apartment_id is None
                else RoleAssignment.apartment_id == apartment_id,
                RoleAssignment.is_active.is_(True),
            )
            .first()
        )
        if duplicate:
            raise InvariantViolation("ROLE_ALREADY_ASSIGNED", "User already holds this role for this apartment.")

        assignment = RoleAssignment(
            user_id=user_id,
            role_id=role_id,
            apartment_id=apartment_id,
            is_active=True,
            assigned_by=gateway.actor_id,
        )
        session.add(assignment)
        session.flush()
        gateway.audit(AUDIT_INSERT, "role_assignments", assignment.id, after=snapshot(assignment))
        gateway.committee_action("modification", "role_assignments", assignment.id, details={"role": role.name})
        effect = notify(
            [user_id],
            "role_changed",
            "Role Updated",
            f"You have been given the {role.name} role by {gateway.role_name}.",
            priority="medium",
            link="/profile",
            sender_id=gateway.actor_id,
            sender_role=gateway.role_name,
        )
        logger.info("Role %s assigned to user %s by %s", role.name, user_id, gateway.actor_id)
        return Outcome(assignment, [effect])

    return gateway.execute(unit)


def deactivate_role_assignment(gateway: Gateway, assignment_id: int) -> RoleAssignment:
    gateway.require("can_modify")
    gateway.require_rank(OVERRIDE_RANK)
    session = gateway.session
    assignment = session.get(RoleAssignment, assignment_id)
    if assignment is None:
        raise NotFound("ROLE_ASSIGNMENT_NOT_FOUND", f"Role assignment {assignment_id} not found.")
    gateway.guard_conflict("users", assignment.user_id, action="deactivate_role")

    def unit() -> Outcome:
        if not assignment.is_active:
            return Outcome(assignment)
        before = snapshot(assignment)
        assignment.is_active = False
        assignment.deactivated_at = utcnow()
        gateway.audit(AUDIT_UPDATE, "role_assignments", assignment.id, before=before, after=snapshot(assignment))
        gateway.committee_action("modification", "role_assignments", assignment.id, details={"operation": "deactivate"})
        effect = notify(
            [assignment.user_id],
            "role_changed",
            "Role Updated",
            f"Your {assignment.role.name} role has been removed by {gateway.role_name}.",
            priority="medium",
            link="/profile",
            sender_id=gateway.actor_id,
            sender_role=gateway.role_name,
        )
        return Outcome(assignment, [effect])

    return gateway.execute(unit)
