from dataclasses import dataclass
from typing import Iterable, Optional

from ..constants import INSTANT_APPROVAL_RANK, OVERRIDE_RANK
from ..models.models import RoleAssignment, User


@dataclass(frozen=True)
class Capabilities:
    """What an actor may do, derived from their active role assignments."""

    max_rank: int = 0
    can_approve: bool = False
    can_reject: bool = False
    can_modify: bool = False
    can_override: bool = False
    instant_approval: bool = False
    is_pst_member: bool = False
    pst_role: Optional[str] = None
    role_name: Optional[str] = None

    def has(self, capability: str) -> bool:
        return bool(getattr(self, capability, False))


NO_CAPABILITIES = Capabilities()


def _active_roles(assignments: Iterable[RoleAssignment]) -> list:
    roles = [
        assignment.role
        for assignment in assignments
        if assignment.is_active and assignment.role is not None and assignment.role.is_active
    ]
    # Highest rank first, name breaks ties so derivation is deterministic.
    return sorted(roles, key=lambda role: (-role.permission_level, role.name))


def derive_capabilities(assignments: Iterable[RoleAssignment]) -> Capabilities:
    roles = _active_roles(assignments)
    if not roles:
        return NO_CAPABILITIES

    max_rank = roles[0].permission_level
    approver = any(role.is_approver for role in roles)
    committee_roles = [role for role in roles if role.is_committee]
    committee_head = any(role.is_committee_head for role in roles)

    return Capabilities(
        max_rank=max_rank,
        can_approve=approver,
        can_reject=approver,
        can_modify=approver,
        can_override=committee_head or max_rank >= OVERRIDE_RANK,
        instant_approval=max_rank >= INSTANT_APPROVAL_RANK,
        is_pst_member=bool(committee_roles),
        pst_role=committee_roles[0].name if committee_roles else None,
        role_name=roles[0].name,
    )


def capabilities_for(user: Optional[User]) -> Capabilities:
    if user is None:
        return NO_CAPABILITIES
    return derive_capabilities(user.role_assignments)
