import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models.models import (
    STATUS_APPROVED,
    OwnershipRelationship,
    OwnershipTransfer,
    TenantRelationship,
)
from .permissions import Capabilities

logger = logging.getLogger(__name__)


def _as_int(record_id: Any) -> Optional[int]:
    try:
        return int(record_id)
    except (TypeError, ValueError):
        return None


def _registration_conflict(session: Session, actor_id: int, record_id: int) -> Optional[str]:
    if actor_id == record_id:
        return "Committee members cannot decide their own registration."
    return None


def _apartment_conflict(session: Session, actor_id: int, record_id: int) -> Optional[str]:
    owns = (
        session.query(OwnershipRelationship.id)
        .filter(
            OwnershipRelationship.apartment_id == record_id,
            OwnershipRelationship.user_id == actor_id,
            OwnershipRelationship.is_active.is_(True),
            OwnershipRelationship.status == STATUS_APPROVED,
        )
        .first()
    )
    if owns:
        return "Committee members cannot act on an apartment they own."
    return None


def _transfer_conflict(session: Session, actor_id: int, record_id: int) -> Optional[str]:
    transfer = session.get(OwnershipTransfer, record_id)
    if transfer and actor_id in (transfer.from_user_id, transfer.to_user_id):
        return "Committee members cannot decide a transfer they are party to."
    return None


def _relationship_conflict(model) -> Callable[[Session, int, int], Optional[str]]:
    def check(session: Session, actor_id: int, record_id: int) -> Optional[str]:
        relationship = session.get(model, record_id)
        if relationship and relationship.user_id == actor_id:
            return "Committee members cannot decide their own relationship request."
        return None

    return check


CONFLICT_RULES: Dict[str, Callable[[Session, int, int], Optional[str]]] = {
    "users": _registration_conflict,
    "apartments": _apartment_conflict,
    "ownership_transfers": _transfer_conflict,
    "tenant_relationships": _relationship_conflict(TenantRelationship),
    "ownership_relationships": _relationship_conflict(OwnershipRelationship),
}


def find_conflict(
    session: Session,
    capabilities: Capabilities,
    actor_id: int,
    table: str,
    record_id: Any,
) -> Optional[str]:
    """Return why a committee actor is disqualified from acting on a record, or None.

    Only committee members are screened. Tables without a rule never conflict.
    """
    if not capabilities.is_pst_member:
        return None
    rule = CONFLICT_RULES.get(table)
    target_id = _as_int(record_id)
    if rule is None or target_id is None:
        return None
    reason = rule(session, actor_id, target_id)
    if reason:
        logger.warning("Conflict of interest: user %s on %s/%s", actor_id, table, target_id)
    return reason
