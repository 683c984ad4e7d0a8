"""Authorization gateway every mutating engine action passes through.

Order of checks: the actor is already authenticated by the HTTP layer,
capabilities are derived from their active roles, the required capability
is checked before any state is read, committee members are screened for
conflicts of interest, and only then does the unit of work run inside a
single transaction. Notifications go out after commit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.errors import AuthorizationError
from ..models.models import User
from .audit import AUDIT_CONFLICT_ATTEMPT, audit_log, record_committee_action
from .conflicts import find_conflict
from .effects import NotificationEffect, dispatch_effects
from .permissions import Capabilities, capabilities_for

logger = logging.getLogger(__name__)

CAPABILITY_ERRORS = {
    "can_approve": ("CANNOT_APPROVE", "You do not have permission to approve requests."),
    "can_reject": ("CANNOT_APPROVE", "You do not have permission to reject requests."),
    "can_modify": ("CANNOT_MODIFY", "You do not have permission to modify this record."),
}
DEFAULT_CAPABILITY_ERROR = ("INSUFFICIENT_PERMISSIONS", "Insufficient permissions for this action.")


@dataclass
class Outcome:
    """Result of a unit of work plus the notifications it wants sent."""

    result: Any = None
    effects: List[NotificationEffect] = field(default_factory=list)


class Gateway:
    def __init__(self, session: Session, actor: User, capabilities: Optional[Capabilities] = None) -> None:
        self.session = session
        self.actor = actor
        self.capabilities = capabilities if capabilities is not None else capabilities_for(actor)

    @property
    def actor_id(self) -> int:
        return self.actor.id

    @property
    def role_name(self) -> Optional[str]:
        return self.capabilities.role_name

    def require(self, capability: str) -> None:
        if self.capabilities.has(capability):
            return
        code, message = CAPABILITY_ERRORS.get(capability, DEFAULT_CAPABILITY_ERROR)
        logger.warning("User %s refused: missing %s", self.actor_id, capability)
        raise AuthorizationError(code, message)

    def require_rank(self, minimum: int) -> None:
        if self.capabilities.max_rank < minimum:
            code, message = DEFAULT_CAPABILITY_ERROR
            logger.warning("User %s refused: rank %s below %s", self.actor_id, self.capabilities.max_rank, minimum)
            raise AuthorizationError(code, message)

    def guard_conflict(self, table: str, record_id: Any, action: str = "decide") -> None:
        """Refuse committee members who are party to the record, leaving an audit trail."""
        reason = find_conflict(self.session, self.capabilities, self.actor_id, table, record_id)
        if reason is None:
            return
        try:
            audit_log(
                self.session,
                actor_id=self.actor_id,
                action=AUDIT_CONFLICT_ATTEMPT,
                table_name=table,
                record_id=record_id,
                after={"attempted_action": action, "pst_role": self.capabilities.pst_role},
                role_of_actor=self.role_name,
                reason=reason,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Failed to record conflict attempt on %s/%s", table, record_id)
        raise AuthorizationError("PST_CONFLICT", reason)

    def audit(
        self,
        action: str,
        table: str,
        record_id: Any,
        before: Any = None,
        after: Any = None,
        reason: Optional[str] = None,
    ) -> None:
        audit_log(
            self.session,
            actor_id=self.actor_id,
            action=action,
            table_name=table,
            record_id=record_id,
            before=before,
            after=after,
            role_of_actor=self.role_name,
            reason=reason,
        )

    def committee_action(
        self,
        action_type: str,
        table: str,
        record_id: Any,
        details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record the committee-specific trail; a no-op for non-committee actors."""
        if not self.capabilities.is_pst_member:
            return
        record_committee_action(
            self.session,
            actor_id=self.actor_id,
            actor_pst_role=self.capabilities.pst_role,
            action_type=action_type,
            target_table=table,
            target_record_id=record_id,
            details=details,
            reason=reason,
        )

    def execute(self, unit: Callable[[], Outcome]) -> Any:
        """Run ``unit`` as one transaction, then dispatch its effects.

        Any exception rolls back everything the unit staged, audit rows
        included. Effects only run once the commit succeeded.
        """
        try:
            outcome = unit()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        dispatch_effects(self.session, outcome.effects)
        return outcome.result
