"""Request state machine for ownership, tenancy, transfer and registration requests.

Every request moves ``pending -> approved | rejected`` exactly once. Each
operation takes a :class:`~occupancy.services.gateway.Gateway` bound to the
acting user; capability and conflict checks happen through it before any
request state is read, and the mutation runs as one gateway unit of work.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..constants import INSTANT_APPROVAL_RANK, REQUEST_KINDS, REQUEST_TABLES
from ..core.errors import InvariantViolation, NotFound, StateError, ValidationFailed
from ..models.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Apartment,
    AuditLog,
    CommitteeAction,
    OwnershipRelationship,
    OwnershipTransfer,
    Role,
    RoleAssignment,
    TenantRelationship,
    User,
    utcnow,
)
from .audit import AUDIT_INSERT, AUDIT_UPDATE, snapshot
from .effects import NotificationEffect, dispatch_effects, notify, notify_committee
from .gateway import Gateway, Outcome
from .invariants import (
    HUNDRED,
    ZERO,
    ApartmentSnapshot,
    check_extension,
    check_lease_dates,
    check_owner_capacity,
    check_percentage,
    check_tenant_capacity,
    check_transfer,
    check_unique_ownership,
    check_unique_tenancy,
    load_snapshot,
)
from .permissions import Capabilities

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
DECISIONS = (APPROVE, REJECT)

OWNERSHIP = "ownership_relationship"
TENANCY = "tenant_relationship"
TRANSFER = "ownership_transfer"
REGISTRATION = "user_registration"

KIND_MODELS = {
    OWNERSHIP: OwnershipRelationship,
    TENANCY: TenantRelationship,
    TRANSFER: OwnershipTransfer,
    REGISTRATION: User,
}

KIND_LABELS = {
    OWNERSHIP: "ownership request",
    TENANCY: "tenancy request",
    TRANSFER: "ownership transfer",
    REGISTRATION: "registration",
}

INSTANT_COMPLETION_TEXT = "The transfer has been completed immediately."
DEFERRED_COMPLETION_TEXT = "The transfer will be processed shortly."
CENT = Decimal("0.01")


@dataclass(frozen=True)
class PendingItem:
    kind: str
    record: Any

    @property
    def created_at(self) -> datetime:
        return self.record.created_at


def approval_level(capabilities: Capabilities) -> str:
    if capabilities.instant_approval:
        return "instant"
    if capabilities.can_override:
        return "override"
    return "standard"


def request_status(kind: str, record: Any) -> str:
    if kind == REGISTRATION:
        return record.registration_status
    return record.status


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo else value


def _as_percentage(value: Any) -> Decimal:
    try:
        percentage = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed("OWNERSHIP_PERCENTAGE_INVALID", "Percentage must be a number.")
    if not percentage.is_finite():
        raise ValidationFailed("OWNERSHIP_PERCENTAGE_INVALID", "Percentage must be a number.")
    if percentage <= ZERO or percentage > HUNDRED:
        raise ValidationFailed(
            "OWNERSHIP_PERCENTAGE_INVALID",
            "Percentage must be greater than 0 and at most 100.",
        )
    if percentage != percentage.quantize(CENT):
        raise ValidationFailed(
            "OWNERSHIP_PERCENTAGE_INVALID",
            "Percentage can have at most two decimal places.",
        )
    return percentage.quantize(CENT)


def _apartment_name(session: Session, apartment_id: int) -> str:
    apartment = session.get(Apartment, apartment_id)
    return apartment.unit_number if apartment else str(apartment_id)


def _user_name(session: Session, user_id: Optional[int]) -> str:
    user = session.get(User, user_id) if user_id is not None else None
    if user is None:
        return "Unknown user"
    return user.full_name or user.email


def get_active_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound("USER_NOT_FOUND", f"User {user_id} not found.")
    return user


def _subject_id(gateway: Gateway, user_id: Optional[int]) -> int:
    """Submitting on someone else's behalf needs the modify capability."""
    if user_id is None or user_id == gateway.actor_id:
        return gateway.actor_id
    gateway.require("can_modify")
    return user_id


def _sender(gateway: Gateway) -> Dict[str, Any]:
    return {"sender_id": gateway.actor_id, "sender_role": gateway.role_name}


def _stamp_relationship_approval(record: Any, gateway: Gateway, now: datetime) -> None:
    record.status = STATUS_APPROVED
    record.approved_by = gateway.actor_id
    record.approved_role = gateway.role_name
    record.approved_at = now


def _load_for_update(session: Session, model, record_id: int, kind: str):
    record = session.query(model).filter(model.id == record_id).with_for_update().first()
    if record is None:
        raise NotFound("REQUEST_NOT_FOUND", f"No {KIND_LABELS[kind]} with id {record_id}.")
    return record


def _ensure_pending(kind: str, record: Any) -> None:
    status = request_status(kind, record)
    if status == STATUS_APPROVED:
        raise StateError("ALREADY_APPROVED", "This request has already been approved.")
    if status == STATUS_REJECTED:
        raise StateError("ALREADY_REJECTED", "This request has already been rejected.")


# --- Submissions ---------------------------------------------------------


def submit_ownership_request(
    gateway: Gateway,
    apartment_id: int,
    percentage: Any,
    start_date: date,
    user_id: Optional[int] = None,
) -> OwnershipRelationship:
    percentage = _as_percentage(percentage)
    subject_id = _subject_id(gateway, user_id)
    session = gateway.session
    instant = gateway.capabilities.instant_approval

    def unit() -> Outcome:
        get_active_user(session, subject_id)
        apartment = load_snapshot(session, apartment_id)
        check_unique_ownership(apartment, subject_id).ensure()
        check_owner_capacity(apartment).ensure()
        check_percentage(apartment, percentage).ensure()

        relationship = OwnershipRelationship(
            user_id=subject_id,
            apartment_id=apartment_id,
            percentage=percentage,
            start_date=start_date,
            is_active=True,
            status=STATUS_PENDING,
            requested_by=gateway.actor_id,
        )
        if instant:
            _stamp_relationship_approval(relationship, gateway, utcnow())
        session.add(relationship)
        session.flush()

        gateway.audit(AUDIT_INSERT, "ownership_relationships", relationship.id, after=snapshot(relationship))
        unit_name = _apartment_name(session, apartment_id)
        effects: List[NotificationEffect] = []
        if instant:
            gateway.committee_action(
                "approval",
                "ownership_relationships",
                relationship.id,
                details={"approval_level": "instant", "request_type": OWNERSHIP, "on_submit": True},
            )
            effects.append(
                notify(
                    [subject_id],
                    "ownership_relationship_approved",
                    "Ownership Recorded",
                    f"Your {percentage}% ownership of apartment {unit_name} has been recorded by {gateway.role_name}.",
                    priority="high",
                    link=f"/relationships/ownership/{relationship.id}",
                    **_sender(gateway),
                )
            )
        else:
            effects.append(
                notify_committee(
                    "ownership_request_submitted",
                    "Ownership Request",
                    f"{_user_name(session, subject_id)} requests {percentage}% ownership of apartment {unit_name}.",
                    priority="medium",
                    link=f"/approvals/{OWNERSHIP}/{relationship.id}",
                    **_sender(gateway),
                )
            )
        logger.info(
            "Ownership request %s for apartment %s created (%s)", relationship.id, apartment_id, relationship.status
        )
        return Outcome(relationship, effects)

    return gateway.execute(unit)


def submit_tenancy_request(
    gateway: Gateway,
    apartment_id: int,
    lease_start: date,
    lease_end: date,
    is_auto_renew: bool = False,
    user_id: Optional[int] = None,
) -> TenantRelationship:
    check_lease_dates(lease_start, lease_end).ensure()
    subject_id = _subject_id(gateway, user_id)
    session = gateway.session
    instant = gateway.capabilities.instant_approval

    def unit() -> Outcome:
        get_active_user(session, subject_id)
        apartment = load_snapshot(session, apartment_id)
        check_unique_tenancy(apartment, subject_id).ensure()
        check_tenant_capacity(apartment).ensure()

        tenancy = TenantRelationship(
            user_id=subject_id,
            apartment_id=apartment_id,
            lease_start=lease_start,
            lease_end=lease_end,
            is_auto_renew=is_auto_renew,
            is_active=True,
            status=STATUS_PENDING,
            requested_by=gateway.actor_id,
        )
        if instant:
            _stamp_relationship_approval(tenancy, gateway, utcnow())
        session.add(tenancy)
        session.flush()

        gateway.audit(AUDIT_INSERT, "tenant_relationships", tenancy.id, after=snapshot(tenancy))
        unit_name = _apartment_name(session, apartment_id)
        effects: List[NotificationEffect] = []
        if instant:
            gateway.committee_action(
                "approval",
                "tenant_relationships",
                tenancy.id,
                details={"approval_level": "instant", "request_type": TENANCY, "on_submit": True},
            )
            effects.append(
                notify(
                    [subject_id],
                    "tenant_relationship_approved",
                    "Tenancy Recorded",
                    f"Your lease for apartment {unit_name} until {lease_end.isoformat()} has been recorded.",
                    priority="high",
                    link=f"/relationships/tenancy/{tenancy.id}",
                    **_sender(gateway),
                )
            )
        else:
            effects.append(
                notify_committee(
                    "tenancy_request_submitted",
                    "Tenancy Request",
                    f"{_user_name(session, subject_id)} requests a tenancy for apartment {unit_name}.",
                    priority="medium",
                    link=f"/approvals/{TENANCY}/{tenancy.id}",
                    **_sender(gateway),
                )
            )
        logger.info("Tenancy request %s for apartment %s created (%s)", tenancy.id, apartment_id, tenancy.status)
        return Outcome(tenancy, effects)

    return gateway.execute(unit)


def submit_transfer_request(
    gateway: Gateway,
    apartment_id: int,
    from_user_id: int,
    to_user_id: int,
    percentage: Any,
    reason: Optional[str] = None,
) -> OwnershipTransfer:
    """Transfers always start pending, whoever submits them."""
    percentage = _as_percentage(percentage)
    if from_user_id == to_user_id:
        raise ValidationFailed("SAME_USER_TRANSFER", "Cannot transfer ownership to the same user.")
    if from_user_id != gateway.actor_id:
        gateway.require("can_modify")
    session = gateway.session

    def unit() -> Outcome:
        get_active_user(session, from_user_id)
        get_active_user(session, to_user_id)
        apartment = load_snapshot(session, apartment_id)
        check_transfer(apartment, from_user_id, to_user_id, percentage).ensure()

        transfer = OwnershipTransfer(
            apartment_id=apartment_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            percentage=percentage,
            status=STATUS_PENDING,
            reason=reason,
            requested_by=gateway.actor_id,
        )
        session.add(transfer)
        session.flush()

        gateway.audit(AUDIT_INSERT, "ownership_transfers", transfer.id, after=snapshot(transfer), reason=reason)
        message = (
            f"{_user_name(session, from_user_id)} wants to transfer {percentage}% ownership of apartment "
            f"{_apartment_name(session, apartment_id)} to {_user_name(session, to_user_id)}"
        )
        effects = [
            notify_committee(
                "transfer_request_submitted",
                "Ownership Transfer Request",
                message,
                priority="critical",
                link=f"/approvals/{TRANSFER}/{transfer.id}",
                **_sender(gateway),
            )
        ]
        logger.info("Transfer request %s submitted for apartment %s", transfer.id, apartment_id)
        return Outcome(transfer, effects)

    return gateway.execute(unit)


def _registration_role(session: Session, relationship: str) -> Role:
    role_name = "Owner" if relationship == "owner" else "Tenant"
    role = session.query(Role).filter(Role.name == role_name, Role.is_active.is_(True)).first()
    if role is None:
        raise NotFound("ROLE_NOT_FOUND", f"Role {role_name} is not configured.")
    return role


def submit_registration(
    session: Session,
    *,
    email: str,
    hashed_password: str,
    apartment_id: int,
    relationship: str,
    full_name: Optional[str] = None,
    percentage: Any = None,
    start_date: Optional[date] = None,
    lease_start: Optional[date] = None,
    lease_end: Optional[date] = None,
    is_auto_renew: bool = False,
) -> User:
    """Public self-registration.

    Creates the user with a pending registration, their Owner or Tenant role
    assignment for the apartment and a pending relationship request, all in
    one transaction. The committee is notified after commit.
    """
    if relationship not in ("owner", "tenant"):
        raise ValidationFailed("INVALID_RELATIONSHIP", "Relationship must be 'owner' or 'tenant'.")
    if relationship == "owner":
        percentage = _as_percentage(percentage)
    else:
        if lease_start is None or lease_end is None:
            raise ValidationFailed("INVALID_LEASE_DATES", "Lease start and end are required.")
        check_lease_dates(lease_start, lease_end).ensure()

    try:
        email = email.lower()
        if session.query(User.id).filter(User.email == email).first():
            raise InvariantViolation("EMAIL_EXISTS", "An account with this email already exists.")

        apartment = load_snapshot(session, apartment_id)
        role = _registration_role(session, relationship)

        user = User(
            email=email,
            full_name=full_name,
            hashed_password=hashed_password,
            is_active=True,
            registration_status=STATUS_PENDING,
            registration_approved=False,
        )
        session.add(user)
        session.flush()

        if relationship == "owner":
            check_unique_ownership(apartment, user.id).ensure()
            check_owner_capacity(apartment).ensure()
            check_percentage(apartment, percentage).ensure()
            record = OwnershipRelationship(
                user_id=user.id,
                apartment_id=apartment_id,
                percentage=percentage,
                start_date=start_date or date.today(),
                is_active=True,
                status=STATUS_PENDING,
                requested_by=user.id,
            )
            table = "ownership_relationships"
        else:
            check_unique_tenancy(apartment, user.id).ensure()
            check_tenant_capacity(apartment).ensure()
            record = TenantRelationship(
                user_id=user.id,
                apartment_id=apartment_id,
                lease_start=lease_start,
                lease_end=lease_end,
                is_auto_renew=is_auto_renew,
                is_active=True,
                status=STATUS_PENDING,
                requested_by=user.id,
            )
            table = "tenant_relationships"
        assignment = RoleAssignment(user_id=user.id, role_id=role.id, apartment_id=apartment_id, is_active=True)
        session.add_all([record, assignment])
        session.flush()

        gateway = Gateway(session, user)
        gateway.audit(AUDIT_INSERT, "users", user.id, after=snapshot(user), reason="Self-registration")
        gateway.audit(AUDIT_INSERT, "role_assignments", assignment.id, after=snapshot(assignment))
        gateway.audit(AUDIT_INSERT, table, record.id, after=snapshot(record))

        effect = notify_committee(
            "new_registration_request",
            "New Registration Request",
            f"{full_name or email} has submitted a registration request for apartment "
            f"{_apartment_name(session, apartment_id)} as {role.name}",
            priority="high",
            link=f"/approvals/{REGISTRATION}/{user.id}",
            sender_id=user.id,
            sender_role="System",
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Registration %s submitted for apartment %s", user.id, apartment_id)
    dispatch_effects(session, [effect])
    return user


def register_user(
    gateway: Gateway,
    *,
    email: str,
    hashed_password: str,
    role_ids: List[int],
    full_name: Optional[str] = None,
    apartment_id: Optional[int] = None,
) -> User:
    """Administrative account creation; the registration is approved on creation."""
    gateway.require("can_modify")
    gateway.require_rank(INSTANT_APPROVAL_RANK)
    session = gateway.session

    def unit() -> Outcome:
        normalized = email.lower()
        if session.query(User.id).filter(User.email == normalized).first():
            raise InvariantViolation("EMAIL_EXISTS", "An account with this email already exists.")
        roles = session.query(Role).filter(Role.id.in_(role_ids), Role.is_active.is_(True)).all()
        if len(roles) != len(set(role_ids)):
            raise ValidationFailed("UNKNOWN_ROLE", "One or more roles are invalid.")
        if apartment_id is not None and session.get(Apartment, apartment_id) is None:
            raise NotFound("APARTMENT_NOT_FOUND", f"Apartment {apartment_id} not found.")

        now = utcnow()
        user = User(
            email=normalized,
            full_name=full_name,
            hashed_password=hashed_password,
            is_active=True,
            registration_status=STATUS_APPROVED,
            registration_approved=True,
            registration_approved_by=gateway.actor_id,
            registration_approved_role=gateway.role_name,
            registration_approved_at=now,
        )
        session.add(user)
        session.flush()
        gateway.audit(AUDIT_INSERT, "users", user.id, after=snapshot(user), reason="Created by administrator")

        for role in roles:
            assignment = RoleAssignment(
                user_id=user.id,
                role_id=role.id,
                apartment_id=apartment_id,
                is_active=True,
                assigned_by=gateway.actor_id,
            )
            session.add(assignment)
            session.flush()
            gateway.audit(AUDIT_INSERT, "role_assignments", assignment.id, after=snapshot(assignment))

        gateway.committee_action(
            "approval",
            "users",
            user.id,
            details={"approval_level": "instant", "request_type": REGISTRATION, "on_submit": True},
        )
        effects = [
            notify(
                [user.id],
                "registration_approved",
                "Registration Approved",
                f"Your account has been created and approved by {gateway.role_name}.",
                priority="high",
                link="/profile",
                **_sender(gateway),
            )
        ]
        logger.info("User %s registered by %s", user.id, gateway.actor_id)
        return Outcome(user, effects)

    return gateway.execute(unit)


# --- Decisions -----------------------------------------------------------


def _relationship_parties(record: Any) -> List[int]:
    return [record.user_id, record.requested_by]


def _approve_ownership(gateway: Gateway, record: OwnershipRelationship, comments: Optional[str]) -> Outcome:
    session = gateway.session
    apartment = load_snapshot(session, record.apartment_id)
    check_owner_capacity(apartment, exclude_id=record.id).ensure()
    check_percentage(apartment, Decimal(str(record.percentage)), exclude_id=record.id).ensure()
    return _approve_relationship(gateway, record, comments, OWNERSHIP, "ownership_relationships")


def _approve_tenancy(gateway: Gateway, record: TenantRelationship, comments: Optional[str]) -> Outcome:
    session = gateway.session
    apartment = load_snapshot(session, record.apartment_id)
    check_tenant_capacity(apartment, exclude_id=record.id).ensure()
    check_lease_dates(record.lease_start, record.lease_end).ensure()
    return _approve_relationship(gateway, record, comments, TENANCY, "tenant_relationships")


def _approve_relationship(gateway: Gateway, record: Any, comments: Optional[str], kind: str, table: str) -> Outcome:
    level = approval_level(gateway.capabilities)
    before = snapshot(record)
    _stamp_relationship_approval(record, gateway, utcnow())
    after = snapshot(record)
    after["approval_level"] = level

    gateway.audit(AUDIT_UPDATE, table, record.id, before=before, after=after, reason=comments or f"Approved {kind}")
    gateway.committee_action(
        "override" if level == "override" else "approval",
        table,
        record.id,
        details={"approval_level": level, "request_type": kind, "comments": comments},
        reason=comments or f"Approved {kind} via {level} process",
    )
    label = KIND_LABELS[kind]
    effect = notify(
        _relationship_parties(record),
        f"{kind}_approved",
        f"{label.capitalize()} Approved",
        f"Your {label} for apartment {_apartment_name(gateway.session, record.apartment_id)} "
        f"has been approved by {gateway.role_name}.",
        priority="high",
        **_sender(gateway),
    )
    return Outcome(record, [effect])


def _reject_relationship(gateway: Gateway, record: Any, comments: str, kind: str, table: str) -> Outcome:
    before = snapshot(record)
    record.status = STATUS_REJECTED
    record.is_active = False
    record.rejected_by = gateway.actor_id
    record.rejected_at = utcnow()
    record.rejection_reason = comments

    gateway.audit(AUDIT_UPDATE, table, record.id, before=before, after=snapshot(record), reason=comments)
    gateway.committee_action(
        "rejection",
        table,
        record.id,
        details={"request_type": kind},
        reason=comments,
    )
    label = KIND_LABELS[kind]
    effect = notify(
        _relationship_parties(record),
        f"{kind}_rejected",
        f"{label.capitalize()} Rejected",
        f"Your {label} for apartment {_apartment_name(gateway.session, record.apartment_id)} "
        f"has been rejected by {gateway.role_name}. Reason: {comments}",
        priority="medium",
        **_sender(gateway),
    )
    return Outcome(record, [effect])


def _complete_transfer(gateway: Gateway, transfer: OwnershipTransfer, now: datetime) -> None:
    """Move the percentage from the transferor to the transferee.

    The transferor's row shrinks, or is closed when nothing remains, and the
    transferee gets a new approved row. Each mutated row gets its own audit
    entry. Invariants must already have been checked against a locked
    snapshot.
    """
    session = gateway.session
    percentage = Decimal(str(transfer.percentage))
    source = (
        session.query(OwnershipRelationship)
        .filter(
            OwnershipRelationship.apartment_id == transfer.apartment_id,
            OwnershipRelationship.user_id == transfer.from_user_id,
            OwnershipRelationship.is_active.is_(True),
            OwnershipRelationship.status == STATUS_APPROVED,
        )
        .with_for_update()
        .one()
    )
    before = snapshot(source)
    remaining = Decimal(str(source.percentage)) - percentage
    if remaining <= ZERO:
        source.is_active = False
        source.end_date = now.date()
    else:
        source.percentage = remaining
    session.flush()
    gateway.audit(
        AUDIT_UPDATE,
        "ownership_relationships",
        source.id,
        before=before,
        after=snapshot(source),
        reason=f"Ownership transfer {transfer.id}",
    )

    acquired = OwnershipRelationship(
        user_id=transfer.to_user_id,
        apartment_id=transfer.apartment_id,
        percentage=percentage,
        start_date=now.date(),
        is_active=True,
        status=STATUS_APPROVED,
        requested_by=transfer.requested_by,
        approved_by=gateway.actor_id,
        approved_role=gateway.role_name,
        approved_at=now,
    )
    session.add(acquired)
    session.flush()
    gateway.audit(
        AUDIT_INSERT,
        "ownership_relationships",
        acquired.id,
        after=snapshot(acquired),
        reason=f"Ownership transfer {transfer.id}",
    )
    transfer.completion_date = now
    logger.info(
        "Transfer %s completed: %s%% of apartment %s moved from %s to %s",
        transfer.id,
        percentage,
        transfer.apartment_id,
        transfer.from_user_id,
        transfer.to_user_id,
    )


def _transfer_parties(transfer: OwnershipTransfer) -> List[int]:
    return [transfer.from_user_id, transfer.to_user_id, transfer.requested_by]


def _approve_transfer(gateway: Gateway, transfer: OwnershipTransfer, comments: Optional[str]) -> Outcome:
    session = gateway.session
    apartment: ApartmentSnapshot = load_snapshot(session, transfer.apartment_id)
    check_transfer(
        apartment, transfer.from_user_id, transfer.to_user_id, Decimal(str(transfer.percentage))
    ).ensure()

    level = approval_level(gateway.capabilities)
    instant = gateway.capabilities.instant_approval
    now = utcnow()
    before = snapshot(transfer)
    transfer.status = STATUS_APPROVED
    transfer.approved_by = gateway.actor_id
    transfer.approved_role = gateway.role_name
    transfer.approval_date = now
    transfer.approval_comments = comments
    if instant:
        _complete_transfer(gateway, transfer, now)
    after = snapshot(transfer)
    after["approval_level"] = level

    gateway.audit(
        AUDIT_UPDATE, "ownership_transfers", transfer.id, before=before, after=after, reason=comments or f"Approved {TRANSFER}"
    )
    gateway.committee_action(
        "override" if level == "override" else "approval",
        "ownership_transfers",
        transfer.id,
        details={
            "approval_level": level,
            "request_type": TRANSFER,
            "comments": comments,
            "instant_completion": instant,
        },
        reason=comments or f"Approved {TRANSFER} via {level} process",
    )
    completion = INSTANT_COMPLETION_TEXT if instant else DEFERRED_COMPLETION_TEXT
    effect = notify(
        _transfer_parties(transfer),
        "transfer_approved",
        "Ownership Transfer Approved",
        f"Ownership transfer request for apartment {_apartment_name(session, transfer.apartment_id)} "
        f"has been approved by {gateway.role_name} {_user_name(session, gateway.actor_id)}. {completion}",
        priority="high",
        link="/transfers",
        **_sender(gateway),
    )
    return Outcome(transfer, [effect])


def _reject_transfer(gateway: Gateway, transfer: OwnershipTransfer, comments: str) -> Outcome:
    session = gateway.session
    before = snapshot(transfer)
    transfer.status = STATUS_REJECTED
    transfer.rejection_reason = comments
    transfer.approved_by = gateway.actor_id
    transfer.approved_role = gateway.role_name
    transfer.approval_date = utcnow()

    gateway.audit(AUDIT_UPDATE, "ownership_transfers", transfer.id, before=before, after=snapshot(transfer), reason=comments)
    gateway.committee_action(
        "rejection", "ownership_transfers", transfer.id, details={"request_type": TRANSFER}, reason=comments
    )
    effect = notify(
        _transfer_parties(transfer),
        "transfer_rejected",
        "Ownership Transfer Rejected",
        f"Ownership transfer request for apartment {_apartment_name(session, transfer.apartment_id)} "
        f"has been rejected by {gateway.role_name} {_user_name(session, gateway.actor_id)}. Reason: {comments}",
        priority="medium",
        link="/transfers",
        **_sender(gateway),
    )
    return Outcome(transfer, [effect])


def _approve_registration(gateway: Gateway, user: User, comments: Optional[str]) -> Outcome:
    level = approval_level(gateway.capabilities)
    before = snapshot(user)
    user.registration_status = STATUS_APPROVED
    user.registration_approved = True
    user.registration_approved_by = gateway.actor_id
    user.registration_approved_role = gateway.role_name
    user.registration_approved_at = utcnow()
    after = snapshot(user)
    after["approval_level"] = level

    gateway.audit(AUDIT_UPDATE, "users", user.id, before=before, after=after, reason=comments or f"Approved {REGISTRATION}")
    gateway.committee_action(
        "override" if level == "override" else "approval",
        "users",
        user.id,
        details={"approval_level": level, "request_type": REGISTRATION, "comments": comments},
        reason=comments or f"Approved {REGISTRATION} via {level} process",
    )
    effect = notify(
        [user.id],
        "registration_approved",
        "Registration Approved",
        f"Your registration has been approved by {gateway.role_name}.",
        priority="high",
        link="/profile",
        **_sender(gateway),
    )
    return Outcome(user, [effect])


def _reject_registration(gateway: Gateway, user: User, comments: str) -> Outcome:
    before = snapshot(user)
    user.registration_status = STATUS_REJECTED
    user.registration_approved = False
    user.registration_rejection_reason = comments

    gateway.audit(AUDIT_UPDATE, "users", user.id, before=before, after=snapshot(user), reason=comments)
    gateway.committee_action("rejection", "users", user.id, details={"request_type": REGISTRATION}, reason=comments)
    effect = notify(
        [user.id],
        "registration_rejected",
        "Registration Rejected",
        f"Your registration has been rejected by {gateway.role_name}. Reason: {comments}",
        priority="medium",
        link="/profile",
        **_sender(gateway),
    )
    return Outcome(user, [effect])


APPROVERS = {
    OWNERSHIP: _approve_ownership,
    TENANCY: _approve_tenancy,
    TRANSFER: _approve_transfer,
    REGISTRATION: _approve_registration,
}

REJECTORS = {
    OWNERSHIP: lambda gateway, record, comments: _reject_relationship(
        gateway, record, comments, OWNERSHIP, "ownership_relationships"
    ),
    TENANCY: lambda gateway, record, comments: _reject_relationship(
        gateway, record, comments, TENANCY, "tenant_relationships"
    ),
    TRANSFER: _reject_transfer,
    REGISTRATION: _reject_registration,
}


def decide(
    gateway: Gateway,
    request_kind: str,
    request_id: int,
    decision: str,
    comments: Optional[str] = None,
) -> Any:
    """Approve or reject a pending request of any kind.

    Deciding a request twice fails with ``ALREADY_APPROVED`` or
    ``ALREADY_REJECTED`` and leaves its state untouched.
    """
    if request_kind not in REQUEST_KINDS:
        raise ValidationFailed("UNKNOWN_REQUEST_KIND", f"Unknown request kind: {request_kind}")
    if decision not in DECISIONS:
        raise ValidationFailed("INVALID_DECISION", "Decision must be 'approve' or 'reject'.")
    comments = comments.strip() if comments else None
    if decision == REJECT and not comments:
        raise ValidationFailed("REJECTION_REASON_REQUIRED", "A reason is required to reject a request.")

    gateway.require("can_approve" if decision == APPROVE else "can_reject")
    table = REQUEST_TABLES[request_kind]
    gateway.guard_conflict(table, request_id, action=decision)

    session = gateway.session
    handler = (APPROVERS if decision == APPROVE else REJECTORS)[request_kind]

    def unit() -> Outcome:
        record = _load_for_update(session, KIND_MODELS[request_kind], request_id, request_kind)
        _ensure_pending(request_kind, record)
        outcome = handler(gateway, record, comments)
        logger.info(
            "%s %s %s by user %s", request_kind, request_id, request_status(request_kind, record), gateway.actor_id
        )
        return outcome

    return gateway.execute(unit)


# --- Privileged side transitions ----------------------------------------


def complete_transfer(gateway: Gateway, transfer_id: int) -> OwnershipTransfer:
    """Finish an approved transfer whose approver could not complete it."""
    gateway.require("can_approve")
    gateway.require("instant_approval")
    gateway.guard_conflict("ownership_transfers", transfer_id, action="complete")
    session = gateway.session

    def unit() -> Outcome:
        transfer = _load_for_update(session, OwnershipTransfer, transfer_id, TRANSFER)
        if transfer.status != STATUS_APPROVED:
            raise StateError("TRANSFER_NOT_APPROVED", "Only approved transfers can be completed.")
        if transfer.completion_date is not None:
            raise StateError("TRANSFER_ALREADY_COMPLETED", "This transfer has already been completed.")

        apartment = load_snapshot(session, transfer.apartment_id)
        check_transfer(
            apartment, transfer.from_user_id, transfer.to_user_id, Decimal(str(transfer.percentage))
        ).ensure()
        before = snapshot(transfer)
        _complete_transfer(gateway, transfer, utcnow())
        gateway.audit(
            AUDIT_UPDATE, "ownership_transfers", transfer.id, before=before, after=snapshot(transfer), reason="Completed"
        )
        gateway.committee_action(
            "modification",
            "ownership_transfers",
            transfer.id,
            details={"request_type": TRANSFER, "operation": "complete"},
        )
        effect = notify(
            _transfer_parties(transfer),
            "transfer_completed",
            "Ownership Transfer Completed",
            f"Ownership transfer for apartment {_apartment_name(session, transfer.apartment_id)} has been completed.",
            priority="high",
            link="/transfers",
            **_sender(gateway),
        )
        return Outcome(transfer, [effect])

    return gateway.execute(unit)


def extend_lease(
    gateway: Gateway, tenancy_id: int, new_end_date: date, reason: Optional[str] = None
) -> TenantRelationship:
    gateway.require("can_modify")
    gateway.guard_conflict("tenant_relationships", tenancy_id, action="extend")
    session = gateway.session

    def unit() -> Outcome:
        tenancy = _load_for_update(session, TenantRelationship, tenancy_id, TENANCY)
        if tenancy.status != STATUS_APPROVED or not tenancy.is_active:
            raise StateError("TENANCY_NOT_ACTIVE", "Only approved, active tenancies can be extended.")
        load_snapshot(session, tenancy.apartment_id)
        check_extension(tenancy.lease_end, new_end_date).ensure()

        before = snapshot(tenancy)
        tenancy.lease_end = new_end_date
        tenancy.modified_by_committee = gateway.capabilities.is_pst_member
        gateway.audit(
            AUDIT_UPDATE,
            "tenant_relationships",
            tenancy.id,
            before=before,
            after=snapshot(tenancy),
            reason=reason or "Lease extended",
        )
        gateway.committee_action(
            "modification",
            "tenant_relationships",
            tenancy.id,
            details={"operation": "extend", "old_end": before["lease_end"], "new_end": new_end_date},
            reason=reason,
        )
        effect = notify(
            [tenancy.user_id],
            "lease_extended",
            "Lease Extended",
            f"Your lease for apartment {_apartment_name(session, tenancy.apartment_id)} now ends on "
            f"{new_end_date.isoformat()}.",
            priority="medium",
            **_sender(gateway),
        )
        logger.info("Tenancy %s extended to %s", tenancy.id, new_end_date)
        return Outcome(tenancy, [effect])

    return gateway.execute(unit)


def modify_ownership(
    gateway: Gateway,
    relationship_id: int,
    percentage: Any = None,
    end_date: Optional[date] = None,
    reason: Optional[str] = None,
) -> OwnershipRelationship:
    """Change the share or end date of an approved ownership.

    The new share is checked against the other approved owners, so a
    co-owned apartment only accepts a value that keeps the total at 100%.
    """
    gateway.require("can_modify")
    if percentage is None and end_date is None:
        raise ValidationFailed("NO_CHANGES", "Provide a new percentage or end date.")
    new_percentage = _as_percentage(percentage) if percentage is not None else None
    gateway.guard_conflict("ownership_relationships", relationship_id, action="modify")
    session = gateway.session

    def unit() -> Outcome:
        relationship = _load_for_update(session, OwnershipRelationship, relationship_id, OWNERSHIP)
        if relationship.status != STATUS_APPROVED or not relationship.is_active:
            raise StateError("RELATIONSHIP_NOT_ACTIVE", "Only approved, active ownerships can be modified.")
        apartment = load_snapshot(session, relationship.apartment_id)
        if new_percentage is not None:
            check_percentage(apartment, new_percentage, exclude_id=relationship.id).ensure()
        if end_date is not None and end_date < relationship.start_date:
            raise ValidationFailed("INVALID_END_DATE", "End date cannot be before the start date.")

        before = snapshot(relationship)
        details: Dict[str, Any] = {"operation": "modify"}
        if new_percentage is not None:
            relationship.percentage = new_percentage
            details["old_percentage"] = before["percentage"]
            details["new_percentage"] = new_percentage
        if end_date is not None:
            relationship.end_date = end_date
            details["end_date"] = end_date
        gateway.audit(
            AUDIT_UPDATE,
            "ownership_relationships",
            relationship.id,
            before=before,
            after=snapshot(relationship),
            reason=reason or "Ownership modified",
        )
        gateway.committee_action(
            "modification",
            "ownership_relationships",
            relationship.id,
            details=details,
            reason=reason,
        )
        effect = notify(
            [relationship.user_id],
            "ownership_modified",
            "Ownership Updated",
            f"Your ownership of apartment {_apartment_name(session, relationship.apartment_id)} is now "
            f"{relationship.percentage}%.",
            priority="medium",
            **_sender(gateway),
        )
        logger.info("Ownership %s modified by user %s", relationship.id, gateway.actor_id)
        return Outcome(relationship, [effect])

    return gateway.execute(unit)


def _closing_date(start: date, end_date: Optional[date]) -> date:
    closing = end_date or date.today()
    if closing < start:
        raise ValidationFailed("INVALID_END_DATE", "End date cannot be before the start date.")
    return closing


def close_ownership(
    gateway: Gateway, relationship_id: int, end_date: Optional[date] = None, reason: Optional[str] = None
) -> OwnershipRelationship:
    """Soft-close an approved ownership. The last remaining owner cannot be closed."""
    gateway.require("can_modify")
    gateway.require_rank(INSTANT_APPROVAL_RANK)
    gateway.guard_conflict("ownership_relationships", relationship_id, action="close")
    session = gateway.session

    def unit() -> Outcome:
        relationship = _load_for_update(session, OwnershipRelationship, relationship_id, OWNERSHIP)
        if relationship.status != STATUS_APPROVED or not relationship.is_active:
            raise StateError("RELATIONSHIP_NOT_ACTIVE", "Only approved, active ownerships can be closed.")
        apartment = load_snapshot(session, relationship.apartment_id)
        if not apartment.approved_owners(exclude_id=relationship.id):
            raise InvariantViolation("CANNOT_CLOSE_LAST_OWNER", "Cannot close the last owner of an apartment.")
        closing = _closing_date(relationship.start_date, end_date)

        before = snapshot(relationship)
        relationship.is_active = False
        relationship.end_date = closing
        gateway.audit(
            AUDIT_UPDATE,
            "ownership_relationships",
            relationship.id,
            before=before,
            after=snapshot(relationship),
            reason=reason or "Ownership closed",
        )
        gateway.committee_action(
            "modification",
            "ownership_relationships",
            relationship.id,
            details={"operation": "close", "end_date": closing},
            reason=reason,
        )
        effect = notify(
            [relationship.user_id],
            "ownership_closed",
            "Ownership Closed",
            f"Your ownership of apartment {_apartment_name(session, relationship.apartment_id)} ended on "
            f"{closing.isoformat()}.",
            priority="medium",
            **_sender(gateway),
        )
        return Outcome(relationship, [effect])

    return gateway.execute(unit)


def close_tenancy(
    gateway: Gateway, tenancy_id: int, end_date: Optional[date] = None, reason: Optional[str] = None
) -> TenantRelationship:
    gateway.require("can_modify")
    gateway.require_rank(INSTANT_APPROVAL_RANK)
    gateway.guard_conflict("tenant_relationships", tenancy_id, action="close")
    session = gateway.session

    def unit() -> Outcome:
        tenancy = _load_for_update(session, TenantRelationship, tenancy_id, TENANCY)
        if tenancy.status != STATUS_APPROVED or not tenancy.is_active:
            raise StateError("TENANCY_NOT_ACTIVE", "Only approved, active tenancies can be closed.")
        load_snapshot(session, tenancy.apartment_id)
        closing = _closing_date(tenancy.lease_start, end_date)

        before = snapshot(tenancy)
        tenancy.is_active = False
        tenancy.end_date = closing
        gateway.audit(
            AUDIT_UPDATE,
            "tenant_relationships",
            tenancy.id,
            before=before,
            after=snapshot(tenancy),
            reason=reason or "Tenancy closed",
        )
        gateway.committee_action(
            "modification",
            "tenant_relationships",
            tenancy.id,
            details={"operation": "close", "end_date": closing},
            reason=reason,
        )
        effect = notify(
            [tenancy.user_id],
            "tenancy_closed",
            "Tenancy Closed",
            f"Your tenancy of apartment {_apartment_name(session, tenancy.apartment_id)} ended on "
            f"{closing.isoformat()}.",
            priority="medium",
            **_sender(gateway),
        )
        return Outcome(tenancy, [effect])

    return gateway.execute(unit)


# --- Queries -------------------------------------------------------------


def _pending_query(session: Session, kind: str):
    if kind == REGISTRATION:
        return session.query(User).filter(User.registration_status == STATUS_PENDING).order_by(
            User.created_at, User.id
        )
    model = KIND_MODELS[kind]
    return session.query(model).filter(model.status == STATUS_PENDING).order_by(model.created_at, model.id)


def list_pending(gateway: Gateway, kind: Optional[str] = None) -> List[PendingItem]:
    """Pending requests oldest first; several kinds interleave by creation time."""
    gateway.require("can_approve")
    if kind is not None and kind not in REQUEST_KINDS:
        raise ValidationFailed("UNKNOWN_REQUEST_KIND", f"Unknown request kind: {kind}")
    kinds = [kind] if kind else list(REQUEST_KINDS)

    items: List[PendingItem] = []
    for current in kinds:
        items.extend(PendingItem(current, record) for record in _pending_query(gateway.session, current))
    # sorted() is stable, so same-instant rows keep their per-kind order.
    return sorted(items, key=lambda item: _naive(item.created_at))


def approval_history(gateway: Gateway, limit: int = 50):
    """The actor's own committee actions and audit entries, newest first."""
    session = gateway.session
    actions = (
        session.query(CommitteeAction)
        .filter(CommitteeAction.actor_id == gateway.actor_id)
        .order_by(CommitteeAction.created_at.desc(), CommitteeAction.id.desc())
        .limit(limit)
        .all()
    )
    entries = (
        session.query(AuditLog)
        .filter(AuditLog.actor_id == gateway.actor_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return actions, entries
