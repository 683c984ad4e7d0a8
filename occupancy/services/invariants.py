"""Occupancy and percentage rules for apartments.

The checkers are pure: they take a candidate change plus an
:class:`ApartmentSnapshot` and answer with a :class:`CheckResult`. The
snapshot itself is read inside the caller's transaction, after the
apartment row has been locked, and is never cached between actions.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from ..constants import MAX_OWNERS_PER_APARTMENT, MAX_TENANTS_PER_APARTMENT
from ..core.errors import InvariantViolation, NotFound
from ..models.models import (
    STATUS_APPROVED,
    Apartment,
    OwnershipRelationship,
    TenantRelationship,
)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass(frozen=True)
class OwnerRow:
    relationship_id: int
    user_id: int
    percentage: Decimal
    status: str


@dataclass(frozen=True)
class TenantRow:
    relationship_id: int
    user_id: int
    status: str


@dataclass
class ApartmentSnapshot:
    apartment_id: int
    owner_rows: List[OwnerRow] = field(default_factory=list)
    tenant_rows: List[TenantRow] = field(default_factory=list)

    def approved_owners(self, exclude_id: Optional[int] = None) -> List[OwnerRow]:
        return [
            row
            for row in self.owner_rows
            if row.status == STATUS_APPROVED and row.relationship_id != exclude_id
        ]

    def approved_total(self, exclude_id: Optional[int] = None) -> Decimal:
        return sum((row.percentage for row in self.approved_owners(exclude_id)), ZERO)

    def owner_count(self, exclude_id: Optional[int] = None) -> int:
        return len([row for row in self.owner_rows if row.relationship_id != exclude_id])

    def tenant_count(self, exclude_id: Optional[int] = None) -> int:
        return len([row for row in self.tenant_rows if row.relationship_id != exclude_id])

    def ownership_of(self, user_id: int) -> Optional[OwnerRow]:
        for row in self.owner_rows:
            if row.user_id == user_id:
                return row
        return None

    def tenancy_of(self, user_id: int) -> Optional[TenantRow]:
        for row in self.tenant_rows:
            if row.user_id == user_id:
                return row
        return None


@dataclass(frozen=True)
class CheckResult:
    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None
    status_code: int = 409

    def ensure(self) -> None:
        if not self.ok:
            raise InvariantViolation(self.code, self.message, status_code=self.status_code)


PASS = CheckResult(ok=True)


def _fail(code: str, message: str, status_code: int = 409) -> CheckResult:
    return CheckResult(ok=False, code=code, message=message, status_code=status_code)


def load_snapshot(session: Session, apartment_id: int, *, lock: bool = True) -> ApartmentSnapshot:
    query = session.query(Apartment).filter(Apartment.id == apartment_id)
    if lock:
        query = query.with_for_update()
    apartment = query.first()
    if apartment is None or not apartment.is_active:
        raise NotFound("APARTMENT_NOT_FOUND", f"Apartment {apartment_id} not found.")

    owners = (
        session.query(OwnershipRelationship)
        .filter(
            OwnershipRelationship.apartment_id == apartment_id,
            OwnershipRelationship.is_active.is_(True),
        )
        .order_by(OwnershipRelationship.id)
        .all()
    )
    tenants = (
        session.query(TenantRelationship)
        .filter(
            TenantRelationship.apartment_id == apartment_id,
            TenantRelationship.is_active.is_(True),
        )
        .order_by(TenantRelationship.id)
        .all()
    )
    return ApartmentSnapshot(
        apartment_id=apartment_id,
        owner_rows=[
            OwnerRow(row.id, row.user_id, Decimal(str(row.percentage)), row.status) for row in owners
        ],
        tenant_rows=[TenantRow(row.id, row.user_id, row.status) for row in tenants],
    )


def check_percentage(
    snapshot: ApartmentSnapshot, percentage: Decimal, exclude_id: Optional[int] = None
) -> CheckResult:
    """Approved owners must never exceed 100% and, once recorded, must total exactly 100%."""
    others = snapshot.approved_owners(exclude_id)
    total = snapshot.approved_total(exclude_id) + percentage
    if total > HUNDRED:
        return _fail(
            "OWNERSHIP_PERCENTAGE_INVALID",
            f"Total ownership would reach {total}%, which exceeds 100%.",
        )
    if others and total != HUNDRED:
        return _fail(
            "OWNERSHIP_PERCENTAGE_INVALID",
            f"Ownership shares must total exactly 100%; this request leaves {total}%.",
        )
    return PASS


def check_owner_capacity(snapshot: ApartmentSnapshot, exclude_id: Optional[int] = None) -> CheckResult:
    if snapshot.owner_count(exclude_id) + 1 > MAX_OWNERS_PER_APARTMENT:
        return _fail(
            "APARTMENT_FULL_OWNERS",
            f"Apartment already has the maximum of {MAX_OWNERS_PER_APARTMENT} owners.",
        )
    return PASS


def check_tenant_capacity(snapshot: ApartmentSnapshot, exclude_id: Optional[int] = None) -> CheckResult:
    if snapshot.tenant_count(exclude_id) + 1 > MAX_TENANTS_PER_APARTMENT:
        return _fail(
            "APARTMENT_FULL_TENANTS",
            f"Apartment already has the maximum of {MAX_TENANTS_PER_APARTMENT} tenants.",
        )
    return PASS


def check_lease_dates(lease_start: date, lease_end: date) -> CheckResult:
    if lease_end <= lease_start:
        return _fail("INVALID_LEASE_DATES", "Lease end must be after lease start.", status_code=400)
    return PASS


def check_extension(current_end: date, new_end: date) -> CheckResult:
    if new_end <= current_end:
        return _fail(
            "INVALID_EXTENSION_DATE",
            "New lease end must be later than the current lease end.",
            status_code=400,
        )
    return PASS


def check_unique_ownership(snapshot: ApartmentSnapshot, user_id: int, exclude_id: Optional[int] = None) -> CheckResult:
    existing = snapshot.ownership_of(user_id)
    if existing and existing.relationship_id != exclude_id:
        return _fail("OWNERSHIP_EXISTS", "User already has an active ownership record for this apartment.")
    return PASS


def check_unique_tenancy(snapshot: ApartmentSnapshot, user_id: int, exclude_id: Optional[int] = None) -> CheckResult:
    existing = snapshot.tenancy_of(user_id)
    if existing and existing.relationship_id != exclude_id:
        return _fail("TENANCY_EXISTS", "User already has an active tenancy for this apartment.")
    return PASS


def check_transfer(snapshot: ApartmentSnapshot, from_user_id: int, to_user_id: int, percentage: Decimal) -> CheckResult:
    if from_user_id == to_user_id:
        return _fail("SAME_USER_TRANSFER", "Cannot transfer ownership to the same user.", status_code=400)

    source = snapshot.ownership_of(from_user_id)
    if source is None or source.status != STATUS_APPROVED:
        return _fail("NO_OWNERSHIP", "Transferor has no active ownership of this apartment.")
    if percentage > source.percentage:
        return _fail(
            "INSUFFICIENT_OWNERSHIP",
            f"Transferor owns {source.percentage}%, cannot transfer {percentage}%.",
        )
    if snapshot.ownership_of(to_user_id) is not None:
        return _fail("ALREADY_OWNER", "Recipient already holds ownership of this apartment.")

    # A partial transfer leaves the transferor in place and adds a row.
    if percentage < source.percentage:
        return check_owner_capacity(snapshot)
    return PASS
