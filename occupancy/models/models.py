from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base


def utcnow():
    return datetime.now(timezone.utc)


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
REQUEST_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    permission_level = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    # Capability flags replace matching on role names.
    is_approver = Column(Boolean, default=False, nullable=False)
    is_committee = Column(Boolean, default=False, nullable=False)
    is_committee_head = Column(Boolean, default=False, nullable=False)

    assignments = orm_relationship("RoleAssignment", back_populates="role")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    registration_status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    registration_approved = Column(Boolean, default=False, nullable=False)
    registration_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    registration_approved_role = Column(String, nullable=True)
    registration_approved_at = Column(DateTime, nullable=True)
    registration_rejection_reason = Column(Text, nullable=True)

    role_assignments = orm_relationship(
        "RoleAssignment",
        back_populates="user",
        foreign_keys="RoleAssignment.user_id",
        cascade="all, delete-orphan",
    )
    notifications = orm_relationship(
        "Notification",
        back_populates="recipient",
        foreign_keys="Notification.recipient_id",
        cascade="all, delete-orphan",
    )

    @property
    def active_roles(self) -> list:
        return [
            assignment.role
            for assignment in self.role_assignments
            if assignment.is_active and assignment.role and assignment.role.is_active
        ]

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.active_roles]

    def has_any_role(self, *role_names: str) -> bool:
        targets = set(role_names)
        if not targets:
            return False
        return any(role.name in targets for role in self.active_roles)

    @property
    def highest_priority_role(self):
        roles = self.active_roles
        if not roles:
            return None
        return max(roles, key=lambda role: (role.permission_level, role.name))


class Apartment(Base):
    __tablename__ = "apartments"

    id = Column(Integer, primary_key=True, index=True)
    unit_number = Column(String, nullable=False, unique=True)
    floor_number = Column(Integer, nullable=True)
    unit_type = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    ownerships = orm_relationship("OwnershipRelationship", back_populates="apartment")
    tenancies = orm_relationship("TenantRelationship", back_populates="apartment")

    @property
    def display_name(self) -> str:
        if self.floor_number is not None:
            return f"{self.unit_number} (floor {self.floor_number})"
        return self.unit_number


class RoleAssignment(Base):
    __tablename__ = "role_assignments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime, default=utcnow, nullable=False)
    deactivated_at = Column(DateTime, nullable=True)

    user = orm_relationship("User", back_populates="role_assignments", foreign_keys=[user_id])
    role = orm_relationship("Role", back_populates="assignments")
    apartment = orm_relationship("Apartment")


class OwnershipRelationship(Base):
    __tablename__ = "ownership_relationships"
    __table_args__ = (
        CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_ownership_percentage_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    percentage = Column(Numeric(5, 2), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_role = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = orm_relationship("User", foreign_keys=[user_id])
    apartment = orm_relationship("Apartment", back_populates="ownerships")


class TenantRelationship(Base):
    __tablename__ = "tenant_relationships"
    __table_args__ = (
        CheckConstraint("lease_end > lease_start", name="ck_tenancy_lease_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    lease_start = Column(Date, nullable=False)
    lease_end = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    is_auto_renew = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    modified_by_committee = Column(Boolean, default=False, nullable=False)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_role = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = orm_relationship("User", foreign_keys=[user_id])
    apartment = orm_relationship("Apartment", back_populates="tenancies")


class OwnershipTransfer(Base):
    __tablename__ = "ownership_transfers"
    __table_args__ = (
        CheckConstraint("from_user_id <> to_user_id", name="ck_transfer_distinct_users"),
        CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_transfer_percentage_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    percentage = Column(Numeric(5, 2), nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    reason = Column(Text, nullable=True)
    requested_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_role = Column(String, nullable=True)
    approval_date = Column(DateTime, nullable=True)
    approval_comments = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    completion_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    apartment = orm_relationship("Apartment")
    from_user = orm_relationship("User", foreign_keys=[from_user_id])
    to_user = orm_relationship("User", foreign_keys=[to_user_id])


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    table_name = Column(String, nullable=False, index=True)
    record_id = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    role_of_actor = Column(String, nullable=True)
    reason = Column(Text, nullable=True)

    actor = orm_relationship("User", foreign_keys=[actor_id])


class CommitteeAction(Base):
    __tablename__ = "committee_actions"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    actor_pst_role = Column(String, nullable=False)
    action_type = Column(String, nullable=False)  # approval | rejection | override | modification
    target_table = Column(String, nullable=False)
    target_record_id = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)

    actor = orm_relationship("User", foreign_keys=[actor_id])


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String, nullable=False, default="medium")
    link = Column(String, nullable=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sender_role = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)

    recipient = orm_relationship("User", back_populates="notifications", foreign_keys=[recipient_id])


# Partial unique indexes: uniqueness only applies to active rows.
Index(
    "uq_role_assignments_active",
    RoleAssignment.user_id,
    RoleAssignment.role_id,
    RoleAssignment.apartment_id,
    unique=True,
    sqlite_where=RoleAssignment.is_active == True,  # noqa: E712
    postgresql_where=RoleAssignment.is_active == True,  # noqa: E712
)
Index(
    "uq_ownership_active_pair",
    OwnershipRelationship.user_id,
    OwnershipRelationship.apartment_id,
    unique=True,
    sqlite_where=OwnershipRelationship.is_active == True,  # noqa: E712
    postgresql_where=OwnershipRelationship.is_active == True,  # noqa: E712
)
Index(
    "uq_tenancy_active_pair",
    TenantRelationship.user_id,
    TenantRelationship.apartment_id,
    unique=True,
    sqlite_where=TenantRelationship.is_active == True,  # noqa: E712
    postgresql_where=TenantRelationship.is_active == True,  # noqa: E712
)
