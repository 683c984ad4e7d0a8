from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from ..constants import NOTIFICATION_PRIORITIES


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    permission_level: int
    is_approver: bool
    is_committee: bool
    is_committee_head: bool


class RoleAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role: RoleRead
    apartment_id: Optional[int] = None
    is_active: bool
    assigned_at: datetime


class UserSignup(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    password: str = Field(min_length=8)
    apartment_id: int
    relationship: Literal["owner", "tenant"]
    percentage: Optional[Decimal] = Field(default=None, gt=0, le=100, decimal_places=2)
    start_date: Optional[date] = None
    lease_start: Optional[date] = None
    lease_end: Optional[date] = None
    is_auto_renew: bool = False

    @model_validator(mode="after")
    def check_relationship_fields(self) -> "UserSignup":
        if self.relationship == "owner" and self.percentage is None:
            raise ValueError("percentage is required for owner signups")
        if self.relationship == "tenant" and (self.lease_start is None or self.lease_end is None):
            raise ValueError("lease_start and lease_end are required for tenant signups")
        return self


class UserCreate(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    password: str = Field(min_length=8)
    role_ids: List[int] = Field(min_length=1)
    apartment_id: Optional[int] = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    full_name: Optional[str] = None
    is_active: bool
    registration_status: str
    registration_approved: bool
    registration_approved_by: Optional[int] = None
    registration_approved_role: Optional[str] = None
    registration_approved_at: Optional[datetime] = None
    registration_rejection_reason: Optional[str] = None
    created_at: datetime
    role_names: List[str] = []


class CapabilitiesRead(BaseModel):
    max_rank: int
    can_approve: bool
    can_reject: bool
    can_modify: bool
    can_override: bool
    instant_approval: bool
    is_pst_member: bool
    pst_role: Optional[str] = None
    role_name: Optional[str] = None


class CurrentUserRead(UserRead):
    capabilities: CapabilitiesRead


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    roles: List[str]
    primary_role: Optional[str] = None
    registration_status: str


class OwnershipRequestCreate(BaseModel):
    apartment_id: int
    percentage: Decimal = Field(gt=0, le=100, decimal_places=2)
    start_date: date
    user_id: Optional[int] = None


class TenancyRequestCreate(BaseModel):
    apartment_id: int
    lease_start: date
    lease_end: date
    is_auto_renew: bool = False
    user_id: Optional[int] = None


class LeaseExtension(BaseModel):
    new_end_date: date
    reason: Optional[str] = None


class OwnershipUpdate(BaseModel):
    percentage: Optional[Decimal] = Field(default=None, gt=0, le=100, decimal_places=2)
    end_date: Optional[date] = None
    reason: Optional[str] = None


class RelationshipClose(BaseModel):
    end_date: Optional[date] = None
    reason: Optional[str] = None


class OwnershipRelationshipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    apartment_id: int
    percentage: Decimal
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    status: str
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_role: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class TenantRelationshipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    apartment_id: int
    lease_start: date
    lease_end: date
    end_date: Optional[date] = None
    is_auto_renew: bool
    is_active: bool
    status: str
    modified_by_committee: bool
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_role: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime


class TransferCreate(BaseModel):
    apartment_id: int
    from_user_id: int
    to_user_id: int
    percentage: Decimal = Field(gt=0, le=100, decimal_places=2)
    reason: Optional[str] = None


class TransferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    apartment_id: int
    from_user_id: int
    to_user_id: int
    percentage: Decimal
    status: str
    reason: Optional[str] = None
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_role: Optional[str] = None
    approval_date: Optional[datetime] = None
    approval_comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    completion_date: Optional[datetime] = None
    created_at: datetime


class DecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    comments: Optional[str] = None

    @field_validator("comments")
    @classmethod
    def strip_comments(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class DecisionResult(BaseModel):
    kind: str
    id: int
    status: str
    completed: bool = False
    request: dict


class PendingRequestRead(BaseModel):
    kind: str
    id: int
    apartment_id: Optional[int] = None
    user_id: Optional[int] = None
    summary: str
    created_at: datetime


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient_id: int
    type: str
    title: str
    message: str
    priority: str
    link: Optional[str] = None
    sender_id: Optional[int] = None
    sender_role: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    @field_validator("priority")
    @classmethod
    def known_priority(cls, value: str) -> str:
        if value not in NOTIFICATION_PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(NOTIFICATION_PRIORITIES)}")
        return value


class AuditLogActor(BaseModel):
    id: Optional[int] = None
    email: Optional[str] = None
    full_name: Optional[str] = None


class AuditLogEntry(BaseModel):
    id: int
    created_at: datetime
    action: str
    table_name: str
    record_id: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    role_of_actor: Optional[str] = None
    reason: Optional[str] = None
    actor: AuditLogActor


class AuditLogList(BaseModel):
    items: List[AuditLogEntry]
    total: int


class CommitteeActionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    actor_id: int
    actor_pst_role: str
    action_type: str
    target_table: str
    target_record_id: str
    details: Optional[Any] = None
    reason: Optional[str] = None


class ApprovalHistoryRead(BaseModel):
    committee_actions: List[CommitteeActionRead]
    audit_entries: List[AuditLogEntry]
