from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..api.dependencies import get_gateway
from ..schemas.schemas import (
    ApprovalHistoryRead,
    AuditLogActor,
    AuditLogEntry,
    CommitteeActionRead,
    DecisionRequest,
    DecisionResult,
    OwnershipRelationshipRead,
    PendingRequestRead,
    TenantRelationshipRead,
    TransferRead,
    UserRead,
)
from ..services import approvals
from ..services.gateway import Gateway

router = APIRouter(prefix="/approvals", tags=["approvals"])

READ_SCHEMAS = {
    approvals.OWNERSHIP: OwnershipRelationshipRead,
    approvals.TENANCY: TenantRelationshipRead,
    approvals.TRANSFER: TransferRead,
    approvals.REGISTRATION: UserRead,
}


def _summary(item: approvals.PendingItem) -> PendingRequestRead:
    record = item.record
    if item.kind == approvals.REGISTRATION:
        return PendingRequestRead(
            kind=item.kind,
            id=record.id,
            user_id=record.id,
            summary=f"Registration of {record.full_name or record.email}",
            created_at=record.created_at,
        )
    if item.kind == approvals.TRANSFER:
        summary = f"Transfer of {record.percentage}% from user {record.from_user_id} to user {record.to_user_id}"
        user_id = record.from_user_id
    elif item.kind == approvals.OWNERSHIP:
        summary = f"Ownership of {record.percentage}% for user {record.user_id}"
        user_id = record.user_id
    else:
        summary = f"Tenancy {record.lease_start.isoformat()} to {record.lease_end.isoformat()} for user {record.user_id}"
        user_id = record.user_id
    return PendingRequestRead(
        kind=item.kind,
        id=record.id,
        apartment_id=record.apartment_id,
        user_id=user_id,
        summary=summary,
        created_at=record.created_at,
    )


@router.get("/pending", response_model=List[PendingRequestRead])
def list_pending(
    kind: Optional[str] = Query(None, description="Restrict to one request kind."),
    gateway: Gateway = Depends(get_gateway),
) -> List[PendingRequestRead]:
    return [_summary(item) for item in approvals.list_pending(gateway, kind)]


@router.post("/{kind}/{request_id}/decision", response_model=DecisionResult)
def decide(
    kind: str,
    request_id: int,
    payload: DecisionRequest,
    gateway: Gateway = Depends(get_gateway),
) -> DecisionResult:
    record = approvals.decide(gateway, kind, request_id, payload.decision, payload.comments)
    body = READ_SCHEMAS[kind].model_validate(record).model_dump(mode="json")
    return DecisionResult(
        kind=kind,
        id=record.id,
        status=approvals.request_status(kind, record),
        completed=kind == approvals.TRANSFER and record.completion_date is not None,
        request=body,
    )


@router.get("/history", response_model=ApprovalHistoryRead)
def approval_history(
    limit: int = Query(50, ge=1, le=200),
    gateway: Gateway = Depends(get_gateway),
) -> ApprovalHistoryRead:
    actions, entries = approvals.approval_history(gateway, limit=limit)
    actor = AuditLogActor(id=gateway.actor.id, email=gateway.actor.email, full_name=gateway.actor.full_name)
    return ApprovalHistoryRead(
        committee_actions=[CommitteeActionRead.model_validate(action) for action in actions],
        audit_entries=[
            AuditLogEntry(
                id=entry.id,
                created_at=entry.created_at,
                action=entry.action,
                table_name=entry.table_name,
                record_id=entry.record_id,
                old_value=entry.old_value,
                new_value=entry.new_value,
                role_of_actor=entry.role_of_actor,
                reason=entry.reason,
                actor=actor,
            )
            for entry in entries
        ],
    )
