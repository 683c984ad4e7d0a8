from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, get_gateway
from ..auth.jwt import get_current_user
from ..models.models import OwnershipRelationship, TenantRelationship, User
from ..schemas.schemas import (
    LeaseExtension,
    OwnershipRelationshipRead,
    OwnershipRequestCreate,
    OwnershipUpdate,
    RelationshipClose,
    TenancyRequestCreate,
    TenantRelationshipRead,
)
from ..services import approvals
from ..services.gateway import Gateway
from ..services.permissions import capabilities_for

router = APIRouter(prefix="/relationships", tags=["relationships"])


@router.get("/ownership", response_model=List[OwnershipRelationshipRead])
def list_ownerships(
    apartment_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[OwnershipRelationship]:
    query = db.query(OwnershipRelationship).order_by(OwnershipRelationship.created_at, OwnershipRelationship.id)
    if not capabilities_for(current_user).can_approve:
        query = query.filter(OwnershipRelationship.user_id == current_user.id)
    if apartment_id is not None:
        query = query.filter(OwnershipRelationship.apartment_id == apartment_id)
    if not include_inactive:
        query = query.filter(OwnershipRelationship.is_active.is_(True))
    return query.all()


@router.post("/ownership", response_model=OwnershipRelationshipRead, status_code=201)
def submit_ownership(payload: OwnershipRequestCreate, gateway: Gateway = Depends(get_gateway)):
    return approvals.submit_ownership_request(
        gateway,
        apartment_id=payload.apartment_id,
        percentage=payload.percentage,
        start_date=payload.start_date,
        user_id=payload.user_id,
    )


@router.put("/ownership/{relationship_id}", response_model=OwnershipRelationshipRead)
def modify_ownership(relationship_id: int, payload: OwnershipUpdate, gateway: Gateway = Depends(get_gateway)):
    return approvals.modify_ownership(
        gateway,
        relationship_id,
        percentage=payload.percentage,
        end_date=payload.end_date,
        reason=payload.reason,
    )


@router.post("/ownership/{relationship_id}/close", response_model=OwnershipRelationshipRead)
def close_ownership(relationship_id: int, payload: RelationshipClose, gateway: Gateway = Depends(get_gateway)):
    return approvals.close_ownership(gateway, relationship_id, end_date=payload.end_date, reason=payload.reason)


@router.get("/tenancy", response_model=List[TenantRelationshipRead])
def list_tenancies(
    apartment_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[TenantRelationship]:
    query = db.query(TenantRelationship).order_by(TenantRelationship.created_at, TenantRelationship.id)
    if not capabilities_for(current_user).can_approve:
        query = query.filter(TenantRelationship.user_id == current_user.id)
    if apartment_id is not None:
        query = query.filter(TenantRelationship.apartment_id == apartment_id)
    if not include_inactive:
        query = query.filter(TenantRelationship.is_active.is_(True))
    return query.all()


@router.post("/tenancy", response_model=TenantRelationshipRead, status_code=201)
def submit_tenancy(payload: TenancyRequestCreate, gateway: Gateway = Depends(get_gateway)):
    return approvals.submit_tenancy_request(
        gateway,
        apartment_id=payload.apartment_id,
        lease_start=payload.lease_start,
        lease_end=payload.lease_end,
        is_auto_renew=payload.is_auto_renew,
        user_id=payload.user_id,
    )


@router.post("/tenancy/{tenancy_id}/extend", response_model=TenantRelationshipRead)
def extend_lease(tenancy_id: int, payload: LeaseExtension, gateway: Gateway = Depends(get_gateway)):
    return approvals.extend_lease(gateway, tenancy_id, payload.new_end_date, reason=payload.reason)


@router.post("/tenancy/{tenancy_id}/close", response_model=TenantRelationshipRead)
def close_tenancy(tenancy_id: int, payload: RelationshipClose, gateway: Gateway = Depends(get_gateway)):
    return approvals.close_tenancy(gateway, tenancy_id, end_date=payload.end_date, reason=payload.reason)
