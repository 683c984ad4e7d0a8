from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, get_gateway
from ..auth.jwt import get_current_user
from ..models.models import OwnershipTransfer, User
from ..schemas.schemas import TransferCreate, TransferRead
from ..services import approvals
from ..services.gateway import Gateway
from ..services.permissions import capabilities_for

router = APIRouter(prefix="/transfers", tags=["transfers"])


@router.get("", response_model=List[TransferRead])
def list_transfers(
    status: Optional[str] = Query(None),
    apartment_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[OwnershipTransfer]:
    query = db.query(OwnershipTransfer).order_by(OwnershipTransfer.created_at.desc(), OwnershipTransfer.id.desc())
    if not capabilities_for(current_user).can_approve:
        query = query.filter(
            or_(
                OwnershipTransfer.from_user_id == current_user.id,
                OwnershipTransfer.to_user_id == current_user.id,
                OwnershipTransfer.requested_by == current_user.id,
            )
        )
    if status:
        query = query.filter(OwnershipTransfer.status == status)
    if apartment_id is not None:
        query = query.filter(OwnershipTransfer.apartment_id == apartment_id)
    return query.all()


@router.post("", response_model=TransferRead, status_code=201)
def submit_transfer(payload: TransferCreate, gateway: Gateway = Depends(get_gateway)):
    return approvals.submit_transfer_request(
        gateway,
        apartment_id=payload.apartment_id,
        from_user_id=payload.from_user_id,
        to_user_id=payload.to_user_id,
        percentage=payload.percentage,
        reason=payload.reason,
    )


@router.post("/{transfer_id}/complete", response_model=TransferRead)
def complete_transfer(transfer_id: int, gateway: Gateway = Depends(get_gateway)):
    return approvals.complete_transfer(gateway, transfer_id)
