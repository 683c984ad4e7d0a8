from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from ..api.dependencies import get_db
from ..auth.jwt import require_minimum_rank
from ..constants import INSTANT_APPROVAL_RANK
from ..models.models import AuditLog, CommitteeAction, User
from ..schemas.schemas import AuditLogActor, AuditLogEntry, AuditLogList, CommitteeActionRead

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("/", response_model=AuditLogList)
def list_audit_logs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    table_name: Optional[str] = Query(None),
    record_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _: User = Depends(require_minimum_rank(INSTANT_APPROVAL_RANK)),
) -> AuditLogList:
    query = (
        db.query(AuditLog)
        .options(joinedload(AuditLog.actor))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    )
    if table_name:
        query = query.filter(AuditLog.table_name == table_name)
    if record_id:
        query = query.filter(AuditLog.record_id == record_id)
    if action:
        query = query.filter(AuditLog.action == action.upper())
    total = query.count()
    logs = query.offset(offset).limit(limit).all()
    items = [
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
            actor=AuditLogActor(
                id=entry.actor.id if entry.actor else None,
                email=entry.actor.email if entry.actor else None,
                full_name=entry.actor.full_name if entry.actor else None,
            ),
        )
        for entry in logs
    ]
    return AuditLogList(items=items, total=total)


@router.get("/committee-actions", response_model=List[CommitteeActionRead])
def list_committee_actions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    _: User = Depends(require_minimum_rank(INSTANT_APPROVAL_RANK)),
) -> List[CommitteeAction]:
    query = db.query(CommitteeAction).order_by(CommitteeAction.created_at.desc(), CommitteeAction.id.desc())
    if actor_id is not None:
        query = query.filter(CommitteeAction.actor_id == actor_id)
    return query.offset(offset).limit(limit).all()
