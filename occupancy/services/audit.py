import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from ..models.models import AuditLog, CommitteeAction

logger = logging.getLogger(__name__)

AUDIT_INSERT = "INSERT"
AUDIT_UPDATE = "UPDATE"
AUDIT_DELETE = "DELETE"
AUDIT_CONFLICT_ATTEMPT = "CONFLICT_ATTEMPT"

SNAPSHOT_EXCLUDE = {"hashed_password"}


def _serialize(data: Any) -> Optional[str]:
    if data is None:
        return None
    try:
        return json.dumps(data, default=str, sort_keys=True)
    except TypeError:
        return str(data)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(instance: Any, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Column values of a mapped instance, ready to be stored in an audit row."""
    mapper = inspect(instance).mapper
    names = list(fields) if fields else [column.key for column in mapper.column_attrs]
    return {name: _plain(getattr(instance, name)) for name in names if name not in SNAPSHOT_EXCLUDE}


def audit_log(
    db_session: Session,
    actor_id: Optional[int],
    action: str,
    table_name: str,
    record_id: Any = None,
    before: Any = None,
    after: Any = None,
    role_of_actor: Optional[str] = None,
    reason: Optional[str] = None,
) -> AuditLog:
    """Append an audit row to the current transaction.

    The caller owns the transaction, so the row commits or rolls back with
    the state change it describes.
    """
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        table_name=table_name,
        record_id=None if record_id is None else str(record_id),
        old_value=_serialize(before),
        new_value=_serialize(after),
        role_of_actor=role_of_actor,
        reason=reason,
    )
    db_session.add(entry)
    logger.debug("Audit %s on %s/%s by %s", action, table_name, record_id, actor_id)
    return entry


def record_committee_action(
    db_session: Session,
    actor_id: int,
    actor_pst_role: str,
    action_type: str,
    target_table: str,
    target_record_id: Any,
    details: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> CommitteeAction:
    entry = CommitteeAction(
        actor_id=actor_id,
        actor_pst_role=actor_pst_role,
        action_type=action_type,
        target_table=target_table,
        target_record_id=str(target_record_id),
        details={key: _plain(value) for key, value in (details or {}).items()},
        reason=reason,
    )
    db_session.add(entry)
    return entry
