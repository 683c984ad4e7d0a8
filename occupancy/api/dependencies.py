from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user, get_db
from ..models.models import User
from ..services.gateway import Gateway

__all__ = ["get_db", "get_gateway"]


def get_gateway(db: Session = Depends(get_db), user: User = Depends(get_current_user)) -> Gateway:
    return Gateway(db, user)
