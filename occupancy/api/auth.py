from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, get_gateway
from ..auth.jwt import (
    create_access_token,
    get_current_user,
    get_password_hash,
    load_user,
    verify_password,
)
from ..models.models import Role, User
from ..schemas.schemas import (
    CapabilitiesRead,
    CurrentUserRead,
    RoleAssignmentRead,
    RoleRead,
    Token,
    UserCreate,
    UserRead,
    UserSignup,
)
from ..services import approvals, roles
from ..services.gateway import Gateway
from ..services.permissions import capabilities_for

router = APIRouter()


def _build_token_response(user: User) -> Token:
    primary_role = user.highest_priority_role
    primary_role_name = primary_role.name if primary_role else None
    role_names = user.role_names

    access_payload = {
        "sub": str(user.id),
        "roles": role_names,
        "primary_role": primary_role_name,
        "type": "access",
    }
    return Token(
        access_token=create_access_token(access_payload),
        token_type="bearer",
        roles=role_names,
        primary_role=primary_role_name,
        registration_status=user.registration_status,
    )


@router.post("/signup", response_model=UserRead, status_code=201)
def signup(payload: UserSignup, db: Session = Depends(get_db)) -> User:
    user = approvals.submit_registration(
        db,
        email=payload.email,
        full_name=payload.full_name,
        hashed_password=get_password_hash(payload.password),
        apartment_id=payload.apartment_id,
        relationship=payload.relationship,
        percentage=payload.percentage,
        start_date=payload.start_date,
        lease_start=payload.lease_start,
        lease_end=payload.lease_end,
        is_auto_renew=payload.is_auto_renew,
    )
    return load_user(db, user.id)


@router.post("/register", response_model=UserRead, status_code=201)
def register_user(payload: UserCreate, gateway: Gateway = Depends(get_gateway)) -> User:
    user = approvals.register_user(
        gateway,
        email=payload.email,
        full_name=payload.full_name,
        hashed_password=get_password_hash(payload.password),
        role_ids=payload.role_ids,
        apartment_id=payload.apartment_id,
    )
    return load_user(gateway.session, user.id)


@router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = db.query(User).filter(User.email == form_data.username.lower()).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive.")

    return _build_token_response(user)


@router.get("/me", response_model=CurrentUserRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> CurrentUserRead:
    capabilities = capabilities_for(current_user)
    base = UserRead.model_validate(current_user)
    return CurrentUserRead(
        **base.model_dump(),
        capabilities=CapabilitiesRead(**asdict(capabilities)),
    )


@router.get("/roles", response_model=List[RoleRead])
def list_roles(db: Session = Depends(get_db), _: User = Depends(get_current_user)) -> List[Role]:
    return (
        db.query(Role)
        .filter(Role.is_active.is_(True))
        .order_by(Role.permission_level.desc(), Role.name)
        .all()
    )


@router.post("/users/{user_id}/roles/{role_id}", response_model=RoleAssignmentRead, status_code=201)
def assign_role(
    user_id: int,
    role_id: int,
    apartment_id: int | None = None,
    gateway: Gateway = Depends(get_gateway),
):
    return roles.assign_role(gateway, user_id, role_id, apartment_id)


@router.post("/role-assignments/{assignment_id}/deactivate", response_model=RoleAssignmentRead)
def deactivate_role_assignment(assignment_id: int, gateway: Gateway = Depends(get_gateway)):
    return roles.deactivate_role_assignment(gateway, assignment_id)
