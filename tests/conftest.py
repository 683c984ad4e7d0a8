import sys
from collections.abc import Callable, Generator, Iterable
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from occupancy.config import Base  # noqa: E402
import occupancy.config as app_config  # noqa: E402
import occupancy.main as app_main  # noqa: E402
from occupancy.api.dependencies import get_db  # noqa: E402
from occupancy.auth.jwt import get_current_user, get_password_hash  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from occupancy.models import models as _all_models  # noqa: E402,F401
from occupancy.models.models import (  # noqa: E402
    STATUS_APPROVED,
    Apartment,
    OwnershipRelationship,
    Role,
    RoleAssignment,
    TenantRelationship,
    User,
)
from occupancy.services.gateway import Gateway  # noqa: E402

PASSWORD = "changeme123"
_password_hash: Optional[str] = None


def _hashed_password() -> str:
    global _password_hash
    if _password_hash is None:
        _password_hash = get_password_hash(PASSWORD)
    return _password_hash


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Configure the app-wide SessionLocal/engine so TestClient uses a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.SessionLocal = SessionLocal
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database with the default roles for each test."""
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    app_main.ensure_default_roles(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def get_role(db_session: Session) -> Callable[[str], Role]:
    def _get(name: str) -> Role:
        return db_session.query(Role).filter(Role.name == name).one()

    return _get


@pytest.fixture
def create_user(db_session: Session, get_role) -> Callable[..., User]:
    def _create(
        email: str = "user@example.com",
        role_names: Iterable[str] = ("Owner",),
        apartment_id: Optional[int] = None,
        full_name: Optional[str] = None,
        registration_status: str = STATUS_APPROVED,
    ) -> User:
        user = User(
            email=email,
            full_name=full_name,
            hashed_password=_hashed_password(),
            registration_status=registration_status,
            registration_approved=registration_status == STATUS_APPROVED,
        )
        db_session.add(user)
        db_session.flush()
        for name in role_names:
            db_session.add(
                RoleAssignment(user_id=user.id, role_id=get_role(name).id, apartment_id=apartment_id, is_active=True)
            )
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create


@pytest.fixture
def create_apartment(db_session: Session) -> Callable[..., Apartment]:
    counter = {"value": 0}

    def _create(unit_number: Optional[str] = None) -> Apartment:
        counter["value"] += 1
        apartment = Apartment(unit_number=unit_number or f"{counter['value']}0{counter['value']}", floor_number=1)
        db_session.add(apartment)
        db_session.commit()
        return apartment

    return _create


@pytest.fixture
def make_owner(db_session: Session) -> Callable[..., OwnershipRelationship]:
    """Record an already-approved ownership, bypassing the request flow."""

    def _create(user: User, apartment: Apartment, percentage="100") -> OwnershipRelationship:
        relationship = OwnershipRelationship(
            user_id=user.id,
            apartment_id=apartment.id,
            percentage=Decimal(str(percentage)),
            start_date=date(2024, 1, 1),
            is_active=True,
            status=STATUS_APPROVED,
        )
        db_session.add(relationship)
        db_session.commit()
        return relationship

    return _create


@pytest.fixture
def make_tenant(db_session: Session) -> Callable[..., TenantRelationship]:
    def _create(
        user: User,
        apartment: Apartment,
        lease_start: date = date(2025, 1, 1),
        lease_end: date = date(2025, 12, 31),
    ) -> TenantRelationship:
        tenancy = TenantRelationship(
            user_id=user.id,
            apartment_id=apartment.id,
            lease_start=lease_start,
            lease_end=lease_end,
            is_active=True,
            status=STATUS_APPROVED,
        )
        db_session.add(tenancy)
        db_session.commit()
        return tenancy

    return _create


@pytest.fixture
def gateway_for(db_session: Session) -> Callable[[User], Gateway]:
    def _build(user: User) -> Gateway:
        return Gateway(db_session, user)

    return _build


@pytest.fixture
def client_for(db_session: Session) -> Generator[Callable[[Optional[User]], TestClient], None, None]:
    """TestClient bound to the per-test session, optionally authenticated as ``user``."""
    clients = []

    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    def _build(user: Optional[User] = None) -> TestClient:
        app_main.app.dependency_overrides[get_db] = _override_get_db
        if user is not None:
            app_main.app.dependency_overrides[get_current_user] = lambda: user
        else:
            app_main.app.dependency_overrides.pop(get_current_user, None)
        client = TestClient(app_main.app)
        clients.append(client)
        return client

    yield _build
    for client in clients:
        client.close()
    app_main.app.dependency_overrides.clear()
