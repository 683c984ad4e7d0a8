#!/usr/bin/env python
"""
Seed script to populate the database with sample data for local development.

Usage:
    python scripts/seed_data.py --apartments 6
"""

import argparse
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from occupancy.auth.jwt import get_password_hash  # noqa: E402
from occupancy.config import Base, SessionLocal, engine  # noqa: E402
from occupancy.main import ensure_default_roles  # noqa: E402
from occupancy.models.models import (  # noqa: E402
    STATUS_APPROVED,
    Apartment,
    OwnershipRelationship,
    Role,
    RoleAssignment,
    User,
    utcnow,
)

STAFF = [
    ("admin@example.com", "Site Administrator", "Admin"),
    ("president@example.com", "Committee President", "President"),
    ("secretary@example.com", "Committee Secretary", "Secretary"),
    ("treasurer@example.com", "Committee Treasurer", "Treasurer"),
    ("delegate@example.com", "Committee Delegate", "Committee Delegate"),
]


def get_role(session, name: str) -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if not role:
        raise RuntimeError(f"Role '{name}' is not defined. Run ensure_default_roles first.")
    return role


def get_or_create_user(session, email: str, full_name: str, role_name: str, apartment_id=None) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        return user

    now = utcnow()
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash("changeme"),
        is_active=True,
        registration_status=STATUS_APPROVED,
        registration_approved=True,
        registration_approved_role="System",
        registration_approved_at=now,
    )
    session.add(user)
    session.flush()
    session.add(
        RoleAssignment(user_id=user.id, role_id=get_role(session, role_name).id, apartment_id=apartment_id)
    )
    return user


def create_apartment_bundle(session, index: int, approver: User) -> None:
    floor = (index - 1) // 4 + 1
    unit_number = f"{floor}{index:02d}"
    apartment = session.query(Apartment).filter(Apartment.unit_number == unit_number).first()
    if apartment:
        return
    apartment = Apartment(unit_number=unit_number, floor_number=floor, unit_type="2BR")
    session.add(apartment)
    session.flush()

    owner = get_or_create_user(
        session, f"owner{index}@example.com", f"Test Owner {index}", "Owner", apartment_id=apartment.id
    )
    session.add(
        OwnershipRelationship(
            user_id=owner.id,
            apartment_id=apartment.id,
            percentage=Decimal("100"),
            start_date=date.today(),
            is_active=True,
            status=STATUS_APPROVED,
            requested_by=approver.id,
            approved_by=approver.id,
            approved_role="Admin",
            approved_at=utcnow(),
        )
    )


def seed_database(apartments: int) -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        ensure_default_roles(session)

        admin = None
        for email, full_name, role_name in STAFF:
            user = get_or_create_user(session, email, full_name, role_name)
            admin = admin or user

        for index in range(1, max(apartments, 0) + 1):
            create_apartment_bundle(session, index, admin)

        session.commit()
        print(f"Seed complete. {apartments} apartments with one owner each (password: 'changeme').")


def main():
    parser = argparse.ArgumentParser(description="Seed the occupancy database with sample data.")
    parser.add_argument("--apartments", type=int, default=6, help="Number of apartments to create")
    args = parser.parse_args()
    seed_database(args.apartments)


if __name__ == "__main__":
    main()
