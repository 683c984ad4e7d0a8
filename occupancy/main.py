import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .api import approvals, audit_logs, auth, notifications, relationships, transfers
from .config import Base, SessionLocal, engine, settings
from .constants import DEFAULT_ROLES
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.security import SecurityHeadersMiddleware, log_security_warnings
from .models.models import Role
from .services.notifications import notification_center

configure_logging(settings.log_level.upper(), settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="Occupancy Approval Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
register_exception_handlers(app)


def ensure_default_roles(session: Session) -> None:
    """Create the default roles and keep their rank and capability flags in sync."""
    for name, description, level, is_approver, is_committee, is_committee_head in DEFAULT_ROLES:
        role = session.query(Role).filter(Role.name == name).first()
        if not role:
            role = Role(name=name)
            session.add(role)
        role.description = description
        role.permission_level = level
        role.is_approver = is_approver
        role.is_committee = is_committee
        role.is_committee_head = is_committee_head
    session.commit()


@app.on_event("startup")
def startup() -> None:
    # Tables are created from the models; there is no migration step.
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        ensure_default_roles(session)
    log_security_warnings(settings.jwt_secret, settings.database_url)


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(relationships.router)
app.include_router(transfers.router)
app.include_router(approvals.router)
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
app.include_router(audit_logs.router)


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok"}


@app.on_event("startup")
async def configure_notification_center() -> None:
    notification_center.configure_loop(asyncio.get_running_loop())


@app.on_event("shutdown")
async def shutdown_notification_center() -> None:
    await notification_center.shutdown()
