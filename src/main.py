import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from create_tables import create_tables
from database import SessionLocal

from modules.auth.services.auth_service import AuthService
from modules.notifications.services.email_dispatcher import EmailDispatcher
from modules.organizations.models import Organization, OrganizationMember, OrganizationRole, User
from modules.proposals.models import Proposal, ProposalStatus
from modules.signatures.job import start_signature_jobs, stop_signature_jobs
from modules.signatures.services.locks import RequestLockRegistry
from modules.signatures.services.rate_limiter import RateLimiter
from modules.auth.controllers.auth_controller import router as auth_router
from modules.notifications.controllers.notification_controller import router as notification_router
from modules.signatures.controllers.signer_controller import router as signer_router
from modules.signatures.controllers.signature_request_controller import router as signature_request_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup logic ---
    logger.info("Starting SignFlow")
    create_tables()
    scheduler = start_signature_jobs(
        dispatcher=app.state.email_dispatcher,
        locks=app.state.request_locks,
    )
    if settings.SEED_DEMO_DATA:
        _seed_demo_data()
    yield
    # --- Shutdown logic ---
    stop_signature_jobs(scheduler)
    logger.info("SignFlow stopped")


def _seed_demo_data():
    """Creates an organization, two users and a FINAL proposal ready to send for signature."""
    with SessionLocal() as session:
        if session.query(User).count() > 0:
            logger.info("Demo data already present")
            return

        owner = User(
            first_name="Olivia",
            last_name="Owner",
            email="owner@signflow.dev",
            password_hash=AuthService.get_password_hash("owner123"),
            is_active=True,
        )
        member = User(
            first_name="Marco",
            last_name="Member",
            email="member@signflow.dev",
            password_hash=AuthService.get_password_hash("member123"),
            is_active=True,
        )
        org = Organization(name="Acme Consulting")
        session.add_all([owner, member, org])
        session.flush()

        session.add_all([
            OrganizationMember(user_id=owner.id, organization_id=org.id, role=OrganizationRole.OWNER),
            OrganizationMember(user_id=member.id, organization_id=org.id, role=OrganizationRole.MEMBER),
            Proposal(
                title="Website redesign proposal",
                content="Scope: full redesign of the marketing site.\nPrice: 12,000 EUR.",
                status=ProposalStatus.FINAL,
                organization_id=org.id,
                creator_id=owner.id,
            ),
        ])
        session.commit()

        logger.info("Demo data created:")
        logger.info("   - Owner: %s / owner123", owner.email)
        logger.info("   - Member: %s / member123", member.email)


app = FastAPI(
    title="SignFlow",
    description="Multi-party electronic signature workflows for proposals",
    version="1.0.0",
    lifespan=lifespan
)

app.state.signer_rate_limiter = RateLimiter(
    settings.SIGNER_RATE_LIMIT_MAX,
    settings.SIGNER_RATE_LIMIT_WINDOW_SECONDS,
)
app.state.request_locks = RequestLockRegistry()
app.state.email_dispatcher = EmailDispatcher()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Accept", "Content-Type", "Authorization", "Origin"],
    expose_headers=["Retry-After", "Content-Disposition", "X-Integrity-Digest"],
    max_age=86400,
)
# Routers
app.include_router(auth_router)
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(signer_router)
app.include_router(signature_request_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
