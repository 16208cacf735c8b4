import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import create_tables  # noqa: F401  registers every model on Base
from database import Base
from modules.auth.services.auth_service import AuthService
from modules.notifications.services.email_dispatcher import EmailDispatcher
from modules.organizations.models import Organization, OrganizationMember, OrganizationRole, User
from modules.proposals.models import Proposal, ProposalStatus
from modules.signatures.models import SignatureRequirement
from modules.signatures.services.locks import RequestLockRegistry
from modules.signatures.services.signature_request_service import SignatureRequestService

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START = datetime(2026, 3, 2, 9, 0, 0)
PASSWORD = "secret123"
PASSWORD_HASH = AuthService.get_password_hash(PASSWORD)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingTransport:
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(message)

    def to(self, email):
        return [m for m in self.sent if m.to == email]

    def subjects(self, prefix):
        return [m for m in self.sent if m.subject.startswith(prefix)]


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport):
    return EmailDispatcher(transport=transport, frontend_url="https://app.example.com")


@pytest.fixture
def locks():
    return RequestLockRegistry()


@pytest.fixture
def make_service(db, dispatcher, locks, clock):
    def factory(session=None):
        return SignatureRequestService(session or db, dispatcher=dispatcher, locks=locks, clock=clock)
    return factory


@pytest.fixture
def service(make_service):
    return make_service()


def create_user(session, first_name, email):
    user = User(
        first_name=first_name,
        last_name="Tester",
        email=email,
        password_hash=PASSWORD_HASH,
        is_active=True,
    )
    session.add(user)
    session.flush()
    return user


def seed_workspace(session, status=ProposalStatus.FINAL):
    """Organization with one user per role plus an outsider, and one proposal."""
    org = Organization(name="Acme Consulting")
    session.add(org)
    session.flush()

    owner = create_user(session, "Olivia", "owner@example.com")
    member = create_user(session, "Marco", "member@example.com")
    viewer = create_user(session, "Vera", "viewer@example.com")
    outsider = create_user(session, "Oscar", "outsider@example.com")
    session.add_all([
        OrganizationMember(user_id=owner.id, organization_id=org.id, role=OrganizationRole.OWNER),
        OrganizationMember(user_id=member.id, organization_id=org.id, role=OrganizationRole.MEMBER),
        OrganizationMember(user_id=viewer.id, organization_id=org.id, role=OrganizationRole.VIEWER),
    ])
    proposal = Proposal(
        title="Website redesign",
        content="Scope: marketing site redesign. Price: 12,000 EUR.",
        status=status,
        organization_id=org.id,
        creator_id=owner.id,
    )
    session.add(proposal)
    session.commit()
    return SimpleNamespace(
        org_id=org.id,
        owner_id=owner.id,
        member_id=member.id,
        viewer_id=viewer.id,
        outsider_id=outsider.id,
        proposal_id=proposal.id,
    )


@pytest.fixture
def workspace(db):
    return seed_workspace(db)


def token_for(session, request_id, email):
    requirement = (
        session.query(SignatureRequirement)
        .filter(
            SignatureRequirement.request_id == request_id,
            SignatureRequirement.signer_email == email,
        )
        .one()
    )
    return requirement.auth_token
