"""Pytest configuration and fixtures."""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient

from datacop_api.auth.session_auth import SessionAuthContext, get_session_auth_context
from datacop_api.db.engine import build_engine, build_sessionmaker
from datacop_api.db.models import Base, Organization, UserProfile
from datacop_api.db.session import get_session_factory
from datacop_api.dependencies import get_clock, get_email_sender, get_identity_provider
from datacop_api.errors import DuplicateEmail
from datacop_api.main import app
from datacop_api.services.access import CatalogQuery
from datacop_api.services.invitations import InvitationService
from datacop_api.services.membership import MembershipService
from datacop_api.services.provisioning import AccountProvisioner

# Set TEST_DATABASE_URL to a PostgreSQL URL to run against a real server
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL") or "sqlite:///:memory:"

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PASSWORD = "correct-horse-9"

NO_SLEEP = {"base_delay": 0.0, "sleep": lambda _seconds: None}


class FrozenClock:
    """Controllable clock: returns ``now`` until advanced."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeIdentityProvider:
    """In-memory identity provider with failure injection."""

    def __init__(self):
        self.identities: dict[str, str] = {}
        self.deleted: list[str] = []
        self.create_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.allow_duplicates = False
        self.before_create: Optional[Callable[[], None]] = None

    def create_identity(self, email: str, password: str, metadata: Optional[dict[str, Any]] = None) -> str:
        if self.before_create is not None:
            hook, self.before_create = self.before_create, None
            hook()
        if self.create_error is not None:
            raise self.create_error
        if not self.allow_duplicates and email in self.identities.values():
            raise DuplicateEmail(f"An account already exists for {email}")
        uid = f"uid_{uuid.uuid4().hex[:12]}"
        self.identities[uid] = email
        return uid

    def delete_identity(self, uid: str) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(uid)
        return self.identities.pop(uid, None) is not None


class RecordingEmailSender:
    """Email sender that records instead of delivering."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def send_templated_email(self, template_type: str, recipient: str, variables: dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append({"type": template_type, "to": recipient, "variables": variables})


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    """Services built by the API dependencies retry without sleeping."""
    monkeypatch.setenv("MEMBERSHIP_TX_BASE_DELAY_MS", "0")


@pytest.fixture(scope="function")
def engine():
    """Fresh schema for each test."""
    engine = build_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def membership(session_factory) -> MembershipService:
    return MembershipService(session_factory, **NO_SLEEP)


@pytest.fixture
def provisioner(session_factory, identity, membership, clock) -> AccountProvisioner:
    return AccountProvisioner(session_factory, identity, membership, clock=clock, **NO_SLEEP)


@pytest.fixture
def invitations(session_factory, provisioner, email_sender, clock) -> InvitationService:
    return InvitationService(
        session_factory,
        provisioner,
        email_sender,
        clock=clock,
        app_base_url="https://portal.example.com",
        **NO_SLEEP,
    )


@pytest.fixture
def catalog(session_factory) -> CatalogQuery:
    return CatalogQuery(session_factory, **NO_SLEEP)


# ============================================================================
# Seed helpers
# ============================================================================


@pytest.fixture
def make_user(session_factory, clock):
    """Insert a profile directly; returns its SessionAuthContext."""

    def _make(
        role: str,
        uid: Optional[str] = None,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        distributor_id: Optional[str] = None,
        is_distributor_admin: bool = False,
        managed_users: Optional[list[str]] = None,
    ) -> SessionAuthContext:
        uid = uid or f"{role}_{uuid.uuid4().hex[:8]}"
        profile = UserProfile(
            uid=uid,
            email=email or f"{uid}@example.com",
            display_name=display_name or uid,
            role=role,
            distributor_id=distributor_id,
            is_distributor_admin=is_distributor_admin,
            managed_users=list(managed_users or []),
            created_at=clock(),
        )
        with session_factory() as db:
            db.add(profile)
            db.commit()
        return SessionAuthContext.from_profile(profile)

    return _make


@pytest.fixture
def make_org(session_factory, clock):
    """Insert an organization directly (members must be linked by the caller)."""

    def _make(
        name: str = "Acme Distribution",
        team_members: Optional[list[str]] = None,
        admin_members: Optional[list[str]] = None,
    ) -> Organization:
        org = Organization(
            id=f"org_{uuid.uuid4().hex[:8]}",
            name=name,
            company_name=name,
            team_members=list(team_members or []),
            admin_members=list(admin_members or []),
            created_at=clock(),
        )
        with session_factory() as db:
            db.add(org)
            db.commit()
        return org

    return _make


@pytest.fixture
def load(session_factory):
    """Read a fresh copy of a row: load(Model, pk)."""

    def _load(model, pk):
        with session_factory() as db:
            return db.get(model, pk)

    return _load


@pytest.fixture
def admin(make_user) -> SessionAuthContext:
    return make_user("admin", uid="admin_1", display_name="Platform Admin")


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(session_factory, identity, email_sender, clock):
    """TestClient wired to the in-memory store and fake collaborators."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def act_as():
    """Authenticate subsequent requests as the given caller."""

    def _act_as(caller: SessionAuthContext) -> SessionAuthContext:
        app.dependency_overrides[get_session_auth_context] = lambda: caller
        return caller

    return _act_as
