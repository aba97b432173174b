"""
Test configuration and fixtures.

Provides:
- A throwaway SQLite database per test (models are portable to SQLite)
- Organization / family group fixtures
- JWT token minting for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Must be set before the app modules read settings
os.environ.setdefault("TESTING", "1")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{os.path.join(tempfile.gettempdir(), 'cabin_rotation_test.db')}",
)

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from cabin_rotation.core.deps import COOKIE_NAME, get_db
from cabin_rotation.core.security import create_session_token
from cabin_rotation.db.base import Base
from cabin_rotation.db.enums import Role
from cabin_rotation.db.models import FamilyGroup, Organization
from cabin_rotation.main import app
from cabin_rotation.services import org_service
from cabin_rotation.services.notification_trigger import notification_trigger


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """File-backed SQLite so several sessions (and threads) share one database."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'selection.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Organization with the default quotas (primary 2, secondary 1)."""
    org = org_service.create_org(
        db,
        name="Lake House",
        slug=f"lake-house-{uuid.uuid4().hex[:8]}",
    )
    db.commit()
    return org


@pytest.fixture(scope="function")
def family_groups(db: Session, test_org: Organization) -> list[FamilyGroup]:
    """Three family groups A, B, C (in that rotation order by convention)."""
    groups = [
        org_service.create_family_group(db, test_org.id, name)
        for name in ("Anderson", "Baker", "Carter")
    ]
    db.commit()
    return groups


@pytest.fixture(scope="function")
def rotation_order(family_groups) -> list[uuid.UUID]:
    return [group.id for group in family_groups]


@pytest.fixture(scope="function")
def turn_events():
    """Record TurnChangedEvents fired while the test runs."""
    events = []

    def record(db, event):
        events.append(event)

    notification_trigger.subscribe(record)
    yield events
    notification_trigger.unsubscribe(record)


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: uuid.UUID
    org: Organization
    role: Role
    token: str
    family_group_id: uuid.UUID | None = None
    cookie_name: str = COOKIE_NAME


def make_auth(org: Organization, role: Role, family_group_id=None) -> TestAuth:
    user_id = uuid.uuid4()
    token = create_session_token(
        user_id=user_id,
        org_id=org.id,
        role=role.value,
        family_group_id=family_group_id,
    )
    return TestAuth(
        user_id=user_id,
        org=org,
        role=role,
        token=token,
        family_group_id=family_group_id,
    )


@pytest.fixture(scope="function")
def admin_auth(test_org: Organization) -> TestAuth:
    return make_auth(test_org, Role.ADMIN)


@pytest.fixture(scope="function")
def member_auth(test_org: Organization, family_groups) -> TestAuth:
    """Member of the first family group."""
    return make_auth(test_org, Role.MEMBER, family_groups[0].id)


# =============================================================================
# Client Fixtures
# =============================================================================

async def _client_for(db: Session, auth: TestAuth | None) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    cookies = {auth.cookie_name: auth.token} if auth else None
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies=cookies,
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient."""
    async for c in _client_for(db, None):
        yield c


@pytest.fixture(scope="function")
async def admin_client(db: Session, admin_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    async for c in _client_for(db, admin_auth):
        yield c


@pytest.fixture(scope="function")
async def member_client(db: Session, member_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    async for c in _client_for(db, member_auth):
        yield c


@pytest.fixture(scope="function")
def lead_auth(test_org: Organization, family_groups) -> TestAuth:
    """Group lead of the second family group."""
    return make_auth(test_org, Role.GROUP_LEAD, family_groups[1].id)


@pytest.fixture(scope="function")
async def lead_client(db: Session, lead_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    async for c in _client_for(db, lead_auth):
        yield c
